"""Settings accessors for catalog services."""
from __future__ import annotations

from typing import Dict, List, Optional

from django.conf import settings

DEFAULT_SUPPORTED_CURRENCIES = ("USD", "GBP", "CAD", "EUR")


def supported_currencies() -> List[str]:
    configured = getattr(settings, "CATALOG_SUPPORTED_CURRENCIES", None) or DEFAULT_SUPPORTED_CURRENCIES
    return [code.strip().upper() for code in configured if code and code.strip()]


def default_currency() -> str:
    return (getattr(settings, "CATALOG_DEFAULT_CURRENCY", "USD") or "USD").strip().upper()


def legacy_handler_paths() -> Dict[str, str]:
    return dict(getattr(settings, "CATALOG_LEGACY_HANDLERS", {}) or {})


def normalize_currency_code(value) -> Optional[str]:
    """Return the upper-cased ISO code when it is a supported currency, else ``None``."""

    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha():
        return None
    if code not in supported_currencies():
        return None
    return code
