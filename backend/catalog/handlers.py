"""Legacy per-category metadata handlers and their registry."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from django.utils.module_loading import import_string

from catalog.conf import legacy_handler_paths

logger = logging.getLogger(__name__)


@runtime_checkable
class LegacyHandler(Protocol):
    def validate(self, metadata: dict) -> bool:
        ...

    def fallback_price(self) -> Optional[int]:
        ...

    def fallback_features(self) -> List[str]:
        ...


class HandlerRegistry:
    """Maps a service category to the legacy handler that validates its metadata."""

    def __init__(self, handlers: Optional[Dict[str, LegacyHandler]] = None):
        self._handlers: Dict[str, LegacyHandler] = {}
        for category, handler in (handlers or {}).items():
            self.register(category, handler)

    @staticmethod
    def _key(category: Optional[str]) -> str:
        return (category or "").strip().lower()

    def register(self, category: str, handler: LegacyHandler) -> None:
        key = self._key(category)
        if not key:
            raise ValueError("Handler category is required.")
        self._handlers[key] = handler

    def lookup(self, category: Optional[str]) -> Optional[LegacyHandler]:
        return self._handlers.get(self._key(category))

    def categories(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, category) -> bool:
        return self._key(category) in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def build_registry_from_settings(paths: Optional[Dict[str, str]] = None) -> HandlerRegistry:
    """Instantiate handlers listed in ``CATALOG_LEGACY_HANDLERS`` (category -> dotted path).

    An entry that cannot be imported or instantiated is logged and left out, so
    lookups for its category find no handler.
    """

    registry = HandlerRegistry()
    for category, dotted_path in (legacy_handler_paths() if paths is None else paths).items():
        try:
            handler_cls = import_string(dotted_path)
            handler = handler_cls()
        except (ImportError, TypeError) as exc:
            logger.error("Skipping legacy handler %r for category '%s': %s", dotted_path, category, exc)
            continue
        registry.register(category, handler)
        logger.debug("Registered legacy handler %s for category '%s'.", dotted_path, category)
    return registry


class RequiredFieldsHandler:
    """Handler that accepts metadata carrying non-empty values for every required field."""

    required_fields: Iterable[str] = ()
    default_price_cents: Optional[int] = None
    default_features: Iterable[str] = ()

    def __init__(
        self,
        required_fields: Optional[Iterable[str]] = None,
        *,
        price_cents: Optional[int] = None,
        features: Optional[Iterable[str]] = None,
    ):
        self._required = list(self.required_fields if required_fields is None else required_fields)
        self._price_cents = self.default_price_cents if price_cents is None else price_cents
        self._features = list(self.default_features if features is None else features)

    def validate(self, metadata: dict) -> bool:
        if not isinstance(metadata, dict):
            return False
        for field in self._required:
            value = metadata.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                return False
        return True

    def fallback_price(self) -> Optional[int]:
        return self._price_cents

    def fallback_features(self) -> List[str]:
        return list(self._features)


__all__ = ["HandlerRegistry", "LegacyHandler", "RequiredFieldsHandler", "build_registry_from_settings"]
