"""Product rule configuration and subscription metadata validation.

Rule configuration lives in ``Product.metadata`` and is normalized exactly once
by :func:`normalize_rules`. Metadata schemas are JSON Schema (Draft 2020-12);
compiled validators are cached by a content fingerprint of the schema.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import SchemaError

from catalog.handlers import HandlerRegistry, build_registry_from_settings
from catalog.results import ErrorKind

logger = logging.getLogger(__name__)

HANDLER_FLAG_KEYS = ("use_handler", "useHandler")
SCHEMA_KEYS = (
    "metadata_schema",
    "metadataSchema",
    "subscription_metadata_schema",
    "subscriptionMetadataSchema",
)

_VALIDATOR_CACHE: Dict[str, Draft202012Validator] = {}


class RuleConfigurationError(Exception):
    """Raised when a product's rule configuration cannot be used."""


@dataclass(frozen=True)
class ProductRules:
    metadata_schema: Optional[Dict[str, Any]] = None
    use_legacy_handler: bool = False
    schema_malformed: bool = False

    @property
    def configured(self) -> bool:
        return self.metadata_schema is not None or self.use_legacy_handler or self.schema_malformed


@dataclass(frozen=True)
class MetadataValidation:
    valid: bool
    violations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RuleDecision:
    allowed: bool
    metadata: Any = None
    kind: Optional[ErrorKind] = None
    message: str = ""
    violations: List[str] = field(default_factory=list)


def _parse_json(value: Any) -> Tuple[Any, bool]:
    """Return ``(parsed, ok)`` for JSON strings; other values pass through."""
    if isinstance(value, str):
        try:
            return json.loads(value), True
        except ValueError:
            return None, False
    return value, True


def _flag_enabled(flag: Any) -> bool:
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, str):
        return flag.strip().lower() == "true"
    if isinstance(flag, (int, float)):
        return flag > 0
    return False


def _first_present(container: Dict[str, Any], keys) -> Tuple[Any, bool]:
    for key in keys:
        if key in container and container[key] is not None:
            return container[key], True
    return None, False


def normalize_rules(product_metadata: Any) -> ProductRules:
    """Collapse the accepted rule spellings in product metadata into :class:`ProductRules`."""

    metadata, ok = _parse_json(product_metadata)
    if not ok or not isinstance(metadata, dict):
        return ProductRules()

    rules, ok = _parse_json(metadata.get("rules"))
    if not ok or not isinstance(rules, dict):
        rules = {}

    flag, found = _first_present(metadata, HANDLER_FLAG_KEYS)
    if not found:
        flag, found = _first_present(rules, HANDLER_FLAG_KEYS)
    use_handler = _flag_enabled(flag) if found else False

    schema_value, found = _first_present(rules, SCHEMA_KEYS)
    if found:
        schema, ok = _parse_json(schema_value)
        if not ok or not isinstance(schema, dict):
            logger.warning("Product rules carry a malformed metadata schema; purchases will be rejected.")
            return ProductRules(use_legacy_handler=use_handler, schema_malformed=True)
        return ProductRules(metadata_schema=schema, use_legacy_handler=use_handler)

    looks_like_schema = (
        isinstance(rules.get("type"), str)
        or isinstance(rules.get("$schema"), str)
        or isinstance(rules.get("properties"), dict)
    )
    return ProductRules(metadata_schema=rules if looks_like_schema else None, use_legacy_handler=use_handler)


def schema_fingerprint(schema: Dict[str, Any]) -> str:
    try:
        canonical = json.dumps(schema, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise RuleConfigurationError("Metadata schema is not JSON serialisable.") from exc
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def get_validator(schema: Dict[str, Any]) -> Draft202012Validator:
    """Compile ``schema`` once per distinct content and reuse it afterwards."""

    fingerprint = schema_fingerprint(schema)
    validator = _VALIDATOR_CACHE.get(fingerprint)
    if validator is not None:
        return validator
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise RuleConfigurationError(f"Invalid metadata schema: {exc.message}") from exc
    validator = Draft202012Validator(schema, format_checker=FormatChecker())
    _VALIDATOR_CACHE[fingerprint] = validator
    return validator


def clear_validator_cache() -> None:
    _VALIDATOR_CACHE.clear()


def normalize_candidate(candidate: Any) -> Tuple[Any, Optional[str]]:
    """Return ``(metadata, violation)``; ``None`` becomes ``{}`` and JSON strings are parsed."""
    if candidate is None:
        return {}, None
    parsed, ok = _parse_json(candidate)
    if not ok:
        return None, "$: metadata is not valid JSON"
    return parsed, None


def validate_metadata(schema: Dict[str, Any], candidate: Any) -> MetadataValidation:
    metadata, violation = normalize_candidate(candidate)
    if violation:
        return MetadataValidation(valid=False, violations=[violation])

    validator = get_validator(schema)
    errors = sorted(validator.iter_errors(metadata), key=lambda e: [str(p) for p in e.absolute_path])
    violations = [f"{'/'.join(str(p) for p in e.absolute_path) or '$'}: {e.message}" for e in errors]
    return MetadataValidation(valid=not violations, violations=violations)


class RuleEngine:
    """Evaluates a product's schema check and, when opted in, its legacy handler."""

    def __init__(self, handler_registry: Optional[HandlerRegistry] = None):
        self._registry = handler_registry

    @property
    def registry(self) -> HandlerRegistry:
        if self._registry is None:
            self._registry = build_registry_from_settings()
        return self._registry

    def evaluate(self, product, metadata: Any) -> RuleDecision:
        rules: ProductRules = product.rules

        normalized, violation = normalize_candidate(metadata)
        if violation:
            return RuleDecision(
                allowed=False,
                kind=ErrorKind.METADATA_SCHEMA_VIOLATION,
                message="Subscription metadata could not be parsed.",
                violations=[violation],
            )

        if rules.schema_malformed:
            return RuleDecision(
                allowed=False,
                metadata=normalized,
                kind=ErrorKind.CONFIGURATION_ERROR,
                message="Product metadata schema is malformed.",
            )

        if rules.metadata_schema is not None:
            try:
                result = validate_metadata(rules.metadata_schema, normalized)
            except RuleConfigurationError as exc:
                logger.error("Product %s has an unusable metadata schema: %s", product.pk, exc)
                return RuleDecision(
                    allowed=False,
                    metadata=normalized,
                    kind=ErrorKind.CONFIGURATION_ERROR,
                    message=str(exc),
                )
            if not result.valid:
                return RuleDecision(
                    allowed=False,
                    metadata=normalized,
                    kind=ErrorKind.METADATA_SCHEMA_VIOLATION,
                    message="Subscription metadata does not match the product schema.",
                    violations=result.violations,
                )

        if rules.use_legacy_handler:
            handler = self.registry.lookup(product.service_category)
            if handler is None:
                logger.error(
                    "Product %s opts into a legacy handler but none is registered for '%s'.",
                    product.pk,
                    product.service_category,
                )
                return RuleDecision(
                    allowed=False,
                    metadata=normalized,
                    kind=ErrorKind.CONFIGURATION_ERROR,
                    message=f"No legacy handler registered for category '{product.service_category}'.",
                )
            if not handler.validate(normalized):
                return RuleDecision(
                    allowed=False,
                    metadata=normalized,
                    kind=ErrorKind.METADATA_SCHEMA_VIOLATION,
                    message="Subscription metadata was rejected by the category handler.",
                    violations=[f"$: rejected by {product.service_category} handler"],
                )

        return RuleDecision(allowed=True, metadata=normalized)


__all__ = [
    "MetadataValidation",
    "ProductRules",
    "RuleConfigurationError",
    "RuleDecision",
    "RuleEngine",
    "clear_validator_cache",
    "get_validator",
    "normalize_rules",
    "schema_fingerprint",
    "validate_metadata",
]
