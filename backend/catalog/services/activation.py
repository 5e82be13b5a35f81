"""Product activation gate: every active variant priced in every required currency."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from catalog.conf import normalize_currency_code, supported_currencies
from catalog.metrics import CATALOG_ACTIVATION_COUNT
from catalog.models import Product, VariantTerm
from catalog.results import ErrorKind, ServiceResult
from catalog.services.pricing import resolve_pricing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivationResult:
    product: Product
    changed: bool


def _lock_product(product_id) -> Optional[Product]:
    try:
        return Product.objects.select_for_update().filter(pk=product_id).first()
    except (ValidationError, ValueError, TypeError):
        return None


def _required_currencies(currencies: Optional[Iterable[str]]) -> List[str]:
    if currencies is None:
        return supported_currencies()
    required = []
    for code in currencies:
        normalized = normalize_currency_code(code)
        if normalized is None:
            raise ValueError(f"Unsupported currency {code!r}.")
        if normalized not in required:
            required.append(normalized)
    return required


def find_missing_pairs(product: Product, currencies: List[str], *, at_time=None) -> List[dict]:
    """Return one entry per (variant, currency) pair that cannot be resolved."""

    at_time = at_time or timezone.now()
    missing: List[dict] = []

    for variant in product.variants.filter(is_active=True).order_by("sort_order", "created_at"):
        term = VariantTerm.objects.filter(variant=variant, is_active=True).order_by("months").first()
        for code in currencies:
            if term is None:
                reason = ErrorKind.NO_TERM_AVAILABLE.value
            else:
                result = resolve_pricing(variant.pk, term.months, code, at_time, require_active=False)
                if result.ok:
                    continue
                reason = result.error.kind.value
            missing.append({"variant_id": str(variant.pk), "variant": variant.name, "currency": code, "reason": reason})

    return missing


def activate_product(product_id, *, currencies: Optional[Iterable[str]] = None, at_time=None) -> ServiceResult[ActivationResult]:
    """Set a product live only if every active variant resolves in every required currency.

    The decision is all-or-nothing; on rejection ``error.details["missing"]``
    lists every failing (variant, currency) pair.
    """

    try:
        required = _required_currencies(currencies)
    except ValueError as exc:
        return ServiceResult.failure(ErrorKind.CONFIGURATION_ERROR, str(exc))

    with transaction.atomic():
        product = _lock_product(product_id)
        if product is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Product not found.", product_id=str(product_id))
        if product.is_active:
            return ServiceResult.success(ActivationResult(product=product, changed=False))

        if not product.variants.filter(is_active=True).exists():
            CATALOG_ACTIVATION_COUNT.labels(outcome="rejected").inc()
            return ServiceResult.failure(
                ErrorKind.CONFIGURATION_ERROR,
                "Product has no active variant.",
                product_id=str(product.pk),
                missing=[],
            )

        missing = find_missing_pairs(product, required, at_time=at_time)
        if missing:
            CATALOG_ACTIVATION_COUNT.labels(outcome="rejected").inc()
            only_prices = all(pair["reason"] == ErrorKind.NO_CURRENT_PRICE.value for pair in missing)
            logger.info("Activation of product %s rejected; %d pair(s) unresolved.", product.pk, len(missing))
            return ServiceResult.failure(
                ErrorKind.NO_CURRENT_PRICE if only_prices else ErrorKind.CONFIGURATION_ERROR,
                "Product cannot be activated until every active variant is priced in every required currency.",
                product_id=str(product.pk),
                missing=missing,
            )

        product.status = Product.Status.ACTIVE
        product.save(update_fields=["status", "updated_at"])

    CATALOG_ACTIVATION_COUNT.labels(outcome="activated").inc()
    logger.info("Product %s activated for %s.", product.pk, ",".join(required))
    return ServiceResult.success(ActivationResult(product=product, changed=True))


def deactivate_product(product_id) -> ServiceResult[ActivationResult]:
    with transaction.atomic():
        product = _lock_product(product_id)
        if product is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, "Product not found.", product_id=str(product_id))
        if not product.is_active:
            return ServiceResult.success(ActivationResult(product=product, changed=False))
        product.status = Product.Status.INACTIVE
        product.save(update_fields=["status", "updated_at"])

    logger.info("Product %s deactivated.", product.pk)
    return ServiceResult.success(ActivationResult(product=product, changed=True))


__all__ = ["ActivationResult", "activate_product", "deactivate_product", "find_missing_pairs"]
