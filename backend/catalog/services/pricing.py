"""Catalog price resolution for a variant, billing term and currency."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ValidationError
from django.utils import timezone

from catalog.conf import normalize_currency_code
from catalog.models import PriceHistory, ProductVariant, VariantTerm
from catalog.results import ErrorKind, ServiceResult
from catalog.services.snapshot import InvalidDiscount, InvalidPriceInput, PricingSnapshot, build_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPricing:
    variant: ProductVariant
    product: object
    term: VariantTerm
    price_row: PriceHistory
    currency: str
    base_price_cents: int
    discount_percent: Decimal
    snapshot: PricingSnapshot

    @property
    def total_cents(self) -> int:
        return self.snapshot.total_cents

    def as_dict(self) -> dict:
        return {
            "variant_id": str(self.variant.pk),
            "product_id": str(self.product.pk),
            "term_id": str(self.term.pk),
            "price_id": str(self.price_row.pk),
            "currency": self.currency,
            **self.snapshot.as_dict(),
        }


def current_price(variant, currency: str, at_time=None) -> Optional[PriceHistory]:
    """Return the authoritative price row for ``(variant, currency)`` at ``at_time``.

    Overlapping valid rows are an administrative error: the row with the latest
    ``starts_at`` (then latest ``created_at``) wins and a warning is logged.
    """

    at_time = at_time or timezone.now()
    rows = list(
        PriceHistory.objects.effective_at(at_time)
        .filter(variant=variant, currency=currency)
        .order_by("-starts_at", "-created_at")[:2]
    )
    if not rows:
        return None
    if len(rows) > 1:
        logger.warning(
            "Overlapping prices for variant %s in %s at %s; using row %s.",
            getattr(variant, "pk", variant),
            currency,
            at_time.isoformat(),
            rows[0].pk,
        )
    return rows[0]


def _load_variant(variant_id) -> Optional[ProductVariant]:
    try:
        return ProductVariant.objects.select_related("product").filter(pk=variant_id).first()
    except (ValidationError, ValueError, TypeError):
        return None


def resolve_pricing(
    variant_id,
    term_months,
    currency,
    at_time=None,
    *,
    require_active: bool = True,
) -> ServiceResult[ResolvedPricing]:
    """Resolve the price owed for ``term_months`` of a variant in ``currency``.

    Listing, quoting and purchase all resolve through here with
    ``require_active=True``; the activation gate passes ``False`` so it can
    inspect products that are not live yet.
    """

    at_time = at_time or timezone.now()

    code = normalize_currency_code(currency)
    if code is None:
        return ServiceResult.failure(
            ErrorKind.NO_CURRENT_PRICE,
            f"Unsupported currency {currency!r}.",
            currency=currency if isinstance(currency, str) else None,
        )

    variant = _load_variant(variant_id)
    if variant is None:
        return ServiceResult.failure(ErrorKind.NOT_FOUND, "Product variant not found.", variant_id=str(variant_id))
    product = variant.product

    if require_active and not (product.is_active and variant.is_active):
        return ServiceResult.failure(
            ErrorKind.INACTIVE,
            "Product or variant is not available for sale.",
            product_id=str(product.pk),
            variant_id=str(variant.pk),
        )

    try:
        months = int(term_months)
    except (TypeError, ValueError):
        months = 0
    term = VariantTerm.objects.filter(variant=variant, months=months, is_active=True).first() if months > 0 else None
    if term is None:
        return ServiceResult.failure(
            ErrorKind.NO_TERM_AVAILABLE,
            f"No active {term_months}-month term for this variant.",
            variant_id=str(variant.pk),
            term_months=term_months,
        )

    price_row = current_price(variant, code, at_time)
    if price_row is None:
        return ServiceResult.failure(
            ErrorKind.NO_CURRENT_PRICE,
            f"No current {code} price for this variant.",
            variant_id=str(variant.pk),
            currency=code,
        )

    try:
        snapshot = build_snapshot(price_row.price_cents, term.discount_percent, term.months)
    except (InvalidDiscount, InvalidPriceInput) as exc:
        logger.error("Unusable pricing configuration for variant %s term %s: %s", variant.pk, term.pk, exc)
        return ServiceResult.failure(
            ErrorKind.CONFIGURATION_ERROR,
            str(exc),
            variant_id=str(variant.pk),
            term_id=str(term.pk),
        )

    return ServiceResult.success(
        ResolvedPricing(
            variant=variant,
            product=product,
            term=term,
            price_row=price_row,
            currency=code,
            base_price_cents=price_row.price_cents,
            discount_percent=snapshot.discount_percent,
            snapshot=snapshot,
        )
    )


__all__ = ["ResolvedPricing", "current_price", "resolve_pricing"]
