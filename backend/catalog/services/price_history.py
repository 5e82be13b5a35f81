"""Administrative writes to the price history store."""
from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from catalog.conf import normalize_currency_code
from catalog.models import PriceHistory, ProductVariant

logger = logging.getLogger(__name__)


class PriceAdministrationError(ValueError):
    """Raised when a price change request is inconsistent."""


def set_current_price(
    variant,
    currency: str,
    price_cents: int,
    *,
    starts_at=None,
    ends_at=None,
    metadata: Optional[dict] = None,
) -> PriceHistory:
    """Close the open price for ``(variant, currency)`` and open a new one.

    Both writes happen in one transaction under a row lock on the variant,
    so concurrent readers never see two valid prices committed.
    """

    code = normalize_currency_code(currency)
    if code is None:
        raise PriceAdministrationError(f"Unsupported currency {currency!r}.")
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise PriceAdministrationError("price_cents must be a non-negative integer.")

    starts_at = starts_at or timezone.now()
    if ends_at is not None and ends_at <= starts_at:
        raise PriceAdministrationError("ends_at must be later than starts_at.")

    variant_pk = getattr(variant, "pk", variant)

    with transaction.atomic():
        locked_variant = ProductVariant.objects.select_for_update().get(pk=variant_pk)

        covering = PriceHistory.objects.filter(variant=locked_variant, currency=code, starts_at__lte=starts_at).filter(
            Q(ends_at__isnull=True) | Q(ends_at__gt=starts_at)
        )
        if covering.filter(starts_at=starts_at).exists():
            raise PriceAdministrationError(
                f"A {code} price for this variant already starts at {starts_at.isoformat()}."
            )
        closed = covering.update(ends_at=starts_at)

        row = PriceHistory.objects.create(
            variant=locked_variant,
            currency=code,
            price_cents=price_cents,
            starts_at=starts_at,
            ends_at=ends_at,
            metadata=metadata or {},
        )

    logger.info(
        "Set %s price for variant %s to %s from %s (closed %s row(s)).",
        code,
        variant_pk,
        price_cents,
        starts_at.isoformat(),
        closed,
    )
    return row


__all__ = ["PriceAdministrationError", "set_current_price"]
