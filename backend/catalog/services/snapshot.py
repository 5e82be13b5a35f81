"""Pure pricing arithmetic shared by quotes, purchases and renewals."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

HUNDRED = Decimal("100")

Number = Union[int, str, Decimal]


class InvalidDiscount(ValueError):
    """Raised when a discount percentage falls outside 0-100."""


class InvalidPriceInput(ValueError):
    """Raised for negative or non-integral base prices and non-positive terms."""


@dataclass(frozen=True)
class PricingSnapshot:
    term_months: int
    base_price_cents: int
    discount_percent: Decimal
    total_cents: int
    discount_cents: int

    def as_dict(self) -> dict:
        return {
            "term_months": self.term_months,
            "base_price_cents": self.base_price_cents,
            "discount_percent": str(self.discount_percent),
            "total_cents": self.total_cents,
            "discount_cents": self.discount_cents,
        }


def _coerce_discount(discount_percent: Optional[Number]) -> Decimal:
    if discount_percent is None:
        return Decimal("0")
    if isinstance(discount_percent, bool):
        raise InvalidDiscount("Discount percent must be numeric.")
    try:
        value = Decimal(str(discount_percent))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidDiscount(f"Discount percent {discount_percent!r} is not numeric.") from exc
    if not value.is_finite() or value < 0 or value > HUNDRED:
        raise InvalidDiscount(f"Discount percent {discount_percent!r} must be between 0 and 100.")
    return value


def build_snapshot(
    base_price_cents: int,
    discount_percent: Optional[Number],
    term_months: int = 1,
) -> PricingSnapshot:
    """Compute the amount owed for ``term_months`` of a monthly base price.

    ``total = round_half_up(base * months * (100 - discount) / 100)``.
    A missing discount means full price.
    """

    if isinstance(base_price_cents, bool) or not isinstance(base_price_cents, int) or base_price_cents < 0:
        raise InvalidPriceInput(f"Base price {base_price_cents!r} must be a non-negative integer of minor units.")
    if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months < 1:
        raise InvalidPriceInput(f"Term months {term_months!r} must be a positive integer.")

    discount = _coerce_discount(discount_percent)
    gross = Decimal(base_price_cents) * term_months
    total = (gross * (HUNDRED - discount) / HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    total_cents = int(total)

    return PricingSnapshot(
        term_months=term_months,
        base_price_cents=base_price_cents,
        discount_percent=discount,
        total_cents=total_cents,
        discount_cents=int(gross) - total_cents,
    )


__all__ = ["InvalidDiscount", "InvalidPriceInput", "PricingSnapshot", "build_snapshot"]
