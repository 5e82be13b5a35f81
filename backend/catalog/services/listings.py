"""Customer-facing catalog listings."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.db.models import Prefetch
from django.utils import timezone

from catalog.conf import normalize_currency_code
from catalog.handlers import HandlerRegistry, build_registry_from_settings
from catalog.models import Product, ProductVariant, VariantTerm
from catalog.results import ErrorKind, ServiceResult
from catalog.services.hygiene import CatalogHygieneMonitor, UnpublishableReason, UnpublishableVariant
from catalog.services.pricing import resolve_pricing
from catalog.services.snapshot import PricingSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Listing:
    product_id: str
    variant_id: str
    product_name: str
    display_name: str
    description: str
    service_category: str
    plan_code: str
    features: List[str]
    badges: List[str]
    currency: str
    term_months: int
    available_terms: List[int]
    snapshot: PricingSnapshot

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "display_name": self.display_name,
            "description": self.description,
            "service_category": self.service_category,
            "plan_code": self.plan_code,
            "features": list(self.features),
            "badges": list(self.badges),
            "currency": self.currency,
            "term_months": self.term_months,
            "available_terms": list(self.available_terms),
            "pricing": self.snapshot.as_dict(),
        }


@dataclass(frozen=True)
class ListingPage:
    listings: List[Listing] = field(default_factory=list)
    unpublishable: List[UnpublishableVariant] = field(default_factory=list)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _features(product, variant, registry: HandlerRegistry) -> List[str]:
    for source in (variant.metadata, product.metadata):
        if isinstance(source, dict):
            features = _string_list(source.get("features"))
            if features:
                return features
    handler = registry.lookup(product.service_category)
    return list(handler.fallback_features()) if handler is not None else []


def _display_term(terms: List[VariantTerm]) -> VariantTerm:
    recommended = [term for term in terms if term.is_recommended]
    pool = recommended or terms
    return min(pool, key=lambda term: (term.months, term.sort_order))


def list_active_listings(
    *,
    service_category: Optional[str] = None,
    currency: Optional[str] = None,
    at_time=None,
    monitor: Optional[CatalogHygieneMonitor] = None,
    handler_registry: Optional[HandlerRegistry] = None,
) -> ServiceResult[ListingPage]:
    """List every sellable (product, variant) pair with a display quote.

    Variants that cannot be sold are left out of the page and reported to the
    hygiene monitor; they never make the call fail.
    """

    at_time = at_time or timezone.now()
    registry = handler_registry if handler_registry is not None else build_registry_from_settings()
    monitor = monitor or CatalogHygieneMonitor(handler_registry=registry)

    requested = None
    if currency:
        requested = normalize_currency_code(currency)
        if requested is None:
            return ServiceResult.failure(ErrorKind.NO_CURRENT_PRICE, f"Unsupported currency {currency!r}.")

    products = Product.objects.filter(status=Product.Status.ACTIVE).order_by("-created_at")
    if service_category:
        products = products.filter(service_category__iexact=service_category.strip())
    products = products.prefetch_related(
        Prefetch(
            "variants",
            queryset=ProductVariant.objects.filter(is_active=True)
            .order_by("sort_order", "created_at")
            .prefetch_related(Prefetch("terms", queryset=VariantTerm.objects.filter(is_active=True))),
        )
    )

    listings: List[Listing] = []
    unpublishable: List[UnpublishableVariant] = []

    for product in products:
        for variant in product.variants.all():
            if not variant.plan_code:
                unpublishable.append(
                    UnpublishableVariant(
                        reason=UnpublishableReason.MISSING_PLAN_CODE,
                        product=product,
                        variant=variant,
                        message=f"Variant '{variant.name}' of '{product.name}' has no variant or legacy plan code.",
                    )
                )
                continue

            terms = list(variant.terms.all())
            if not terms:
                unpublishable.append(
                    UnpublishableVariant(
                        reason=UnpublishableReason.MISSING_TERM_OPTIONS,
                        product=product,
                        variant=variant,
                        message=f"Variant '{variant.name}' of '{product.name}' has no active billing term.",
                    )
                )
                continue

            term = _display_term(terms)
            code = requested or product.default_currency
            result = resolve_pricing(variant.pk, term.months, code, at_time)
            if not result.ok:
                if result.error.kind == ErrorKind.NO_CURRENT_PRICE:
                    unpublishable.append(
                        UnpublishableVariant(
                            reason=UnpublishableReason.MISSING_PRICE,
                            product=product,
                            variant=variant,
                            message=(
                                f"Variant '{variant.name}' of '{product.name}' has no current price in {code}."
                            ),
                            details={"currencies": [code]},
                        )
                    )
                else:
                    logger.error(
                        "Excluding variant %s from listings: %s (%s)",
                        variant.pk,
                        result.error.message,
                        result.error.kind.value,
                    )
                    unpublishable.append(
                        UnpublishableVariant(
                            reason=UnpublishableReason.PRICING_UNRESOLVABLE,
                            product=product,
                            variant=variant,
                            message=(
                                f"Variant '{variant.name}' of '{product.name}' could not be priced: "
                                f"{result.error.message}"
                            ),
                            details={"error": result.error.kind.value, "currency": code},
                        )
                    )
                continue

            pricing = result.value
            variant_meta: Dict[str, Any] = variant.metadata if isinstance(variant.metadata, dict) else {}
            listings.append(
                Listing(
                    product_id=str(product.pk),
                    variant_id=str(variant.pk),
                    product_name=product.name,
                    display_name=variant.display_name,
                    description=product.description,
                    service_category=product.service_category,
                    plan_code=variant.plan_code,
                    features=_features(product, variant, registry),
                    badges=_string_list(variant_meta.get("badges")),
                    currency=pricing.currency,
                    term_months=pricing.term.months,
                    available_terms=sorted(t.months for t in terms),
                    snapshot=pricing.snapshot,
                )
            )

    if unpublishable:
        monitor.report_many(unpublishable)

    return ServiceResult.success(ListingPage(listings=listings, unpublishable=unpublishable))


__all__ = ["Listing", "ListingPage", "list_active_listings"]
