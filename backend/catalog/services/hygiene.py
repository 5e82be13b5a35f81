"""Detection of unsellable catalog variants and deduplicated admin task creation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol

from django.db import IntegrityError, transaction
from django.utils import timezone

from catalog.conf import supported_currencies
from catalog.handlers import HandlerRegistry
from catalog.metrics import CATALOG_ADMIN_TASK_CREATED, CATALOG_UNPUBLISHABLE_COUNT
from catalog.models import AdminTask, Product, VariantTerm
from catalog.services.pricing import current_price

logger = logging.getLogger(__name__)


class UnpublishableReason(str, Enum):
    MISSING_PRICE = "catalog_missing_price"
    MISSING_PLAN_CODE = "catalog_missing_plan_code"
    MISSING_TERM_OPTIONS = "catalog_missing_term_options"
    PRICING_UNRESOLVABLE = "catalog_pricing_unresolvable"


@dataclass(frozen=True)
class UnpublishableVariant:
    reason: UnpublishableReason
    product: Any
    variant: Any
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        return f"{self.reason.value}:{self.product.pk}:{self.variant.pk}"

    def as_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "product_id": str(self.product.pk),
            "variant_id": str(self.variant.pk),
            "message": self.message,
        }


class AdminTaskSink(Protocol):
    def create_if_absent(self, category: str, dedupe_key: str, notes: str, **context) -> bool:
        ...


class DatabaseAdminTaskSink:
    """Writes :class:`AdminTask` rows; at most one open task per dedupe key."""

    def create_if_absent(self, category: str, dedupe_key: str, notes: str, **context) -> bool:
        if AdminTask.objects.filter(dedupe_key=dedupe_key, status=AdminTask.Status.OPEN).exists():
            return False
        try:
            with transaction.atomic():
                AdminTask.objects.create(
                    category=category,
                    dedupe_key=dedupe_key,
                    notes=notes,
                    task_type=context.get("task_type", "catalog_hygiene"),
                    priority=context.get("priority", AdminTask.Priority.NORMAL),
                    product=context.get("product"),
                    variant=context.get("variant"),
                    due_at=context.get("due_at"),
                )
        except IntegrityError:
            # Lost the race to a concurrent listing; the open task already exists.
            return False
        return True


class CatalogHygieneMonitor:
    def __init__(self, sink: Optional[AdminTaskSink] = None, handler_registry: Optional[HandlerRegistry] = None):
        self.sink = sink or DatabaseAdminTaskSink()
        self.handler_registry = handler_registry

    def _notes(self, signal: UnpublishableVariant) -> str:
        notes = signal.message
        if self.handler_registry is None:
            return notes
        handler = self.handler_registry.lookup(signal.product.service_category)
        hint = handler.fallback_price() if handler is not None else None
        if hint is not None:
            notes = f"{notes} Legacy handler suggests {hint} minor units."
        return notes

    def report(self, signal: UnpublishableVariant) -> bool:
        CATALOG_UNPUBLISHABLE_COUNT.labels(reason=signal.reason.value).inc()
        created = self.sink.create_if_absent(
            signal.reason.value,
            signal.dedupe_key,
            self._notes(signal),
            product=signal.product,
            variant=signal.variant,
        )
        if created:
            CATALOG_ADMIN_TASK_CREATED.labels(category=signal.reason.value).inc()
            logger.warning("Opened admin task %s: %s", signal.dedupe_key, signal.message)
        return created

    def report_many(self, signals: Iterable[UnpublishableVariant]) -> int:
        return sum(1 for signal in signals if self.report(signal))


def inspect_variant(variant, *, currencies: Iterable[str], at_time=None) -> list:
    """Return every reason ``variant`` cannot be sold in ``currencies`` at ``at_time``."""

    at_time = at_time or timezone.now()
    product = variant.product
    signals = []

    if not variant.plan_code:
        signals.append(
            UnpublishableVariant(
                reason=UnpublishableReason.MISSING_PLAN_CODE,
                product=product,
                variant=variant,
                message=f"Variant '{variant.name}' of '{product.name}' has no variant or legacy plan code.",
            )
        )

    if not VariantTerm.objects.filter(variant=variant, is_active=True).exists():
        signals.append(
            UnpublishableVariant(
                reason=UnpublishableReason.MISSING_TERM_OPTIONS,
                product=product,
                variant=variant,
                message=f"Variant '{variant.name}' of '{product.name}' has no active billing term.",
            )
        )

    missing = [code for code in currencies if current_price(variant, code, at_time) is None]
    if missing:
        signals.append(
            UnpublishableVariant(
                reason=UnpublishableReason.MISSING_PRICE,
                product=product,
                variant=variant,
                message=(
                    f"Variant '{variant.name}' of '{product.name}' has no current price in "
                    f"{', '.join(missing)}."
                ),
                details={"currencies": missing},
            )
        )
    return signals


def sweep_active_catalog(monitor: Optional[CatalogHygieneMonitor] = None, *, at_time=None) -> Dict[str, int]:
    """Inspect every active variant of every active product across all supported currencies."""

    monitor = monitor or CatalogHygieneMonitor()
    currencies = supported_currencies()
    stats = {"variants": 0, "signals": 0, "tasks_created": 0}

    products = Product.objects.filter(status=Product.Status.ACTIVE).prefetch_related("variants")
    for product in products:
        for variant in product.variants.all():
            if not variant.is_active:
                continue
            stats["variants"] += 1
            signals = inspect_variant(variant, currencies=currencies, at_time=at_time)
            stats["signals"] += len(signals)
            stats["tasks_created"] += monitor.report_many(signals)

    return stats


__all__ = [
    "AdminTaskSink",
    "CatalogHygieneMonitor",
    "DatabaseAdminTaskSink",
    "UnpublishableReason",
    "UnpublishableVariant",
    "inspect_variant",
    "sweep_active_catalog",
]
