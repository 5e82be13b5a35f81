"""Prometheus metrics for catalog services."""
from __future__ import annotations

from prometheus_client import Counter

CATALOG_UNPUBLISHABLE_COUNT = Counter(
    "catalog_unpublishable_variant_total",
    "Variants excluded from listings because they cannot be sold",
    labelnames=("reason",),
)

CATALOG_ADMIN_TASK_CREATED = Counter(
    "catalog_admin_task_created_total",
    "Admin tasks opened by the catalog hygiene monitor",
    labelnames=("category",),
)

CATALOG_ACTIVATION_COUNT = Counter(
    "catalog_activation_total",
    "Product activation attempts",
    labelnames=("outcome",),
)
