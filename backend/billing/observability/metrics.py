"""Prometheus metrics helpers for billing domain."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

PURCHASE_OUTCOME_COUNT = Counter(
    "billing_purchase_total",
    "Purchase attempts by terminal state",
    labelnames=("outcome",),
)

PURCHASE_LATENCY = Histogram(
    "billing_purchase_duration_seconds",
    "Latency of purchase transactions",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

RENEWAL_OUTCOME_COUNT = Counter(
    "billing_renewal_total",
    "Renewal attempts by outcome",
    labelnames=("outcome",),
)

CREDITS_SPENT = Counter(
    "billing_credits_spent_minor_total",
    "Credits debited for purchases and renewals, in minor units",
    labelnames=("currency", "kind"),
)
