"""Celery tasks driving renewals and past-due expiry."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Optional

from celery import shared_task
from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from billing.models import Subscription
from billing.services.renewal import renew
from catalog.results import ErrorKind

logger = logging.getLogger(__name__)

AUTO_RENEW_LOOKAHEAD_MINUTES = 10
PAST_DUE_GRACE_DAYS = 7


def due_subscriptions(now=None):
    """Active auto-renewing subscriptions whose term ends within the lookahead window."""

    now = now or timezone.now()
    lookahead = getattr(settings, "BILLING_RENEWAL_LOOKAHEAD_MINUTES", AUTO_RENEW_LOOKAHEAD_MINUTES)
    return (
        Subscription.objects.filter(
            status=Subscription.Status.ACTIVE,
            auto_renew=True,
            end_date__lte=now + timedelta(minutes=lookahead),
        )
        .order_by("end_date")
    )


@shared_task
def process_due_renewals(limit: Optional[int] = None) -> Dict[str, int]:
    """Renew every due subscription once; failures are left past_due for the customer."""

    now = timezone.now()
    queryset = due_subscriptions(now)
    if limit is not None:
        queryset = queryset[:limit]

    stats = {"processed": 0, "renewed": 0, "insufficient_credits": 0, "skipped": 0, "failed": 0}

    for subscription_id, end_date in queryset.values_list("id", "end_date"):
        stats["processed"] += 1
        try:
            result = renew(subscription_id, now, cycle_end_date=end_date)
        except DatabaseError:
            stats["failed"] += 1
            logger.exception("Unexpected database error renewing subscription %s", subscription_id)
            continue
        if result.ok:
            if result.value.already_renewed:
                stats["skipped"] += 1
            else:
                stats["renewed"] += 1
            continue
        if result.error.kind == ErrorKind.INSUFFICIENT_CREDITS:
            stats["insufficient_credits"] += 1
        elif result.error.kind in (ErrorKind.INACTIVE, ErrorKind.IDEMPOTENCY_CONFLICT):
            stats["skipped"] += 1
        else:
            stats["failed"] += 1
            logger.error(
                "Renewal of subscription %s failed: %s (%s)",
                subscription_id,
                result.error.message,
                result.error.kind.value,
            )

    logger.info("Renewal sweep finished: %s", stats)
    return stats


@shared_task
def expire_past_due_subscriptions() -> Dict[str, int]:
    """Expire subscriptions that stayed past_due longer than the grace period."""

    grace_days = getattr(settings, "BILLING_PAST_DUE_GRACE_DAYS", PAST_DUE_GRACE_DAYS)
    cutoff = timezone.now() - timedelta(days=grace_days)
    candidates = Subscription.objects.filter(
        status=Subscription.Status.PAST_DUE,
        status_changed_at__lte=cutoff,
    ).values_list("id", flat=True)

    stats = {"expired": 0, "total": 0}
    for subscription_id in candidates:
        stats["total"] += 1
        with transaction.atomic():
            subscription = Subscription.objects.select_for_update().get(pk=subscription_id)
            if subscription.status != Subscription.Status.PAST_DUE:
                continue
            subscription.transition_to(Subscription.Status.EXPIRED, reason="past_due_grace_elapsed")
            stats["expired"] += 1

    if stats["expired"]:
        logger.info("Expired %s past-due subscription(s).", stats["expired"])
    return stats
