"""Notification dispatch for billing events.

Delivery (email, push) lives outside this service; the dispatcher is the seam.
The configured class is loaded from ``BILLING_NOTIFICATION_DISPATCHER``.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from django.conf import settings
from django.utils.module_loading import import_string

from billing.observability.logging import log_billing_event

DEFAULT_DISPATCHER = "billing.notifications.LoggingNotificationDispatcher"


class NotificationDispatcher(Protocol):
    def renewal_failed(self, subscription, *, reason: str, amount_cents: int) -> None:
        ...

    def order_status_changed(self, order) -> None:
        ...


class LoggingNotificationDispatcher:
    """Emits each notification as a structured billing log event."""

    def renewal_failed(self, subscription, *, reason: str, amount_cents: int) -> None:
        log_billing_event(
            message="billing.subscription.renewal_failed",
            user_id=subscription.user_id,
            subscription_id=subscription.pk,
            actor="renewal_engine",
            extra={"reason": reason, "amount_cents": amount_cents, "currency": subscription.currency},
            level=logging.WARNING,
        )

    def order_status_changed(self, order) -> None:
        log_billing_event(
            message="billing.order.status_changed",
            user_id=order.user_id,
            subscription_id=order.subscription_id,
            extra={
                "order_id": str(order.pk),
                "kind": order.kind,
                "status": order.status,
                "total_cents": order.total_cents,
                "currency": order.currency,
            },
        )


def get_dispatcher(path: Optional[str] = None) -> NotificationDispatcher:
    dotted_path = path or getattr(settings, "BILLING_NOTIFICATION_DISPATCHER", DEFAULT_DISPATCHER) or DEFAULT_DISPATCHER
    return import_string(dotted_path)()
