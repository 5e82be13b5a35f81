"""Subscription lifecycle operations outside of purchase and renewal."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from billing.models import CreditTransaction, InvalidStatusTransition, Order, Payment, Subscription
from billing.notifications import NotificationDispatcher, get_dispatcher
from billing.observability.logging import log_billing_event
from billing.services.credit_ledger import credit, lock_account
from catalog.results import ErrorKind, ServiceResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationReceipt:
    subscription: Subscription
    refunded_order: Optional[Order] = None
    refund_transaction: Optional[CreditTransaction] = None


def cancel_subscription(
    subscription_id,
    *,
    reason: str = "",
    refund: bool = False,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ServiceResult[CancellationReceipt]:
    """Cancel a subscription, optionally returning the latest term's charge as credits.

    This is the compensating operation for a committed purchase or renewal.
    """

    try:
        current = Subscription.objects.select_related("user").filter(pk=subscription_id).first()
    except (ValidationError, ValueError, TypeError):
        current = None
    if current is None:
        return ServiceResult.failure(ErrorKind.NOT_FOUND, "Subscription not found.", subscription_id=str(subscription_id))

    refunded_order = None
    refund_tx = None

    with transaction.atomic():
        account = lock_account(current.user)
        subscription = Subscription.objects.select_for_update().get(pk=current.pk)
        try:
            subscription.transition_to(Subscription.Status.CANCELLED, reason=reason or "cancelled")
        except InvalidStatusTransition as exc:
            return ServiceResult.failure(
                ErrorKind.INVALID_STATUS_TRANSITION,
                exc.messages[0],
                subscription_id=str(subscription.pk),
                status=subscription.status,
            )

        if refund:
            refunded_order = (
                subscription.orders.select_for_update()
                .filter(status=Order.Status.COMPLETED)
                .order_by("-created_at")
                .first()
            )
            if refunded_order is not None and refunded_order.total_cents > 0:
                refund_tx = credit(
                    account,
                    refunded_order.total_cents,
                    tx_type=CreditTransaction.TransactionType.REFUND,
                    order=refunded_order,
                    idempotency_key=f"order:{refunded_order.pk}:refund",
                    description=f"Refund on cancellation: {reason}".strip(),
                ).transaction
            if refunded_order is not None:
                refunded_order.status = Order.Status.REFUNDED
                refunded_order.status_reason = (reason or "cancelled")[:255]
                refunded_order.save(update_fields=["status", "status_reason", "updated_at"])
                refunded_order.payments.update(status=Payment.Status.REFUNDED, updated_at=timezone.now())
                order_for_notice = refunded_order
                dispatcher = dispatcher or get_dispatcher()
                transaction.on_commit(lambda: dispatcher.order_status_changed(order_for_notice))

    log_billing_event(
        message="billing.subscription.cancelled",
        user_id=subscription.user_id,
        subscription_id=subscription.pk,
        extra={
            "reason": reason,
            "refunded_cents": refund_tx.amount_cents if refund_tx is not None else 0,
        },
    )
    return ServiceResult.success(
        CancellationReceipt(subscription=subscription, refunded_order=refunded_order, refund_transaction=refund_tx)
    )


__all__ = ["CancellationReceipt", "cancel_subscription"]
