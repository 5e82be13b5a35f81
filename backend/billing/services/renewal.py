"""Subscription renewal against the price agreed at purchase time."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from dateutil.relativedelta import relativedelta
from django.core.exceptions import ValidationError
from django.db import IntegrityError, OperationalError, transaction
from django.utils import timezone

from billing.models import CreditTransaction, Order, OrderItem, Payment, Subscription, SubscriptionRenewal
from billing.notifications import NotificationDispatcher, get_dispatcher
from billing.observability.logging import log_billing_event
from billing.observability.metrics import CREDITS_SPENT, RENEWAL_OUTCOME_COUNT
from billing.services.credit_ledger import debit, lock_account
from catalog.results import ErrorKind, ServiceResult
from catalog.services.snapshot import build_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenewalReceipt:
    subscription: Subscription
    renewal: SubscriptionRenewal
    order: Optional[Order] = None
    order_item: Optional[OrderItem] = None
    payment: Optional[Payment] = None
    credit_transaction: Optional[CreditTransaction] = None
    balance_cents: int = 0
    already_renewed: bool = False


def _load(subscription_id) -> Optional[Subscription]:
    try:
        return Subscription.objects.select_related("user").filter(pk=subscription_id).first()
    except (ValidationError, ValueError, TypeError):
        return None


def renew(
    subscription_id,
    at_time=None,
    *,
    cycle_end_date=None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ServiceResult[RenewalReceipt]:
    """Extend a subscription by one term, charging its stored snapshot.

    ``cycle_end_date`` identifies the cycle being renewed and defaults to the
    end date observed before locking; a cycle is charged at most once. When
    credits are short the subscription moves to ``past_due`` and the failure
    is dispatched after commit. There is no automatic retry.
    """

    at_time = at_time or timezone.now()
    current = _load(subscription_id)
    if current is None:
        return ServiceResult.failure(ErrorKind.NOT_FOUND, "Subscription not found.", subscription_id=str(subscription_id))
    cycle_end = cycle_end_date or current.end_date
    dispatcher = dispatcher or get_dispatcher()
    shortfall = None

    try:
        with transaction.atomic():
            account = lock_account(current.user)
            subscription = Subscription.objects.select_for_update().get(pk=current.pk)

            renewal = (
                SubscriptionRenewal.objects.select_for_update()
                .filter(subscription=subscription, cycle_end_date=cycle_end)
                .first()
            )
            if renewal is not None and renewal.status == SubscriptionRenewal.Status.SUCCEEDED:
                RENEWAL_OUTCOME_COUNT.labels(outcome="already_renewed").inc()
                return ServiceResult.success(
                    RenewalReceipt(
                        subscription=subscription,
                        renewal=renewal,
                        order=renewal.order,
                        balance_cents=account.compute_balance(),
                        already_renewed=True,
                    )
                )

            if subscription.status not in Subscription.RENEWABLE_STATUSES:
                RENEWAL_OUTCOME_COUNT.labels(outcome=ErrorKind.INACTIVE.value).inc()
                return ServiceResult.failure(
                    ErrorKind.INACTIVE,
                    f"Subscriptions in status {subscription.status} cannot be renewed.",
                    subscription_id=str(subscription.pk),
                    status=subscription.status,
                )
            if subscription.end_date != cycle_end:
                return ServiceResult.failure(
                    ErrorKind.IDEMPOTENCY_CONFLICT,
                    "The requested renewal cycle is no longer the current one.",
                    subscription_id=str(subscription.pk),
                    cycle_end_date=cycle_end.isoformat(),
                )

            snapshot = build_snapshot(
                subscription.base_price_cents,
                subscription.discount_percent,
                subscription.term_months,
            )
            if renewal is None:
                renewal = SubscriptionRenewal.objects.create(
                    subscription=subscription,
                    cycle_end_date=cycle_end,
                    amount_cents=snapshot.total_cents,
                )
            renewal.attempts += 1
            renewal.last_attempt_at = at_time

            balance = account.compute_balance()
            if balance < snapshot.total_cents:
                renewal.status = SubscriptionRenewal.Status.FAILED
                renewal.failure_reason = ErrorKind.INSUFFICIENT_CREDITS.value
                renewal.save(update_fields=["status", "failure_reason", "attempts", "last_attempt_at", "updated_at"])
                if subscription.status != Subscription.Status.PAST_DUE:
                    subscription.transition_to(Subscription.Status.PAST_DUE, reason="renewal_failed:insufficient_credits")
                transaction.on_commit(
                    lambda: dispatcher.renewal_failed(
                        subscription,
                        reason=ErrorKind.INSUFFICIENT_CREDITS.value,
                        amount_cents=snapshot.total_cents,
                    )
                )
                shortfall = (balance, snapshot.total_cents)
            else:
                snapshot_values = {
                    "currency": subscription.currency,
                    "term_months": snapshot.term_months,
                    "base_price_cents": snapshot.base_price_cents,
                    "discount_percent": snapshot.discount_percent,
                    "total_cents": snapshot.total_cents,
                }
                order = Order.objects.create(
                    user=subscription.user,
                    variant=subscription.variant,
                    subscription=subscription,
                    kind=Order.Kind.RENEWAL,
                    status=Order.Status.COMPLETED,
                    idempotency_key=f"renewal:{subscription.pk}:{cycle_end.isoformat()}",
                    metadata={"cycle_end_date": cycle_end.isoformat()},
                    **snapshot_values,
                )
                item = OrderItem.objects.create(
                    order=order,
                    variant=subscription.variant,
                    description=f"Renewal of {subscription.service_category} ({snapshot.term_months} mo)",
                    **snapshot_values,
                )
                ledger_tx = None
                if snapshot.total_cents > 0:
                    ledger_tx = debit(
                        account,
                        snapshot.total_cents,
                        tx_type=CreditTransaction.TransactionType.RENEWAL,
                        order=order,
                        idempotency_key=f"order:{order.pk}:debit",
                        description=item.description,
                    ).transaction
                payment = Payment.objects.create(
                    order=order,
                    provider="credits",
                    amount_cents=snapshot.total_cents,
                    currency=subscription.currency,
                    status=Payment.Status.SUCCEEDED,
                    credit_transaction=ledger_tx,
                )

                subscription.end_date = cycle_end + relativedelta(months=snapshot.term_months)
                subscription.save(update_fields=["end_date", "updated_at"])
                if subscription.status == Subscription.Status.PAST_DUE:
                    subscription.transition_to(Subscription.Status.ACTIVE, reason="renewed")

                renewal.status = SubscriptionRenewal.Status.SUCCEEDED
                renewal.order = order
                renewal.failure_reason = ""
                renewal.save(
                    update_fields=["status", "order", "failure_reason", "attempts", "last_attempt_at", "updated_at"]
                )
                transaction.on_commit(lambda: dispatcher.order_status_changed(order))
                remaining = account.compute_balance()

    except OperationalError as exc:
        RENEWAL_OUTCOME_COUNT.labels(outcome=ErrorKind.LOCK_CONTENTION.value).inc()
        logger.warning("Renewal of subscription %s hit a database lock error: %s", current.pk, exc)
        return ServiceResult.failure(
            ErrorKind.LOCK_CONTENTION,
            "The credit account is busy; retry the renewal.",
            subscription_id=str(current.pk),
        )
    except IntegrityError as exc:
        RENEWAL_OUTCOME_COUNT.labels(outcome=ErrorKind.IDEMPOTENCY_CONFLICT.value).inc()
        logger.warning("Renewal of subscription %s violated a uniqueness constraint: %s", current.pk, exc)
        return ServiceResult.failure(
            ErrorKind.IDEMPOTENCY_CONFLICT,
            "This renewal cycle was already recorded by another order.",
            subscription_id=str(current.pk),
            cycle_end_date=cycle_end.isoformat(),
        )

    if shortfall is not None:
        RENEWAL_OUTCOME_COUNT.labels(outcome=ErrorKind.INSUFFICIENT_CREDITS.value).inc()
        log_billing_event(
            message="billing.renewal.insufficient_credits",
            user_id=subscription.user_id,
            subscription_id=subscription.pk,
            extra={"balance_cents": shortfall[0], "required_cents": shortfall[1]},
            level=logging.WARNING,
        )
        return ServiceResult.failure(
            ErrorKind.INSUFFICIENT_CREDITS,
            "Credit balance is too low to renew this subscription.",
            subscription_id=str(subscription.pk),
            balance_cents=shortfall[0],
            required_cents=shortfall[1],
        )

    RENEWAL_OUTCOME_COUNT.labels(outcome="renewed").inc()
    CREDITS_SPENT.labels(currency=order.currency, kind=Order.Kind.RENEWAL).inc(order.total_cents)
    log_billing_event(
        message="billing.renewal.committed",
        user_id=subscription.user_id,
        subscription_id=subscription.pk,
        extra={
            "order_id": str(order.pk),
            "total_cents": order.total_cents,
            "currency": order.currency,
            "end_date": subscription.end_date.isoformat(),
        },
    )
    return ServiceResult.success(
        RenewalReceipt(
            subscription=subscription,
            renewal=renewal,
            order=order,
            order_item=item,
            payment=payment,
            credit_transaction=ledger_tx,
            balance_cents=remaining,
        )
    )


__all__ = ["RenewalReceipt", "renew"]
