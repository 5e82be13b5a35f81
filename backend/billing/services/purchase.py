"""Purchase orchestration: exchange credits for a subscription in one transaction.

Every attempt runs inside a single ``transaction.atomic()`` block and locks the
user's :class:`CreditAccount` row before reading the balance, so concurrent
purchases by the same user are serialized and cannot double-spend.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Q
from django.utils import timezone

from billing.models import CreditTransaction, Order, OrderItem, Payment, Subscription
from billing.notifications import NotificationDispatcher, get_dispatcher
from billing.observability.logging import log_billing_event
from billing.observability.metrics import CREDITS_SPENT, PURCHASE_LATENCY, PURCHASE_OUTCOME_COUNT
from billing.services.credit_ledger import InsufficientCredits, debit, lock_account
from catalog.results import ErrorKind, ServiceError, ServiceResult
from catalog.services.pricing import ResolvedPricing, resolve_pricing
from catalog.services.rules import RuleEngine

logger = logging.getLogger(__name__)


class PurchaseState(str, Enum):
    VALIDATING = "validating"
    RESOLVING_PRICE = "resolving_price"
    CHECKING_LIMITS = "checking_limits"
    DEBITING_CREDITS = "debiting_credits"
    CREATING_ORDER = "creating_order"
    PROVISIONING_SUBSCRIPTION = "provisioning_subscription"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class PurchaseDecision:
    allowed: bool
    reason: Optional[ErrorKind] = None
    message: str = ""
    pricing: Optional[ResolvedPricing] = None
    violations: List[str] = field(default_factory=list)
    metadata: Any = None
    state: PurchaseState = PurchaseState.VALIDATING
    details: Dict[str, Any] = field(default_factory=dict)

    def as_error(self) -> ServiceError:
        details = dict(self.details)
        details["state"] = self.state.value
        if self.violations:
            details["violations"] = list(self.violations)
        if self.pricing is not None:
            details["pricing"] = self.pricing.as_dict()
        return ServiceError(kind=self.reason, message=self.message, details=details)


@dataclass(frozen=True)
class PurchaseReceipt:
    order: Order
    order_item: OrderItem
    payment: Payment
    subscription: Subscription
    credit_transaction: Optional[CreditTransaction]
    balance_cents: int
    state: PurchaseState = PurchaseState.COMMITTED
    replayed: bool = False


class _PurchaseAborted(Exception):
    """Raised inside the atomic block so every write of the attempt is rolled back."""

    def __init__(self, error: ServiceError):
        super().__init__(error.message)
        self.error = error


def count_active_subscriptions(user, product) -> int:
    """Non-terminal subscriptions of ``user`` tied to ``product``.

    Legacy subscriptions without a variant count when their service category
    matches the product's, compared case-insensitively.
    """

    return (
        Subscription.objects.filter(user=user, status__in=Subscription.NON_TERMINAL_STATUSES)
        .filter(Q(variant__product=product) | Q(variant__isnull=True, service_category__iexact=product.service_category))
        .count()
    )


def _evaluate(user, variant_id, term_months, currency, metadata, at_time, rule_engine: RuleEngine) -> PurchaseDecision:
    if user is None or not getattr(user, "is_authenticated", False) or not getattr(user, "is_active", True):
        return PurchaseDecision(allowed=False, reason=ErrorKind.NOT_FOUND, message="Customer account not found.")

    result = resolve_pricing(variant_id, term_months, currency, at_time)
    if not result.ok:
        return PurchaseDecision(
            allowed=False,
            reason=result.error.kind,
            message=result.error.message,
            state=PurchaseState.RESOLVING_PRICE,
            details=dict(result.error.details),
        )
    pricing = result.value
    product = pricing.product

    limit = product.max_subscriptions
    if limit is not None:
        active = count_active_subscriptions(user, product)
        if limit <= 0 or active >= limit:
            return PurchaseDecision(
                allowed=False,
                reason=ErrorKind.SUBSCRIPTION_LIMIT_EXCEEDED,
                message=f"Subscription limit of {max(limit, 0)} reached for {product.name}.",
                pricing=pricing,
                state=PurchaseState.CHECKING_LIMITS,
                details={"limit": limit, "active": active},
            )

    rules = rule_engine.evaluate(product, metadata)
    if not rules.allowed:
        return PurchaseDecision(
            allowed=False,
            reason=rules.kind,
            message=rules.message,
            pricing=pricing,
            violations=list(rules.violations),
            state=PurchaseState.VALIDATING,
        )

    return PurchaseDecision(allowed=True, pricing=pricing, metadata=rules.metadata)


def can_purchase(
    user,
    variant_id,
    term_months,
    currency,
    metadata=None,
    *,
    at_time=None,
    rule_engine: Optional[RuleEngine] = None,
) -> PurchaseDecision:
    """Side-effect free eligibility check; the resolved price is returned even when denied."""

    return _evaluate(
        user,
        variant_id,
        term_months,
        currency,
        metadata,
        at_time or timezone.now(),
        rule_engine or RuleEngine(),
    )


def _same_request(order: Order, user, variant_id, term_months, currency) -> bool:
    try:
        months = int(term_months)
    except (TypeError, ValueError):
        return False
    return (
        order.user_id == user.pk
        and order.kind == Order.Kind.PURCHASE
        and str(order.variant_id) == str(variant_id)
        and order.term_months == months
        and order.currency == (currency or "").strip().upper()
    )


def _replay(order: Order, account) -> PurchaseReceipt:
    return PurchaseReceipt(
        order=order,
        order_item=order.items.first(),
        payment=order.payments.first(),
        subscription=order.subscription,
        credit_transaction=order.credit_transactions.filter(type=CreditTransaction.TransactionType.PURCHASE).first(),
        balance_cents=account.compute_balance(),
        replayed=True,
    )


def _abort(kind: ErrorKind, message: str, state: PurchaseState, **details) -> _PurchaseAborted:
    details["state"] = state.value
    return _PurchaseAborted(ServiceError(kind=kind, message=message, details=details))


def purchase(
    user,
    variant_id,
    term_months,
    currency,
    metadata,
    idempotency_key: Optional[str],
    *,
    at_time=None,
    rule_engine: Optional[RuleEngine] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ServiceResult[PurchaseReceipt]:
    """Debit the resolved total and provision an active subscription, atomically.

    Retrying with the same ``idempotency_key`` returns the original receipt
    without new writes; reusing a key for a different request is a conflict.
    """

    at_time = at_time or timezone.now()
    rule_engine = rule_engine or RuleEngine()
    started = time.monotonic()
    state = PurchaseState.VALIDATING

    if user is None or not getattr(user, "is_authenticated", False):
        return ServiceResult.failure(ErrorKind.NOT_FOUND, "Customer account not found.", state=state.value)

    try:
        with transaction.atomic():
            account = lock_account(user)

            if idempotency_key:
                existing = (
                    Order.objects.select_related("subscription")
                    .filter(user=user, kind=Order.Kind.PURCHASE, idempotency_key=idempotency_key)
                    .first()
                )
                if existing is not None:
                    if not _same_request(existing, user, variant_id, term_months, currency):
                        raise _abort(
                            ErrorKind.IDEMPOTENCY_CONFLICT,
                            "Idempotency key was already used for a different purchase.",
                            state,
                        )
                    receipt = _replay(existing, account)
                    PURCHASE_OUTCOME_COUNT.labels(outcome="replayed").inc()
                    return ServiceResult.success(receipt)

            state = PurchaseState.RESOLVING_PRICE
            decision = _evaluate(user, variant_id, term_months, currency, metadata, at_time, rule_engine)
            if not decision.allowed:
                raise _PurchaseAborted(decision.as_error())

            pricing = decision.pricing
            snapshot = pricing.snapshot
            variant = pricing.variant
            product = pricing.product

            state = PurchaseState.DEBITING_CREDITS
            balance = account.compute_balance()
            if balance < snapshot.total_cents:
                raise _abort(
                    ErrorKind.INSUFFICIENT_CREDITS,
                    "Credit balance is too low for this purchase.",
                    state,
                    balance_cents=balance,
                    required_cents=snapshot.total_cents,
                )

            state = PurchaseState.CREATING_ORDER
            snapshot_values = {
                "currency": pricing.currency,
                "term_months": snapshot.term_months,
                "base_price_cents": snapshot.base_price_cents,
                "discount_percent": snapshot.discount_percent,
                "total_cents": snapshot.total_cents,
            }
            subscription = Subscription.objects.create(
                user=user,
                variant=variant,
                service_category=product.service_category,
                start_date=at_time,
                end_date=at_time + relativedelta(months=snapshot.term_months),
                status=Subscription.Status.PENDING,
                metadata=decision.metadata if decision.metadata is not None else {},
                **snapshot_values,
            )
            order = Order.objects.create(
                user=user,
                variant=variant,
                subscription=subscription,
                kind=Order.Kind.PURCHASE,
                status=Order.Status.COMPLETED,
                idempotency_key=idempotency_key or None,
                metadata={"product_id": str(product.pk), "plan_code": variant.plan_code},
                **snapshot_values,
            )
            item = OrderItem.objects.create(
                order=order,
                variant=variant,
                description=f"{product.name} / {variant.display_name} ({snapshot.term_months} mo)",
                **snapshot_values,
            )

            ledger_tx = None
            if snapshot.total_cents > 0:
                ledger_tx = debit(
                    account,
                    snapshot.total_cents,
                    tx_type=CreditTransaction.TransactionType.PURCHASE,
                    order=order,
                    idempotency_key=f"order:{order.pk}:debit",
                    description=item.description,
                ).transaction
            payment = Payment.objects.create(
                order=order,
                provider="credits",
                amount_cents=snapshot.total_cents,
                currency=pricing.currency,
                status=Payment.Status.SUCCEEDED,
                credit_transaction=ledger_tx,
            )

            state = PurchaseState.PROVISIONING_SUBSCRIPTION
            subscription.transition_to(Subscription.Status.ACTIVE, reason="purchased")

            dispatcher = dispatcher or get_dispatcher()
            transaction.on_commit(lambda: dispatcher.order_status_changed(order))
            remaining = account.compute_balance()

    except _PurchaseAborted as exc:
        PURCHASE_OUTCOME_COUNT.labels(outcome=exc.error.kind.value).inc()
        logger.info("Purchase by user %s failed at %s: %s", user.pk, exc.error.details.get("state"), exc.error.message)
        return ServiceResult(error=exc.error)
    except InsufficientCredits as exc:
        PURCHASE_OUTCOME_COUNT.labels(outcome=ErrorKind.INSUFFICIENT_CREDITS.value).inc()
        return ServiceResult.failure(
            ErrorKind.INSUFFICIENT_CREDITS,
            str(exc),
            state=PurchaseState.DEBITING_CREDITS.value,
            balance_cents=exc.balance_cents,
            required_cents=exc.required_cents,
        )
    except OperationalError as exc:
        PURCHASE_OUTCOME_COUNT.labels(outcome=ErrorKind.LOCK_CONTENTION.value).inc()
        logger.warning("Purchase by user %s hit a database lock error at %s: %s", user.pk, state.value, exc)
        return ServiceResult.failure(
            ErrorKind.LOCK_CONTENTION,
            "The credit account is busy; retry with the same idempotency key.",
            state=state.value,
        )
    except IntegrityError as exc:
        PURCHASE_OUTCOME_COUNT.labels(outcome=ErrorKind.IDEMPOTENCY_CONFLICT.value).inc()
        logger.warning("Purchase by user %s violated a uniqueness constraint: %s", user.pk, exc)
        return ServiceResult.failure(
            ErrorKind.IDEMPOTENCY_CONFLICT,
            "Idempotency key was already used for a different purchase.",
            state=state.value,
        )
    finally:
        PURCHASE_LATENCY.observe(time.monotonic() - started)

    PURCHASE_OUTCOME_COUNT.labels(outcome=PurchaseState.COMMITTED.value).inc()
    CREDITS_SPENT.labels(currency=order.currency, kind=Order.Kind.PURCHASE).inc(order.total_cents)
    log_billing_event(
        message="billing.purchase.committed",
        user_id=user.pk,
        subscription_id=subscription.pk,
        extra={
            "order_id": str(order.pk),
            "variant_id": str(order.variant_id),
            "total_cents": order.total_cents,
            "currency": order.currency,
            "term_months": order.term_months,
        },
    )
    return ServiceResult.success(
        PurchaseReceipt(
            order=order,
            order_item=item,
            payment=payment,
            subscription=subscription,
            credit_transaction=ledger_tx,
            balance_cents=remaining,
        )
    )


__all__ = [
    "PurchaseDecision",
    "PurchaseReceipt",
    "PurchaseState",
    "can_purchase",
    "count_active_subscriptions",
    "purchase",
]
