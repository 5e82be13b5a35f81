import pytest
from django.core.exceptions import ValidationError

from billing.models import InvalidStatusTransition, Order, Payment, Subscription
from billing.services.credit_ledger import get_balance
from billing.services.subscriptions import cancel_subscription
from catalog.results import ErrorKind

Status = Subscription.Status


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (Status.PENDING, Status.ACTIVE, True),
        (Status.ACTIVE, Status.PAST_DUE, True),
        (Status.PAST_DUE, Status.ACTIVE, True),
        (Status.PAST_DUE, Status.EXPIRED, True),
        (Status.EXPIRED, Status.ACTIVE, True),
        (Status.ACTIVE, Status.PENDING, False),
        (Status.EXPIRED, Status.PAST_DUE, False),
        (Status.CANCELLED, Status.ACTIVE, False),
        (Status.CANCELLED, Status.CANCELLED, False),
    ],
)
def test_status_transition_table(current, target, allowed):
    assert Subscription.can_transition(current, target) is allowed


@pytest.mark.django_db
def test_invalid_transition_raises(user, catalog_factory, buy):
    subscription = buy(user, catalog_factory(price_cents=0)).subscription
    subscription.transition_to(Status.CANCELLED, reason="test")

    with pytest.raises(InvalidStatusTransition):
        subscription.transition_to(Status.ACTIVE)

    subscription.refresh_from_db()
    assert subscription.status == Status.CANCELLED
    assert subscription.status_changed_at is not None


@pytest.mark.django_db
def test_cancel_with_refund_returns_credits(user, catalog_factory, buy):
    listing = catalog_factory(price_cents=1200)
    receipt = buy(user, listing, balance=1500)

    result = cancel_subscription(receipt.subscription.pk, reason="duplicate", refund=True)

    assert result.ok
    assert result.value.refund_transaction.amount_cents == 1200
    assert get_balance(user) == 1500
    order = Order.objects.get(pk=receipt.order.pk)
    assert order.status == Order.Status.REFUNDED
    assert order.payments.get().status == Payment.Status.REFUNDED
    assert result.value.subscription.status == Status.CANCELLED


@pytest.mark.django_db
def test_cancel_without_refund_keeps_charge(user, catalog_factory, buy):
    receipt = buy(user, catalog_factory(price_cents=1200), balance=1200)

    result = cancel_subscription(receipt.subscription.pk)

    assert result.ok
    assert result.value.refund_transaction is None
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_cancelling_twice_is_an_invalid_transition(user, catalog_factory, buy):
    receipt = buy(user, catalog_factory(price_cents=0))
    cancel_subscription(receipt.subscription.pk)

    result = cancel_subscription(receipt.subscription.pk)

    assert result.error.kind == ErrorKind.INVALID_STATUS_TRANSITION


@pytest.mark.django_db
def test_orders_only_allow_status_updates(user, catalog_factory, buy):
    order = buy(user, catalog_factory(price_cents=0)).order

    order.total_cents = 1
    with pytest.raises(ValidationError):
        order.save()
    with pytest.raises(ValidationError):
        order.delete()
