from unittest import mock

import pytest
from dateutil.relativedelta import relativedelta
from django.db import IntegrityError
from django.utils import timezone

from billing.models import CreditTransaction, Order, Subscription, SubscriptionRenewal
from billing.services.credit_ledger import get_balance
from billing.services.renewal import renew
from billing.services.subscriptions import cancel_subscription
from catalog.results import ErrorKind
from catalog.services.price_history import set_current_price


@pytest.mark.django_db
def test_renewal_charges_the_price_agreed_at_purchase(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    set_current_price(listing.variant, "USD", 5000)
    fund(user, 1500)
    original_end = subscription.end_date

    result = renew(subscription.pk)

    assert result.ok
    receipt = result.value
    assert receipt.order.kind == Order.Kind.RENEWAL
    assert receipt.order.total_cents == 1000
    assert receipt.credit_transaction.type == CreditTransaction.TransactionType.RENEWAL
    assert receipt.subscription.end_date == original_end + relativedelta(months=1)
    assert receipt.renewal.status == SubscriptionRenewal.Status.SUCCEEDED
    assert get_balance(user) == 500


@pytest.mark.django_db
def test_renewing_the_same_cycle_twice_charges_once(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    fund(user, 3000)
    cycle = subscription.end_date

    first = renew(subscription.pk, cycle_end_date=cycle)
    second = renew(subscription.pk, cycle_end_date=cycle)

    assert first.ok and not first.value.already_renewed
    assert second.ok and second.value.already_renewed
    assert second.value.order.pk == first.value.order.pk
    assert get_balance(user) == 2000
    assert Order.objects.filter(kind=Order.Kind.RENEWAL).count() == 1


@pytest.mark.django_db
def test_stale_cycle_is_rejected(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    fund(user, 3000)

    result = renew(subscription.pk, cycle_end_date=subscription.end_date - relativedelta(months=1))

    assert result.error.kind == ErrorKind.IDEMPOTENCY_CONFLICT
    assert get_balance(user) == 3000


@pytest.mark.django_db
def test_insufficient_credits_moves_to_past_due(user, catalog_factory, buy, django_capture_on_commit_callbacks):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    dispatcher = mock.Mock()

    with django_capture_on_commit_callbacks(execute=True):
        result = renew(subscription.pk, dispatcher=dispatcher)

    assert result.error.kind == ErrorKind.INSUFFICIENT_CREDITS
    assert result.error.details["required_cents"] == 1000
    subscription.refresh_from_db()
    assert subscription.status == Subscription.Status.PAST_DUE
    renewal = SubscriptionRenewal.objects.get(subscription=subscription)
    assert renewal.status == SubscriptionRenewal.Status.FAILED
    assert renewal.attempts == 1
    dispatcher.renewal_failed.assert_called_once()
    assert dispatcher.renewal_failed.call_args.kwargs == {"reason": "insufficient_credits", "amount_cents": 1000}


@pytest.mark.django_db
def test_past_due_subscription_recovers_after_top_up(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    renew(subscription.pk, dispatcher=mock.Mock())
    fund(user, 1000)

    result = renew(subscription.pk, dispatcher=mock.Mock())

    assert result.ok
    assert result.value.subscription.status == Subscription.Status.ACTIVE
    assert result.value.renewal.attempts == 2
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_cancelled_subscription_is_not_renewed(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    cancel_subscription(subscription.pk, reason="customer request")
    fund(user, 1000)

    result = renew(subscription.pk)

    assert result.error.kind == ErrorKind.INACTIVE
    assert get_balance(user) == 1000


@pytest.mark.django_db
def test_renewal_of_legacy_subscription_uses_stored_snapshot(user, fund):
    now = timezone.now()
    subscription = Subscription.objects.create(
        user=user,
        service_category="vpn",
        start_date=now - relativedelta(months=3),
        end_date=now,
        status=Subscription.Status.ACTIVE,
        currency="USD",
        term_months=3,
        base_price_cents=500,
        discount_percent=10,
        total_cents=1350,
    )
    fund(user, 2000)

    result = renew(subscription.pk)

    assert result.ok
    assert result.value.order.total_cents == 1350
    assert result.value.order.variant is None
    assert result.value.subscription.end_date == now + relativedelta(months=3)


@pytest.mark.django_db
def test_unknown_subscription():
    assert renew("missing").error.kind == ErrorKind.NOT_FOUND


@pytest.mark.django_db
def test_purchase_key_shaped_like_a_renewal_does_not_block_renewal(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    buy(user, listing, balance=1000, key=f"renewal:{subscription.pk}:{subscription.end_date.isoformat()}")
    fund(user, 1000)

    result = renew(subscription.pk, cycle_end_date=subscription.end_date)

    assert result.ok
    assert result.value.order.kind == Order.Kind.RENEWAL
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_uniqueness_violation_is_reported_as_conflict(user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    subscription = buy(user, listing, balance=1000).subscription
    fund(user, 1000)

    with mock.patch.object(Order.objects, "create", side_effect=IntegrityError("duplicate key")):
        result = renew(subscription.pk, cycle_end_date=subscription.end_date)

    assert result.error.kind == ErrorKind.IDEMPOTENCY_CONFLICT
    assert get_balance(user) == 1000
    assert Subscription.objects.get(pk=subscription.pk).end_date == subscription.end_date
