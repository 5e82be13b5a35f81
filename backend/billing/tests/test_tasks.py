from datetime import timedelta
from io import StringIO
from unittest import mock

import pytest
from django.core.management import call_command
from django.db import DatabaseError
from django.utils import timezone

from billing import tasks
from billing.models import Subscription
from billing.services.credit_ledger import get_balance
from billing.tasks import due_subscriptions, expire_past_due_subscriptions, process_due_renewals


def _due(subscription, minutes=5):
    Subscription.objects.filter(pk=subscription.pk).update(end_date=timezone.now() + timedelta(minutes=minutes))


@pytest.mark.django_db
def test_due_subscriptions_window(user, catalog_factory, buy):
    listing = catalog_factory(price_cents=0)
    soon = buy(user, listing).subscription
    later = buy(user, listing).subscription
    manual = buy(user, listing).subscription
    _due(soon)
    _due(manual)
    Subscription.objects.filter(pk=manual.pk).update(auto_renew=False)

    assert list(due_subscriptions()) == [Subscription.objects.get(pk=soon.pk)]
    assert later.pk not in {s.pk for s in due_subscriptions()}


@pytest.mark.django_db
def test_process_due_renewals_reports_outcomes(user, other_user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    funded = buy(user, listing, balance=1000).subscription
    broke = buy(other_user, listing, balance=1000).subscription
    fund(user, 1000)
    _due(funded)
    _due(broke)

    stats = process_due_renewals()

    assert stats == {"processed": 2, "renewed": 1, "insufficient_credits": 1, "skipped": 0, "failed": 0}
    assert get_balance(user) == 0
    assert Subscription.objects.get(pk=broke.pk).status == Subscription.Status.PAST_DUE
    assert Subscription.objects.get(pk=funded.pk).end_date > timezone.now() + timedelta(days=27)


@pytest.mark.django_db
def test_expire_past_due_after_grace(user, catalog_factory, buy, settings):
    settings.BILLING_PAST_DUE_GRACE_DAYS = 7
    listing = catalog_factory(price_cents=0)
    stale = buy(user, listing).subscription
    fresh = buy(user, listing).subscription
    for subscription in (stale, fresh):
        subscription.transition_to(Subscription.Status.PAST_DUE, reason="test")
    Subscription.objects.filter(pk=stale.pk).update(status_changed_at=timezone.now() - timedelta(days=8))

    stats = expire_past_due_subscriptions()

    assert stats == {"expired": 1, "total": 1}
    assert Subscription.objects.get(pk=stale.pk).status == Subscription.Status.EXPIRED
    assert Subscription.objects.get(pk=fresh.pk).status == Subscription.Status.PAST_DUE


@pytest.mark.django_db
def test_process_renewals_command_dry_run(user, catalog_factory, buy):
    subscription = buy(user, catalog_factory(price_cents=1000), balance=1000).subscription
    _due(subscription)
    out = StringIO()

    call_command("process_renewals", "--dry-run", stdout=out)

    assert f"Would renew {subscription.pk}" in out.getvalue()
    assert "1 subscriptions would be renewed" in out.getvalue()
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_process_renewals_command_runs_sweep(user, catalog_factory, buy, fund):
    subscription = buy(user, catalog_factory(price_cents=1000), balance=1000).subscription
    fund(user, 1000)
    _due(subscription)
    out = StringIO()

    call_command("process_renewals", stdout=out)

    assert "1 renewed" in out.getvalue()
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_process_renewals_command_with_nothing_due(db):
    out = StringIO()

    call_command("process_renewals", stdout=out)

    assert "No subscriptions are due" in out.getvalue()


@pytest.mark.django_db
def test_database_error_on_one_subscription_does_not_stop_the_sweep(user, other_user, catalog_factory, buy, fund):
    listing = catalog_factory(price_cents=1000)
    first = buy(user, listing, balance=1000).subscription
    second = buy(other_user, listing, balance=1000).subscription
    fund(user, 1000)
    fund(other_user, 1000)
    _due(first, minutes=1)
    _due(second, minutes=5)
    real_renew = tasks.renew

    def flaky(subscription_id, *args, **kwargs):
        if subscription_id == first.pk:
            raise DatabaseError("connection reset")
        return real_renew(subscription_id, *args, **kwargs)

    with mock.patch.object(tasks, "renew", side_effect=flaky):
        stats = process_due_renewals()

    assert stats == {"processed": 2, "renewed": 1, "insufficient_credits": 0, "skipped": 0, "failed": 1}
    assert get_balance(other_user) == 0
    assert get_balance(user) == 1000
