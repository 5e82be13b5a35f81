import pytest
from django.urls import reverse

from billing.models import Order, Subscription
from billing.services.credit_ledger import get_balance


def _payload(listing, **overrides):
    payload = {"variant_id": str(listing.variant.pk), "term_months": 1, "currency": "usd"}
    payload.update(overrides)
    return payload


@pytest.mark.django_db
def test_purchase_requires_authentication(api_client, catalog_factory):
    listing = catalog_factory()

    response = api_client.post(reverse("billing:purchase"), _payload(listing), format="json")

    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_purchase_requires_idempotency_key(api_client, user, catalog_factory):
    listing = catalog_factory()
    api_client.force_authenticate(user)

    response = api_client.post(reverse("billing:purchase"), _payload(listing), format="json")

    assert response.status_code == 400
    assert not Order.objects.exists()


@pytest.mark.django_db
def test_purchase_and_replay(api_client, user, catalog_factory, fund):
    listing = catalog_factory(price_cents=1500)
    fund(user, 2000)
    api_client.force_authenticate(user)
    url = reverse("billing:purchase")

    created = api_client.post(url, _payload(listing), format="json", HTTP_IDEMPOTENCY_KEY="web-1")
    replayed = api_client.post(url, _payload(listing), format="json", HTTP_IDEMPOTENCY_KEY="web-1")

    assert created.status_code == 201
    assert created.data["state"] == "committed"
    assert created.data["balance_cents"] == 500
    assert created.data["subscription"]["status"] == "active"
    assert replayed.status_code == 200
    assert replayed.data["replayed"] is True
    assert replayed.data["order"]["id"] == created.data["order"]["id"]
    assert get_balance(user) == 500


@pytest.mark.django_db
def test_purchase_without_funds_is_payment_required(api_client, user, catalog_factory):
    listing = catalog_factory(price_cents=1500)
    api_client.force_authenticate(user)

    response = api_client.post(
        reverse("billing:purchase"),
        _payload(listing),
        format="json",
        HTTP_IDEMPOTENCY_KEY="web-1",
    )

    assert response.status_code == 402
    assert response.data["error"]["code"] == "insufficient_credits"


@pytest.mark.django_db
def test_purchase_rejects_malformed_currency(api_client, user, catalog_factory):
    listing = catalog_factory()
    api_client.force_authenticate(user)

    response = api_client.post(
        reverse("billing:purchase"),
        _payload(listing, currency="U$"),
        format="json",
        HTTP_IDEMPOTENCY_KEY="web-1",
    )

    assert response.status_code == 400


@pytest.mark.django_db
def test_eligibility_reports_price(api_client, user, catalog_factory):
    listing = catalog_factory(price_cents=1500, months=3, discount=20)
    api_client.force_authenticate(user)

    response = api_client.post(
        reverse("billing:purchase-eligibility"),
        _payload(listing, term_months=3),
        format="json",
    )

    assert response.status_code == 200
    assert response.data["allowed"] is True
    assert response.data["pricing"]["total_cents"] == 3600


@pytest.mark.django_db
def test_credit_balance(api_client, user, fund):
    fund(user, 750)
    api_client.force_authenticate(user)

    response = api_client.get(reverse("billing:credits"))

    assert response.status_code == 200
    assert response.data["balance_cents"] == 750
    assert response.data["transactions"][0]["type"] == "top_up"


@pytest.mark.django_db
def test_subscriptions_are_scoped_to_owner(api_client, user, other_user, catalog_factory, buy):
    listing = catalog_factory(price_cents=0)
    mine = buy(user, listing).subscription
    buy(other_user, listing)
    api_client.force_authenticate(user)

    response = api_client.get(reverse("billing:subscription-list"))

    assert response.status_code == 200
    assert [row["id"] for row in response.data["results"]] == [str(mine.pk)]


@pytest.mark.django_db
def test_other_users_subscription_is_not_found(api_client, user, other_user, catalog_factory, buy):
    theirs = buy(other_user, catalog_factory(price_cents=0)).subscription
    api_client.force_authenticate(user)

    response = api_client.post(reverse("billing:subscription-cancel", kwargs={"pk": theirs.pk}))

    assert response.status_code == 404


@pytest.mark.django_db
def test_renew_action(api_client, user, catalog_factory, buy):
    subscription = buy(user, catalog_factory(price_cents=800), balance=1600).subscription
    api_client.force_authenticate(user)

    response = api_client.post(reverse("billing:subscription-renew", kwargs={"pk": subscription.pk}))

    assert response.status_code == 200
    assert response.data["already_renewed"] is False
    assert response.data["balance_cents"] == 0


@pytest.mark.django_db
def test_customers_cannot_request_refunds(api_client, user, catalog_factory, buy):
    subscription = buy(user, catalog_factory(price_cents=800), balance=800).subscription
    api_client.force_authenticate(user)
    url = reverse("billing:subscription-cancel", kwargs={"pk": subscription.pk})

    refused = api_client.post(url, {"refund": True}, format="json")
    cancelled = api_client.post(url, {"reason": "moving"}, format="json")

    assert refused.status_code == 400
    assert cancelled.status_code == 200
    assert cancelled.data["subscription"]["status"] == Subscription.Status.CANCELLED
    assert cancelled.data["refunded_cents"] == 0
