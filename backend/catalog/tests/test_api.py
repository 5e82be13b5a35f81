import uuid
from decimal import Decimal

import pytest
from django.urls import reverse

from catalog.models import AdminTask, Product


@pytest.mark.django_db
def test_listings_are_public(api_client, catalog_factory):
    listing = catalog_factory(price_cents=1500)

    response = api_client.get(reverse("catalog:listings"), {"currency": "usd"})

    assert response.status_code == 200
    assert response.data["count"] == 1
    entry = response.data["results"][0]
    assert entry["variant_id"] == str(listing.variant.pk)
    assert entry["pricing"]["total_cents"] == 1500


@pytest.mark.django_db
def test_listings_reject_unsupported_currency(api_client, catalog_factory):
    catalog_factory()

    response = api_client.get(reverse("catalog:listings"), {"currency": "XYZ"})

    assert response.status_code == 409
    assert response.data["error"]["code"] == "no_current_price"


@pytest.mark.django_db
def test_variant_pricing_quote(api_client, catalog_factory):
    listing = catalog_factory(price_cents=1000, months=3, discount=10)
    url = reverse("catalog:variant-pricing", kwargs={"variant_id": listing.variant.pk})

    response = api_client.get(url, {"term_months": 3, "currency": "USD"})

    assert response.status_code == 200
    assert response.data["total_cents"] == 2700
    assert Decimal(response.data["discount_percent"]) == Decimal("10")


@pytest.mark.django_db
def test_variant_pricing_errors_map_to_statuses(api_client, catalog_factory):
    listing = catalog_factory(status=Product.Status.INACTIVE)
    url = reverse("catalog:variant-pricing", kwargs={"variant_id": listing.variant.pk})
    missing_url = reverse("catalog:variant-pricing", kwargs={"variant_id": uuid.uuid4()})

    assert api_client.get(url).status_code == 409
    assert api_client.get(missing_url).status_code == 404


@pytest.mark.django_db
def test_activation_requires_staff(api_client, user, catalog_factory):
    listing = catalog_factory(status=Product.Status.INACTIVE)
    api_client.force_authenticate(user)

    response = api_client.post(reverse("catalog:product-activate", kwargs={"product_id": listing.product.pk}))

    assert response.status_code == 403


@pytest.mark.django_db
def test_activation_reports_missing_pairs(api_client, staff_user, catalog_factory):
    listing = catalog_factory(status=Product.Status.INACTIVE)
    api_client.force_authenticate(staff_user)
    url = reverse("catalog:product-activate", kwargs={"product_id": listing.product.pk})

    rejected = api_client.post(url, {"currencies": ["USD", "GBP"]}, format="json")
    accepted = api_client.post(url, {"currencies": ["USD"]}, format="json")

    assert rejected.status_code == 409
    assert [pair["currency"] for pair in rejected.data["error"]["details"]["missing"]] == ["GBP"]
    assert accepted.status_code == 200
    assert accepted.data["status"] == "active"
    assert accepted.data["changed"] is True


@pytest.mark.django_db
def test_deactivation(api_client, staff_user, catalog_factory):
    listing = catalog_factory()
    api_client.force_authenticate(staff_user)

    response = api_client.post(reverse("catalog:product-deactivate", kwargs={"product_id": listing.product.pk}))

    assert response.status_code == 200
    assert response.data["status"] == "inactive"


@pytest.mark.django_db
def test_admin_tasks_can_be_filtered_and_completed(api_client, staff_user, catalog_factory):
    catalog_factory(currencies=())
    catalog_factory(variant_code="")
    api_client.get(reverse("catalog:listings"))
    api_client.force_authenticate(staff_user)

    listed = api_client.get(reverse("catalog:admin-task-list"), {"category": "catalog_missing_price"})

    assert listed.status_code == 200
    assert listed.data["count"] == 1
    task_id = listed.data["results"][0]["id"]

    completed = api_client.post(reverse("catalog:admin-task-complete", kwargs={"pk": task_id}))

    assert completed.status_code == 200
    assert completed.data["status"] == "completed"
    assert AdminTask.objects.filter(status=AdminTask.Status.OPEN).count() == 1
