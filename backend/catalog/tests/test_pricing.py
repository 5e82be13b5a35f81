from datetime import timedelta

import pytest
from django.utils import timezone

from catalog.models import PriceHistory, Product, VariantTerm
from catalog.results import ErrorKind
from catalog.services.price_history import PriceAdministrationError, set_current_price
from catalog.services.pricing import current_price, resolve_pricing


@pytest.mark.django_db
def test_resolves_current_price_with_term_discount(catalog_factory):
    listing = catalog_factory(price_cents=1999, discount=10)

    result = resolve_pricing(listing.variant.pk, 1, "usd")

    assert result.ok
    pricing = result.value
    assert pricing.currency == "USD"
    assert pricing.base_price_cents == 1999
    assert pricing.snapshot.total_cents == 1799
    assert pricing.product == listing.product


@pytest.mark.django_db
def test_overlapping_rows_latest_start_wins(catalog_factory, caplog):
    listing = catalog_factory(price_cents=1000)
    now = timezone.now()
    PriceHistory.objects.create(
        variant=listing.variant,
        currency="USD",
        price_cents=1200,
        starts_at=now - timedelta(hours=1),
    )

    with caplog.at_level("WARNING", logger="catalog.services.pricing"):
        result = resolve_pricing(listing.variant.pk, 1, "USD", now)

    assert result.value.base_price_cents == 1200
    assert "Overlapping prices" in caplog.text


@pytest.mark.django_db
def test_equal_starts_fall_back_to_latest_created(catalog_factory):
    listing = catalog_factory(price_cents=1000)
    start = timezone.now() - timedelta(hours=2)
    older = PriceHistory.objects.create(variant=listing.variant, currency="GBP", price_cents=800, starts_at=start)
    newer = PriceHistory.objects.create(variant=listing.variant, currency="GBP", price_cents=900, starts_at=start)
    PriceHistory.objects.filter(pk=older.pk).update(created_at=newer.created_at - timedelta(seconds=5))

    assert current_price(listing.variant, "GBP") == newer


@pytest.mark.django_db
def test_closed_and_future_rows_are_ignored(catalog_factory):
    listing = catalog_factory(currencies=())
    now = timezone.now()
    PriceHistory.objects.create(
        variant=listing.variant,
        currency="USD",
        price_cents=500,
        starts_at=now - timedelta(days=10),
        ends_at=now - timedelta(days=5),
    )
    PriceHistory.objects.create(variant=listing.variant, currency="USD", price_cents=700, starts_at=now + timedelta(days=1))

    result = resolve_pricing(listing.variant.pk, 1, "USD", now)

    assert not result.ok
    assert result.error.kind == ErrorKind.NO_CURRENT_PRICE


@pytest.mark.django_db
def test_unsupported_currency_has_no_price(catalog_factory):
    listing = catalog_factory()

    result = resolve_pricing(listing.variant.pk, 1, "JPY")

    assert result.error.kind == ErrorKind.NO_CURRENT_PRICE


@pytest.mark.django_db
def test_unknown_variant_is_not_found():
    result = resolve_pricing("9b1d3f6e-0000-4000-8000-000000000000", 1, "USD")
    assert result.error.kind == ErrorKind.NOT_FOUND

    assert resolve_pricing("not-a-uuid", 1, "USD").error.kind == ErrorKind.NOT_FOUND


@pytest.mark.django_db
def test_inactive_product_only_resolves_without_active_requirement(catalog_factory):
    listing = catalog_factory(status=Product.Status.INACTIVE)

    assert resolve_pricing(listing.variant.pk, 1, "USD").error.kind == ErrorKind.INACTIVE
    assert resolve_pricing(listing.variant.pk, 1, "USD", require_active=False).ok


@pytest.mark.django_db
def test_inactive_variant_is_rejected(catalog_factory):
    listing = catalog_factory()
    listing.variant.is_active = False
    listing.variant.save()

    assert resolve_pricing(listing.variant.pk, 1, "USD").error.kind == ErrorKind.INACTIVE


@pytest.mark.django_db
def test_missing_or_inactive_term(catalog_factory):
    listing = catalog_factory(months=1)

    assert resolve_pricing(listing.variant.pk, 12, "USD").error.kind == ErrorKind.NO_TERM_AVAILABLE

    VariantTerm.objects.filter(pk=listing.term.pk).update(is_active=False)
    assert resolve_pricing(listing.variant.pk, 1, "USD").error.kind == ErrorKind.NO_TERM_AVAILABLE


@pytest.mark.django_db
def test_set_current_price_closes_open_row(catalog_factory):
    listing = catalog_factory(price_cents=1000)
    original = PriceHistory.objects.get(variant=listing.variant, currency="USD")
    switch_at = timezone.now()

    new_row = set_current_price(listing.variant, "usd", 1500, starts_at=switch_at)

    original.refresh_from_db()
    assert original.ends_at == switch_at
    assert new_row.currency == "USD"
    assert new_row.ends_at is None
    assert current_price(listing.variant, "USD", switch_at + timedelta(seconds=1)) == new_row
    assert current_price(listing.variant, "USD", switch_at - timedelta(seconds=1)) == original
    assert PriceHistory.objects.filter(variant=listing.variant, currency="USD").count() == 2


@pytest.mark.django_db
def test_set_current_price_rejects_bad_input(catalog_factory):
    listing = catalog_factory()
    now = timezone.now()

    with pytest.raises(PriceAdministrationError):
        set_current_price(listing.variant, "XYZ", 100)
    with pytest.raises(PriceAdministrationError):
        set_current_price(listing.variant, "USD", -5)
    with pytest.raises(PriceAdministrationError):
        set_current_price(listing.variant, "USD", 100, starts_at=now, ends_at=now - timedelta(minutes=1))


@pytest.mark.django_db
def test_price_rows_cannot_be_deleted(catalog_factory):
    from django.core.exceptions import ValidationError

    listing = catalog_factory()
    row = PriceHistory.objects.get(variant=listing.variant)

    with pytest.raises(ValidationError):
        row.delete()
