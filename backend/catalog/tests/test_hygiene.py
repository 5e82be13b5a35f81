import pytest

from catalog.handlers import HandlerRegistry, RequiredFieldsHandler
from catalog.models import AdminTask, Product, ProductVariant
from catalog.services.hygiene import (
    CatalogHygieneMonitor,
    DatabaseAdminTaskSink,
    UnpublishableReason,
    inspect_variant,
    sweep_active_catalog,
)


class RecordingSink:
    def __init__(self):
        self.calls = []
        self.seen = set()

    def create_if_absent(self, category, dedupe_key, notes, **context):
        self.calls.append((category, dedupe_key, notes))
        if dedupe_key in self.seen:
            return False
        self.seen.add(dedupe_key)
        return True


@pytest.mark.django_db
def test_inspect_variant_flags_missing_currency(catalog_factory):
    listing = catalog_factory(currencies=("USD",))

    signals = inspect_variant(listing.variant, currencies=["USD", "GBP"])

    assert [s.reason for s in signals] == [UnpublishableReason.MISSING_PRICE]
    assert signals[0].details == {"currencies": ["GBP"]}
    assert signals[0].dedupe_key == f"catalog_missing_price:{listing.product.pk}:{listing.variant.pk}"


@pytest.mark.django_db
def test_inspect_variant_reports_every_problem(catalog_factory):
    listing = catalog_factory(currencies=(), months=0, variant_code="")

    reasons = {s.reason for s in inspect_variant(listing.variant, currencies=["USD"])}

    assert reasons == {
        UnpublishableReason.MISSING_PLAN_CODE,
        UnpublishableReason.MISSING_TERM_OPTIONS,
        UnpublishableReason.MISSING_PRICE,
    }


@pytest.mark.django_db
def test_database_sink_keeps_one_open_task_per_key(catalog_factory):
    listing = catalog_factory()
    sink = DatabaseAdminTaskSink()

    first = sink.create_if_absent("catalog_missing_price", "k-1", "notes", product=listing.product)
    second = sink.create_if_absent("catalog_missing_price", "k-1", "notes again")

    assert first is True
    assert second is False
    assert AdminTask.objects.filter(dedupe_key="k-1").count() == 1


@pytest.mark.django_db
def test_completed_task_allows_a_new_one(db):
    sink = DatabaseAdminTaskSink()
    sink.create_if_absent("catalog_missing_price", "k-2", "notes")
    AdminTask.objects.get(dedupe_key="k-2").complete()

    assert sink.create_if_absent("catalog_missing_price", "k-2", "notes") is True
    assert AdminTask.objects.filter(dedupe_key="k-2").count() == 2
    assert AdminTask.objects.filter(dedupe_key="k-2", status=AdminTask.Status.OPEN).count() == 1


@pytest.mark.django_db
def test_monitor_adds_legacy_price_hint(catalog_factory):
    listing = catalog_factory(currencies=())
    sink = RecordingSink()
    registry = HandlerRegistry({"streaming": RequiredFieldsHandler(price_cents=1499)})
    monitor = CatalogHygieneMonitor(sink=sink, handler_registry=registry)

    signals = inspect_variant(listing.variant, currencies=["USD"])
    created = monitor.report_many(signals)

    assert created == 1
    assert sink.calls[0][0] == "catalog_missing_price"
    assert "Legacy handler suggests 1499 minor units." in sink.calls[0][2]


@pytest.mark.django_db
def test_sweep_covers_active_products_only(catalog_factory, settings):
    settings.CATALOG_SUPPORTED_CURRENCIES = ["USD"]
    priced = catalog_factory()
    unpriced = catalog_factory(currencies=())
    catalog_factory(currencies=(), status=Product.Status.INACTIVE)
    ProductVariant.objects.create(product=priced.product, name="Retired", variant_code="OLD", is_active=False)

    stats = sweep_active_catalog()
    again = sweep_active_catalog()

    assert stats == {"variants": 2, "signals": 1, "tasks_created": 1}
    assert again["tasks_created"] == 0
    task = AdminTask.objects.get()
    assert task.variant_id == unpriced.variant.pk
    assert task.category == "catalog_missing_price"
