import pytest

from catalog.models import AdminTask
from catalog.tasks import sweep_catalog_hygiene


@pytest.mark.django_db
def test_sweep_task_returns_stats(catalog_factory, settings):
    settings.CATALOG_SUPPORTED_CURRENCIES = ["USD", "GBP"]
    catalog_factory(currencies=("USD", "GBP"))
    catalog_factory(currencies=("USD",))

    stats = sweep_catalog_hygiene()

    assert stats == {"variants": 2, "signals": 1, "tasks_created": 1}
    assert AdminTask.objects.get().notes.endswith("no current price in GBP.")
