"""Celery tasks for catalog maintenance."""
from __future__ import annotations

import logging
from typing import Dict

from celery import shared_task

from catalog.handlers import build_registry_from_settings
from catalog.services.hygiene import CatalogHygieneMonitor, sweep_active_catalog

logger = logging.getLogger(__name__)


@shared_task
def sweep_catalog_hygiene() -> Dict[str, int]:
    """Open admin tasks for active variants that cannot currently be sold."""

    monitor = CatalogHygieneMonitor(handler_registry=build_registry_from_settings())
    stats = sweep_active_catalog(monitor)
    logger.info(
        "Catalog hygiene sweep inspected %s variant(s); %s signal(s), %s new task(s).",
        stats["variants"],
        stats["signals"],
        stats["tasks_created"],
    )
    return stats
