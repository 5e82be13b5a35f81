"""Management command to run the renewal sweep outside of Celery beat."""
from __future__ import annotations

from typing import Optional

from django.core.management.base import BaseCommand, CommandError

from billing.tasks import due_subscriptions, process_due_renewals


class Command(BaseCommand):
    help = "Renew subscriptions whose current term is ending, charging their stored price."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of subscriptions to renew in this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List subscriptions that would be renewed without charging anyone.",
        )

    def handle(self, *args, **options) -> None:
        limit: Optional[int] = options.get("limit")
        dry_run: bool = options.get("dry_run")

        queryset = due_subscriptions()
        if limit is not None:
            queryset = queryset[:limit]

        if dry_run:
            total = 0
            for subscription in queryset:
                total += 1
                self.stdout.write(
                    f"Would renew {subscription.pk} ({subscription.service_category}) "
                    f"for {subscription.total_cents} {subscription.currency}"
                )
            self.stdout.write(self.style.WARNING(f"Dry run complete. {total} subscriptions would be renewed."))
            return

        stats = process_due_renewals.run(limit=limit)
        if stats["processed"] == 0:
            self.stdout.write(self.style.WARNING("No subscriptions are due for renewal."))
            return

        summary = (
            f"Renewal complete: {stats['renewed']} renewed, {stats['insufficient_credits']} past due, "
            f"{stats['skipped']} skipped, {stats['failed']} failed, {stats['processed']} total."
        )
        if stats["failed"]:
            raise CommandError(summary)
        self.stdout.write(self.style.SUCCESS(summary))
