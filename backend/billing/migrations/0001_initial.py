import uuid

import django.core.validators
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

SNAPSHOT_FIELDS = [
    ("currency", models.CharField(max_length=3)),
    ("term_months", models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
    ("base_price_cents", models.BigIntegerField(help_text="Monthly catalog price at commit time")),
    ("discount_percent", models.DecimalField(decimal_places=2, default=0, max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
    ("total_cents", models.BigIntegerField(help_text="Amount charged per term")),
]


def snapshot_fields():
    return [(name, field.clone()) for name, field in SNAPSHOT_FIELDS]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="CreditAccount",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("currency", models.CharField(default="USD", help_text="Currency the credit balance is denominated in", max_length=3)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.OneToOneField(help_text="Customer owning this credit balance", on_delete=models.deletion.PROTECT, related_name="credit_account", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "billing_credit_account",
                "verbose_name": "Credit account",
                "verbose_name_plural": "Credit accounts",
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                *snapshot_fields(),
                ("service_category", models.CharField(help_text="Service type; matched case-insensitively for legacy subscriptions", max_length=64)),
                ("start_date", models.DateTimeField(default=django.utils.timezone.now)),
                ("end_date", models.DateTimeField()),
                ("auto_renew", models.BooleanField(default=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("active", "Active"), ("past_due", "Past due"), ("cancelled", "Cancelled"), ("expired", "Expired")], default="pending", max_length=16)),
                ("status_reason", models.CharField(blank=True, max_length=255)),
                ("status_changed_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="subscriptions", to=settings.AUTH_USER_MODEL)),
                ("variant", models.ForeignKey(blank=True, help_text="Empty for legacy subscriptions that predate the variant catalog", null=True, on_delete=models.deletion.PROTECT, related_name="subscriptions", to="catalog.productvariant")),
            ],
            options={
                "db_table": "billing_subscription",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "status"], name="billing_sub_user_status_idx"),
                    models.Index(fields=["status", "end_date"], name="billing_sub_due_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                *snapshot_fields(),
                ("kind", models.CharField(choices=[("purchase", "Purchase"), ("renewal", "Renewal")], default="purchase", max_length=16)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("refunded", "Refunded")], default="pending", max_length=16)),
                ("status_reason", models.CharField(blank=True, max_length=255)),
                ("idempotency_key", models.CharField(blank=True, max_length=255, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("subscription", models.ForeignKey(blank=True, null=True, on_delete=models.deletion.PROTECT, related_name="orders", to="billing.subscription")),
                ("user", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="orders", to=settings.AUTH_USER_MODEL)),
                ("variant", models.ForeignKey(blank=True, null=True, on_delete=models.deletion.PROTECT, related_name="orders", to="catalog.productvariant")),
            ],
            options={
                "db_table": "billing_order",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(idempotency_key__isnull=False), fields=["user", "kind", "idempotency_key"], name="unique_order_idempotency_key"),
                    models.CheckConstraint(condition=models.Q(total_cents__gte=0), name="order_total_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount_cents", models.BigIntegerField(help_text="Signed amount in minor units; positive credits, negative debits")),
                ("type", models.CharField(choices=[("top_up", "Top up"), ("purchase", "Purchase"), ("renewal", "Renewal"), ("refund", "Refund"), ("adjustment", "Adjustment")], help_text="Categorisation of the credit movement", max_length=20)),
                ("description", models.TextField(blank=True)),
                ("idempotency_key", models.CharField(blank=True, help_text="Unique key to guarantee idempotent transaction writes", max_length=255, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(help_text="Credit account affected by this transaction", on_delete=models.deletion.PROTECT, related_name="transactions", to="billing.creditaccount")),
                ("order", models.ForeignKey(blank=True, help_text="Order paid (or refunded) by this movement", null=True, on_delete=models.deletion.PROTECT, related_name="credit_transactions", to="billing.order")),
            ],
            options={
                "db_table": "billing_credit_transaction",
                "verbose_name": "Credit transaction",
                "verbose_name_plural": "Credit transactions",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=~models.Q(amount_cents=0), name="credit_transaction_non_zero"),
                    models.UniqueConstraint(condition=models.Q(idempotency_key__isnull=False), fields=["idempotency_key"], name="unique_credit_transaction_idempotency_key"),
                ],
                "indexes": [models.Index(fields=["account", "created_at"], name="credit_tx_account_idx")],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                *snapshot_fields(),
                ("description", models.CharField(blank=True, max_length=255)),
                ("quantity", models.PositiveSmallIntegerField(default=1)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("order", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="items", to="billing.order")),
                ("variant", models.ForeignKey(blank=True, null=True, on_delete=models.deletion.PROTECT, related_name="+", to="catalog.productvariant")),
            ],
            options={
                "db_table": "billing_order_item",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(default="credits", max_length=32)),
                ("amount_cents", models.BigIntegerField()),
                ("currency", models.CharField(max_length=3)),
                ("status", models.CharField(choices=[("succeeded", "Succeeded"), ("failed", "Failed"), ("refunded", "Refunded")], default="succeeded", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("credit_transaction", models.OneToOneField(blank=True, null=True, on_delete=models.deletion.PROTECT, related_name="payment", to="billing.credittransaction")),
                ("order", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="payments", to="billing.order")),
            ],
            options={
                "db_table": "billing_payment",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="SubscriptionRenewal",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("cycle_end_date", models.DateTimeField(help_text="Subscription end date this renewal extends")),
                ("status", models.CharField(choices=[("pending", "Pending"), ("succeeded", "Succeeded"), ("failed", "Failed")], default="pending", max_length=16)),
                ("amount_cents", models.BigIntegerField()),
                ("failure_reason", models.CharField(blank=True, max_length=255)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("order", models.ForeignKey(blank=True, null=True, on_delete=models.deletion.PROTECT, related_name="renewals", to="billing.order")),
                ("subscription", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="renewals", to="billing.subscription")),
            ],
            options={
                "db_table": "billing_subscription_renewal",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=["subscription", "cycle_end_date"], name="unique_renewal_per_cycle"),
                ],
            },
        ),
    ]
