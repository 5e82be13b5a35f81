from decimal import Decimal
import uuid

import django.core.validators
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("slug", models.SlugField(max_length=120, unique=True)),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("status", models.CharField(choices=[("inactive", "Inactive"), ("active", "Active")], default="inactive", help_text="Only active products are listed and purchasable", max_length=16)),
                ("service_category", models.CharField(help_text="Service type used for legacy handler lookup and legacy subscription matching", max_length=64)),
                ("default_currency", models.CharField(default="USD", help_text="ISO-4217 currency used for listings when none is requested", max_length=3)),
                ("max_subscriptions", models.IntegerField(blank=True, help_text="Maximum non-terminal subscriptions per user; empty means unlimited", null=True)),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Optional rule configuration, features and upgrade options")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "catalog_product",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["status", "service_category"], name="catalog_product_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="ProductVariant",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("variant_code", models.CharField(blank=True, help_text="Plan identifier used by fulfillment", max_length=100)),
                ("legacy_plan_code", models.CharField(blank=True, help_text="Plan identifier carried over from the legacy catalog", max_length=100)),
                ("is_active", models.BooleanField(default=True)),
                ("sort_order", models.IntegerField(default=0)),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Display name, features and badges")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("product", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="variants", to="catalog.product")),
            ],
            options={
                "db_table": "catalog_product_variant",
                "ordering": ["product", "sort_order", "created_at"],
            },
        ),
        migrations.CreateModel(
            name="VariantTerm",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("months", models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ("discount_percent", models.DecimalField(blank=True, decimal_places=2, help_text="Percentage off the full term price; empty means no discount", max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(Decimal("0")), django.core.validators.MaxValueValidator(Decimal("100"))])),
                ("is_active", models.BooleanField(default=True)),
                ("is_recommended", models.BooleanField(default=False)),
                ("sort_order", models.IntegerField(default=0)),
                ("variant", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="terms", to="catalog.productvariant")),
            ],
            options={
                "db_table": "catalog_variant_term",
                "ordering": ["variant", "months"],
                "constraints": [
                    models.UniqueConstraint(fields=["variant", "months"], name="catalog_variant_term_unique_months"),
                    models.CheckConstraint(condition=models.Q(months__gte=1), name="catalog_variant_term_months_positive"),
                    models.CheckConstraint(condition=models.Q(discount_percent__isnull=True) | (models.Q(discount_percent__gte=0) & models.Q(discount_percent__lte=100)), name="catalog_variant_term_discount_range"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PriceHistory",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("currency", models.CharField(help_text="ISO-4217 code, upper case", max_length=3)),
                ("price_cents", models.BigIntegerField(help_text="Monthly price in minor units")),
                ("starts_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("ends_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("variant", models.ForeignKey(on_delete=models.deletion.PROTECT, related_name="prices", to="catalog.productvariant")),
            ],
            options={
                "db_table": "catalog_price_history",
                "ordering": ["-starts_at", "-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(price_cents__gte=0), name="catalog_price_non_negative"),
                    models.CheckConstraint(condition=models.Q(ends_at__isnull=True) | models.Q(ends_at__gt=models.F("starts_at")), name="catalog_price_window_ordered"),
                ],
                "indexes": [models.Index(fields=["variant", "currency", "starts_at"], name="catalog_price_lookup_idx")],
            },
        ),
        migrations.CreateModel(
            name="AdminTask",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("category", models.CharField(max_length=64)),
                ("task_type", models.CharField(default="catalog_hygiene", max_length=64)),
                ("priority", models.CharField(choices=[("low", "Low"), ("normal", "Normal"), ("high", "High")], default="normal", max_length=16)),
                ("notes", models.TextField(blank=True)),
                ("dedupe_key", models.CharField(max_length=255)),
                ("status", models.CharField(choices=[("open", "Open"), ("completed", "Completed")], default="open", max_length=16)),
                ("due_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("product", models.ForeignKey(blank=True, null=True, on_delete=models.deletion.SET_NULL, related_name="admin_tasks", to="catalog.product")),
                ("variant", models.ForeignKey(blank=True, null=True, on_delete=models.deletion.SET_NULL, related_name="admin_tasks", to="catalog.productvariant")),
            ],
            options={
                "db_table": "catalog_admin_task",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(status="open"), fields=["dedupe_key"], name="catalog_admin_task_open_dedupe"),
                ],
                "indexes": [models.Index(fields=["category", "status"], name="catalog_admin_task_cat_idx")],
            },
        ),
    ]
