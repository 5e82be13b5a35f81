import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django.utils.functional import cached_property


class Product(models.Model):
    """Sellable service offering; the unit of activation."""

    class Status(models.TextChoices):
        INACTIVE = "inactive", "Inactive"
        ACTIVE = "active", "Active"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slug = models.SlugField(max_length=120, unique=True)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.INACTIVE,
        help_text="Only active products are listed and purchasable",
    )
    service_category = models.CharField(
        max_length=64,
        help_text="Service type used for legacy handler lookup and legacy subscription matching",
    )
    default_currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO-4217 currency used for listings when none is requested",
    )
    max_subscriptions = models.IntegerField(
        null=True,
        blank=True,
        help_text="Maximum non-terminal subscriptions per user; empty means unlimited",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Optional rule configuration, features and upgrade options",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "catalog_product"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "service_category"], name="catalog_product_status_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @cached_property
    def rules(self):
        from catalog.services.rules import normalize_rules

        return normalize_rules(self.metadata)

    def delete(self, *args, **kwargs):
        raise ValidationError("Products cannot be deleted; deactivate them instead.")


class ProductVariant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="variants")
    name = models.CharField(max_length=200)
    variant_code = models.CharField(
        max_length=100,
        blank=True,
        help_text="Plan identifier used by fulfillment",
    )
    legacy_plan_code = models.CharField(
        max_length=100,
        blank=True,
        help_text="Plan identifier carried over from the legacy catalog",
    )
    is_active = models.BooleanField(default=True)
    sort_order = models.IntegerField(default=0)
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Display name, features and badges",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "catalog_product_variant"
        ordering = ["product", "sort_order", "created_at"]

    def __str__(self):
        return f"{self.product.name} / {self.name}"

    @property
    def plan_code(self) -> str:
        return (self.variant_code or "").strip() or (self.legacy_plan_code or "").strip()

    @property
    def display_name(self) -> str:
        metadata = self.metadata if isinstance(self.metadata, dict) else {}
        label = metadata.get("display_name")
        if isinstance(label, str) and label.strip():
            return label.strip()
        return self.name


class VariantTerm(models.Model):
    """Billing term offered for a variant (months plus optional discount)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, related_name="terms")
    months = models.PositiveSmallIntegerField(validators=[MinValueValidator(1)])
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
        help_text="Percentage off the full term price; empty means no discount",
    )
    is_active = models.BooleanField(default=True)
    is_recommended = models.BooleanField(default=False)
    sort_order = models.IntegerField(default=0)

    class Meta:
        db_table = "catalog_variant_term"
        ordering = ["variant", "months"]
        constraints = [
            models.UniqueConstraint(fields=["variant", "months"], name="catalog_variant_term_unique_months"),
            models.CheckConstraint(condition=Q(months__gte=1), name="catalog_variant_term_months_positive"),
            models.CheckConstraint(
                condition=Q(discount_percent__isnull=True)
                | (Q(discount_percent__gte=0) & Q(discount_percent__lte=100)),
                name="catalog_variant_term_discount_range",
            ),
        ]

    def __str__(self):
        return f"{self.variant_id}:{self.months}m"


class PriceHistoryQuerySet(models.QuerySet):
    def effective_at(self, at_time):
        return self.filter(starts_at__lte=at_time).filter(Q(ends_at__isnull=True) | Q(ends_at__gt=at_time))


class PriceHistory(models.Model):
    """Temporal monthly price for a variant in one currency.

    Rows are closed by setting ``ends_at``; they are never deleted.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, related_name="prices")
    currency = models.CharField(max_length=3, help_text="ISO-4217 code, upper case")
    price_cents = models.BigIntegerField(help_text="Monthly price in minor units")
    starts_at = models.DateTimeField(default=timezone.now)
    ends_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = PriceHistoryQuerySet.as_manager()

    class Meta:
        db_table = "catalog_price_history"
        ordering = ["-starts_at", "-created_at"]
        constraints = [
            models.CheckConstraint(condition=Q(price_cents__gte=0), name="catalog_price_non_negative"),
            models.CheckConstraint(
                condition=Q(ends_at__isnull=True) | Q(ends_at__gt=F("starts_at")),
                name="catalog_price_window_ordered",
            ),
        ]
        indexes = [
            models.Index(fields=["variant", "currency", "starts_at"], name="catalog_price_lookup_idx"),
        ]

    def __str__(self):
        return f"{self.variant_id} {self.currency} {self.price_cents} from {self.starts_at:%Y-%m-%d}"

    def save(self, *args, **kwargs):
        self.currency = (self.currency or "").strip().upper()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Price history rows cannot be deleted; close them with ends_at.")


class AdminTask(models.Model):
    """Work item for catalog administrators, deduplicated while open."""

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        COMPLETED = "completed", "Completed"

    class Priority(models.TextChoices):
        LOW = "low", "Low"
        NORMAL = "normal", "Normal"
        HIGH = "high", "High"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    category = models.CharField(max_length=64)
    task_type = models.CharField(max_length=64, default="catalog_hygiene")
    priority = models.CharField(max_length=16, choices=Priority.choices, default=Priority.NORMAL)
    notes = models.TextField(blank=True)
    dedupe_key = models.CharField(max_length=255)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="admin_tasks",
    )
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="admin_tasks",
    )
    due_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "catalog_admin_task"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["dedupe_key"],
                condition=Q(status="open"),
                name="catalog_admin_task_open_dedupe",
            ),
        ]
        indexes = [
            models.Index(fields=["category", "status"], name="catalog_admin_task_cat_idx"),
        ]

    def __str__(self):
        return f"AdminTask<{self.category}:{self.dedupe_key} {self.status}>"

    def complete(self, *, at_time=None) -> None:
        if self.status == self.Status.COMPLETED:
            return
        self.status = self.Status.COMPLETED
        self.completed_at = at_time or timezone.now()
        self.save(update_fields=["status", "completed_at"])
