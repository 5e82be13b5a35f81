import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone

from catalog.models import ProductVariant

User = settings.AUTH_USER_MODEL


class CreditAccount(models.Model):
    """Per-user credit ledger header.

    The row carries no balance: it is the lock target serializing purchases
    and renewals for one user. The balance is the sum of its transactions.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        User,
        on_delete=models.PROTECT,
        related_name="credit_account",
        help_text="Customer owning this credit balance",
    )
    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="Currency the credit balance is denominated in",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_credit_account"
        verbose_name = "Credit account"
        verbose_name_plural = "Credit accounts"

    def __str__(self):
        return f"CreditAccount<{self.user_id}>"

    def compute_balance(self) -> int:
        return self.transactions.aggregate(total=Sum("amount_cents"))["total"] or 0


class CreditTransaction(models.Model):
    """Immutable, signed movement on a credit account."""

    class TransactionType(models.TextChoices):
        TOP_UP = "top_up", "Top up"
        PURCHASE = "purchase", "Purchase"
        RENEWAL = "renewal", "Renewal"
        REFUND = "refund", "Refund"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(
        CreditAccount,
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Credit account affected by this transaction",
    )
    amount_cents = models.BigIntegerField(
        help_text="Signed amount in minor units; positive credits, negative debits",
    )
    type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        help_text="Categorisation of the credit movement",
    )
    order = models.ForeignKey(
        "billing.Order",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_transactions",
        help_text="Order paid (or refunded) by this movement",
    )
    description = models.TextField(blank=True)
    idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Unique key to guarantee idempotent transaction writes",
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_credit_transaction"
        verbose_name = "Credit transaction"
        verbose_name_plural = "Credit transactions"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=~Q(amount_cents=0), name="credit_transaction_non_zero"),
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_credit_transaction_idempotency_key",
            ),
        ]
        indexes = [
            models.Index(fields=["account", "created_at"], name="credit_tx_account_idx"),
        ]

    def save(self, *args, **kwargs):
        if self.pk and CreditTransaction.objects.filter(pk=self.pk).exists():
            raise ValidationError("CreditTransaction records are immutable and cannot be updated.")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("CreditTransaction records are immutable and cannot be deleted.")

    def __str__(self):
        return f"CreditTransaction<{self.type}:{self.amount_cents} for {self.account_id}>"


class PricingSnapshotFields(models.Model):
    """Pricing agreed at commit time; copied verbatim onto every record that needs it."""

    currency = models.CharField(max_length=3)
    term_months = models.PositiveSmallIntegerField(validators=[MinValueValidator(1)])
    base_price_cents = models.BigIntegerField(help_text="Monthly catalog price at commit time")
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    total_cents = models.BigIntegerField(help_text="Amount charged per term")

    SNAPSHOT_FIELDS = ("currency", "term_months", "base_price_cents", "discount_percent", "total_cents")

    class Meta:
        abstract = True

    def snapshot_values(self) -> dict:
        return {name: getattr(self, name) for name in self.SNAPSHOT_FIELDS}


class Order(PricingSnapshotFields):
    class Kind(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        RENEWAL = "renewal", "Renewal"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    MUTABLE_FIELDS = frozenset({"status", "status_reason", "updated_at"})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name="orders")
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, null=True, blank=True, related_name="orders")
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="orders",
    )
    kind = models.CharField(max_length=16, choices=Kind.choices, default=Kind.PURCHASE)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    status_reason = models.CharField(max_length=255, blank=True)
    idempotency_key = models.CharField(max_length=255, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_order"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "kind", "idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_order_idempotency_key",
            ),
            models.CheckConstraint(condition=Q(total_cents__gte=0), name="order_total_non_negative"),
        ]

    def __str__(self):
        return f"Order<{self.kind}:{self.total_cents} {self.currency} {self.status}>"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or not set(update_fields) <= self.MUTABLE_FIELDS:
                raise ValidationError("Orders are immutable except for status.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Orders cannot be deleted.")


class OrderItem(PricingSnapshotFields):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="items")
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    description = models.CharField(max_length=255, blank=True)
    quantity = models.PositiveSmallIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_order_item"
        ordering = ["created_at"]

    def __str__(self):
        return f"OrderItem<{self.order_id}:{self.description}>"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Order items are immutable.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Order items cannot be deleted.")


class Payment(models.Model):
    class Status(models.TextChoices):
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payments")
    provider = models.CharField(max_length=32, default="credits")
    amount_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.SUCCEEDED)
    credit_transaction = models.OneToOneField(
        CreditTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_payment"
        ordering = ["-created_at"]

    def __str__(self):
        return f"Payment<{self.provider}:{self.amount_cents} {self.currency} {self.status}>"


class InvalidStatusTransition(ValidationError):
    """Raised when a subscription status change is not allowed."""


class Subscription(PricingSnapshotFields):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACTIVE = "active", "Active"
        PAST_DUE = "past_due", "Past due"
        CANCELLED = "cancelled", "Cancelled"
        EXPIRED = "expired", "Expired"

    NON_TERMINAL_STATUSES = (Status.PENDING, Status.ACTIVE, Status.PAST_DUE)
    RENEWABLE_STATUSES = (Status.ACTIVE, Status.PAST_DUE)

    ALLOWED_TRANSITIONS = {
        Status.PENDING: {Status.ACTIVE, Status.CANCELLED},
        Status.ACTIVE: {Status.PAST_DUE, Status.EXPIRED, Status.CANCELLED},
        Status.PAST_DUE: {Status.ACTIVE, Status.EXPIRED, Status.CANCELLED},
        Status.EXPIRED: {Status.ACTIVE, Status.CANCELLED},
        Status.CANCELLED: set(),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name="subscriptions")
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="subscriptions",
        help_text="Empty for legacy subscriptions that predate the variant catalog",
    )
    service_category = models.CharField(
        max_length=64,
        help_text="Service type; matched case-insensitively for legacy subscriptions",
    )
    start_date = models.DateTimeField(default=timezone.now)
    end_date = models.DateTimeField()
    auto_renew = models.BooleanField(default=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    status_reason = models.CharField(max_length=255, blank=True)
    status_changed_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_subscription"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "status"], name="billing_sub_user_status_idx"),
            models.Index(fields=["status", "end_date"], name="billing_sub_due_idx"),
        ]

    def __str__(self):
        return f"Subscription<{self.user_id}:{self.service_category} {self.status}>"

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.ALLOWED_TRANSITIONS.get(current, set())

    def transition_to(self, target: str, *, reason: str = "", save: bool = True) -> None:
        if not self.can_transition(self.status, target):
            raise InvalidStatusTransition(f"Subscription cannot move from {self.status} to {target}.")
        self.status = target
        self.status_reason = reason[:255]
        self.status_changed_at = timezone.now()
        if save:
            self.save(update_fields=["status", "status_reason", "status_changed_at", "updated_at"])


class SubscriptionRenewal(models.Model):
    """One row per renewal cycle; the cycle end date makes renewals idempotent."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subscription = models.ForeignKey(Subscription, on_delete=models.PROTECT, related_name="renewals")
    cycle_end_date = models.DateTimeField(help_text="Subscription end date this renewal extends")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, null=True, blank=True, related_name="renewals")
    amount_cents = models.BigIntegerField()
    failure_reason = models.CharField(max_length=255, blank=True)
    attempts = models.PositiveIntegerField(default=0)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_subscription_renewal"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["subscription", "cycle_end_date"], name="unique_renewal_per_cycle"),
        ]

    def __str__(self):
        return f"SubscriptionRenewal<{self.subscription_id}@{self.cycle_end_date:%Y-%m-%d} {self.status}>"
