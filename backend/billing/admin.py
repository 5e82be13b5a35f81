from django.contrib import admin
from django.db.models import Sum

from .models import (
    CreditAccount,
    CreditTransaction,
    Order,
    OrderItem,
    Payment,
    Subscription,
    SubscriptionRenewal,
)


class ReadOnlyAdminMixin:
    """Ledger and order records are written by services only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class CreditTransactionInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = CreditTransaction
    extra = 0
    fields = ("created_at", "type", "amount_cents", "order", "description")
    readonly_fields = fields
    ordering = ("-created_at",)


@admin.register(CreditAccount)
class CreditAccountAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "currency", "balance_display", "created_at")
    search_fields = ("id", "user__username", "user__email")
    readonly_fields = ("balance_display", "created_at", "updated_at")
    raw_id_fields = ("user",)
    list_select_related = ("user",)
    inlines = [CreditTransactionInline]

    fieldsets = (
        ("Ownership", {"fields": ("user", "currency")}),
        ("Balance", {"fields": ("balance_display",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(_balance=Sum("transactions__amount_cents"))

    @admin.display(description="Balance (minor units)")
    def balance_display(self, obj):
        balance = getattr(obj, "_balance", None)
        return balance if balance is not None else obj.compute_balance()


@admin.register(CreditTransaction)
class CreditTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("created_at", "account", "type", "amount_cents", "order", "idempotency_key")
    list_filter = ("type", "created_at")
    search_fields = ("account__user__username", "account__user__email", "idempotency_key", "description")
    list_select_related = ("account", "account__user", "order")
    ordering = ("-created_at",)


class OrderItemInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ("description", "term_months", "base_price_cents", "discount_percent", "total_cents", "currency")
    readonly_fields = fields


class PaymentInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = Payment
    extra = 0
    fields = ("provider", "amount_cents", "currency", "status", "credit_transaction", "created_at")
    readonly_fields = fields


@admin.register(Order)
class OrderAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "user", "kind", "status", "total_cents", "currency", "created_at")
    list_filter = ("kind", "status", "currency")
    search_fields = ("id", "user__username", "user__email", "idempotency_key")
    list_select_related = ("user",)
    inlines = [OrderItemInline, PaymentInline]
    ordering = ("-created_at",)


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "service_category", "status", "total_cents", "currency", "end_date", "auto_renew")
    list_filter = ("status", "service_category", "auto_renew", "currency")
    search_fields = ("id", "user__username", "user__email", "service_category")
    raw_id_fields = ("user", "variant")
    list_select_related = ("user",)
    readonly_fields = (
        "status",
        "status_reason",
        "status_changed_at",
        "currency",
        "term_months",
        "base_price_cents",
        "discount_percent",
        "total_cents",
        "created_at",
        "updated_at",
    )

    fieldsets = (
        ("Customer", {"fields": ("user", "variant", "service_category", "metadata")}),
        ("Term", {"fields": ("start_date", "end_date", "auto_renew")}),
        ("Status", {"fields": ("status", "status_reason", "status_changed_at")}),
        ("Agreed price", {"fields": ("currency", "term_months", "base_price_cents", "discount_percent", "total_cents")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(SubscriptionRenewal)
class SubscriptionRenewalAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("subscription", "cycle_end_date", "status", "amount_cents", "attempts", "last_attempt_at")
    list_filter = ("status",)
    search_fields = ("subscription__id", "subscription__user__username")
    ordering = ("-created_at",)
