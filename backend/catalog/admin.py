from django.contrib import admin, messages

from .models import AdminTask, PriceHistory, Product, ProductVariant, VariantTerm
from .services.activation import activate_product, deactivate_product


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0
    fields = ("name", "variant_code", "legacy_plan_code", "is_active", "sort_order")
    show_change_link = True


class VariantTermInline(admin.TabularInline):
    model = VariantTerm
    extra = 0
    fields = ("months", "discount_percent", "is_active", "is_recommended", "sort_order")


class PriceHistoryInline(admin.TabularInline):
    model = PriceHistory
    extra = 0
    fields = ("currency", "price_cents", "starts_at", "ends_at", "created_at")
    readonly_fields = ("created_at",)
    ordering = ("currency", "-starts_at")
    can_delete = False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    """Products are activated through the multi-currency gate, never by editing status."""

    list_display = ("name", "slug", "status", "service_category", "default_currency", "max_subscriptions", "created_at")
    list_filter = ("status", "service_category")
    search_fields = ("name", "slug", "service_category")
    readonly_fields = ("status", "created_at", "updated_at")
    prepopulated_fields = {"slug": ("name",)}
    inlines = [ProductVariantInline]
    actions = ["activate_selected", "deactivate_selected"]

    fieldsets = (
        ("Product", {"fields": ("name", "slug", "description", "service_category")}),
        ("Sales", {"fields": ("status", "default_currency", "max_subscriptions")}),
        ("Configuration", {"fields": ("metadata",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description="Activate selected products")
    def activate_selected(self, request, queryset):
        for product in queryset:
            result = activate_product(product.pk)
            if result.ok:
                self.message_user(request, f"{product.name}: active.", messages.SUCCESS)
                continue
            missing = result.error.details.get("missing") or []
            pairs = ", ".join(f"{pair['variant']}/{pair['currency']}" for pair in missing)
            self.message_user(
                request,
                f"{product.name}: {result.error.message} {pairs}".strip(),
                messages.ERROR,
            )

    @admin.action(description="Deactivate selected products")
    def deactivate_selected(self, request, queryset):
        for product in queryset:
            deactivate_product(product.pk)
        self.message_user(request, f"Deactivated {queryset.count()} product(s).", messages.SUCCESS)


@admin.register(ProductVariant)
class ProductVariantAdmin(admin.ModelAdmin):
    list_display = ("name", "product", "variant_code", "legacy_plan_code", "is_active", "sort_order")
    list_filter = ("is_active", "product__service_category")
    search_fields = ("name", "variant_code", "legacy_plan_code", "product__name")
    list_select_related = ("product",)
    raw_id_fields = ("product",)
    inlines = [VariantTermInline, PriceHistoryInline]


@admin.register(PriceHistory)
class PriceHistoryAdmin(admin.ModelAdmin):
    list_display = ("variant", "currency", "price_cents", "starts_at", "ends_at", "created_at")
    list_filter = ("currency",)
    search_fields = ("variant__name", "variant__product__name")
    list_select_related = ("variant", "variant__product")
    readonly_fields = ("created_at",)
    ordering = ("-starts_at",)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AdminTask)
class AdminTaskAdmin(admin.ModelAdmin):
    list_display = ("category", "status", "priority", "dedupe_key", "product", "created_at", "completed_at")
    list_filter = ("status", "category", "priority")
    search_fields = ("dedupe_key", "notes")
    readonly_fields = ("dedupe_key", "created_at", "completed_at")
    raw_id_fields = ("product", "variant")
    actions = ["complete_selected"]

    @admin.action(description="Mark selected tasks completed")
    def complete_selected(self, request, queryset):
        for task in queryset.filter(status=AdminTask.Status.OPEN):
            task.complete()
