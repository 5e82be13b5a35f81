"""DRF serializers for catalog listings, quotes and admin tasks."""
from __future__ import annotations

from rest_framework import serializers

from catalog.models import AdminTask, Product


class ListingQuerySerializer(serializers.Serializer):
    currency = serializers.CharField(required=False, allow_blank=True, max_length=3)
    service_category = serializers.CharField(required=False, allow_blank=True, max_length=64)


class PricingQuerySerializer(serializers.Serializer):
    term_months = serializers.IntegerField(min_value=1, default=1)
    currency = serializers.CharField(required=False, allow_blank=True, max_length=3)


class ProductStatusSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ("id", "slug", "name", "status", "service_category", "updated_at")
        read_only_fields = fields


class AdminTaskSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(read_only=True, allow_null=True)
    variant_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = AdminTask
        fields = (
            "id",
            "category",
            "task_type",
            "priority",
            "notes",
            "dedupe_key",
            "status",
            "product_id",
            "variant_id",
            "due_at",
            "completed_at",
            "created_at",
        )
        read_only_fields = fields
