"""DRF serializers for purchases, subscriptions and the credit ledger."""
from __future__ import annotations

from typing import Any, Dict

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from billing.models import CreditTransaction, Order, Subscription


class PurchaseRequestSerializer(serializers.Serializer):
    variant_id = serializers.UUIDField()
    term_months = serializers.IntegerField(min_value=1)
    currency = serializers.CharField(max_length=3)
    metadata = serializers.JSONField(required=False, allow_null=True, default=None)

    def validate_currency(self, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise serializers.ValidationError(_("Currency must be a three-letter ISO code."))
        return value


class SubscriptionCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")
    refund = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        request = self.context.get("request")
        if attrs.get("refund") and not getattr(getattr(request, "user", None), "is_staff", False):
            raise serializers.ValidationError({"refund": [_("Only staff can refund a cancellation.")]})
        return attrs


class SubscriptionSerializer(serializers.ModelSerializer):
    variant_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Subscription
        fields = (
            "id",
            "variant_id",
            "service_category",
            "status",
            "status_reason",
            "currency",
            "term_months",
            "base_price_cents",
            "discount_percent",
            "total_cents",
            "start_date",
            "end_date",
            "auto_renew",
            "metadata",
            "created_at",
        )
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    subscription_id = serializers.UUIDField(read_only=True, allow_null=True)
    variant_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Order
        fields = (
            "id",
            "kind",
            "status",
            "subscription_id",
            "variant_id",
            "currency",
            "term_months",
            "base_price_cents",
            "discount_percent",
            "total_cents",
            "created_at",
        )
        read_only_fields = fields


class CreditTransactionSerializer(serializers.ModelSerializer):
    order_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = CreditTransaction
        fields = ("id", "amount_cents", "type", "order_id", "description", "created_at")
        read_only_fields = fields
