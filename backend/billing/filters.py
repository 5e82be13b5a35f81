"""FilterSet definitions for billing endpoints."""
from __future__ import annotations

import django_filters

from billing.models import Subscription


class SubscriptionFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    service_category = django_filters.CharFilter(field_name="service_category", lookup_expr="iexact")
    currency = django_filters.CharFilter(field_name="currency", lookup_expr="iexact")
    variant_id = django_filters.UUIDFilter(field_name="variant_id")
    ends_before = django_filters.DateTimeFilter(field_name="end_date", lookup_expr="lte")
    ends_after = django_filters.DateTimeFilter(field_name="end_date", lookup_expr="gte")

    class Meta:
        model = Subscription
        fields = ["status", "service_category", "currency", "variant_id"]
