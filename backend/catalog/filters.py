"""FilterSet definitions for catalog admin endpoints."""
from __future__ import annotations

import django_filters

from catalog.models import AdminTask


class AdminTaskFilter(django_filters.FilterSet):
    category = django_filters.CharFilter(field_name="category", lookup_expr="iexact")
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    product_id = django_filters.UUIDFilter(field_name="product_id")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = AdminTask
        fields = ["category", "status", "product_id"]
