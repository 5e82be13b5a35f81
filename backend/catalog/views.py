"""Catalog API views: listings, price quotes and admin operations."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import ReadOnlyModelViewSet

from catalog.conf import default_currency
from catalog.filters import AdminTaskFilter
from catalog.models import AdminTask
from catalog.pagination import BoundedPageNumberPagination
from catalog.responses import error_response
from catalog.serializers import (
    AdminTaskSerializer,
    ListingQuerySerializer,
    PricingQuerySerializer,
    ProductStatusSerializer,
)
from catalog.services.activation import activate_product, deactivate_product
from catalog.services.listings import list_active_listings
from catalog.services.pricing import resolve_pricing

logger = logging.getLogger(__name__)


class ListingListView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        query = ListingQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        result = list_active_listings(
            service_category=query.validated_data.get("service_category") or None,
            currency=query.validated_data.get("currency") or None,
        )
        if not result.ok:
            return error_response(result.error)
        page = result.value
        return Response(
            {
                "count": len(page.listings),
                "results": [listing.as_dict() for listing in page.listings],
            }
        )


class VariantPricingView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, variant_id):
        query = PricingQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        currency = query.validated_data.get("currency") or default_currency()
        result = resolve_pricing(variant_id, query.validated_data["term_months"], currency)
        if not result.ok:
            return error_response(result.error)
        return Response(result.value.as_dict())


class ProductActivateView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, product_id):
        currencies = request.data.get("currencies") if hasattr(request.data, "get") else None
        if currencies is not None and not isinstance(currencies, list):
            return Response({"currencies": ["Expected a list of currency codes."]}, status=status.HTTP_400_BAD_REQUEST)
        result = activate_product(product_id, currencies=currencies)
        if not result.ok:
            return error_response(result.error)
        logger.info("Product %s activation requested by %s.", product_id, request.user.pk)
        payload = ProductStatusSerializer(result.value.product).data
        payload["changed"] = result.value.changed
        return Response(payload)


class ProductDeactivateView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, product_id):
        result = deactivate_product(product_id)
        if not result.ok:
            return error_response(result.error)
        payload = ProductStatusSerializer(result.value.product).data
        payload["changed"] = result.value.changed
        return Response(payload)


class AdminTaskViewSet(ReadOnlyModelViewSet):
    serializer_class = AdminTaskSerializer
    permission_classes = [IsAdminUser]
    pagination_class = BoundedPageNumberPagination
    filterset_class = AdminTaskFilter

    def get_queryset(self):
        return AdminTask.objects.select_related("product", "variant").order_by("-created_at")

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        task = self.get_object()
        task.complete()
        return Response(self.get_serializer(task).data)
