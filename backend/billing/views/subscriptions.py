"""Customer subscription endpoints."""
from __future__ import annotations

from django.http import Http404
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import SubscriptionFilter
from billing.models import Subscription
from billing.serializers import OrderSerializer, SubscriptionCancelSerializer, SubscriptionSerializer
from billing.services.renewal import renew as renew_subscription
from billing.services.subscriptions import cancel_subscription
from catalog.pagination import BoundedPageNumberPagination
from catalog.responses import error_response


class SubscriptionViewSet(ReadOnlyModelViewSet):
    serializer_class = SubscriptionSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = SubscriptionFilter

    def get_queryset(self):
        return Subscription.objects.filter(user=self.request.user).order_by("-created_at")

    def _owned(self, pk) -> Subscription:
        subscription = self.get_queryset().filter(pk=pk).first()
        if subscription is None:
            raise Http404
        return subscription

    @action(detail=True, methods=["post"])
    def renew(self, request, pk=None):
        subscription = self._owned(pk)
        result = renew_subscription(subscription.pk)
        if not result.ok:
            return error_response(result.error)
        receipt = result.value
        return Response(
            {
                "already_renewed": receipt.already_renewed,
                "subscription": SubscriptionSerializer(receipt.subscription).data,
                "order": OrderSerializer(receipt.order).data if receipt.order is not None else None,
                "balance_cents": receipt.balance_cents,
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        subscription = self._owned(pk)
        serializer = SubscriptionCancelSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        result = cancel_subscription(
            subscription.pk,
            reason=serializer.validated_data["reason"],
            refund=serializer.validated_data["refund"],
        )
        if not result.ok:
            return error_response(result.error)
        receipt = result.value
        return Response(
            {
                "subscription": SubscriptionSerializer(receipt.subscription).data,
                "refunded_cents": receipt.refund_transaction.amount_cents if receipt.refund_transaction else 0,
            }
        )
