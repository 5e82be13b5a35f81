"""Purchase eligibility and checkout endpoints."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.serializers import OrderSerializer, PurchaseRequestSerializer, SubscriptionSerializer
from billing.services.purchase import can_purchase, purchase
from catalog.responses import error_response

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


class PurchaseEligibilityView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PurchaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        decision = can_purchase(
            request.user,
            data["variant_id"],
            data["term_months"],
            data["currency"],
            data.get("metadata"),
        )
        payload = {
            "allowed": decision.allowed,
            "reason": decision.reason.value if decision.reason else None,
            "message": decision.message,
            "violations": list(decision.violations),
            "pricing": decision.pricing.as_dict() if decision.pricing is not None else None,
        }
        return Response(payload)


class PurchaseView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        idempotency_key = (request.headers.get(IDEMPOTENCY_HEADER) or "").strip()
        if not idempotency_key:
            return Response(
                {"detail": f"{IDEMPOTENCY_HEADER} header is required."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        serializer = PurchaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = purchase(
            request.user,
            data["variant_id"],
            data["term_months"],
            data["currency"],
            data.get("metadata"),
            idempotency_key,
        )
        if not result.ok:
            return error_response(result.error)

        receipt = result.value
        return Response(
            {
                "state": receipt.state.value,
                "replayed": receipt.replayed,
                "order": OrderSerializer(receipt.order).data,
                "subscription": SubscriptionSerializer(receipt.subscription).data,
                "balance_cents": receipt.balance_cents,
            },
            status=status.HTTP_200_OK if receipt.replayed else status.HTTP_201_CREATED,
        )
