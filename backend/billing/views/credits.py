"""Credit balance endpoint."""
from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import CreditTransaction
from billing.serializers import CreditTransactionSerializer
from billing.services.credit_ledger import get_balance, get_or_create_account

RECENT_TRANSACTIONS = 20


class CreditBalanceView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        account = get_or_create_account(request.user)
        recent = CreditTransaction.objects.filter(account=account).order_by("-created_at")[:RECENT_TRANSACTIONS]
        return Response(
            {
                "balance_cents": get_balance(request.user),
                "currency": account.currency,
                "transactions": CreditTransactionSerializer(recent, many=True).data,
            }
        )
