"""Expose commonly used billing services."""

from .credit_ledger import get_balance, lock_and_get_balance, top_up
from .purchase import PurchaseDecision, PurchaseReceipt, PurchaseState, can_purchase, purchase
from .renewal import RenewalReceipt, renew
from .subscriptions import CancellationReceipt, cancel_subscription
