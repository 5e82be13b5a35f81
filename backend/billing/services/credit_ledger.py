"""User credit ledger: locking, derived balances and idempotent movements.

The balance is never stored. It is the sum of ``CreditTransaction.amount_cents``
for the account, read while the account row is locked.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from django.db import IntegrityError, transaction

from billing.models import CreditAccount, CreditTransaction


class CreditLedgerError(Exception):
    """Base exception for credit ledger operations."""


class InsufficientCredits(CreditLedgerError):
    """Raised when a debit exceeds the locked balance."""

    def __init__(self, balance_cents: int, required_cents: int):
        super().__init__(f"Balance {balance_cents} is below the required {required_cents}.")
        self.balance_cents = balance_cents
        self.required_cents = required_cents


class IdempotencyConflict(CreditLedgerError):
    """Raised when an idempotency key collides with different mutation semantic."""


class LedgerLockRequired(CreditLedgerError):
    """Raised when a mutation is attempted outside of a transaction."""


@dataclass(frozen=True)
class LedgerEntryResult:
    account: CreditAccount
    transaction: CreditTransaction
    created: bool
    balance_cents: int


def _require_atomic() -> None:
    if not transaction.get_connection().in_atomic_block:
        raise LedgerLockRequired("Credit ledger mutations must run inside transaction.atomic().")


def get_or_create_account(user) -> CreditAccount:
    account = CreditAccount.objects.filter(user=user).first()
    if account is not None:
        return account
    try:
        with transaction.atomic():
            return CreditAccount.objects.create(user=user)
    except IntegrityError:
        return CreditAccount.objects.get(user=user)


def lock_account(user) -> CreditAccount:
    """Take the exclusive row lock that serializes every balance change for ``user``."""

    _require_atomic()
    account = get_or_create_account(user)
    return CreditAccount.objects.select_for_update().get(pk=account.pk)


def lock_and_get_balance(user) -> Tuple[CreditAccount, int]:
    account = lock_account(user)
    return account, account.compute_balance()


def get_balance(user) -> int:
    """Unlocked read for display purposes."""
    account = CreditAccount.objects.filter(user=user).first()
    return account.compute_balance() if account is not None else 0


def _validate_existing(existing: CreditTransaction, account: CreditAccount, amount_cents: int) -> None:
    if existing.account_id != account.pk or existing.amount_cents != amount_cents:
        raise IdempotencyConflict(
            f"Idempotency key {existing.idempotency_key!r} already recorded a different movement."
        )


def _record(
    account: CreditAccount,
    amount_cents: int,
    *,
    tx_type: str,
    order=None,
    idempotency_key: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerEntryResult:
    if idempotency_key:
        existing = CreditTransaction.objects.filter(idempotency_key=idempotency_key).first()
        if existing:
            _validate_existing(existing, account, amount_cents)
            return LedgerEntryResult(
                account=account,
                transaction=existing,
                created=False,
                balance_cents=account.compute_balance(),
            )

    if amount_cents < 0:
        balance = account.compute_balance()
        if balance + amount_cents < 0:
            raise InsufficientCredits(balance, -amount_cents)

    record = CreditTransaction.objects.create(
        account=account,
        amount_cents=amount_cents,
        type=tx_type,
        order=order,
        idempotency_key=idempotency_key or None,
        description=description,
        metadata=metadata or {},
    )
    return LedgerEntryResult(account=account, transaction=record, created=True, balance_cents=account.compute_balance())


def debit(
    account: CreditAccount,
    amount_cents: int,
    *,
    tx_type: str = CreditTransaction.TransactionType.PURCHASE,
    order=None,
    idempotency_key: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerEntryResult:
    """Debit a locked account; the caller holds the lock from :func:`lock_account`."""

    _require_atomic()
    if amount_cents <= 0:
        raise ValueError("Debit amount must be positive.")
    return _record(
        account,
        -amount_cents,
        tx_type=tx_type,
        order=order,
        idempotency_key=idempotency_key,
        description=description,
        metadata=metadata,
    )


def credit(
    account: CreditAccount,
    amount_cents: int,
    *,
    tx_type: str = CreditTransaction.TransactionType.ADJUSTMENT,
    order=None,
    idempotency_key: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerEntryResult:
    _require_atomic()
    if amount_cents <= 0:
        raise ValueError("Credit amount must be positive.")
    return _record(
        account,
        amount_cents,
        tx_type=tx_type,
        order=order,
        idempotency_key=idempotency_key,
        description=description,
        metadata=metadata,
    )


def top_up(
    user,
    amount_cents: int,
    idempotency_key: str,
    *,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerEntryResult:
    """Record funds already verified by an external payment gateway."""

    if not idempotency_key:
        raise ValueError("idempotency_key is required for top ups.")

    with transaction.atomic():
        account = lock_account(user)
        return credit(
            account,
            amount_cents,
            tx_type=CreditTransaction.TransactionType.TOP_UP,
            idempotency_key=idempotency_key,
            description=description or "Credit top up",
            metadata=metadata,
        )


__all__ = [
    "CreditLedgerError",
    "IdempotencyConflict",
    "InsufficientCredits",
    "LedgerEntryResult",
    "LedgerLockRequired",
    "credit",
    "debit",
    "get_balance",
    "get_or_create_account",
    "lock_account",
    "lock_and_get_balance",
    "top_up",
]
