import pytest
from django.core.exceptions import ValidationError
from django.db import transaction

from billing.models import CreditTransaction
from billing.services.credit_ledger import (
    IdempotencyConflict,
    InsufficientCredits,
    LedgerLockRequired,
    debit,
    get_balance,
    get_or_create_account,
    lock_account,
    top_up,
)


@pytest.mark.django_db
def test_balance_is_sum_of_transactions(user):
    top_up(user, 1500, "gateway-1")
    top_up(user, 500, "gateway-2")

    with transaction.atomic():
        account = lock_account(user)
        result = debit(account, 700, idempotency_key="spend-1")

    assert result.balance_cents == 1300
    assert get_balance(user) == 1300
    assert CreditTransaction.objects.filter(account__user=user).count() == 3


@pytest.mark.django_db
def test_top_up_is_idempotent(user):
    first = top_up(user, 1000, "gateway-1")
    second = top_up(user, 1000, "gateway-1")

    assert first.created is True
    assert second.created is False
    assert second.transaction.pk == first.transaction.pk
    assert get_balance(user) == 1000


@pytest.mark.django_db
def test_reused_key_with_different_amount_conflicts(user):
    top_up(user, 1000, "gateway-1")

    with pytest.raises(IdempotencyConflict):
        top_up(user, 2000, "gateway-1")


@pytest.mark.django_db
def test_top_up_requires_key(user):
    with pytest.raises(ValueError):
        top_up(user, 1000, "")


@pytest.mark.django_db
def test_debit_cannot_overdraw(user):
    top_up(user, 100, "gateway-1")

    with transaction.atomic():
        account = lock_account(user)
        with pytest.raises(InsufficientCredits) as excinfo:
            debit(account, 101)

    assert excinfo.value.balance_cents == 100
    assert excinfo.value.required_cents == 101
    assert get_balance(user) == 100


@pytest.mark.django_db(transaction=True)
def test_mutations_require_a_transaction(user):
    account = get_or_create_account(user)

    with pytest.raises(LedgerLockRequired):
        debit(account, 10)
    with pytest.raises(LedgerLockRequired):
        lock_account(user)


@pytest.mark.django_db
def test_transactions_are_immutable(user):
    entry = top_up(user, 1000, "gateway-1").transaction

    entry.description = "edited"
    with pytest.raises(ValidationError):
        entry.save()
    with pytest.raises(ValidationError):
        entry.delete()


@pytest.mark.django_db
def test_get_balance_without_account_is_zero(user):
    assert get_balance(user) == 0
