import itertools

import pytest

from billing.services.purchase import purchase

_keys = itertools.count(1)


@pytest.fixture
def buy(fund):
    """Fund ``user`` with ``balance`` credits and purchase ``listing.variant``."""

    def _buy(user, listing, *, balance=None, term_months=1, currency="USD", metadata=None, key=None, **kwargs):
        if balance:
            fund(user, balance)
        result = purchase(
            user,
            listing.variant.pk,
            term_months,
            currency,
            metadata,
            key or f"purchase-{next(_keys)}",
            **kwargs,
        )
        assert result.ok, result.error
        return result.value

    return _buy
