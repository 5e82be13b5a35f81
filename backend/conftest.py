import itertools
from datetime import timedelta
from types import SimpleNamespace

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from billing.services.credit_ledger import top_up
from catalog.models import PriceHistory, Product, ProductVariant, VariantTerm
from catalog.services.rules import clear_validator_cache

_sequence = itertools.count(1)


@pytest.fixture(autouse=True)
def _fresh_validator_cache():
    clear_validator_cache()
    yield
    clear_validator_cache()


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="alice", email="alice@example.com", password="pass1234")


@pytest.fixture
def other_user(django_user_model):
    return django_user_model.objects.create_user(username="bob", email="bob@example.com", password="pass1234")


@pytest.fixture
def staff_user(django_user_model):
    return django_user_model.objects.create_user(
        username="admin",
        email="admin@example.com",
        password="pass1234",
        is_staff=True,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def catalog_factory(db):
    """Build an active product with one variant, one term and current prices."""

    def build(
        *,
        price_cents=1999,
        currencies=("USD",),
        months=1,
        discount=None,
        status=Product.Status.ACTIVE,
        category="streaming",
        max_subscriptions=None,
        metadata=None,
        variant_code="STD",
        legacy_plan_code="",
        starts_at=None,
    ):
        n = next(_sequence)
        product = Product.objects.create(
            slug=f"product-{n}",
            name=f"Product {n}",
            status=status,
            service_category=category,
            max_subscriptions=max_subscriptions,
            metadata=metadata or {},
        )
        variant = ProductVariant.objects.create(
            product=product,
            name="Standard",
            variant_code=variant_code,
            legacy_plan_code=legacy_plan_code,
        )
        term = None
        if months:
            term = VariantTerm.objects.create(variant=variant, months=months, discount_percent=discount)
        start = starts_at or timezone.now() - timedelta(days=1)
        for code in currencies:
            PriceHistory.objects.create(variant=variant, currency=code, price_cents=price_cents, starts_at=start)
        return SimpleNamespace(product=product, variant=variant, term=term)

    return build


@pytest.fixture
def fund(db):
    def _fund(user, cents):
        return top_up(user, cents, f"test-top-up-{user.pk}-{next(_sequence)}")

    return _fund
