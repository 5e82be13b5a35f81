"""URL routes for billing endpoints."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views.credits import CreditBalanceView
from .views.purchases import PurchaseEligibilityView, PurchaseView
from .views.subscriptions import SubscriptionViewSet

app_name = "billing"

router = DefaultRouter()
router.register("subscriptions", SubscriptionViewSet, basename="subscription")

urlpatterns = [
    path("purchases/eligibility/", PurchaseEligibilityView.as_view(), name="purchase-eligibility"),
    path("purchases/", PurchaseView.as_view(), name="purchase"),
    path("credits/", CreditBalanceView.as_view(), name="credits"),
    path("", include(router.urls)),
]
