"""URL routes for catalog endpoints."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    AdminTaskViewSet,
    ListingListView,
    ProductActivateView,
    ProductDeactivateView,
    VariantPricingView,
)

app_name = "catalog"

router = DefaultRouter()
router.register("admin/tasks", AdminTaskViewSet, basename="admin-task")

urlpatterns = [
    path("listings/", ListingListView.as_view(), name="listings"),
    path("variants/<uuid:variant_id>/pricing/", VariantPricingView.as_view(), name="variant-pricing"),
    path(
        "admin/products/<uuid:product_id>/activate/",
        ProductActivateView.as_view(),
        name="product-activate",
    ),
    path(
        "admin/products/<uuid:product_id>/deactivate/",
        ProductDeactivateView.as_view(),
        name="product-deactivate",
    ),
    path("", include(router.urls)),
]
