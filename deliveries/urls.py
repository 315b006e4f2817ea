from django.urls import path

from .views import (
    AssignDriverView,
    DeliveryDetailView,
    DeliveryListCreateView,
    DeliveryStatsView,
    DeliveryStatusView,
    ProofOfDeliveryView,
    TrackDeliveryView,
)


urlpatterns = [
    path("", DeliveryListCreateView.as_view(), name="delivery-list"),
    path("track/<str:tracking_code>/", TrackDeliveryView.as_view(), name="delivery-track"),
    path("stats/summary/", DeliveryStatsView.as_view(), name="delivery-stats"),
    path("<uuid:pk>/", DeliveryDetailView.as_view(), name="delivery-detail"),
    path("<uuid:pk>/assign/", AssignDriverView.as_view(), name="delivery-assign"),
    path("<uuid:pk>/status/", DeliveryStatusView.as_view(), name="delivery-status"),
    path("<uuid:pk>/proof/", ProofOfDeliveryView.as_view(), name="delivery-proof"),
]
