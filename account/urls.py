from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from .views import (
    DriverAvailabilityView,
    DriverLocationView,
    LoginView,
    MeView,
    RegisterView,
    UpdateDetailsView,
    UpdatePasswordView,
)

urlpatterns = [
    path("register/", RegisterView.as_view(), name="register"),
    path("login/", LoginView.as_view(), name="login"),
    path("refresh/", TokenRefreshView.as_view(), name="refresh"),
    path("me/", MeView.as_view(), name="me"),
    path("updatedetails/", UpdateDetailsView.as_view(), name="update-details"),
    path("updatepassword/", UpdatePasswordView.as_view(), name="update-password"),
    path("location/", DriverLocationView.as_view(), name="driver-location"),
    path("availability/", DriverAvailabilityView.as_view(), name="driver-availability"),
]
