from django.urls import path

from .views import AvailableDriversView, UserDetailView, UserListView, UserStatsView

urlpatterns = [
    path("", UserListView.as_view(), name="user-list"),
    path("stats/", UserStatsView.as_view(), name="user-stats"),
    path("drivers/available/", AvailableDriversView.as_view(), name="available-drivers"),
    path("<uuid:pk>/", UserDetailView.as_view(), name="user-detail"),
]
