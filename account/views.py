from django.contrib.auth import get_user_model
from django.db.models import Count, ProtectedError, Q
from django.utils import timezone
from rest_framework import permissions, status
from rest_framework.exceptions import ValidationError
from rest_framework.generics import ListAPIView, RetrieveUpdateDestroyAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from .permissions import IsAdmin, IsDriver
from .serializers import (
    AdminUserSerializer,
    LocationSerializer,
    LoginSerializer,
    PasswordUpdateSerializer,
    RegisterSerializer,
    UpdateDetailsSerializer,
    UserSerializer,
)

User = get_user_model()


def _token_payload(user):
    refresh = RefreshToken.for_user(user)
    return {
        "refresh": str(refresh),
        "access": str(refresh.access_token),
        "user": UserSerializer(user).data,
    }


class RegisterView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return Response(
            {"message": "Registration successful", **_token_payload(user)},
            status=status.HTTP_201_CREATED,
        )


class LoginView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"detail": "Please provide email and password"}, status=status.HTTP_400_BAD_REQUEST)

        email = User.objects.normalize_email(serializer.validated_data["email"])
        user = User.objects.filter(email__iexact=email).first()
        if not user or not user.check_password(serializer.validated_data["password"]):
            return Response({"detail": "Invalid credentials"}, status=status.HTTP_401_UNAUTHORIZED)
        if not user.is_active:
            return Response(
                {"detail": "Your account has been deactivated. Please contact support."},
                status=status.HTTP_403_FORBIDDEN,
            )

        return Response({"message": "Login successful", **_token_payload(user)}, status=status.HTTP_200_OK)


class MeView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)


class UpdateDetailsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def put(self, request):
        serializer = UpdateDetailsSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return Response({"message": "Profile updated successfully", "user": UserSerializer(user).data})


class UpdatePasswordView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def put(self, request):
        serializer = PasswordUpdateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return Response({"message": "Password updated successfully", **_token_payload(user)})


class DriverLocationView(APIView):
    permission_classes = [IsDriver]

    def put(self, request):
        serializer = LocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        point = serializer.to_point()

        user = request.user
        user.current_latitude = point.latitude
        user.current_longitude = point.longitude
        user.location_updated_at = timezone.now()
        user.save(update_fields=["current_latitude", "current_longitude", "location_updated_at", "updated_at"])
        return Response({"message": "Location updated", "current_location": point.to_geojson()})


class DriverAvailabilityView(APIView):
    permission_classes = [IsDriver]

    def put(self, request):
        user = request.user
        user.is_available = not user.is_available
        user.save(update_fields=["is_available", "updated_at"])
        state = "available" if user.is_available else "unavailable"
        return Response({"message": f"You are now {state}", "is_available": user.is_available})


class UserPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "limit"
    max_page_size = 100


class UserListView(ListAPIView):
    permission_classes = [IsAdmin]
    serializer_class = AdminUserSerializer
    pagination_class = UserPagination

    def get_queryset(self):
        qs = User.objects.all().order_by("-created_at")
        params = self.request.query_params
        role = params.get("role")
        if role:
            qs = qs.filter(role=role)
        is_active = params.get("is_active")
        if is_active is not None:
            qs = qs.filter(is_active=is_active.lower() in {"1", "true", "yes"})
        search = (params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(email__icontains=search) | Q(phone__icontains=search))
        return qs


class UserDetailView(RetrieveUpdateDestroyAPIView):
    permission_classes = [IsAdmin]
    queryset = User.objects.all()
    serializer_class = AdminUserSerializer

    def perform_destroy(self, instance):
        if instance.pk == self.request.user.pk:
            raise ValidationError({"detail": "You cannot delete your own account"})
        try:
            instance.delete()
        except ProtectedError:
            raise ValidationError({"detail": "User has deliveries on record; deactivate the account instead"})


class AvailableDriversView(ListAPIView):
    permission_classes = [IsAdmin]
    serializer_class = UserSerializer

    def get_queryset(self):
        return User.objects.available_drivers().order_by("-rating", "name")


class UserStatsView(APIView):
    permission_classes = [IsAdmin]

    def get(self, request):
        by_role = {
            row["role"]: row["count"]
            for row in User.objects.values("role").annotate(count=Count("id"))
        }
        drivers = User.objects.filter(role=User.Role.DRIVER)
        return Response(
            {
                "total": sum(by_role.values()),
                "by_role": {role: by_role.get(role, 0) for role in User.Role.values},
                "active_drivers": drivers.filter(is_active=True).count(),
                "available_drivers": User.objects.available_drivers().count(),
            }
        )
