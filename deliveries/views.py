import math

from django.db.models import Count, Q, Sum
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import permissions, status
from rest_framework.exceptions import ValidationError
from rest_framework.pagination import PageNumberPagination
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from account.permissions import IsAdmin, IsAdminOrCustomer, IsAdminOrDriver, IsDriver

from .exceptions import DeliveryError
from .models import Delivery, DeliveryStatus
from .repositories import DeliveryRepository
from .serializers import (
    AssignDriverSerializer,
    DeliveryCreateSerializer,
    DeliverySerializer,
    ProofUploadSerializer,
    StatusUpdateSerializer,
    TrackingSerializer,
)
from .services import build_lifecycle_manager


def _error_response(exc: DeliveryError):
    return Response({"detail": exc.message, "code": exc.code}, status=exc.status_code)


def _forbidden():
    return Response({"detail": "Not authorized to access this delivery"}, status=status.HTTP_403_FORBIDDEN)


def _can_view(user, delivery) -> bool:
    if user.role == "customer":
        return delivery.customer_id == user.pk
    if user.role == "driver":
        return delivery.driver_id == user.pk
    return user.role == "admin"


def _date_filter(param, value, upper=False):
    op = "lte" if upper else "gte"
    try:
        moment = parse_datetime(value)
        day = None if moment else parse_date(value)
    except ValueError:
        raise ValidationError({param: "Enter a valid date (YYYY-MM-DD) or ISO 8601 datetime."})
    if moment:
        return {f"created_at__{op}": moment}
    if day:
        return {f"created_at__date__{op}": day}
    return {}


class DeliveryPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 100

    def get_paginated_response(self, data):
        total = self.page.paginator.count
        limit = self.page.paginator.per_page
        return Response(
            {
                "count": len(data),
                "total": total,
                "page": self.page.number,
                "pages": math.ceil(total / limit) if limit else 0,
                "results": data,
            }
        )


class DeliveryListCreateView(APIView):
    def get_permissions(self):
        if self.request.method == "POST":
            return [IsAdminOrCustomer()]
        return [permissions.IsAuthenticated()]

    def get_queryset(self, request):
        qs = Delivery.objects.select_related("customer", "driver", "proof_of_delivery").prefetch_related(
            "timeline", "notifications"
        )
        user = request.user
        if user.role == "customer":
            qs = qs.filter(customer=user)
        elif user.role == "driver":
            qs = qs.filter(driver=user)
        elif user.role != "admin":
            return qs.none()

        params = request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("priority"):
            qs = qs.filter(priority=params["priority"])
        if params.get("date_from"):
            qs = qs.filter(**_date_filter("date_from", params["date_from"]))
        if params.get("date_to"):
            qs = qs.filter(**_date_filter("date_to", params["date_to"], upper=True))
        search = (params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(tracking_code__icontains=search) | Q(customer_name__icontains=search))
        return qs.order_by("-created_at")

    def get(self, request):
        paginator = DeliveryPagination()
        page = paginator.paginate_queryset(self.get_queryset(request), request, view=self)
        data = DeliverySerializer(page, many=True, context={"request": request}).data
        return paginator.get_paginated_response(data)

    def post(self, request):
        serializer = DeliveryCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            delivery = build_lifecycle_manager().create(serializer.to_input(request.user))
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(
            {
                "message": "Delivery created successfully",
                "data": DeliverySerializer(delivery, context={"request": request}).data,
            },
            status=status.HTTP_201_CREATED,
        )


class DeliveryDetailView(APIView):
    def get_permissions(self):
        if self.request.method == "DELETE":
            return [IsAdmin()]
        return [permissions.IsAuthenticated()]

    def get(self, request, pk):
        try:
            delivery = DeliveryRepository().get(pk)
        except DeliveryError as exc:
            return _error_response(exc)
        if not _can_view(request.user, delivery):
            return _forbidden()
        return Response(DeliverySerializer(delivery, context={"request": request}).data)

    def delete(self, request, pk):
        try:
            manager = build_lifecycle_manager()
            manager.delete(manager.repository.get(pk))
        except DeliveryError as exc:
            return _error_response(exc)
        return Response({"message": "Delivery deleted successfully"}, status=status.HTTP_200_OK)


class TrackDeliveryView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get(self, request, tracking_code):
        try:
            delivery = DeliveryRepository().get_by_tracking_code(tracking_code)
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(TrackingSerializer(delivery, context={"request": request}).data)


class AssignDriverView(APIView):
    permission_classes = [IsAdmin]

    def put(self, request, pk):
        serializer = AssignDriverSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            manager = build_lifecycle_manager()
            delivery = manager.assign(manager.repository.get(pk), serializer.validated_data["driver_id"])
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(
            {
                "message": "Driver assigned successfully",
                "data": DeliverySerializer(delivery, context={"request": request}).data,
            }
        )


class DeliveryStatusView(APIView):
    permission_classes = [IsAdminOrDriver]

    def put(self, request, pk):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            manager = build_lifecycle_manager()
            delivery = manager.repository.get(pk)
            if request.user.role == "driver" and delivery.driver_id != request.user.pk:
                return Response({"detail": "Not authorized to update this delivery"}, status=status.HTTP_403_FORBIDDEN)
            delivery = manager.transition(
                delivery,
                serializer.validated_data["status"],
                location=serializer.validated_data["location"],
                note=serializer.validated_data["note"],
            )
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(
            {
                "message": "Status updated successfully",
                "data": DeliverySerializer(delivery, context={"request": request}).data,
            }
        )


class ProofOfDeliveryView(APIView):
    permission_classes = [IsDriver]
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request, pk):
        try:
            manager = build_lifecycle_manager()
            delivery = manager.repository.get(pk)
        except DeliveryError as exc:
            return _error_response(exc)
        if delivery.driver_id != request.user.pk:
            return Response({"detail": "Not authorized to update this delivery"}, status=status.HTTP_403_FORBIDDEN)

        serializer = ProofUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        proof = serializer.to_proof()
        try:
            delivery = manager.transition(
                delivery,
                DeliveryStatus.DELIVERED,
                location=proof.location,
                note=f"Delivered to {proof.received_by}",
                proof=proof,
            )
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(
            {
                "message": "Proof of delivery uploaded successfully",
                "data": DeliverySerializer(delivery, context={"request": request}).data,
            }
        )


class DeliveryStatsView(APIView):
    permission_classes = [IsAdminOrDriver]

    def get(self, request):
        qs = Delivery.objects.all()
        if request.user.role == "driver":
            qs = qs.filter(driver=request.user)

        breakdown = list(qs.order_by().values("status").annotate(count=Count("id")).order_by("status"))
        revenue = qs.filter(status=DeliveryStatus.DELIVERED).aggregate(total=Sum("price"))["total"] or 0
        return Response({"status_breakdown": breakdown, "total_revenue": revenue})
