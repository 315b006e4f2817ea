from django.contrib.auth import get_user_model
from rest_framework import serializers

from notifications.models import DeliveryNotification

from .domain import (
    MAX_DECLARED_VALUE,
    MAX_DIMENSION_CM,
    MAX_WEIGHT_KG,
    PACKAGE_CATEGORIES,
    GeoPoint,
)
from .models import Delivery, DeliveryStatus, ProofOfDelivery, TimelineEntry
from .services import DeliveryInput, ProofInput

User = get_user_model()


class GeoPointField(serializers.Field):
    """GeoJSON point on the wire, ``GeoPoint`` inside."""

    default_error_messages = {"invalid": "Enter a GeoJSON point or an object with latitude and longitude."}

    def to_internal_value(self, data):
        try:
            return GeoPoint.parse(data)
        except (TypeError, ValueError):
            self.fail("invalid")

    def to_representation(self, value):
        return value.to_geojson() if value else None


def _optional_point(attrs):
    longitude = attrs.pop("longitude", None)
    latitude = attrs.pop("latitude", None)
    if longitude is None and latitude is None:
        return None
    if longitude is None or latitude is None:
        raise serializers.ValidationError({"location": "Provide both longitude and latitude"})
    return GeoPoint(latitude=latitude, longitude=longitude)


class AddressSerializer(serializers.Serializer):
    address = serializers.CharField()
    city = serializers.CharField()
    state = serializers.CharField()
    zip_code = serializers.CharField(required=False, allow_blank=True, default="")
    location = GeoPointField(required=False, allow_null=True, default=None)


class DimensionsSerializer(serializers.Serializer):
    length = serializers.FloatField(required=False, min_value=0, max_value=MAX_DIMENSION_CM)
    width = serializers.FloatField(required=False, min_value=0, max_value=MAX_DIMENSION_CM)
    height = serializers.FloatField(required=False, min_value=0, max_value=MAX_DIMENSION_CM)


class PackageDetailsSerializer(serializers.Serializer):
    description = serializers.CharField()
    weight = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=MAX_WEIGHT_KG)
    dimensions = DimensionsSerializer(required=False)
    value = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=MAX_DECLARED_VALUE)
    category = serializers.ChoiceField(choices=PACKAGE_CATEGORIES, default="other")


class DeliveryCreateSerializer(serializers.Serializer):
    customer_name = serializers.CharField(required=False, allow_blank=True, default="")
    customer_phone = serializers.CharField(required=False, allow_blank=True, default="")
    pickup_address = AddressSerializer()
    delivery_address = AddressSerializer()
    package_details = PackageDetailsSerializer()
    priority = serializers.ChoiceField(choices=Delivery.Priority.choices, default=Delivery.Priority.MEDIUM)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default="")
    estimated_pickup_time = serializers.DateTimeField(required=False, allow_null=True, default=None)
    estimated_delivery_time = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def to_input(self, customer) -> DeliveryInput:
        data = self.validated_data
        return DeliveryInput(customer=customer, **data)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DeliveryStatus.choices)
    note = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
    longitude = serializers.FloatField(required=False, min_value=-180, max_value=180)
    latitude = serializers.FloatField(required=False, min_value=-90, max_value=90)

    def validate(self, attrs):
        attrs["location"] = _optional_point(attrs)
        return attrs


class AssignDriverSerializer(serializers.Serializer):
    driver_id = serializers.UUIDField()


class ProofUploadSerializer(serializers.Serializer):
    photo = serializers.ImageField()
    received_by = serializers.CharField(max_length=100)
    signature = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    longitude = serializers.FloatField(required=False, min_value=-180, max_value=180)
    latitude = serializers.FloatField(required=False, min_value=-90, max_value=90)

    def validate(self, attrs):
        attrs["location"] = _optional_point(attrs)
        return attrs

    def to_proof(self) -> ProofInput:
        return ProofInput(**self.validated_data)


class CustomerSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "name", "email", "phone"]


class DriverSummarySerializer(serializers.ModelSerializer):
    current_location = GeoPointField(read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "phone", "vehicle_type", "vehicle_number", "rating", "current_location"]


class TimelineEntrySerializer(serializers.ModelSerializer):
    location = GeoPointField(read_only=True)

    class Meta:
        model = TimelineEntry
        fields = ["status", "timestamp", "location", "note"]


class ProofOfDeliverySerializer(serializers.ModelSerializer):
    location = GeoPointField(read_only=True)

    class Meta:
        model = ProofOfDelivery
        fields = ["photo", "signature", "received_by", "notes", "location", "timestamp"]


class DeliveryNotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryNotification
        fields = ["kind", "status", "recipient", "message_sid", "sent_at"]


class DeliverySerializer(serializers.ModelSerializer):
    customer = CustomerSummarySerializer(read_only=True)
    driver = DriverSummarySerializer(read_only=True)
    timeline = TimelineEntrySerializer(many=True, read_only=True)
    proof_of_delivery = serializers.SerializerMethodField()
    whatsapp_notifications = DeliveryNotificationSerializer(source="notifications", many=True, read_only=True)

    class Meta:
        model = Delivery
        fields = [
            "id",
            "tracking_code",
            "customer",
            "customer_name",
            "customer_phone",
            "driver",
            "assigned_at",
            "pickup_address",
            "delivery_address",
            "package_details",
            "status",
            "timeline",
            "estimated_pickup_time",
            "estimated_delivery_time",
            "actual_pickup_time",
            "actual_delivery_time",
            "proof_of_delivery",
            "price",
            "payment_status",
            "priority",
            "special_instructions",
            "internal_notes",
            "whatsapp_notifications",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_proof_of_delivery(self, obj):
        try:
            proof = obj.proof_of_delivery
        except ProofOfDelivery.DoesNotExist:
            return None
        return ProofOfDeliverySerializer(proof, context=self.context).data


class TrackingSerializer(DeliverySerializer):
    """Public view: the customer is referenced by id only."""

    customer = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta(DeliverySerializer.Meta):
        fields = [
            name
            for name in DeliverySerializer.Meta.fields
            if name not in {"internal_notes", "whatsapp_notifications"}
        ]
        read_only_fields = fields
