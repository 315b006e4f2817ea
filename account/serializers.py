from rest_framework.serializers import ModelSerializer
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from deliveries.domain import GeoPoint

User = get_user_model()

DRIVER_FIELDS = ("vehicle_type", "vehicle_number", "license_number")


class UserSerializer(ModelSerializer):
    current_location = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'name', 'email', 'phone', 'role', 'is_active',
            'vehicle_type', 'vehicle_number', 'license_number', 'is_available',
            'deliveries_completed', 'rating', 'current_location', 'location_updated_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_current_location(self, obj):
        point = obj.current_location
        return point.to_geojson() if point else None


class RegisterSerializer(ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'phone', 'password', 'role',
                  'vehicle_type', 'vehicle_number', 'license_number']
        extra_kwargs = {
            'password': {'write_only': True, 'min_length': 6},
            'role': {'required': False},
            # Uniqueness is checked in validate_email / validate_phone.
            'email': {'validators': []},
            'phone': {'validators': []},
        }
        read_only_fields = ('id',)

    def validate_email(self, value):
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("Email already registered")
        return value

    def validate_phone(self, value):
        if User.objects.filter(phone=value).exists():
            raise serializers.ValidationError("Phone number already registered")
        return value

    def validate_role(self, value):
        # Admin accounts are provisioned through the admin site, not self sign-up.
        if value == User.Role.ADMIN:
            raise serializers.ValidationError("Cannot self-register as admin")
        return value

    def create(self, validated_data):
        password = validated_data.pop('password')
        role = validated_data.get('role') or User.Role.CUSTOMER
        validated_data['role'] = role
        if role != User.Role.DRIVER:
            for field in DRIVER_FIELDS:
                validated_data.pop(field, None)
        return User.objects.create_user(password=password, **validated_data)


class UpdateDetailsSerializer(ModelSerializer):
    class Meta:
        model = User
        fields = ['name', 'phone', 'vehicle_type', 'vehicle_number', 'license_number']
        extra_kwargs = {'phone': {'validators': []}}

    def validate_phone(self, value):
        if User.objects.filter(phone=value).exclude(pk=self.instance.pk).exists():
            raise serializers.ValidationError("Phone number already registered")
        return value

    def update(self, instance, validated_data):
        # Vehicle details only belong to drivers.
        if not instance.is_driver:
            for field in DRIVER_FIELDS:
                validated_data.pop(field, None)
        return super().update(instance, validated_data)


class PasswordUpdateSerializer(serializers.Serializer):
    current_password = serializers.CharField()
    new_password = serializers.CharField(min_length=6)

    def validate_current_password(self, value):
        user = self.context['request'].user
        if not user.check_password(value):
            raise serializers.ValidationError("Current password is incorrect")
        return value

    def validate_new_password(self, value):
        validate_password(value, self.context['request'].user)
        return value

    def save(self, **kwargs):
        user = self.context['request'].user
        user.set_password(self.validated_data['new_password'])
        user.save(update_fields=['password', 'updated_at'])
        return user


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField()


class LocationSerializer(serializers.Serializer):
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    latitude = serializers.FloatField(min_value=-90, max_value=90)

    def to_point(self) -> GeoPoint:
        return GeoPoint(
            latitude=self.validated_data['latitude'],
            longitude=self.validated_data['longitude'],
        )


class AdminUserSerializer(ModelSerializer):
    class Meta:
        model = User
        fields = [
            'id', 'name', 'email', 'phone', 'role', 'is_active',
            'vehicle_type', 'vehicle_number', 'license_number', 'is_available',
            'deliveries_completed', 'rating', 'created_at', 'updated_at',
        ]
        read_only_fields = ('id', 'deliveries_completed', 'created_at', 'updated_at')
