import uuid
from django.db import models
from django.contrib.auth.models import (
    AbstractBaseUser,
    PermissionsMixin,
    BaseUserManager,
)

class UserManager(BaseUserManager):
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Users must have an email")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", User.Role.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)

    def available_drivers(self):
        return self.filter(role=User.Role.DRIVER, is_available=True, is_active=True)


class User(AbstractBaseUser, PermissionsMixin):
    class Role(models.TextChoices):
        CUSTOMER = "customer", "Customer"
        DRIVER = "driver", "Driver"
        ADMIN = "admin", "Administrator"

    class VehicleType(models.TextChoices):
        BIKE = "bike", "Motorcycle"
        VAN = "van", "Van"
        TRUCK = "truck", "Truck"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, unique=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.CUSTOMER)

    # Basic fields
    email = models.EmailField(unique=True)
    name = models.CharField(max_length=100)
    phone = models.CharField(max_length=20, unique=True)
    password = models.CharField(max_length=128)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Auth
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    #driver fields
    vehicle_type = models.CharField(max_length=20, choices=VehicleType.choices, blank=True)
    vehicle_number = models.CharField(max_length=30, blank=True)
    license_number = models.CharField(max_length=50, blank=True)
    is_available = models.BooleanField(default=True)
    deliveries_completed = models.PositiveIntegerField(default=0)
    rating = models.FloatField(default=0.0)

    # Stored as named fields; GeoJSON [longitude, latitude] only at the API edge.
    current_latitude = models.FloatField(null=True, blank=True)
    current_longitude = models.FloatField(null=True, blank=True)
    location_updated_at = models.DateTimeField(null=True, blank=True)

    objects = UserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["name", "phone"]

    class Meta:
        indexes = [
            models.Index(fields=["role", "is_available"], name="account_user_role_avail_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.role})"

    @property
    def is_driver(self) -> bool:
        return self.role == self.Role.DRIVER

    @property
    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN

    @property
    def current_location(self):
        from deliveries.domain import GeoPoint

        if self.current_latitude is None or self.current_longitude is None:
            return None
        return GeoPoint(latitude=self.current_latitude, longitude=self.current_longitude)
