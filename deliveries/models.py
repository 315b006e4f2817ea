import uuid
from django.conf import settings
from django.db import models
from django.utils import timezone

from .domain import Address, GeoPoint, PackageDetails


class DeliveryStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ASSIGNED = "assigned", "Assigned"
    PICKED_UP = "picked_up", "Picked Up"
    IN_TRANSIT = "in_transit", "In Transit"
    OUT_FOR_DELIVERY = "out_for_delivery", "Out for Delivery"
    DELIVERED = "delivered", "Delivered"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class Delivery(models.Model):
    Status = DeliveryStatus

    class Priority(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"
        URGENT = "urgent", "Urgent"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        REFUNDED = "refunded", "Refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tracking_code = models.CharField(max_length=32, unique=True, editable=False)

    customer = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="deliveries", on_delete=models.PROTECT)
    customer_name = models.CharField(max_length=100)
    customer_phone = models.CharField(max_length=20)

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="assigned_deliveries",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    assigned_at = models.DateTimeField(null=True, blank=True)

    # {address, city, state, zip_code, location: GeoJSON point | null}
    pickup_address = models.JSONField()
    delivery_address = models.JSONField()
    # {description, weight, dimensions, value, category}
    package_details = models.JSONField()

    status = models.CharField(max_length=30, choices=DeliveryStatus.choices, default=DeliveryStatus.PENDING)

    estimated_pickup_time = models.DateTimeField(null=True, blank=True)
    estimated_delivery_time = models.DateTimeField(null=True, blank=True)
    actual_pickup_time = models.DateTimeField(null=True, blank=True)
    actual_delivery_time = models.DateTimeField(null=True, blank=True)

    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    priority = models.CharField(max_length=20, choices=Priority.choices, default=Priority.MEDIUM)

    special_instructions = models.TextField(blank=True)
    internal_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "deliveries"
        indexes = [
            models.Index(fields=["status"], name="deliveries_status_idx"),
            models.Index(fields=["-created_at"], name="deliveries_created_idx"),
        ]

    def __str__(self):
        return f"{self.tracking_code} - {self.status}"

    def save(self, *args, **kwargs):
        if self.tracking_code:
            self.tracking_code = self.tracking_code.strip().upper()
        super().save(*args, **kwargs)

    @property
    def pickup(self) -> Address:
        return Address.from_dict(self.pickup_address, "pickup_address")

    @property
    def destination(self) -> Address:
        return Address.from_dict(self.delivery_address, "delivery_address")

    @property
    def package(self) -> PackageDetails:
        return PackageDetails.from_dict(self.package_details)

    @property
    def latest_entry(self):
        return self.timeline.order_by("-sequence").first()


class TimelineEntry(models.Model):
    """One status change. Entries are only ever inserted, never edited or removed."""

    delivery = models.ForeignKey(Delivery, related_name="timeline", on_delete=models.CASCADE)
    sequence = models.PositiveIntegerField()
    status = models.CharField(max_length=30, choices=DeliveryStatus.choices)
    timestamp = models.DateTimeField(default=timezone.now)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    note = models.CharField(max_length=500, blank=True)

    class Meta:
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["delivery", "sequence"], name="deliveries_timeline_unique_sequence"),
        ]
        verbose_name_plural = "timeline entries"

    def __str__(self):
        return f"{self.delivery_id} #{self.sequence} {self.status}"

    @property
    def location(self):
        return GeoPoint.from_fields(self.latitude, self.longitude)

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Timeline entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Timeline entries are append-only")


class ProofOfDelivery(models.Model):
    delivery = models.OneToOneField(Delivery, related_name="proof_of_delivery", on_delete=models.CASCADE)
    photo = models.ImageField(upload_to="deliveries/proof/%Y/%m/", blank=True)
    signature = models.TextField(blank=True)
    received_by = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name_plural = "proofs of delivery"

    def __str__(self):
        return f"Proof for {self.delivery_id}"

    @property
    def location(self):
        return GeoPoint.from_fields(self.latitude, self.longitude)
