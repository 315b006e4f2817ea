import uuid
from django.db import models
from django.utils import timezone


class DeliveryNotification(models.Model):
    """A WhatsApp update the provider accepted for a delivery."""

    class Kind(models.TextChoices):
        CUSTOMER_UPDATE = "customer_update", "Customer Update"
        DRIVER_ASSIGNMENT = "driver_assignment", "Driver Assignment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    delivery = models.ForeignKey("deliveries.Delivery", on_delete=models.CASCADE, related_name="notifications")
    kind = models.CharField(max_length=30, choices=Kind.choices, default=Kind.CUSTOMER_UPDATE)
    status = models.CharField(max_length=30)
    recipient = models.CharField(max_length=40)
    message_sid = models.CharField(max_length=64, blank=True)
    sent_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["sent_at"]
        indexes = [
            models.Index(fields=["delivery", "kind"], name="notif_delivery_kind_idx"),
        ]

    def __str__(self):
        return f"{self.kind} {self.status} -> {self.recipient}"
