from typing import Any, Dict

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F, Max
from django.utils import timezone

from notifications.models import DeliveryNotification

from .exceptions import DeliveryNotFound, DuplicateIdentifier
from .models import Delivery, ProofOfDelivery, TimelineEntry
from .tracking import normalize_tracking_code

User = get_user_model()


class DeliveryRepository:
    """Django ORM persistence for the lifecycle manager."""

    def get(self, pk) -> Delivery:
        delivery = Delivery.objects.select_related("customer", "driver", "proof_of_delivery").filter(pk=pk).first()
        if not delivery:
            raise DeliveryNotFound()
        return delivery

    def get_by_tracking_code(self, tracking_code: str) -> Delivery:
        code = normalize_tracking_code(tracking_code)
        delivery = None
        if code:
            delivery = (
                Delivery.objects.select_related("driver", "proof_of_delivery").filter(tracking_code=code).first()
            )
        if not delivery:
            raise DeliveryNotFound("Invalid tracking number")
        return delivery

    def lock(self, pk) -> Delivery:
        delivery = Delivery.objects.select_for_update().filter(pk=pk).first()
        if not delivery:
            raise DeliveryNotFound()
        return delivery

    def get_driver(self, driver_id):
        driver = User.objects.filter(pk=driver_id, role=User.Role.DRIVER).first()
        if not driver:
            raise DeliveryNotFound("Driver not found")
        return driver

    def insert(self, delivery: Delivery, first_entry: TimelineEntry) -> Delivery:
        try:
            with transaction.atomic():
                delivery.save(force_insert=True)
                first_entry.delivery = delivery
                first_entry.sequence = 1
                first_entry.save(force_insert=True)
        except IntegrityError as exc:
            if Delivery.objects.filter(tracking_code=delivery.tracking_code).exists():
                raise DuplicateIdentifier(delivery.tracking_code) from exc
            raise
        return delivery

    def compare_and_set(self, delivery: Delivery, expected_status: str, changes: Dict[str, Any]) -> bool:
        updated = Delivery.objects.filter(pk=delivery.pk, status=expected_status).update(
            updated_at=timezone.now(), **changes
        )
        return updated == 1

    def append_timeline(self, delivery: Delivery, entry: TimelineEntry) -> TimelineEntry:
        last = delivery.timeline.aggregate(last=Max("sequence"))["last"] or 0
        entry.delivery = delivery
        entry.sequence = last + 1
        entry.save(force_insert=True)
        return entry

    def attach_proof(self, delivery: Delivery, proof: ProofOfDelivery) -> ProofOfDelivery:
        proof.delivery = delivery
        proof.save()
        return proof

    def increment_completed_deliveries(self, driver_id) -> None:
        User.objects.filter(pk=driver_id).update(deliveries_completed=F("deliveries_completed") + 1)

    def record_notification(self, delivery: Delivery, kind: str, status: str, result) -> DeliveryNotification:
        return DeliveryNotification.objects.create(
            delivery=delivery,
            kind=kind,
            status=status,
            recipient=result.recipient,
            message_sid=result.message_sid,
        )

    def delete(self, delivery: Delivery) -> None:
        delivery.delete()
