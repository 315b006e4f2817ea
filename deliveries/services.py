from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from notifications.models import DeliveryNotification
from notifications.services import WhatsAppNotifier

from .domain import Address, GeoPoint, PackageDetails
from .exceptions import (
    DeletionNotAllowed,
    DeliveryValidationError,
    DriverUnavailable,
    DuplicateIdentifier,
    InvalidTransition,
    NotAssignable,
    TransitionConflict,
)
from .models import Delivery, DeliveryStatus, ProofOfDelivery, TimelineEntry
from .pricing import PricingPolicy, calculate_price
from .repositories import DeliveryRepository
from .tracking import generate_tracking_code
from .transitions import INITIAL_STATUS, can_delete, can_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryInput:
    customer: Any
    pickup_address: Mapping[str, Any]
    delivery_address: Mapping[str, Any]
    package_details: Mapping[str, Any]
    customer_name: str = ""
    customer_phone: str = ""
    priority: str = Delivery.Priority.MEDIUM
    special_instructions: str = ""
    estimated_pickup_time: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None


@dataclass(frozen=True)
class ProofInput:
    received_by: str
    photo: Any = None
    signature: str = ""
    notes: str = ""
    location: Optional[GeoPoint] = None


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return timezone.localtime(value).strftime("%b %d, %Y %H:%M")


class DeliveryLifecycleManager:
    """The only code path that changes a delivery's status, timeline or derived times.

    Callers are trusted: role and ownership checks happen in the request layer.
    """

    max_create_attempts = 3

    def __init__(
        self,
        repository: DeliveryRepository,
        notifier: WhatsAppNotifier,
        pricing_policy: Optional[PricingPolicy] = None,
        clock: Callable[[], datetime] = timezone.now,
        code_generator: Callable[[], str] = generate_tracking_code,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.pricing_policy = pricing_policy or PricingPolicy()
        self.clock = clock
        self.code_generator = code_generator

    # -- creation -------------------------------------------------------

    def create(self, data: DeliveryInput) -> Delivery:
        if data.customer is None:
            raise DeliveryValidationError("customer")
        pickup = Address.from_dict(data.pickup_address, "pickup_address")
        destination = Address.from_dict(data.delivery_address, "delivery_address")
        package = PackageDetails.from_dict(data.package_details, "package_details")

        priority = data.priority or Delivery.Priority.MEDIUM
        if priority not in Delivery.Priority.values:
            raise DeliveryValidationError("priority", f"priority must be one of {', '.join(Delivery.Priority.values)}")

        customer_name = data.customer_name or getattr(data.customer, "name", "")
        customer_phone = data.customer_phone or getattr(data.customer, "phone", "")
        if not customer_name:
            raise DeliveryValidationError("customer_name")
        if not customer_phone:
            raise DeliveryValidationError("customer_phone")

        price = calculate_price(package, pickup, destination, priority=priority, policy=self.pricing_policy)

        for attempt in range(1, self.max_create_attempts + 1):
            now = self.clock()
            delivery = Delivery(
                tracking_code=self.code_generator(),
                customer=data.customer,
                customer_name=customer_name,
                customer_phone=customer_phone,
                pickup_address=pickup.to_dict(),
                delivery_address=destination.to_dict(),
                package_details=package.to_dict(),
                status=INITIAL_STATUS,
                priority=priority,
                price=price,
                special_instructions=data.special_instructions or "",
                estimated_pickup_time=data.estimated_pickup_time,
                estimated_delivery_time=data.estimated_delivery_time,
            )
            entry = TimelineEntry(status=INITIAL_STATUS, timestamp=now, note="Delivery created")
            try:
                self.repository.insert(delivery, entry)
                break
            except DuplicateIdentifier as exc:
                logger.warning(
                    "Tracking code collision code=%s attempt=%s/%s",
                    exc.tracking_code,
                    attempt,
                    self.max_create_attempts,
                )
                if attempt == self.max_create_attempts:
                    raise

        logger.info("Delivery created id=%s tracking=%s price=%s", delivery.pk, delivery.tracking_code, price)
        self._notify_customer(delivery, INITIAL_STATUS, {})
        return delivery

    # -- transitions ----------------------------------------------------

    def transition(
        self,
        delivery: Delivery,
        target: str,
        location: Optional[GeoPoint] = None,
        note: str = "",
        proof: Optional[ProofInput] = None,
    ) -> Delivery:
        if proof is not None and target != DeliveryStatus.DELIVERED:
            raise DeliveryValidationError("proof", "Proof of delivery can only accompany the delivered status")

        with transaction.atomic():
            current = self.repository.lock(delivery.pk)
            now = self.clock()
            changes: Dict[str, Any] = {}
            if target == DeliveryStatus.PICKED_UP and current.actual_pickup_time is None:
                changes["actual_pickup_time"] = now
            if target == DeliveryStatus.DELIVERED and current.actual_delivery_time is None:
                changes["actual_delivery_time"] = now

            self._apply(current, target, now, changes, location=location, note=note)

            if proof is not None:
                self.repository.attach_proof(
                    current,
                    ProofOfDelivery(
                        photo=proof.photo or "",
                        signature=proof.signature or "",
                        received_by=proof.received_by or "",
                        notes=proof.notes or "",
                        latitude=proof.location.latitude if proof.location else None,
                        longitude=proof.location.longitude if proof.location else None,
                        timestamp=now,
                    ),
                )

            if target == DeliveryStatus.DELIVERED and current.driver_id:
                self.repository.increment_completed_deliveries(current.driver_id)

        self._notify_customer(current, target, self._status_details(current, target, note, proof))
        return current

    def assign(self, delivery: Delivery, driver_id) -> Delivery:
        with transaction.atomic():
            current = self.repository.lock(delivery.pk)
            if current.status != DeliveryStatus.PENDING:
                raise NotAssignable(current.status)

            driver = self.repository.get_driver(driver_id)
            if not driver.is_available or not driver.is_active:
                raise DriverUnavailable()

            now = self.clock()
            changes: Dict[str, Any] = {"driver": driver}
            if current.assigned_at is None:
                changes["assigned_at"] = now
            self._apply(current, DeliveryStatus.ASSIGNED, now, changes, note=f"Assigned to {driver.name}")

        self._notify_customer(
            current,
            DeliveryStatus.ASSIGNED,
            {
                "driver_name": driver.name,
                "driver_phone": driver.phone,
                "vehicle_type": driver.get_vehicle_type_display() or "N/A",
            },
        )
        self._notify_driver(current, driver)
        return current

    def delete(self, delivery: Delivery) -> None:
        with transaction.atomic():
            current = self.repository.lock(delivery.pk)
            if not can_delete(current.status):
                raise DeletionNotAllowed(current.status)
            self.repository.delete(current)
        logger.info("Delivery deleted id=%s tracking=%s", delivery.pk, current.tracking_code)

    def _apply(self, current: Delivery, target, now, changes, location=None, note="") -> None:
        previous = current.status
        if not can_transition(previous, target):
            raise InvalidTransition(previous, target)

        changes = {"status": DeliveryStatus(target), **changes}
        if not self.repository.compare_and_set(current, previous, changes):
            raise TransitionConflict(previous, target)
        for field, value in changes.items():
            setattr(current, field, value)

        self.repository.append_timeline(
            current,
            TimelineEntry(
                status=current.status,
                timestamp=now,
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
                note=note or "",
            ),
        )
        logger.info("Delivery %s status %s -> %s", current.tracking_code, previous, current.status)

    # -- notifications --------------------------------------------------

    def _status_details(self, delivery: Delivery, status, note: str, proof: Optional[ProofInput]) -> Dict[str, Any]:
        if status == DeliveryStatus.DELIVERED:
            return {
                "received_by": (proof.received_by if proof else "") or "Customer",
                "delivery_time": _format_time(delivery.actual_delivery_time),
            }
        if status == DeliveryStatus.FAILED:
            return {"reason": note or "Unable to deliver"}
        if status == DeliveryStatus.CANCELLED:
            return {"reason": note or "Customer request"}
        if delivery.driver_id:
            details = {"driver_name": delivery.driver.name, "driver_phone": delivery.driver.phone}
            if delivery.estimated_delivery_time:
                details["estimated_delivery"] = _format_time(delivery.estimated_delivery_time)
            return details
        return {}

    def _notify_customer(self, delivery: Delivery, status, details: Dict[str, Any]) -> None:
        # Never fail a committed lifecycle change because of messaging.
        try:
            result = self.notifier.notify_customer(delivery.customer_phone, delivery.tracking_code, str(status), details)
            if result.success:
                self.repository.record_notification(
                    delivery, DeliveryNotification.Kind.CUSTOMER_UPDATE, str(status), result
                )
        except Exception:
            logger.exception("Failed to send WhatsApp update for delivery=%s status=%s", delivery.pk, status)

    def _notify_driver(self, delivery: Delivery, driver) -> None:
        try:
            result = self.notifier.notify_driver(
                driver.phone,
                delivery.tracking_code,
                {
                    "pickup_address": delivery.pickup.one_line(),
                    "delivery_address": delivery.destination.one_line(),
                    "customer_name": delivery.customer_name,
                    "customer_phone": delivery.customer_phone,
                    "package_description": delivery.package.description,
                },
            )
            if result.success:
                self.repository.record_notification(
                    delivery, DeliveryNotification.Kind.DRIVER_ASSIGNMENT, str(delivery.status), result
                )
        except Exception:
            logger.exception("Failed to send driver assignment for delivery=%s driver=%s", delivery.pk, driver.pk)


def build_lifecycle_manager() -> DeliveryLifecycleManager:
    return DeliveryLifecycleManager(
        repository=DeliveryRepository(),
        notifier=WhatsAppNotifier.from_settings(),
        pricing_policy=PricingPolicy.from_settings(),
    )
