import shutil
import tempfile
from decimal import Decimal
from unittest.mock import Mock, patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import connection
from django.test import SimpleTestCase, TestCase, override_settings
from django.test.utils import CaptureQueriesContext
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from account.models import User
from notifications.models import DeliveryNotification
from notifications.services import MessageResult, WhatsAppNotifier

from .domain import MAX_WEIGHT_KG, Address, GeoPoint, PackageDetails
from .exceptions import (
    DeletionNotAllowed,
    DeliveryNotFound,
    DeliveryValidationError,
    DriverUnavailable,
    DuplicateIdentifier,
    InvalidTransition,
    NotAssignable,
    TransitionConflict,
)
from .models import Delivery, DeliveryStatus, TimelineEntry
from .pricing import PRIORITY_MULTIPLIERS, PricingPolicy, calculate_price
from .repositories import DeliveryRepository
from .services import DeliveryInput, DeliveryLifecycleManager, ProofInput
from .tracking import generate_tracking_code, normalize_tracking_code, to_base36
from .transitions import TERMINAL_STATUSES, VALID_TRANSITIONS, can_delete, can_transition

SMALL_GIF = (
    b"\x47\x49\x46\x38\x39\x61\x01\x00\x01\x00\x00\x00\x00\x21\xf9\x04"
    b"\x01\x0a\x00\x01\x00\x2c\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02"
    b"\x02\x4c\x01\x00\x3b"
)

HAPPY_PATH = [
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.OUT_FOR_DELIVERY,
    DeliveryStatus.DELIVERED,
]


def address_payload(city="Lagos", **extra):
    data = {"address": "12 Marina Road", "city": city, "state": "Lagos"}
    data.update(extra)
    return data


def package_payload(**extra):
    data = {"description": "Envelope with contracts", "weight": 5, "category": "documents"}
    data.update(extra)
    return data


def make_customer(email="customer@trk.test", phone="08030000001"):
    return User.objects.create_user(email=email, password="Pass123!", name="Ada Customer", phone=phone)


def make_driver(email="driver@trk.test", phone="08030000002", **extra):
    return User.objects.create_user(
        email=email,
        password="Pass123!",
        name="Bola Driver",
        phone=phone,
        role=User.Role.DRIVER,
        vehicle_type=User.VehicleType.BIKE,
        vehicle_number="LAG-123-XY",
        **extra,
    )


def make_admin(email="admin@trk.test", phone="08030000003"):
    return User.objects.create_user(
        email=email, password="Pass123!", name="Chi Admin", phone=phone, role=User.Role.ADMIN
    )


class TransitionTableTests(SimpleTestCase):
    def test_every_pair_matches_the_table(self):
        for current in DeliveryStatus:
            for target in DeliveryStatus:
                with self.subTest(current=current, target=target):
                    self.assertEqual(can_transition(current, target), target in VALID_TRANSITIONS[current])

    def test_same_status_is_never_allowed(self):
        for current in DeliveryStatus:
            self.assertFalse(can_transition(current, current))

    def test_terminal_states_have_no_exits(self):
        self.assertEqual(
            TERMINAL_STATUSES,
            {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED},
        )
        for current in TERMINAL_STATUSES:
            for target in DeliveryStatus:
                self.assertFalse(can_transition(current, target))

    def test_plain_strings_are_accepted(self):
        self.assertTrue(can_transition("pending", "assigned"))
        self.assertFalse(can_transition("pending", "delivered"))

    def test_unknown_values_are_denied_without_raising(self):
        for current, target in [("bogus", "assigned"), ("pending", "bogus"), (None, None), ([], {}), (3, "assigned")]:
            self.assertFalse(can_transition(current, target))

    def test_only_pending_and_cancelled_are_deletable(self):
        deletable = {s for s in DeliveryStatus if can_delete(s)}
        self.assertEqual(deletable, {DeliveryStatus.PENDING, DeliveryStatus.CANCELLED})


class TrackingCodeTests(SimpleTestCase):
    def test_codes_are_uppercase_and_distinct(self):
        codes = [generate_tracking_code() for _ in range(500)]
        self.assertEqual(len(set(codes)), len(codes))
        for code in codes:
            self.assertTrue(code.startswith("TRK"))
            self.assertEqual(code, code.upper())
            self.assertTrue(code.isalnum())

    def test_same_millisecond_codes_differ_by_random_suffix(self):
        first = generate_tracking_code(now_ms=1700000000000)
        second = generate_tracking_code(now_ms=1700000000000)
        self.assertEqual(first[:-4], second[:-4])
        self.assertEqual(first[3:-4], to_base36(1700000000000))

    def test_base36(self):
        self.assertEqual(to_base36(0), "0")
        self.assertEqual(to_base36(35), "Z")
        self.assertEqual(to_base36(36), "10")

    def test_normalize_tracking_code(self):
        self.assertEqual(normalize_tracking_code("  trkabc12 "), "TRKABC12")
        self.assertEqual(normalize_tracking_code(None), "")


class PricingTests(SimpleTestCase):
    def setUp(self):
        self.package = PackageDetails.from_dict(package_payload())

    def test_same_city_adds_weight_only(self):
        price = calculate_price(self.package, Address.from_dict(address_payload(), "p"), Address.from_dict(address_payload(), "d"))
        self.assertEqual(price, Decimal("1500"))

    def test_inter_city_surcharge(self):
        package = PackageDetails.from_dict(package_payload(weight=None))
        price = calculate_price(package, Address.from_dict(address_payload("Lagos"), "p"), Address.from_dict(address_payload("Abuja"), "d"))
        self.assertEqual(price, Decimal("3000"))

    def test_city_match_is_exact_by_default(self):
        package = PackageDetails.from_dict(package_payload(weight=None))
        pickup = Address.from_dict(address_payload("Lagos"), "p")
        destination = Address.from_dict(address_payload("lagos "), "d")
        self.assertEqual(calculate_price(package, pickup, destination), Decimal("3000"))
        policy = PricingPolicy(normalize_city_names=True)
        self.assertEqual(calculate_price(package, pickup, destination, policy=policy), Decimal("1000"))

    def test_priority_does_not_change_price_by_default(self):
        pickup = Address.from_dict(address_payload(), "p")
        for priority in PRIORITY_MULTIPLIERS:
            self.assertEqual(calculate_price(self.package, pickup, pickup, priority=priority), Decimal("1500"))

    def test_priority_multiplier_when_enabled(self):
        pickup = Address.from_dict(address_payload(), "p")
        policy = PricingPolicy(apply_priority_multiplier=True)
        self.assertEqual(calculate_price(self.package, pickup, pickup, priority="medium", policy=policy), Decimal("1800"))
        self.assertEqual(calculate_price(self.package, pickup, pickup, priority="urgent", policy=policy), Decimal("3000"))

    def test_rounds_half_up_to_whole_units(self):
        package = PackageDetails.from_dict(package_payload(weight=2.345))
        pickup = Address.from_dict(address_payload(), "p")
        self.assertEqual(calculate_price(package, pickup, pickup), Decimal("1235"))

    def test_deterministic(self):
        pickup = Address.from_dict(address_payload("Lagos"), "p")
        destination = Address.from_dict(address_payload("Ibadan"), "d")
        prices = {calculate_price(self.package, pickup, destination) for _ in range(20)}
        self.assertEqual(prices, {Decimal("3500")})


class DomainTests(SimpleTestCase):
    def test_geojson_keeps_longitude_first(self):
        point = GeoPoint(latitude=6.5244, longitude=3.3792)
        self.assertEqual(point.to_geojson(), {"type": "Point", "coordinates": [3.3792, 6.5244]})
        self.assertEqual(GeoPoint.from_geojson(point.to_geojson()), point)

    def test_address_requires_city(self):
        with self.assertRaises(DeliveryValidationError) as ctx:
            Address.from_dict({"address": "1 Road", "state": "Lagos"}, "pickup_address")
        self.assertEqual(ctx.exception.field, "pickup_address.city")
        self.assertEqual(ctx.exception.code, "validation_error")

    def test_package_rejects_negative_weight(self):
        with self.assertRaises(DeliveryValidationError) as ctx:
            PackageDetails.from_dict(package_payload(weight=-1))
        self.assertEqual(ctx.exception.field, "package_details.weight")

    def test_package_rejects_oversized_numbers(self):
        cases = [
            (package_payload(weight=1e30), "package_details.weight"),
            (package_payload(value=1e30), "package_details.value"),
            (package_payload(dimensions={"length": 1e12}), "package_details.dimensions.length"),
        ]
        for payload, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(DeliveryValidationError) as ctx:
                    PackageDetails.from_dict(payload)
                self.assertEqual(ctx.exception.field, field)

    def test_package_rejects_non_finite_numbers(self):
        for weight in (float("inf"), float("nan"), "Infinity"):
            with self.subTest(weight=weight):
                with self.assertRaises(DeliveryValidationError):
                    PackageDetails.from_dict(package_payload(weight=weight))

    def test_heaviest_package_still_fits_price_column(self):
        package = PackageDetails.from_dict(package_payload(weight=MAX_WEIGHT_KG))
        pickup = Address.from_dict(address_payload("Lagos"), "p")
        destination = Address.from_dict(address_payload("Abuja"), "d")
        policy = PricingPolicy(apply_priority_multiplier=True)
        price = calculate_price(package, pickup, destination, priority="urgent", policy=policy)
        self.assertLess(price, Decimal("1e10"))

    def test_malformed_location_is_a_validation_error(self):
        for location in ({"coordinates": [None, 3]}, {"latitude": None, "longitude": 3}, {"coordinates": "3,6"}):
            with self.subTest(location=location):
                with self.assertRaises(DeliveryValidationError) as ctx:
                    Address.from_dict(address_payload(location=location), "pickup_address")
                self.assertEqual(ctx.exception.field, "pickup_address.location")


class LifecycleTestMixin:
    def setUp(self):
        self.customer = make_customer()
        self.driver = make_driver()
        self.notifier = Mock(spec=WhatsAppNotifier)
        self.notifier.notify_customer.return_value = MessageResult(success=False, skipped=True)
        self.notifier.notify_driver.return_value = MessageResult(success=False, skipped=True)
        self.manager = DeliveryLifecycleManager(repository=DeliveryRepository(), notifier=self.notifier)

    def create_delivery(self, **overrides):
        data = {
            "customer": self.customer,
            "pickup_address": address_payload("Lagos"),
            "delivery_address": address_payload("Lagos"),
            "package_details": package_payload(),
        }
        data.update(overrides)
        return self.manager.create(DeliveryInput(**data))

    def statuses(self, delivery):
        return list(TimelineEntry.objects.filter(delivery=delivery).values_list("status", flat=True))

    def assert_ledger_consistent(self, delivery):
        delivery.refresh_from_db()
        entries = list(delivery.timeline.all())
        self.assertEqual(entries[0].status, DeliveryStatus.PENDING)
        self.assertEqual(entries[0].note, "Delivery created")
        self.assertEqual(entries[-1].status, delivery.status)
        self.assertEqual([e.sequence for e in entries], list(range(1, len(entries) + 1)))


class DeliveryCreateTests(LifecycleTestMixin, TestCase):
    def test_create_starts_pending_with_one_entry(self):
        delivery = self.create_delivery()
        self.assertEqual(delivery.status, DeliveryStatus.PENDING)
        self.assertEqual(self.statuses(delivery), ["pending"])
        self.assertEqual(delivery.price, Decimal("1500"))
        self.assertEqual(delivery.customer_name, "Ada Customer")
        self.assertEqual(delivery.customer_phone, "08030000001")
        self.assertEqual(delivery.priority, "medium")
        self.assertIsNone(delivery.driver_id)
        self.assert_ledger_consistent(delivery)
        self.notifier.notify_customer.assert_called_once_with(
            "08030000001", delivery.tracking_code, "pending", {}
        )

    def test_inter_city_delivery_is_priced_with_surcharge(self):
        delivery = self.create_delivery(
            delivery_address=address_payload("Abuja"), package_details=package_payload(weight=None)
        )
        self.assertEqual(delivery.price, Decimal("3000"))

    def test_explicit_contact_overrides_profile(self):
        delivery = self.create_delivery(customer_name="Receiver", customer_phone="08099999999")
        self.assertEqual(delivery.customer_name, "Receiver")
        self.assertEqual(delivery.customer_phone, "08099999999")

    def test_missing_fields_raise_validation_error(self):
        cases = [
            ({"pickup_address": {}}, "pickup_address"),
            ({"delivery_address": address_payload(state="")}, "delivery_address.state"),
            ({"package_details": {"weight": 2}}, "package_details.description"),
            ({"priority": "asap"}, "priority"),
        ]
        for overrides, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(DeliveryValidationError) as ctx:
                    self.create_delivery(**overrides)
                self.assertEqual(ctx.exception.field, field)
        self.assertEqual(Delivery.objects.count(), 0)

    def test_unpriceable_or_malformed_input_raises_validation_error(self):
        cases = [
            ({"package_details": package_payload(weight=1e30)}, "package_details.weight"),
            ({"pickup_address": address_payload(location={"coordinates": [None, 3]})}, "pickup_address.location"),
        ]
        for overrides, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(DeliveryValidationError) as ctx:
                    self.create_delivery(**overrides)
                self.assertEqual(ctx.exception.field, field)
        self.assertEqual(Delivery.objects.count(), 0)

    def test_location_is_stored_as_geojson(self):
        delivery = self.create_delivery(
            pickup_address=address_payload(location={"latitude": 6.45, "longitude": 3.39})
        )
        delivery.refresh_from_db()
        self.assertEqual(delivery.pickup_address["location"], {"type": "Point", "coordinates": [3.39, 6.45]})
        self.assertEqual(delivery.pickup.location, GeoPoint(latitude=6.45, longitude=3.39))

    def test_tracking_codes_are_unique_and_uppercase(self):
        codes = [self.create_delivery().tracking_code for _ in range(25)]
        self.assertEqual(len(set(codes)), 25)
        self.assertTrue(all(code == code.upper() for code in codes))

    def test_tracking_code_is_uppercased_on_save(self):
        self.manager.code_generator = lambda: "trklower01"
        delivery = self.create_delivery()
        delivery.refresh_from_db()
        self.assertEqual(delivery.tracking_code, "TRKLOWER01")

    def test_collision_retries_with_new_code(self):
        self.manager.code_generator = lambda: "TRKTAKEN01"
        self.create_delivery()

        codes = iter(["TRKTAKEN01", "TRKFRESH01"])
        self.manager.code_generator = lambda: next(codes)
        delivery = self.create_delivery()
        self.assertEqual(delivery.tracking_code, "TRKFRESH01")
        self.assertEqual(Delivery.objects.count(), 2)
        self.assertEqual(TimelineEntry.objects.count(), 2)

    def test_collision_surfaces_after_max_attempts(self):
        self.manager.code_generator = lambda: "TRKTAKEN01"
        self.create_delivery()
        with self.assertRaises(DuplicateIdentifier) as ctx:
            self.create_delivery()
        self.assertEqual(ctx.exception.code, "duplicate_identifier")
        self.assertEqual(Delivery.objects.count(), 1)

    def test_notification_failure_does_not_fail_create(self):
        self.notifier.notify_customer.side_effect = RuntimeError("provider down")
        delivery = self.create_delivery()
        self.assertTrue(Delivery.objects.filter(pk=delivery.pk).exists())


class DeliveryTransitionTests(LifecycleTestMixin, TestCase):
    def test_transition_succeeds_iff_edge_exists(self):
        for current in DeliveryStatus:
            for target in DeliveryStatus:
                with self.subTest(current=current, target=target):
                    delivery = self.create_delivery()
                    Delivery.objects.filter(pk=delivery.pk).update(status=current)
                    allowed = target in VALID_TRANSITIONS[current]
                    if allowed:
                        updated = self.manager.transition(delivery, target)
                        self.assertEqual(updated.status, target)
                    else:
                        with self.assertRaises(InvalidTransition):
                            self.manager.transition(delivery, target)
                        delivery.refresh_from_db()
                        self.assertEqual(delivery.status, current)

    def test_pending_to_delivered_is_rejected(self):
        delivery = self.create_delivery()
        with self.assertRaises(InvalidTransition) as ctx:
            self.manager.transition(delivery, DeliveryStatus.DELIVERED)
        self.assertEqual(str(ctx.exception), "Cannot change status from pending to delivered")
        self.assertEqual(ctx.exception.code, "invalid_transition")
        self.assertEqual(self.statuses(delivery), ["pending"])

    def test_reapplying_same_status_is_rejected(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        with self.assertRaises(InvalidTransition):
            self.manager.transition(delivery, DeliveryStatus.ASSIGNED)

    def test_full_happy_path(self):
        delivery = self.create_delivery()
        delivery = self.manager.assign(delivery, self.driver.pk)
        for target in HAPPY_PATH:
            delivery = self.manager.transition(delivery, target, note=f"now {target}")
            self.assert_ledger_consistent(delivery)

        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.DELIVERED)
        self.assertIsNotNone(delivery.actual_pickup_time)
        self.assertIsNotNone(delivery.actual_delivery_time)
        self.assertEqual(
            self.statuses(delivery),
            ["pending", "assigned", "picked_up", "in_transit", "out_for_delivery", "delivered"],
        )
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.deliveries_completed, 1)

    def test_pickup_time_is_set_once(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        delivery = self.manager.transition(delivery, DeliveryStatus.PICKED_UP)
        picked_up_at = delivery.actual_pickup_time
        self.assertIsNotNone(picked_up_at)
        self.assertIsNone(delivery.actual_delivery_time)

        delivery = self.manager.transition(delivery, DeliveryStatus.IN_TRANSIT)
        delivery = self.manager.transition(delivery, DeliveryStatus.FAILED, note="Recipient absent")
        delivery.refresh_from_db()
        self.assertEqual(delivery.actual_pickup_time, picked_up_at)
        self.assertIsNone(delivery.actual_delivery_time)
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.deliveries_completed, 0)

    def test_terminal_delivery_rejects_every_target(self):
        delivery = self.manager.transition(self.create_delivery(), DeliveryStatus.CANCELLED)
        for target in DeliveryStatus:
            with self.assertRaises(InvalidTransition):
                self.manager.transition(delivery, target)
        self.assertEqual(self.statuses(delivery), ["pending", "cancelled"])

    def test_location_and_note_are_recorded(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        point = GeoPoint(latitude=6.6, longitude=3.35)
        delivery = self.manager.transition(delivery, DeliveryStatus.PICKED_UP, location=point, note="At the gate")
        entry = delivery.timeline.last()
        self.assertEqual(entry.location, point)
        self.assertEqual(entry.note, "At the gate")

    def test_lost_compare_and_set_raises_conflict(self):
        delivery = self.create_delivery()
        with patch.object(DeliveryRepository, "compare_and_set", return_value=False):
            with self.assertRaises(TransitionConflict):
                self.manager.transition(delivery, DeliveryStatus.CANCELLED)
        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.PENDING)
        self.assertEqual(self.statuses(delivery), ["pending"])

    def test_stale_instance_cannot_clobber_newer_state(self):
        delivery = self.create_delivery()
        stale = Delivery.objects.get(pk=delivery.pk)
        self.manager.transition(delivery, DeliveryStatus.CANCELLED)
        with self.assertRaises(InvalidTransition):
            self.manager.transition(stale, DeliveryStatus.ASSIGNED)
        self.assertEqual(self.statuses(delivery), ["pending", "cancelled"])

    def test_notification_failure_does_not_roll_back(self):
        delivery = self.create_delivery()
        self.notifier.notify_customer.side_effect = RuntimeError("provider down")
        updated = self.manager.transition(delivery, DeliveryStatus.CANCELLED)
        self.assertEqual(updated.status, DeliveryStatus.CANCELLED)
        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.CANCELLED)

    def test_customer_notification_details(self):
        delivery = self.create_delivery()
        self.manager.transition(delivery, DeliveryStatus.CANCELLED)
        self.notifier.notify_customer.assert_called_with(
            delivery.customer_phone, delivery.tracking_code, "cancelled", {"reason": "Customer request"}
        )

    def test_successful_notifications_are_logged(self):
        self.notifier.notify_customer.return_value = MessageResult(
            success=True, recipient="whatsapp:+2348030000001", message_sid="SM123"
        )
        delivery = self.create_delivery()
        log = DeliveryNotification.objects.get(delivery=delivery)
        self.assertEqual(log.status, "pending")
        self.assertEqual(log.message_sid, "SM123")

    def test_proof_only_accompanies_delivered(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        with self.assertRaises(DeliveryValidationError):
            self.manager.transition(delivery, DeliveryStatus.PICKED_UP, proof=ProofInput(received_by="Ada"))

    def test_timeline_entries_cannot_be_edited(self):
        delivery = self.create_delivery()
        entry = delivery.timeline.first()
        entry.note = "rewritten"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()


class DeliveryAssignTests(LifecycleTestMixin, TestCase):
    def test_assign_sets_driver_and_timestamp(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.ASSIGNED)
        self.assertEqual(delivery.driver_id, self.driver.pk)
        self.assertIsNotNone(delivery.assigned_at)
        self.assertEqual(delivery.timeline.last().note, "Assigned to Bola Driver")
        self.assert_ledger_consistent(delivery)

        self.notifier.notify_driver.assert_called_once()
        phone, code, details = self.notifier.notify_driver.call_args[0]
        self.assertEqual(phone, self.driver.phone)
        self.assertEqual(code, delivery.tracking_code)
        self.assertEqual(details["pickup_address"], "12 Marina Road, Lagos")
        self.assertEqual(details["package_description"], "Envelope with contracts")

    def test_assign_outside_pending_is_rejected(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        other = make_driver(email="other@trk.test", phone="08030000009")
        with self.assertRaises(NotAssignable) as ctx:
            self.manager.assign(delivery, other.pk)
        self.assertEqual(ctx.exception.code, "not_assignable")
        delivery.refresh_from_db()
        self.assertEqual(delivery.driver_id, self.driver.pk)

    def test_unavailable_driver_is_rejected(self):
        busy = make_driver(email="busy@trk.test", phone="08030000010", is_available=False)
        delivery = self.create_delivery()
        with self.assertRaises(DriverUnavailable):
            self.manager.assign(delivery, busy.pk)
        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.PENDING)

    def test_non_driver_is_not_found(self):
        delivery = self.create_delivery()
        with self.assertRaisesMessage(DeliveryNotFound, "Driver not found"):
            self.manager.assign(delivery, self.customer.pk)


class DeliveryDeleteTests(LifecycleTestMixin, TestCase):
    def test_pending_and_cancelled_can_be_deleted(self):
        pending = self.create_delivery()
        cancelled = self.manager.transition(self.create_delivery(), DeliveryStatus.CANCELLED)
        self.manager.delete(pending)
        self.manager.delete(cancelled)
        self.assertEqual(Delivery.objects.count(), 0)
        self.assertEqual(TimelineEntry.objects.count(), 0)

    def test_active_delivery_cannot_be_deleted(self):
        delivery = self.manager.assign(self.create_delivery(), self.driver.pk)
        delivery = self.manager.transition(delivery, DeliveryStatus.PICKED_UP)
        delivery = self.manager.transition(delivery, DeliveryStatus.IN_TRANSIT)
        with self.assertRaises(DeletionNotAllowed):
            self.manager.delete(delivery)
        self.assertTrue(Delivery.objects.filter(pk=delivery.pk).exists())


@override_settings(TWILIO_ACCOUNT_SID="", TWILIO_AUTH_TOKEN="")
class DeliveryApiTests(APITestCase):
    def setUp(self):
        self.customer = make_customer()
        self.other_customer = make_customer(email="other.customer@trk.test", phone="08030000011")
        self.driver = make_driver()
        self.admin = make_admin()

        self.media_root = tempfile.mkdtemp()
        media_override = override_settings(MEDIA_ROOT=self.media_root)
        media_override.enable()
        self.addCleanup(media_override.disable)
        self.addCleanup(shutil.rmtree, self.media_root, ignore_errors=True)

    def as_user(self, user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def create_via_api(self, client=None, **overrides):
        payload = {
            "pickup_address": address_payload("Lagos"),
            "delivery_address": address_payload("Lagos"),
            "package_details": package_payload(),
            "special_instructions": "Call on arrival",
        }
        payload.update(overrides)
        response = (client or self.as_user(self.customer)).post("/api/deliveries/", payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return Delivery.objects.get(pk=response.data["data"]["id"])

    def move_to(self, delivery, *targets):
        client = self.as_user(self.admin)
        for target in targets:
            response = client.put(f"/api/deliveries/{delivery.pk}/status/", {"status": target}, format="json")
            self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)

    def assign(self, delivery):
        response = self.as_user(self.admin).put(
            f"/api/deliveries/{delivery.pk}/assign/", {"driver_id": str(self.driver.pk)}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        return response

    def test_customer_creates_delivery(self):
        response = self.as_user(self.customer).post(
            "/api/deliveries/",
            {
                "pickup_address": address_payload("Lagos"),
                "delivery_address": address_payload("Abuja"),
                "package_details": {"description": "Laptop", "category": "electronics"},
                "priority": "urgent",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        data = response.data["data"]
        self.assertEqual(data["status"], "pending")
        self.assertEqual(Decimal(data["price"]), Decimal("3000"))
        self.assertEqual(data["customer"]["email"], self.customer.email)
        self.assertEqual(data["customer_phone"], self.customer.phone)
        self.assertEqual(len(data["timeline"]), 1)
        self.assertEqual(data["timeline"][0]["note"], "Delivery created")

    def test_create_rejects_missing_fields(self):
        response = self.as_user(self.customer).post(
            "/api/deliveries/",
            {"pickup_address": {"address": "1 Road"}, "package_details": {}},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("delivery_address", response.data)
        self.assertIn("pickup_address", response.data)

    def test_create_rejects_oversized_weight(self):
        response = self.as_user(self.customer).post(
            "/api/deliveries/",
            {
                "pickup_address": address_payload("Lagos"),
                "delivery_address": address_payload("Abuja"),
                "package_details": package_payload(weight=1e30, value=1e30),
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("weight", response.data["package_details"])
        self.assertIn("value", response.data["package_details"])
        self.assertEqual(Delivery.objects.count(), 0)

    def test_driver_cannot_create_delivery(self):
        response = self.as_user(self.driver).post("/api/deliveries/", {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_public_tracking_hides_internal_fields(self):
        delivery = self.create_via_api()
        Delivery.objects.filter(pk=delivery.pk).update(internal_notes="fragile, VIP")
        DeliveryNotification.objects.create(delivery=delivery, status="pending", recipient="whatsapp:+234", message_sid="SM1")

        response = APIClient().get(f"/api/deliveries/track/{delivery.tracking_code.lower()}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["tracking_code"], delivery.tracking_code)
        self.assertNotIn("internal_notes", response.data)
        self.assertNotIn("whatsapp_notifications", response.data)
        self.assertEqual(str(response.data["customer"]), str(self.customer.pk))
        self.assertNotIn(self.customer.email, str(response.data))

        detail = self.as_user(self.admin).get(f"/api/deliveries/{delivery.pk}/")
        self.assertEqual(detail.data["customer"]["email"], self.customer.email)
        self.assertEqual(detail.data["internal_notes"], "fragile, VIP")
        self.assertEqual(len(detail.data["whatsapp_notifications"]), 1)

    def test_unknown_tracking_code_is_404(self):
        response = APIClient().get("/api/deliveries/track/TRKNOPE/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_found")

    def test_detail_is_scoped_to_owner(self):
        delivery = self.create_via_api()
        self.assertEqual(self.as_user(self.customer).get(f"/api/deliveries/{delivery.pk}/").status_code, 200)
        self.assertEqual(self.as_user(self.other_customer).get(f"/api/deliveries/{delivery.pk}/").status_code, 403)
        self.assertEqual(self.as_user(self.driver).get(f"/api/deliveries/{delivery.pk}/").status_code, 403)
        self.assign(delivery)
        self.assertEqual(self.as_user(self.driver).get(f"/api/deliveries/{delivery.pk}/").status_code, 200)

    def test_list_is_role_scoped_and_filtered(self):
        mine = self.create_via_api()
        self.create_via_api(client=self.as_user(self.other_customer))
        self.move_to(mine, "cancelled")

        own = self.as_user(self.customer).get("/api/deliveries/")
        self.assertEqual(own.status_code, status.HTTP_200_OK)
        self.assertEqual(own.data["total"], 1)

        everything = self.as_user(self.admin).get("/api/deliveries/")
        self.assertEqual(everything.data["total"], 2)

        cancelled = self.as_user(self.admin).get("/api/deliveries/", {"status": "cancelled"})
        self.assertEqual([d["id"] for d in cancelled.data["results"]], [str(mine.pk)])

        search = self.as_user(self.admin).get("/api/deliveries/", {"search": mine.tracking_code.lower()})
        self.assertEqual(search.data["total"], 1)

        driver_view = self.as_user(self.driver).get("/api/deliveries/")
        self.assertEqual(driver_view.data["total"], 0)

    def test_list_pagination(self):
        for _ in range(3):
            self.create_via_api()
        response = self.as_user(self.admin).get("/api/deliveries/", {"limit": 2, "page": 2})
        self.assertEqual(response.data["total"], 3)
        self.assertEqual(response.data["pages"], 2)
        self.assertEqual(response.data["page"], 2)
        self.assertEqual(response.data["count"], 1)

    def test_list_rejects_impossible_dates(self):
        self.create_via_api()
        admin = self.as_user(self.admin)
        for param, value in [("date_from", "2024-13-45"), ("date_to", "2024-02-30T10:00:00")]:
            with self.subTest(param=param):
                response = admin.get("/api/deliveries/", {param: value})
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertIn(param, response.data)

    def test_list_date_filters(self):
        self.create_via_api()
        admin = self.as_user(self.admin)
        self.assertEqual(admin.get("/api/deliveries/", {"date_from": "2000-01-01"}).data["total"], 1)
        self.assertEqual(admin.get("/api/deliveries/", {"date_to": "2000-01-01"}).data["total"], 0)

    def test_list_query_count_does_not_grow_with_results(self):
        delivered = self.create_via_api()
        self.assign(delivered)
        self.move_to(delivered, "picked_up", "in_transit", "out_for_delivery")
        upload = self.as_user(self.driver).post(
            f"/api/deliveries/{delivered.pk}/proof/",
            {
                "photo": SimpleUploadedFile("proof.gif", SMALL_GIF, content_type="image/gif"),
                "received_by": "Ngozi",
            },
            format="multipart",
        )
        self.assertEqual(upload.status_code, status.HTTP_200_OK, upload.data)

        admin = self.as_user(self.admin)
        with CaptureQueriesContext(connection) as single:
            response = admin.get("/api/deliveries/")
        self.assertEqual(response.data["results"][0]["proof_of_delivery"]["received_by"], "Ngozi")

        for _ in range(3):
            self.create_via_api()
        with CaptureQueriesContext(connection) as several:
            response = admin.get("/api/deliveries/")
        self.assertEqual(response.data["total"], 4)
        self.assertEqual(len(several), len(single))

    def test_assign_requires_admin_and_pending(self):
        delivery = self.create_via_api()
        forbidden = self.as_user(self.customer).put(
            f"/api/deliveries/{delivery.pk}/assign/", {"driver_id": str(self.driver.pk)}, format="json"
        )
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)

        response = self.assign(delivery)
        self.assertEqual(response.data["data"]["driver"]["vehicle_number"], "LAG-123-XY")

        again = self.as_user(self.admin).put(
            f"/api/deliveries/{delivery.pk}/assign/", {"driver_id": str(self.driver.pk)}, format="json"
        )
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(again.data["code"], "not_assignable")

    def test_invalid_transition_names_both_states(self):
        delivery = self.create_via_api()
        response = self.as_user(self.admin).put(
            f"/api/deliveries/{delivery.pk}/status/", {"status": "delivered"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertEqual(response.data["detail"], "Cannot change status from pending to delivered")

    def test_driver_updates_only_own_delivery(self):
        delivery = self.create_via_api()
        response = self.as_user(self.driver).put(
            f"/api/deliveries/{delivery.pk}/status/", {"status": "cancelled"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.assign(delivery)
        response = self.as_user(self.driver).put(
            f"/api/deliveries/{delivery.pk}/status/",
            {"status": "picked_up", "longitude": 3.38, "latitude": 6.52, "note": "Collected"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        last = response.data["data"]["timeline"][-1]
        self.assertEqual(last["status"], "picked_up")
        self.assertEqual(last["location"], {"type": "Point", "coordinates": [3.38, 6.52]})
        self.assertIsNotNone(response.data["data"]["actual_pickup_time"])

    def test_customer_cannot_update_status(self):
        delivery = self.create_via_api()
        response = self.as_user(self.customer).put(
            f"/api/deliveries/{delivery.pk}/status/", {"status": "cancelled"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_proof_upload_marks_delivered(self):
        delivery = self.create_via_api()
        self.assign(delivery)
        self.move_to(delivery, "picked_up", "in_transit", "out_for_delivery")

        response = self.as_user(self.driver).post(
            f"/api/deliveries/{delivery.pk}/proof/",
            {
                "photo": SimpleUploadedFile("proof.gif", SMALL_GIF, content_type="image/gif"),
                "received_by": "Ngozi",
                "longitude": "3.40",
                "latitude": "6.45",
            },
            format="multipart",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        data = response.data["data"]
        self.assertEqual(data["status"], "delivered")
        self.assertEqual(data["proof_of_delivery"]["received_by"], "Ngozi")
        self.assertEqual(data["timeline"][-1]["note"], "Delivered to Ngozi")
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.deliveries_completed, 1)

    def test_proof_upload_before_out_for_delivery_is_rejected(self):
        delivery = self.create_via_api()
        self.assign(delivery)
        response = self.as_user(self.driver).post(
            f"/api/deliveries/{delivery.pk}/proof/",
            {
                "photo": SimpleUploadedFile("proof.gif", SMALL_GIF, content_type="image/gif"),
                "received_by": "Ngozi",
            },
            format="multipart",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_transition")
        delivery.refresh_from_db()
        self.assertFalse(hasattr(delivery, "proof_of_delivery"))

    def test_delete_rules(self):
        pending = self.create_via_api()
        active = self.create_via_api()
        self.assign(active)
        self.move_to(active, "picked_up", "in_transit")

        admin = self.as_user(self.admin)
        rejected = admin.delete(f"/api/deliveries/{active.pk}/")
        self.assertEqual(rejected.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(rejected.data["code"], "deletion_not_allowed")
        self.assertTrue(Delivery.objects.filter(pk=active.pk).exists())

        self.assertEqual(self.as_user(self.customer).delete(f"/api/deliveries/{pending.pk}/").status_code, 403)
        self.assertEqual(admin.delete(f"/api/deliveries/{pending.pk}/").status_code, 200)
        self.assertFalse(Delivery.objects.filter(pk=pending.pk).exists())

    def test_stats_summary(self):
        delivered = self.create_via_api()
        self.create_via_api()
        self.assign(delivered)
        self.move_to(delivered, "picked_up", "in_transit", "out_for_delivery", "delivered")

        response = self.as_user(self.admin).get("/api/deliveries/stats/summary/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        breakdown = {row["status"]: row["count"] for row in response.data["status_breakdown"]}
        self.assertEqual(breakdown, {"delivered": 1, "pending": 1})
        self.assertEqual(Decimal(str(response.data["total_revenue"])), Decimal("1500"))

        driver_stats = self.as_user(self.driver).get("/api/deliveries/stats/summary/")
        self.assertEqual(driver_stats.data["status_breakdown"], [{"status": "delivered", "count": 1}])

        self.assertEqual(self.as_user(self.customer).get("/api/deliveries/stats/summary/").status_code, 403)
