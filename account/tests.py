from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient, APIRequestFactory, APITestCase

from account.models import User
from account.serializers import PasswordUpdateSerializer, RegisterSerializer


class UserModelTests(TestCase):
    def test_create_user_hashes_password(self):
        user = User.objects.create_user(
            email="user@example.com",
            password="Pass123!",
            name="Test User",
            phone="08011111111",
        )

        self.assertNotEqual(user.password, "Pass123!")
        self.assertTrue(user.check_password("Pass123!"))
        self.assertEqual(user.role, User.Role.CUSTOMER)

    def test_create_user_requires_email(self):
        with self.assertRaisesMessage(ValueError, "Users must have an email"):
            User.objects.create_user(email="", password="Pass123!", name="No Email", phone="08011111112")

    def test_create_superuser_is_admin(self):
        user = User.objects.create_superuser(
            email="root@example.com", password="Pass123!", name="Root", phone="08011111113"
        )
        self.assertTrue(user.is_admin)
        self.assertTrue(user.is_staff)

    def test_available_drivers(self):
        ready = User.objects.create_user(
            email="ready@example.com", password="Pass123!", name="Ready", phone="08011111114", role="driver"
        )
        User.objects.create_user(
            email="busy@example.com", password="Pass123!", name="Busy", phone="08011111115",
            role="driver", is_available=False,
        )
        User.objects.create_user(
            email="gone@example.com", password="Pass123!", name="Gone", phone="08011111116",
            role="driver", is_active=False,
        )
        self.assertEqual(list(User.objects.available_drivers()), [ready])

    def test_current_location_needs_both_coordinates(self):
        driver = User(current_latitude=6.5)
        self.assertIsNone(driver.current_location)
        driver.current_longitude = 3.4
        self.assertEqual(driver.current_location.to_geojson(), {"type": "Point", "coordinates": [3.4, 6.5]})


class RegisterSerializerTests(TestCase):
    def payload(self, **extra):
        data = {
            "name": "Ada",
            "email": "ada@example.com",
            "phone": "08022222222",
            "password": "Pass123!",
        }
        data.update(extra)
        return data

    def test_customer_registration_drops_vehicle_fields(self):
        serializer = RegisterSerializer(data=self.payload(vehicle_number="LAG-1"))
        self.assertTrue(serializer.is_valid(), serializer.errors)
        user = serializer.save()

        self.assertEqual(user.role, User.Role.CUSTOMER)
        self.assertEqual(user.vehicle_number, "")

    def test_driver_registration_keeps_vehicle_fields(self):
        serializer = RegisterSerializer(
            data=self.payload(role="driver", vehicle_type="van", vehicle_number="LAG-1")
        )
        self.assertTrue(serializer.is_valid(), serializer.errors)
        user = serializer.save()

        self.assertTrue(user.is_driver)
        self.assertEqual(user.vehicle_type, "van")

    def test_cannot_register_as_admin(self):
        serializer = RegisterSerializer(data=self.payload(role="admin"))
        self.assertFalse(serializer.is_valid())
        self.assertIn("role", serializer.errors)

    def test_duplicate_email_and_phone(self):
        User.objects.create_user(email="ADA@example.com", password="Pass123!", name="Ada", phone="08022222222")
        serializer = RegisterSerializer(data=self.payload())

        self.assertFalse(serializer.is_valid())
        self.assertEqual(serializer.errors["email"], ["Email already registered"])
        self.assertEqual(serializer.errors["phone"], ["Phone number already registered"])

    def test_exact_duplicate_email_uses_registration_message(self):
        User.objects.create_user(email="ada@example.com", password="Pass123!", name="Ada", phone="08022222299")
        serializer = RegisterSerializer(data=self.payload())

        self.assertFalse(serializer.is_valid())
        self.assertEqual(serializer.errors["email"], ["Email already registered"])
        self.assertNotIn("phone", serializer.errors)


class PasswordUpdateSerializerTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            email="pw@example.com", password="Pass123!", name="Pw", phone="08033333333"
        )
        request = APIRequestFactory().put("/api/auth/updatepassword/")
        request.user = self.user
        self.context = {"request": request}

    def test_wrong_current_password(self):
        serializer = PasswordUpdateSerializer(
            data={"current_password": "nope", "new_password": "Another456!"}, context=self.context
        )
        self.assertFalse(serializer.is_valid())
        self.assertEqual(serializer.errors["current_password"], ["Current password is incorrect"])

    def test_short_new_password(self):
        serializer = PasswordUpdateSerializer(
            data={"current_password": "Pass123!", "new_password": "abc"}, context=self.context
        )
        self.assertFalse(serializer.is_valid())
        self.assertIn("new_password", serializer.errors)


class AuthApiTests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(
            email="customer@example.com", password="Pass123!", name="Customer", phone="08044444444"
        )
        self.driver = User.objects.create_user(
            email="driver@example.com", password="Pass123!", name="Driver", phone="08044444445",
            role=User.Role.DRIVER, vehicle_type=User.VehicleType.BIKE,
        )

    def test_register_returns_tokens(self):
        response = self.client.post(
            "/api/auth/register/",
            {"name": "New", "email": "new@example.com", "phone": "08055555555", "password": "Pass123!"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)
        self.assertEqual(response.data["user"]["role"], "customer")

    def test_login(self):
        response = self.client.post(
            "/api/auth/login/", {"email": "customer@example.com", "password": "Pass123!"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["user"]["email"], "customer@example.com")

        access = response.data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        me = self.client.get("/api/auth/me/")
        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.data["id"], str(self.user.pk))

    def test_login_failures(self):
        missing = self.client.post("/api/auth/login/", {"email": "customer@example.com"}, format="json")
        self.assertEqual(missing.status_code, status.HTTP_400_BAD_REQUEST)

        wrong = self.client.post(
            "/api/auth/login/", {"email": "customer@example.com", "password": "bad"}, format="json"
        )
        self.assertEqual(wrong.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(wrong.data["detail"], "Invalid credentials")

        self.user.is_active = False
        self.user.save()
        inactive = self.client.post(
            "/api/auth/login/", {"email": "customer@example.com", "password": "Pass123!"}, format="json"
        )
        self.assertEqual(inactive.status_code, status.HTTP_403_FORBIDDEN)

    def test_me_requires_authentication(self):
        response = self.client.get("/api/auth/me/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_update_details_ignores_vehicle_for_customer(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.put(
            "/api/auth/updatedetails/", {"name": "Renamed", "vehicle_number": "LAG-9"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.user.refresh_from_db()
        self.assertEqual(self.user.name, "Renamed")
        self.assertEqual(self.user.vehicle_number, "")

    def test_update_details_rejects_taken_phone(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.put("/api/auth/updatedetails/", {"phone": self.driver.phone}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["phone"], ["Phone number already registered"])

        own = self.client.put("/api/auth/updatedetails/", {"phone": self.user.phone}, format="json")
        self.assertEqual(own.status_code, status.HTTP_200_OK, own.data)

    def test_update_password(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.put(
            "/api/auth/updatepassword/",
            {"current_password": "Pass123!", "new_password": "Another456!"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertIn("access", response.data)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("Another456!"))

    def test_driver_location(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.put("/api/auth/location/", {"longitude": 3.35, "latitude": 6.6}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["current_location"], {"type": "Point", "coordinates": [3.35, 6.6]})
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.current_latitude, 6.6)
        self.assertIsNotNone(self.driver.location_updated_at)

    def test_location_rejects_out_of_range(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.put("/api/auth/location/", {"longitude": 200, "latitude": 6.6}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customer_cannot_update_location(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.put("/api/auth/location/", {"longitude": 3.35, "latitude": 6.6}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_availability_toggle(self):
        self.client.force_authenticate(user=self.driver)
        first = self.client.put("/api/auth/availability/")
        self.assertFalse(first.data["is_available"])
        second = self.client.put("/api/auth/availability/")
        self.assertTrue(second.data["is_available"])


class UserAdminApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            email="admin@example.com", password="Pass123!", name="Admin", phone="08066666660", role="admin"
        )
        self.customer = User.objects.create_user(
            email="customer@example.com", password="Pass123!", name="Customer", phone="08066666661"
        )
        self.driver = User.objects.create_user(
            email="driver@example.com", password="Pass123!", name="Driver", phone="08066666662", role="driver"
        )
        self.client = APIClient()
        self.client.force_authenticate(user=self.admin)

    def test_non_admin_is_forbidden(self):
        client = APIClient()
        client.force_authenticate(user=self.customer)
        self.assertEqual(client.get("/api/users/").status_code, status.HTTP_403_FORBIDDEN)

    def test_list_filters_by_role(self):
        response = self.client.get("/api/users/", {"role": "driver"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["email"], "driver@example.com")

    def test_available_drivers(self):
        response = self.client.get("/api/users/drivers/available/")
        self.assertEqual([row["id"] for row in response.data], [str(self.driver.pk)])

    def test_deactivate_user(self):
        response = self.client.patch(f"/api/users/{self.driver.pk}/", {"is_active": False}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.driver.refresh_from_db()
        self.assertFalse(self.driver.is_active)

    def test_cannot_delete_self(self):
        response = self.client.delete(f"/api/users/{self.admin.pk}/")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(User.objects.filter(pk=self.admin.pk).exists())

    def test_delete_user(self):
        response = self.client.delete(f"/api/users/{self.customer.pk}/")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

    def test_stats(self):
        response = self.client.get("/api/users/stats/")
        self.assertEqual(response.data["total"], 3)
        self.assertEqual(response.data["by_role"], {"customer": 1, "driver": 1, "admin": 1})
        self.assertEqual(response.data["available_drivers"], 1)
