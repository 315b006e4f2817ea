from unittest.mock import Mock, patch

import requests
from django.test import SimpleTestCase, override_settings

from .services import MessageResult, NotificationTemplates, WhatsAppNotifier, format_whatsapp_number


class FormatWhatsAppNumberTests(SimpleTestCase):
    def test_local_number_gets_country_code(self):
        self.assertEqual(format_whatsapp_number("08031234567"), "whatsapp:+2348031234567")

    def test_number_with_country_code_is_kept(self):
        self.assertEqual(format_whatsapp_number("+234 803 123 4567"), "whatsapp:+2348031234567")

    def test_other_country_code(self):
        self.assertEqual(format_whatsapp_number("0712345678", country_code="254"), "whatsapp:+254712345678")

    def test_empty_number(self):
        self.assertEqual(format_whatsapp_number(""), "")
        self.assertEqual(format_whatsapp_number(None), "")
        self.assertEqual(format_whatsapp_number("--"), "")


class NotificationTemplatesTests(SimpleTestCase):
    def test_each_status_mentions_tracking_code(self):
        for status in NotificationTemplates.STATUS_MESSAGES:
            message = NotificationTemplates.delivery_update("TRKABC123", status, {})
            self.assertIn("TRKABC123", message)

    def test_assigned_includes_driver(self):
        message = NotificationTemplates.delivery_update(
            "TRKABC123", "assigned", {"driver_name": "Bola", "driver_phone": "0803", "vehicle_type": "Bike"}
        )
        self.assertIn("Driver: Bola", message)
        self.assertIn("Vehicle: Bike", message)

    def test_missing_details_render_as_na(self):
        message = NotificationTemplates.delivery_update("TRKABC123", "picked_up")
        self.assertIn("Estimated Delivery: N/A", message)

    def test_cancelled_defaults_reason(self):
        message = NotificationTemplates.delivery_update("TRKABC123", "cancelled")
        self.assertIn("Reason: Customer request", message)

    def test_unknown_status_falls_back(self):
        message = NotificationTemplates.delivery_update("TRKABC123", "on_hold")
        self.assertTrue(message.startswith("Delivery Update: on_hold"))

    def test_driver_assignment(self):
        message = NotificationTemplates.driver_assignment(
            "TRKABC123", {"pickup_address": "1 Marina, Lagos", "customer_name": "Ada"}
        )
        self.assertIn("1 Marina, Lagos", message)
        self.assertIn("Customer: Ada", message)
        self.assertIn("Package: N/A", message)


class WhatsAppNotifierTests(SimpleTestCase):
    def setUp(self):
        self.notifier = WhatsAppNotifier(
            account_sid="AC123",
            auth_token="secret",
            from_number="+14155238886",
            api_base_url="https://twilio.test/2010-04-01/",
        )

    def _response(self, ok=True, status_code=201, payload=None):
        response = Mock()
        response.ok = ok
        response.status_code = status_code
        response.json.return_value = payload or {}
        response.text = ""
        return response

    @patch("notifications.services.requests.post")
    def test_send_message_success(self, mock_post):
        mock_post.return_value = self._response(payload={"sid": "SM42", "status": "queued"})

        result = self.notifier.send_message("08031234567", "hello")

        self.assertEqual(
            result,
            MessageResult(success=True, recipient="whatsapp:+2348031234567", message_sid="SM42", status="queued"),
        )
        mock_post.assert_called_once_with(
            "https://twilio.test/2010-04-01/Accounts/AC123/Messages.json",
            data={"From": "whatsapp:+14155238886", "To": "whatsapp:+2348031234567", "Body": "hello"},
            auth=("AC123", "secret"),
            timeout=20,
        )

    @patch("notifications.services.requests.post")
    def test_provider_error_is_reported_not_raised(self, mock_post):
        mock_post.return_value = self._response(ok=False, status_code=400, payload={"message": "Invalid To"})

        result = self.notifier.send_message("08031234567", "hello")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Invalid To")

    @patch("notifications.services.requests.post")
    def test_network_error_is_reported_not_raised(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("timed out")

        result = self.notifier.send_message("08031234567", "hello")

        self.assertFalse(result.success)
        self.assertFalse(result.skipped)
        self.assertIn("timed out", result.error)

    @patch("notifications.services.requests.post")
    def test_missing_credentials_skip_send(self, mock_post):
        notifier = WhatsAppNotifier(account_sid="", auth_token="", from_number="")

        result = notifier.send_message("08031234567", "hello")

        self.assertTrue(result.skipped)
        self.assertFalse(result.success)
        mock_post.assert_not_called()

    @patch("notifications.services.requests.post")
    def test_missing_phone_skips_send(self, mock_post):
        result = self.notifier.send_message("", "hello")

        self.assertTrue(result.skipped)
        mock_post.assert_not_called()

    @patch("notifications.services.requests.post")
    def test_notify_customer_renders_template(self, mock_post):
        mock_post.return_value = self._response(payload={"sid": "SM1", "status": "queued"})

        self.notifier.notify_customer("08031234567", "TRKABC123", "in_transit", {"estimated_delivery": "Oct 20"})

        body = mock_post.call_args.kwargs["data"]["Body"]
        self.assertIn("In Transit", body)
        self.assertIn("Estimated Arrival: Oct 20", body)

    @override_settings(
        TWILIO_ACCOUNT_SID="ACsettings",
        TWILIO_AUTH_TOKEN="token",
        TWILIO_WHATSAPP_NUMBER="whatsapp:+15550001111",
        WHATSAPP_DEFAULT_COUNTRY_CODE="254",
    )
    def test_from_settings(self):
        notifier = WhatsAppNotifier.from_settings()
        self.assertTrue(notifier.enabled)
        self.assertEqual(notifier.country_code, "254")
        self.assertEqual(notifier._sender(), "whatsapp:+15550001111")
