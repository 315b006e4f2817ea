import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageResult:
    success: bool
    recipient: str = ""
    message_sid: str = ""
    status: str = ""
    error: str = ""
    skipped: bool = False


def format_whatsapp_number(phone: str, country_code: str = "234") -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return ""
    if not digits.startswith(country_code):
        if digits.startswith("0"):
            digits = digits[1:]
        digits = f"{country_code}{digits}"
    return f"whatsapp:+{digits}"


class _Details(dict):
    def __missing__(self, key):
        return "N/A"


class NotificationTemplates:
    STATUS_MESSAGES = {
        "pending": (
            "*Delivery Created*\n\nYour package is being processed.\n\n"
            "Tracking: {tracking_code}\n\nWe'll notify you when a driver is assigned."
        ),
        "assigned": (
            "*Driver Assigned*\n\nDriver: {driver_name}\nPhone: {driver_phone}\nVehicle: {vehicle_type}\n\n"
            "Tracking: {tracking_code}\n\nYour package will be picked up soon."
        ),
        "picked_up": (
            "*Package Picked Up*\n\nYour package has been picked up by {driver_name}.\n\n"
            "Tracking: {tracking_code}\n\nEstimated Delivery: {estimated_delivery}"
        ),
        "in_transit": (
            "*In Transit*\n\nYour package is on its way!\n\n"
            "Tracking: {tracking_code}\n\nEstimated Arrival: {estimated_delivery}"
        ),
        "out_for_delivery": (
            "*Out for Delivery*\n\nYour package is nearby and will be delivered shortly.\n\n"
            "Driver: {driver_name}\nPhone: {driver_phone}\n\nTracking: {tracking_code}"
        ),
        "delivered": (
            "*Delivered Successfully*\n\nYour package has been delivered!\n\n"
            "Delivered to: {received_by}\nTime: {delivery_time}\n\n"
            "Tracking: {tracking_code}\n\nThank you for using our service!"
        ),
        "failed": (
            "*Delivery Failed*\n\nWe couldn't deliver your package.\n\nReason: {reason}\n\n"
            "Tracking: {tracking_code}\n\nPlease contact support."
        ),
        "cancelled": (
            "*Delivery Cancelled*\n\nYour delivery has been cancelled.\n\n"
            "Tracking: {tracking_code}\n\nReason: {reason}"
        ),
    }

    @classmethod
    def delivery_update(cls, tracking_code: str, status: str, details: Optional[Mapping[str, Any]] = None) -> str:
        values = _Details(details or {})
        values["tracking_code"] = tracking_code
        if status == "cancelled":
            values.setdefault("reason", "Customer request")
        template = cls.STATUS_MESSAGES.get(str(status))
        if template is None:
            return f"Delivery Update: {status}\n\nTracking: {tracking_code}"
        return template.format_map(values)

    @staticmethod
    def driver_assignment(tracking_code: str, details: Mapping[str, Any]) -> str:
        values = _Details(details)
        values["tracking_code"] = tracking_code
        return (
            "*New Delivery Assignment*\n\nTracking: {tracking_code}\n\n"
            "Pickup:\n{pickup_address}\n\nDeliver to:\n{delivery_address}\n\n"
            "Customer: {customer_name}\nPhone: {customer_phone}\n\n"
            "Package: {package_description}\n\nPlease accept or reject this delivery in the app."
        ).format_map(values)


class WhatsAppNotifier:
    """Sends WhatsApp messages through Twilio's Messages REST endpoint."""

    def __init__(
        self,
        account_sid: str = "",
        auth_token: str = "",
        from_number: str = "",
        api_base_url: str = "https://api.twilio.com/2010-04-01",
        country_code: str = "234",
        timeout: int = 20,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.api_base_url = api_base_url.rstrip("/")
        self.country_code = country_code
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "WhatsAppNotifier":
        return cls(
            account_sid=getattr(settings, "TWILIO_ACCOUNT_SID", ""),
            auth_token=getattr(settings, "TWILIO_AUTH_TOKEN", ""),
            from_number=getattr(settings, "TWILIO_WHATSAPP_NUMBER", ""),
            api_base_url=getattr(settings, "TWILIO_API_BASE_URL", "https://api.twilio.com/2010-04-01"),
            country_code=getattr(settings, "WHATSAPP_DEFAULT_COUNTRY_CODE", "234"),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _sender(self) -> str:
        if self.from_number.startswith("whatsapp:"):
            return self.from_number
        return f"whatsapp:{self.from_number}"

    def send_message(self, phone: str, body: str) -> MessageResult:
        to = format_whatsapp_number(phone, self.country_code)
        if not to:
            logger.warning("WhatsApp send skipped: no phone number")
            return MessageResult(success=False, error="Missing phone number", skipped=True)
        if not self.enabled:
            logger.info("Twilio credentials are not configured. WhatsApp sending is disabled.")
            return MessageResult(success=False, recipient=to, error="WhatsApp not configured", skipped=True)

        try:
            response = requests.post(
                f"{self.api_base_url}/Accounts/{self.account_sid}/Messages.json",
                data={"From": self._sender(), "To": to, "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("WhatsApp send failed to=%s: %s", to, exc)
            return MessageResult(success=False, recipient=to, error=str(exc))

        if not response.ok:
            try:
                details = response.json()
            except ValueError:
                details = {"text": response.text}
            logger.warning("WhatsApp send failed to=%s status=%s details=%s", to, response.status_code, details)
            return MessageResult(success=False, recipient=to, error=str(details.get("message") or details))

        data = response.json()
        logger.info("WhatsApp sent to=%s sid=%s", to, data.get("sid"))
        return MessageResult(
            success=True,
            recipient=to,
            message_sid=str(data.get("sid") or ""),
            status=str(data.get("status") or ""),
        )

    def notify_customer(
        self, phone: str, tracking_code: str, status: str, details: Optional[Dict[str, Any]] = None
    ) -> MessageResult:
        return self.send_message(phone, NotificationTemplates.delivery_update(tracking_code, status, details))

    def notify_driver(self, phone: str, tracking_code: str, details: Dict[str, Any]) -> MessageResult:
        return self.send_message(phone, NotificationTemplates.driver_assignment(tracking_code, details))
