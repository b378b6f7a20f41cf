"""
Push Notification Service
Best-effort OneSignal delivery of booking and payment updates.
Callers never await delivery; failures are logged and dropped.
"""

import logging
from typing import Optional

import httpx

from ..config import ONESIGNAL_APP_ID, ONESIGNAL_REST_API_KEY, ONESIGNAL_TIMEOUT_SECONDS
from ..shared.background import spawn

logger = logging.getLogger(__name__)

ONESIGNAL_API_URL = "https://onesignal.com/api/v1/notifications"

BOOKING_STATUS_MESSAGES = {
    "PendingPayment": ("Booking Created", "Your booking {ref} has been created and is pending payment."),
    "Created": ("Booking Confirmed", "Your booking {ref} has been confirmed and is ready for pickup."),
    "Picked": ("Parcel Picked Up", "Your parcel {ref} has been picked up and is on its way."),
    "Shipped": ("Parcel In Transit", "Your parcel {ref} is now in transit to the destination."),
    "Delivered": ("Parcel Delivered", "Your parcel {ref} has been delivered successfully!"),
    "Returned": ("Parcel Returned", "Your parcel {ref} has been returned."),
}

PAYMENT_STATUS_MESSAGES = {
    "paid": ("Payment Received", "Your payment for booking {ref} has been received successfully."),
    "pending": ("Payment Pending", "Your payment for booking {ref} is still pending. Please complete the payment."),
    "failed": ("Payment Failed", "Your payment for booking {ref} could not be completed."),
    "refunded": ("Payment Refunded", "Your payment for booking {ref} has been refunded."),
}


class OneSignalDispatcher:
    """Sends push notifications to users addressed by their external user id"""

    def __init__(
        self,
        app_id: Optional[str] = ONESIGNAL_APP_ID,
        rest_api_key: Optional[str] = ONESIGNAL_REST_API_KEY,
        timeout: float = ONESIGNAL_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self.rest_api_key = rest_api_key
        self.timeout = timeout
        self.transport = transport

        if not self.is_available():
            logger.warning("ONESIGNAL_APP_ID/ONESIGNAL_REST_API_KEY not set; push notifications are disabled")

    def is_available(self) -> bool:
        return bool(self.app_id and self.rest_api_key)

    def notify(self, user_id: str, title: str, body: str, data: Optional[dict] = None) -> None:
        """Schedule delivery and return immediately"""
        if not self.is_available():
            logger.debug(f"Skipping notification '{title}' for user {user_id}: OneSignal not configured")
            return
        spawn(self.send(user_id, title, body, data or {}), name=f"notify:{user_id}")

    async def send(self, user_id: str, title: str, body: str, data: dict) -> bool:
        message = {
            "app_id": self.app_id,
            "include_external_user_ids": [user_id],
            "headings": {"en": title or "Notification"},
            "contents": {"en": body or ""},
            "data": {**data, "title": title, "body": body},
            "priority": 10,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    ONESIGNAL_API_URL,
                    json=message,
                    headers={"Authorization": f"Basic {self.rest_api_key}"},
                )
            if response.status_code >= 400:
                logger.error(f"❌ OneSignal rejected notification for user {user_id}: HTTP {response.status_code}")
                return False

            errors = response.json().get("errors")
            if errors:
                logger.warning(f"⚠️ OneSignal reported errors for user {user_id}: {errors}")
                return False

            logger.info(f"📤 Notification '{title}' sent to user {user_id}")
            return True
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Failed to send notification to user {user_id}: {e}")
            return False


def notify_booking_status(dispatcher, booking, old_status: Optional[str], new_status: str) -> None:
    """Tell the booking owner about a status change"""
    message = BOOKING_STATUS_MESSAGES.get(new_status)
    if not message:
        logger.warning(f"⚠️ No notification message for status: {new_status}")
        return

    title, body = message
    try:
        dispatcher.notify(
            booking.user_id,
            title,
            body.format(ref=booking.tracking_number or booking.id),
            {
                "type": "booking_status_update",
                "bookingId": booking.id,
                "trackingNumber": booking.tracking_number,
                "oldStatus": old_status,
                "newStatus": new_status,
            },
        )
    except Exception as e:
        logger.error(f"❌ Error sending booking status notification for {booking.id}: {e}")


def notify_payment_status(dispatcher, booking, old_status: Optional[str], new_status: str) -> None:
    """Tell the booking owner about a payment status change"""
    message = PAYMENT_STATUS_MESSAGES.get(new_status)
    if not message:
        logger.warning(f"⚠️ No notification message for payment status: {new_status}")
        return

    title, body = message
    try:
        dispatcher.notify(
            booking.user_id,
            title,
            body.format(ref=booking.id),
            {
                "type": "payment_status_update",
                "bookingId": booking.id,
                "oldPaymentStatus": old_status,
                "newPaymentStatus": new_status,
            },
        )
    except Exception as e:
        logger.error(f"❌ Error sending payment notification for {booking.id}: {e}")


notification_dispatcher = OneSignalDispatcher()


def get_notification_dispatcher() -> OneSignalDispatcher:
    """Dependency injection for the notification dispatcher"""
    return notification_dispatcher
