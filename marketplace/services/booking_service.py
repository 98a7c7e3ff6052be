"""
Booking API Service
Booking lookup, payment intent creation and payment processing
"""
import logging
from marketplace.models import Booking, PaymentIntent
from marketplace.services.api_client import ApiClient

logger = logging.getLogger(__name__)


class BookingService(ApiClient):
    """Service for booking and payment endpoints"""

    async def get_booking_by_id(self, booking_id) -> Booking:
        """
        Get booking details.

        Args:
            booking_id: Booking ID

        Returns:
            Booking with nested property summary and price breakdown
        """
        data = await self._request("GET", f"/bookings/{booking_id}")
        return self._parse(Booking, data)

    async def create_payment_intent(self, booking_id, setup_future_usage: str | None = None) -> PaymentIntent:
        """
        Create a payment intent for a booking.

        Args:
            booking_id: Booking ID
            setup_future_usage: "off_session" to save the card for later

        Returns:
            PaymentIntent carrying the provider client secret
        """
        body = {}
        if setup_future_usage:
            body["setup_future_usage"] = setup_future_usage

        data = await self._request("POST", f"/bookings/{booking_id}/payment-intent", json=body)
        intent = self._parse(PaymentIntent, data)
        if intent.booking_id is None:
            intent.booking_id = booking_id
        logger.info("Payment intent %s created for booking %s", intent.id, booking_id)
        return intent

    async def process_payment(self, payment_intent_id, payment_method_id: str | None, save_card: bool = False) -> dict:
        """
        Tell the backend a payment was confirmed so it marks the booking paid.

        Args:
            payment_intent_id: Provider payment intent ID
            payment_method_id: Provider payment method ID
            save_card: Whether to keep the card on file

        Returns:
            Backend acknowledgement
        """
        return await self._request(
            "POST",
            f"/payments/{payment_intent_id}/process",
            json={"payment_method_id": payment_method_id, "save_card": save_card},
        )
