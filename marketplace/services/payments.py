"""
Payment Intent Adapter
One interface over the Stripe SDK or an offline stand-in, chosen at startup
"""
import asyncio
import logging
import stripe
from sqlalchemy.exc import SQLAlchemyError
from marketplace.config import settings
from marketplace.errors import (
    ApiError,
    IntentCreationError,
    NotFoundError,
    PaymentDeclinedError,
    ReconciliationError,
    TransientNetworkError,
)
from marketplace.models import (
    ConfirmationResult,
    ConfirmedIntent,
    PaymentIntent,
    PaymentIntentStatus,
    ProviderError,
)
from marketplace.services.booking_service import BookingService
from marketplace.services.incidents import IncidentLog, new_reference_id

logger = logging.getLogger(__name__)

# Confirmation refused because the intent already left a confirmable state;
# only its current status tells whether the card was charged
UNEXPECTED_STATE_CODES = {"payment_intent_unexpected_state"}

# Statuses in which nothing was charged and the client secret is done with
SPENT_INTENT_STATUSES = {
    PaymentIntentStatus.CANCELED.value,
    PaymentIntentStatus.REQUIRES_PAYMENT_METHOD.value,
}


def intent_id_from_secret(client_secret: str) -> str:
    """pi_123_secret_abc -> pi_123"""
    return client_secret.split("_secret_")[0]


class PaymentProvider:
    """Confirms card payments against a client secret"""

    name = "base"

    async def confirm_card_payment(
        self, client_secret: str, payment_method_id: str, save_card: bool = False
    ) -> ConfirmationResult:
        raise NotImplementedError

    async def retrieve_intent(self, intent_id: str) -> ConfirmedIntent:
        """Current state of an intent as the provider sees it"""
        raise NotImplementedError


class StripePaymentProvider(PaymentProvider):
    """Provider backed by the Stripe API"""

    name = "stripe"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or settings.stripe_secret_key

    def _confirm(self, intent_id: str, payment_method_id: str, save_card: bool):
        params = {"payment_method": payment_method_id, "api_key": self.api_key}
        if save_card:
            params["setup_future_usage"] = "off_session"
        return stripe.PaymentIntent.confirm(intent_id, **params)

    def _retrieve(self, intent_id: str):
        return stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)

    @staticmethod
    def _as_confirmed(intent) -> ConfirmedIntent:
        payment_method = intent.payment_method
        if not isinstance(payment_method, str) and payment_method is not None:
            payment_method = payment_method.id
        return ConfirmedIntent(id=intent.id, status=intent.status, payment_method=payment_method)

    async def confirm_card_payment(
        self, client_secret: str, payment_method_id: str, save_card: bool = False
    ) -> ConfirmationResult:
        intent_id = intent_id_from_secret(client_secret)
        try:
            intent = await asyncio.to_thread(self._confirm, intent_id, payment_method_id, save_card)
        except stripe.CardError as e:
            logger.info("Card declined for %s: %s", intent_id, e.code)
            return ConfirmationResult(
                error=ProviderError(
                    message=e.user_message or "Your card was declined.",
                    code=e.code,
                    type="card_error",
                )
            )
        except stripe.InvalidRequestError as e:
            return ConfirmationResult(
                error=ProviderError(
                    message=e.user_message or "This payment can no longer be completed.",
                    code=e.code,
                    type="invalid_request_error",
                )
            )
        except stripe.APIConnectionError as e:
            logger.warning("Stripe unreachable: %s", e)
            raise TransientNetworkError() from e
        except stripe.StripeError as e:
            logger.error("Stripe error confirming %s: %s", intent_id, e)
            raise TransientNetworkError("The payment provider is unavailable. Please try again.") from e

        return ConfirmationResult(payment_intent=self._as_confirmed(intent))

    async def retrieve_intent(self, intent_id: str) -> ConfirmedIntent:
        try:
            intent = await asyncio.to_thread(self._retrieve, intent_id)
        except stripe.StripeError as e:
            logger.warning("Could not retrieve intent %s: %s", intent_id, e)
            raise TransientNetworkError("We couldn't check the state of your payment. Please try again.") from e
        return self._as_confirmed(intent)


class MockPaymentProvider(PaymentProvider):
    """Offline provider used when Stripe is not configured.

    Understands Stripe's test payment method names so declines can be
    exercised without network access, and remembers the intents it has
    confirmed the way Stripe does.
    """

    name = "mock"

    def __init__(self):
        self._intents: dict[str, ConfirmedIntent] = {}

    async def confirm_card_payment(
        self, client_secret: str, payment_method_id: str, save_card: bool = False
    ) -> ConfirmationResult:
        intent_id = intent_id_from_secret(client_secret)

        previous = self._intents.get(intent_id)
        if previous is not None and previous.status == PaymentIntentStatus.SUCCEEDED.value:
            return ConfirmationResult(
                error=ProviderError(
                    message="This PaymentIntent has already succeeded.",
                    code="payment_intent_unexpected_state",
                    type="invalid_request_error",
                )
            )

        if "Declined" in payment_method_id:
            return ConfirmationResult(
                error=ProviderError(message="Your card was declined.", code="card_declined", type="card_error")
            )
        if "InsufficientFunds" in payment_method_id:
            return ConfirmationResult(
                error=ProviderError(
                    message="Your card has insufficient funds.", code="card_declined", type="card_error"
                )
            )
        if "Authentication" in payment_method_id:
            status = PaymentIntentStatus.REQUIRES_ACTION.value
        else:
            status = PaymentIntentStatus.SUCCEEDED.value

        confirmed = ConfirmedIntent(id=intent_id, status=status, payment_method=payment_method_id)
        self._intents[intent_id] = confirmed
        return ConfirmationResult(payment_intent=confirmed)

    async def retrieve_intent(self, intent_id: str) -> ConfirmedIntent:
        return self._intents.get(intent_id) or ConfirmedIntent(
            id=intent_id, status=PaymentIntentStatus.REQUIRES_PAYMENT_METHOD.value
        )


class PaymentAdapter:
    """Intent creation, card confirmation and backend reconciliation"""

    def __init__(self, provider: PaymentProvider, booking_service: BookingService, incident_log: IncidentLog | None = None):
        self.provider = provider
        self.booking_service = booking_service
        self.incident_log = incident_log

    async def create_intent(self, booking_id, setup_future_usage: bool = False) -> PaymentIntent:
        """
        Create a payment intent for a booking.

        Raises:
            IntentCreationError: the backend refused to charge the booking
        """
        try:
            return await self.booking_service.create_payment_intent(
                booking_id, setup_future_usage="off_session" if setup_future_usage else None
            )
        except NotFoundError as e:
            raise IntentCreationError("This booking could not be found.") from e
        except ApiError as e:
            raise IntentCreationError(e.message) from e

    async def confirm_card_payment(
        self, client_secret: str, payment_method_id: str, save_card: bool = False
    ) -> ConfirmationResult:
        return await self.provider.confirm_card_payment(client_secret, payment_method_id, save_card)

    async def pay(self, intent: PaymentIntent, payment_method_id: str, save_card: bool = False) -> ConfirmedIntent:
        """
        Confirm the card payment, then report it to the backend.

        Returns:
            The provider's succeeded intent

        Raises:
            PaymentDeclinedError: the provider did not report "succeeded"
            TransientNetworkError: the provider could not be reached and the
                intent is not known to be charged
            ReconciliationError: the charge succeeded but the backend did not record it
        """
        confirmed = await self._confirm(intent, payment_method_id, save_card)

        # Charged with the provider; the backend must now mark the booking paid
        try:
            await self.booking_service.process_payment(
                confirmed.id, confirmed.payment_method or payment_method_id, save_card
            )
        except Exception as e:
            message = getattr(e, "message", None) or f"{type(e).__name__}: {e}"
            raise ReconciliationError(
                reference_id=self._record_incident(intent, confirmed, payment_method_id, message)
            ) from e

        logger.info("Payment %s recorded for booking %s", confirmed.id, intent.booking_id)
        return confirmed

    async def _confirm(self, intent: PaymentIntent, payment_method_id: str, save_card: bool) -> ConfirmedIntent:
        """Confirmed intent in status succeeded, or raise"""
        intent_id = intent_id_from_secret(intent.client_secret)
        try:
            result = await self.confirm_card_payment(intent.client_secret, payment_method_id, save_card)
        except TransientNetworkError as e:
            # The charge may have gone through before the connection dropped
            confirmed = await self.provider.retrieve_intent(intent_id)
            if confirmed.status != PaymentIntentStatus.SUCCEEDED.value:
                raise e
            logger.warning("Intent %s succeeded although its confirmation failed", intent_id)
            return confirmed

        if result.error is not None:
            if result.error.code not in UNEXPECTED_STATE_CODES:
                raise PaymentDeclinedError(result.error.message, code=result.error.code)
            confirmed = await self.provider.retrieve_intent(intent_id)
            if confirmed.status != PaymentIntentStatus.SUCCEEDED.value:
                raise PaymentDeclinedError(result.error.message, code=confirmed.status)
            logger.warning("Intent %s was already charged by an earlier attempt", intent_id)
            return confirmed

        confirmed = result.payment_intent
        if confirmed is None:
            raise PaymentDeclinedError("The payment provider did not return a result. Please try again.")
        if confirmed.status != PaymentIntentStatus.SUCCEEDED.value:
            logger.warning("Intent %s ended in status %s", confirmed.id, confirmed.status)
            raise PaymentDeclinedError(f"Payment processing failed. Status: {confirmed.status}", code=confirmed.status)
        return confirmed

    def _record_incident(self, intent: PaymentIntent, confirmed: ConfirmedIntent, payment_method_id: str, message: str) -> str:
        payment_method = confirmed.payment_method or payment_method_id
        if self.incident_log is not None:
            try:
                return self.incident_log.record(intent.booking_id, confirmed.id, payment_method, message)
            except SQLAlchemyError:
                logger.exception("Could not store payment incident for %s", confirmed.id)
        # Not stored; only findable in the logs
        reference_id = new_reference_id()
        logger.error("Unreconciled payment %s (reference %s): %s", confirmed.id, reference_id, message)
        return reference_id


def is_spent(error: PaymentDeclinedError) -> bool:
    """Whether the intent behind a failed attempt can no longer be confirmed"""
    return error.code in SPENT_INTENT_STATUSES


def _stripe_configured() -> bool:
    key = settings.stripe_secret_key
    return bool(key) and key.startswith("sk_") and "your" not in key


# Global provider, resolved once per process
_payment_provider = None


def get_payment_provider() -> PaymentProvider:
    """Get or create the payment provider selected by configuration"""
    global _payment_provider
    if _payment_provider is None:
        mode = settings.payment_provider.lower()
        if mode == "stripe" or (mode == "auto" and _stripe_configured()):
            _payment_provider = StripePaymentProvider()
        else:
            if mode == "auto":
                logger.warning("Stripe keys not configured - using mock payment provider")
            _payment_provider = MockPaymentProvider()
        logger.info("Payment provider: %s", _payment_provider.name)
    return _payment_provider
