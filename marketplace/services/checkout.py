"""
Checkout State Machine
Booking lookup -> payment intent -> card confirmation -> success or failure

    idle -> loading -> ready -> submitting -> succeeded
                 |               |     ^          |
                 v               v     |          v
               error           failed -+     redirect to success page

Every asynchronous result is applied only if the generation it started in
is still current; close() bumps the generation, so late responses after the
page is gone are dropped.
"""
import logging
from enum import Enum
from typing import Callable, Optional
from marketplace.config import settings
from marketplace.errors import (
    AuthRequiredError,
    IntentCreationError,
    MarketplaceError,
    NotFoundError,
    PaymentDeclinedError,
    ReconciliationError,
    ValidationError,
)
from marketplace.models import Booking, PaymentIntent, Session
from marketplace.services.booking_service import BookingService
from marketplace.services.payments import PaymentAdapter, is_spent
from marketplace.services.scheduler import SchedulerService

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"


class CheckoutState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERROR = "error"


class CheckoutStateMachine:
    """Checkout flow for one booking on one mounted page"""

    def __init__(
        self,
        booking_id,
        session: Optional[Session],
        booking_service: BookingService,
        payment_adapter: PaymentAdapter,
        scheduler: SchedulerService,
        redirect_delay: float | None = None,
        on_navigate: Callable[[str], None] | None = None,
    ):
        self.booking_id = booking_id
        self.session = session
        self.booking_service = booking_service
        self.payment_adapter = payment_adapter
        self.scheduler = scheduler
        self.redirect_delay = settings.checkout_redirect_delay if redirect_delay is None else redirect_delay
        self.on_navigate = on_navigate

        self.state = CheckoutState.IDLE
        self.booking: Booking | None = None
        self.intent: PaymentIntent | None = None
        self.error: MarketplaceError | None = None
        self.redirect_to: str | None = None

        self._generation = 0
        self._closed = False
        self._mounted = False
        self._locked = False
        self._intent_spent = False
        self._redirect_job: str | None = None

    @property
    def success_path(self) -> str:
        return f"/checkout/{self.booking_id}/success"

    @property
    def can_submit(self) -> bool:
        if self._locked or self._closed:
            return False
        return self.state in (CheckoutState.READY, CheckoutState.FAILED)

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _navigate(self, path: str):
        self.redirect_to = path
        if self.on_navigate:
            self.on_navigate(path)

    def _fail(self, state: CheckoutState, error: MarketplaceError):
        self.state = state
        self.error = error
        logger.info("Checkout %s -> %s (%s): %s", self.booking_id, state.value, error.kind, error.message)

    async def mount(self):
        """
        Load the booking and create its payment intent.

        Runs once per machine; later calls (re-renders) do nothing, so at
        most one intent is created per mount.
        """
        if self._mounted or self._closed:
            return
        self._mounted = True

        if self.session is None:
            self._navigate(LOGIN_PATH)
            return

        generation = self._generation
        self.state = CheckoutState.LOADING
        logger.info("Mounting checkout for booking %s", self.booking_id)

        try:
            booking = await self.booking_service.get_booking_by_id(self.booking_id)
            if not self._is_current(generation):
                return
            if not booking.is_chargeable:
                reason = "has already been paid" if booking.is_paid else f"is {booking.status.value}"
                raise IntentCreationError(f"This booking {reason} and cannot be paid.")

            intent = await self.payment_adapter.create_intent(booking.id)
            if not self._is_current(generation):
                return
        except AuthRequiredError:
            if self._is_current(generation):
                self.state = CheckoutState.IDLE
                self._navigate(LOGIN_PATH)
            return
        except NotFoundError:
            if self._is_current(generation):
                self._fail(CheckoutState.ERROR, NotFoundError("Booking not found."))
            return
        except MarketplaceError as e:
            if self._is_current(generation):
                self._fail(CheckoutState.ERROR, e)
            return
        except Exception:
            logger.exception("Unexpected failure mounting checkout for booking %s", self.booking_id)
            if self._is_current(generation):
                self._fail(CheckoutState.ERROR, MarketplaceError())
            return

        self.booking = booking
        self.intent = intent
        self.state = CheckoutState.READY

    async def submit(self, payment_method_id: str, save_card: bool = False):
        """
        Pay for the booking with a tokenized card.

        Ignored while a submission is in flight, before the page is ready,
        and after a charge that could not be recorded.

        Raises:
            ValidationError: no payment method given (card form incomplete)
        """
        if not self.can_submit:
            logger.debug("Ignoring submit for booking %s in state %s", self.booking_id, self.state.value)
            return
        if not payment_method_id or not payment_method_id.strip():
            raise ValidationError("Please complete your card details.")

        generation = self._generation
        self.state = CheckoutState.SUBMITTING
        self.error = None

        try:
            if self._intent_spent:
                # The previous client secret can't be confirmed again
                intent = await self.payment_adapter.create_intent(self.booking_id)
                if not self._is_current(generation):
                    return
                self.intent = intent
                self._intent_spent = False

            await self.payment_adapter.pay(self.intent, payment_method_id.strip(), save_card)
        except ReconciliationError as e:
            if self._is_current(generation):
                self._locked = True
                self._fail(CheckoutState.FAILED, e)
            return
        except PaymentDeclinedError as e:
            if self._is_current(generation):
                self._intent_spent = is_spent(e)
                self._fail(CheckoutState.FAILED, e)
            return
        except AuthRequiredError as e:
            # Only reachable before any charge: re-creating a spent intent
            if self._is_current(generation):
                self._fail(CheckoutState.FAILED, e)
                self._navigate(LOGIN_PATH)
            return
        except IntentCreationError as e:
            if self._is_current(generation):
                self._fail(CheckoutState.ERROR, e)
            return
        except MarketplaceError as e:
            if self._is_current(generation):
                self._fail(CheckoutState.FAILED, e)
            return
        except Exception:
            # Retry is safe: a charged intent is detected on the next confirmation
            logger.exception("Unexpected failure paying for booking %s", self.booking_id)
            if self._is_current(generation):
                self._fail(CheckoutState.FAILED, MarketplaceError())
            return

        if not self._is_current(generation):
            return

        self.state = CheckoutState.SUCCEEDED
        logger.info("Payment successful for booking %s", self.booking_id)
        self._redirect_job = self.scheduler.schedule_once(self.redirect_delay, self._redirect_after_success, generation)

    async def _redirect_after_success(self, generation: int):
        if not self._is_current(generation):
            return
        self._redirect_job = None
        self._navigate(self.success_path)

    def close(self):
        """Unmount: drop in-flight results and cancel the pending redirect"""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        if self._redirect_job is not None:
            self.scheduler.cancel(self._redirect_job)
            self._redirect_job = None
        logger.info("Unmounting checkout for booking %s", self.booking_id)

    def error_view(self) -> dict | None:
        if self.error is None:
            return None
        next_action = self.error.next_action
        # Load failures need a fresh mount, not an in-place retry
        if self.state == CheckoutState.ERROR and next_action == "retry":
            next_action = "reload"
        return {
            "kind": self.error.kind,
            "message": self.error.message,
            "next_action": next_action,
            "reference_id": getattr(self.error, "reference_id", None),
        }

    def snapshot(self) -> dict:
        """Serializable state for rendering the page"""
        show_secret = self.intent is not None and self.can_submit
        return {
            "booking_id": str(self.booking_id),
            "state": self.state.value,
            "booking": self.booking.model_dump(mode="json") if self.booking else None,
            "client_secret": self.intent.client_secret if show_secret else None,
            "error": self.error_view(),
            "can_submit": self.can_submit,
            "redirect_to": self.redirect_to,
        }
