import logging
from typing import Any, Optional
import httpx
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from marketplace.config import settings
from marketplace.errors import AuthRequiredError, MarketplaceError, NotFoundError
from marketplace.models import SenderType, Session, User
from marketplace.services.admin_service import AdminService
from marketplace.services.api_client import get_http_client
from marketplace.services.auth_service import AuthService
from marketplace.services.booking_service import BookingService
from marketplace.services.checkout import LOGIN_PATH, CheckoutStateMachine
from marketplace.services.document_service import DocumentService
from marketplace.services.feedback_thread import FeedbackThreadController
from marketplace.services.incidents import IncidentLog, get_incident_log
from marketplace.services.payments import PaymentAdapter, PaymentProvider, get_payment_provider
from marketplace.services.property_service import PropertyService
from marketplace.services.scheduler import SchedulerService, get_scheduler
from marketplace.services.view_registry import ViewRegistry, get_checkout_registry, get_feedback_registry

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_http() -> httpx.AsyncClient:
    return get_http_client()


def get_session(authorization: Optional[str] = Header(None)) -> Optional[Session]:
    """Bearer credentials of the caller, if any"""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization[7:].strip()
    return Session(access_token=token) if token else None


def require_session(session: Optional[Session] = Depends(get_session)) -> Session:
    if session is None:
        raise AuthRequiredError()
    return session


def get_booking_service(session: Optional[Session] = Depends(get_session), http=Depends(get_http)) -> BookingService:
    return BookingService(session, http)


def get_document_service(session: Session = Depends(require_session), http=Depends(get_http)) -> DocumentService:
    return DocumentService(session, http)


def get_admin_service(session: Session = Depends(require_session), http=Depends(get_http)) -> AdminService:
    return AdminService(session, http)


def get_property_service(session: Session = Depends(require_session), http=Depends(get_http)) -> PropertyService:
    return PropertyService(session, http)


async def get_current_user(session: Session = Depends(require_session), http=Depends(get_http)) -> User:
    return await AuthService(session, http).get_current_user()


def get_provider() -> PaymentProvider:
    return get_payment_provider()


def get_incidents() -> IncidentLog:
    return get_incident_log()


def get_payment_adapter(
    booking_service: BookingService = Depends(get_booking_service),
    provider: PaymentProvider = Depends(get_provider),
    incident_log: IncidentLog = Depends(get_incidents),
) -> PaymentAdapter:
    return PaymentAdapter(provider, booking_service, incident_log)


def get_scheduler_service() -> SchedulerService:
    return get_scheduler()


def get_checkouts() -> ViewRegistry:
    return get_checkout_registry()


def get_feedback_views() -> ViewRegistry:
    return get_feedback_registry()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class ErrorView(BaseModel):
    kind: str
    message: str
    next_action: str
    reference_id: Optional[str] = None


class CheckoutView(BaseModel):
    """Checkout page state"""

    view_id: str
    booking_id: str
    state: str
    booking: Optional[dict[str, Any]] = None
    client_secret: Optional[str] = None
    publishable_key: Optional[str] = None
    error: Optional[ErrorView] = None
    can_submit: bool
    redirect_to: Optional[str] = None


class SubmitPaymentRequest(BaseModel):
    """Card form submission; the card is tokenized by the browser"""

    payment_method_id: str = ""
    save_card: bool = False


class FeedbackView(BaseModel):
    """Feedback thread page state"""

    view_id: str
    document: Optional[dict[str, Any]] = None
    messages: list[dict[str, Any]]
    unread_count: int
    error: Optional[ErrorView] = None


class FeedbackMessageRequest(BaseModel):
    message: str


def _check_owner(view_session: Optional[Session], session: Session):
    """A view answers only to the credentials it was opened with"""
    if view_session is None or view_session.access_token != session.access_token:
        raise NotFoundError("This page has expired. Please reload it.")


def _owned_checkout(view_id: str, session: Session, checkouts: ViewRegistry) -> CheckoutStateMachine:
    machine = checkouts.get(view_id)
    _check_owner(machine.session, session)
    return machine


def _owned_feedback(view_id: str, session: Session, feedback_views: ViewRegistry) -> FeedbackThreadController:
    controller = feedback_views.get(view_id)
    _check_owner(controller.document_service.session, session)
    return controller


def _checkout_view(view_id: str, machine: CheckoutStateMachine) -> CheckoutView:
    return CheckoutView(
        view_id=view_id,
        publishable_key=settings.stripe_publishable_key or None,
        **machine.snapshot(),
    )


def _feedback_view(view_id: str, controller: FeedbackThreadController, error: MarketplaceError | None = None) -> FeedbackView:
    error_view = None
    if error is not None:
        error_view = ErrorView(kind=error.kind, message=error.message, next_action=error.next_action)
    return FeedbackView(view_id=view_id, error=error_view, **controller.snapshot())


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "ok", "app": settings.app_name, "payment_provider": get_payment_provider().name}


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

@router.post("/checkout/{booking_id}", response_model=CheckoutView)
async def mount_checkout(
    booking_id: str,
    session: Optional[Session] = Depends(get_session),
    booking_service: BookingService = Depends(get_booking_service),
    payment_adapter: PaymentAdapter = Depends(get_payment_adapter),
    scheduler: SchedulerService = Depends(get_scheduler_service),
    checkouts: ViewRegistry = Depends(get_checkouts),
):
    """
    Mount the checkout page for a booking.

    - Load the booking
    - Create its payment intent (once per mounted view)
    - Return the view id used by later calls
    """
    machine = CheckoutStateMachine(booking_id, session, booking_service, payment_adapter, scheduler)
    await machine.mount()

    if machine.redirect_to == LOGIN_PATH:
        raise AuthRequiredError()

    view_id = checkouts.add(machine)
    return _checkout_view(view_id, machine)


@router.get("/checkout/views/{view_id}", response_model=CheckoutView)
def get_checkout(
    view_id: str,
    session: Session = Depends(require_session),
    checkouts: ViewRegistry = Depends(get_checkouts),
):
    """Re-render a mounted checkout view"""
    return _checkout_view(view_id, _owned_checkout(view_id, session, checkouts))


@router.post("/checkout/views/{view_id}/submit", response_model=CheckoutView)
async def submit_checkout(
    view_id: str,
    request: SubmitPaymentRequest,
    session: Session = Depends(require_session),
    checkouts: ViewRegistry = Depends(get_checkouts),
):
    """Pay for the booking of a mounted checkout view"""
    machine = _owned_checkout(view_id, session, checkouts)
    await machine.submit(request.payment_method_id, request.save_card)
    return _checkout_view(view_id, machine)


@router.delete("/checkout/views/{view_id}")
def unmount_checkout(
    view_id: str,
    session: Session = Depends(require_session),
    checkouts: ViewRegistry = Depends(get_checkouts),
):
    """Unmount a checkout view"""
    _owned_checkout(view_id, session, checkouts)
    return {"closed": checkouts.remove(view_id)}


# ---------------------------------------------------------------------------
# Document feedback
# ---------------------------------------------------------------------------

@router.get("/properties/{property_id}/documents")
async def get_property_documents(
    property_id: str,
    user: User = Depends(get_current_user),
    property_service: PropertyService = Depends(get_property_service),
):
    """List a property's documents with the viewer's unread feedback count"""
    documents = await property_service.get_property_documents(property_id)
    return [
        {
            **document.model_dump(mode="json", exclude={"feedback_thread"}),
            "unread_feedback": sum(
                1 for m in document.feedback_thread
                if m.sender_type != user.role and not m.is_read
            ),
        }
        for document in documents
    ]


@router.post("/documents/{document_id}/feedback-views", response_model=FeedbackView)
async def open_feedback_view(
    document_id: str,
    property_id: Optional[str] = None,
    user: User = Depends(get_current_user),
    document_service: DocumentService = Depends(get_document_service),
    admin_service: AdminService = Depends(get_admin_service),
    feedback_views: ViewRegistry = Depends(get_feedback_views),
):
    """
    Open the feedback thread of a document.

    The thread is on screen once opened, so unread messages from the
    other party are marked read.
    """
    controller = FeedbackThreadController(document_service, viewer_role=user.role, admin_service=admin_service)
    await controller.load(document_id, property_id)
    view_id = feedback_views.add(controller)

    controller.set_visible(True)
    try:
        await controller.mark_read(document_id)
    except MarketplaceError as e:
        logger.warning("Could not mark feedback read for document %s: %s", document_id, e.message)
        return _feedback_view(view_id, controller, error=e)
    return _feedback_view(view_id, controller)


@router.get("/feedback-views/{view_id}", response_model=FeedbackView)
def get_feedback_view(
    view_id: str,
    session: Session = Depends(require_session),
    feedback_views: ViewRegistry = Depends(get_feedback_views),
):
    return _feedback_view(view_id, _owned_feedback(view_id, session, feedback_views))


@router.post("/feedback-views/{view_id}/messages", response_model=FeedbackView)
async def send_feedback_message(
    view_id: str,
    request: FeedbackMessageRequest,
    session: Session = Depends(require_session),
    feedback_views: ViewRegistry = Depends(get_feedback_views),
):
    """Post a message to the thread"""
    controller = _owned_feedback(view_id, session, feedback_views)
    await controller.send(controller.document_id, request.message)
    return _feedback_view(view_id, controller)


@router.post("/feedback-views/{view_id}/read", response_model=FeedbackView)
async def mark_feedback_read(
    view_id: str,
    session: Session = Depends(require_session),
    feedback_views: ViewRegistry = Depends(get_feedback_views),
):
    controller = _owned_feedback(view_id, session, feedback_views)
    await controller.mark_read(controller.document_id)
    return _feedback_view(view_id, controller)


@router.post("/feedback-views/{view_id}/refresh", response_model=FeedbackView)
async def refresh_feedback_view(
    view_id: str,
    session: Session = Depends(require_session),
    feedback_views: ViewRegistry = Depends(get_feedback_views),
):
    controller = _owned_feedback(view_id, session, feedback_views)
    await controller.refresh()
    return _feedback_view(view_id, controller)


@router.delete("/feedback-views/{view_id}")
def close_feedback_view(
    view_id: str,
    session: Session = Depends(require_session),
    feedback_views: ViewRegistry = Depends(get_feedback_views),
):
    _owned_feedback(view_id, session, feedback_views)
    return {"closed": feedback_views.remove(view_id)}


# ---------------------------------------------------------------------------
# Payment incidents (support)
# ---------------------------------------------------------------------------

def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != SenderType.ADMIN:
        raise NotFoundError()
    return user


@router.get("/admin/payment-incidents")
def list_payment_incidents(admin: User = Depends(require_admin), incident_log: IncidentLog = Depends(get_incidents)):
    """Charges waiting to be recorded by the backend"""
    return [
        {
            "reference_id": incident.reference_id,
            "booking_id": incident.booking_id,
            "payment_intent_id": incident.payment_intent_id,
            "payment_method_id": incident.payment_method_id,
            "error_message": incident.error_message,
            "created_at": incident.created_at,
        }
        for incident in incident_log.list_unresolved()
    ]


@router.post("/admin/payment-incidents/{reference_id}/retry")
async def retry_payment_incident(
    reference_id: str,
    admin: User = Depends(require_admin),
    booking_service: BookingService = Depends(get_booking_service),
    incident_log: IncidentLog = Depends(get_incidents),
):
    """Replay the backend payment record for an incident"""
    incident = incident_log.get(reference_id)
    if incident is None or incident.resolved:
        raise NotFoundError("No open payment incident with this reference.")

    await booking_service.process_payment(incident.payment_intent_id, incident.payment_method_id, False)
    incident_log.mark_resolved(reference_id)
    logger.info("Payment incident %s replayed by admin %s", reference_id, admin.id)
    return {"status": "resolved", "reference_id": reference_id}
