from marketplace.models.booking import Booking, BookingStatus, PropertySummary
from marketplace.models.payment import (
    ConfirmationResult,
    ConfirmedIntent,
    PaymentIntent,
    PaymentIntentStatus,
    ProviderError,
)
from marketplace.models.document import Document, DocumentStatus, FeedbackMessage, SenderType
from marketplace.models.user import Session, User
from marketplace.models.incident import PaymentIncident

__all__ = [
    "Booking",
    "BookingStatus",
    "PropertySummary",
    "ConfirmationResult",
    "ConfirmedIntent",
    "PaymentIntent",
    "PaymentIntentStatus",
    "ProviderError",
    "Document",
    "DocumentStatus",
    "FeedbackMessage",
    "SenderType",
    "Session",
    "User",
    "PaymentIncident",
]
