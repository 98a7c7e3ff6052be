from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, model_validator
from marketplace.models.booking import Identifier


class PaymentIntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"


class PaymentIntent(BaseModel):
    """Payment intent created by the backend for one booking"""

    id: Identifier
    client_secret: str
    status: str = PaymentIntentStatus.REQUIRES_PAYMENT_METHOD.value
    booking_id: Optional[Identifier] = None
    setup_future_usage: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_stripe_client_secret(cls, data: Any) -> Any:
        # Older backend builds return the secret as stripe_client_secret
        if isinstance(data, dict) and not data.get("client_secret") and data.get("stripe_client_secret"):
            data = {**data, "client_secret": data["stripe_client_secret"]}
        return data


class ConfirmedIntent(BaseModel):
    """Intent state reported by the payment provider after confirmation"""

    id: str
    status: str
    payment_method: Optional[str] = None


class ProviderError(BaseModel):
    message: str
    code: Optional[str] = None
    type: Optional[str] = None


class ConfirmationResult(BaseModel):
    """Either payment_intent or error is set, never both"""

    payment_intent: Optional[ConfirmedIntent] = None
    error: Optional[ProviderError] = None

    @property
    def succeeded(self) -> bool:
        return (
            self.error is None
            and self.payment_intent is not None
            and self.payment_intent.status == PaymentIntentStatus.SUCCEEDED.value
        )
