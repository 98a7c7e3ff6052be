from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from marketplace.models.booking import Identifier


class SenderType(str, Enum):
    ADMIN = "admin"
    LANDLORD = "landlord"
    TENANT = "tenant"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FeedbackMessage(BaseModel):
    """One message in a document's feedback thread"""

    id: Identifier
    message: str
    sender_type: SenderType
    created_at: datetime
    is_read: bool = False
    attachment: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive backend timestamps are UTC; optimistic entries are aware
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Document(BaseModel):
    """Verification document with its feedback thread"""

    id: Identifier
    document_type: str
    status: DocumentStatus = DocumentStatus.PENDING
    rejection_reason: Optional[str] = None
    feedback_thread: List[FeedbackMessage] = Field(default_factory=list)
    feedback_read: bool = False
    created_at: Optional[datetime] = None
    property_id: Optional[Identifier] = None

    @model_validator(mode="before")
    @classmethod
    def _property_reference(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("property_id") is None and data.get("property") is not None:
            ref = data["property"]
            data = {**data, "property_id": ref.get("id") if isinstance(ref, dict) else ref}
        return data
