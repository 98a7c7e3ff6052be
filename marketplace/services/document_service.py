"""
Document API Service
Verification documents and their feedback threads
"""
import logging
from pydantic import ValidationError as PayloadError
from marketplace.errors import NotFoundError
from marketplace.models import Document, FeedbackMessage, SenderType
from marketplace.services.api_client import ApiClient

logger = logging.getLogger(__name__)


class DocumentService(ApiClient):
    """Service for document and feedback endpoints"""

    async def get_document_property(self, document_id):
        """Resolve the property that owns a document"""
        data = await self._request("GET", f"/documents/{document_id}")
        property_id = data.get("property_id") if isinstance(data, dict) else None
        if property_id is None and isinstance(data, dict):
            ref = data.get("property")
            property_id = ref.get("id") if isinstance(ref, dict) else ref
        if property_id is None:
            raise NotFoundError("This document is not attached to a property you can access.")
        return property_id

    async def get_document_details(self, property_id, document_id) -> Document:
        """Get a document including its feedback thread"""
        data = await self._request("GET", f"/properties/{property_id}/documents/{document_id}")
        document = self._parse(Document, data)
        if document.property_id is None:
            document.property_id = property_id
        return document

    async def add_feedback_message(
        self, property_id, document_id, message: str, sender_type: SenderType = SenderType.LANDLORD
    ) -> dict:
        """
        Add a message to a document's feedback thread.

        Returns:
            The raw response body; normally the created message
        """
        return await self._request(
            "POST",
            f"/properties/{property_id}/documents/{document_id}/feedback",
            json={"message": message, "sender_type": sender_type.value},
        )

    async def mark_feedback_read(self, property_id, document_id) -> dict:
        """Mark the counter-party messages of a thread as read"""
        return await self._request("POST", f"/properties/{property_id}/documents/{document_id}/feedback/read")

    @staticmethod
    def parse_message(data) -> FeedbackMessage | None:
        """Return the created message if the response carries a valid one"""
        if not isinstance(data, dict) or data.get("id") is None or data.get("message") is None:
            return None
        try:
            return FeedbackMessage.model_validate(data)
        except PayloadError:
            logger.warning("Feedback reply for message %s could not be parsed", data.get("id"))
            return None
