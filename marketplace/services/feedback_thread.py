"""
Feedback Thread Controller
Message list for one verification document: load, optimistic send, read state
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from marketplace.errors import ValidationError
from marketplace.models import Document, FeedbackMessage, SenderType
from marketplace.services.admin_service import AdminService
from marketplace.services.document_service import DocumentService

logger = logging.getLogger(__name__)


class FeedbackThreadController:
    """
    Owns the in-memory thread of one open document view.

    Messages are kept in an insertion-ordered mapping. Server messages are
    keyed by their id; an optimistic message keeps its temporary key for
    life, and on success the server copy replaces it in the same slot.
    """

    def __init__(
        self,
        document_service: DocumentService,
        viewer_role: SenderType = SenderType.LANDLORD,
        admin_service: Optional[AdminService] = None,
    ):
        self.document_service = document_service
        self.admin_service = admin_service
        self.viewer_role = viewer_role

        self.document_id = None
        self.property_id = None
        self.document: Document | None = None
        self.visible = False

        self._entries: dict[str, FeedbackMessage] = {}
        self._pending: set[str] = set()
        self._generation = 0
        self._closed = False

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _check_document(self, document_id):
        if self.document_id is not None and str(document_id) != str(self.document_id):
            raise ValueError(f"Controller is bound to document {self.document_id}, not {document_id}")

    def is_self_authored(self, message: FeedbackMessage) -> bool:
        return message.sender_type == self.viewer_role

    @property
    def messages(self) -> list[FeedbackMessage]:
        """Oldest first; equal timestamps keep insertion order"""
        return sorted(self._entries.values(), key=lambda m: m.created_at)

    @property
    def unread_count(self) -> int:
        return sum(1 for m in self._entries.values() if not self.is_self_authored(m) and not m.is_read)

    def set_visible(self, visible: bool):
        self.visible = visible

    async def load(self, document_id, property_id=None) -> list[FeedbackMessage]:
        """
        Fetch the document and its thread.

        Args:
            document_id: Document ID
            property_id: Owning property, resolved from the API when omitted

        Raises:
            NotFoundError: document missing or not accessible
        """
        self._check_document(document_id)
        self.document_id = document_id
        if property_id is not None:
            self.property_id = property_id

        generation = self._generation
        if self.property_id is None:
            resolved = await self.document_service.get_document_property(document_id)
            if not self._is_current(generation):
                return self.messages
            self.property_id = resolved

        document = await self.document_service.get_document_details(self.property_id, document_id)
        if self._is_current(generation):
            self._apply_document(document)
        return self.messages

    async def refresh(self) -> list[FeedbackMessage]:
        """Re-fetch the thread; in-flight optimistic messages are kept"""
        if self.document_id is None:
            raise ValueError("Thread has not been loaded")
        return await self.load(self.document_id)

    def _apply_document(self, document: Document):
        known = {str(m.id): m for key, m in self._entries.items() if key not in self._pending}

        entries: dict[str, FeedbackMessage] = {}
        for message in document.feedback_thread:
            previous = known.get(str(message.id))
            if previous is not None and previous.is_read and not message.is_read:
                # Read state only moves forward
                message = message.model_copy(update={"is_read": True})
            entries[f"id:{message.id}"] = message

        for key, message in self._entries.items():
            if key in self._pending:
                entries[key] = message

        feedback_read = document.feedback_read or bool(self.document and self.document.feedback_read)
        self.document = document.model_copy(update={"feedback_thread": [], "feedback_read": feedback_read})
        self._entries = entries

    async def send(self, document_id, text: str) -> FeedbackMessage:
        """
        Post a message, showing it immediately.

        Returns:
            The server's copy of the message (the optimistic one if the view
            closed before the reply arrived)

        Raises:
            ValidationError: empty or whitespace-only text
        """
        self._check_document(document_id)
        if text is None or not text.strip():
            raise ValidationError("Please enter a message.")
        if self.document_id is None:
            self.document_id = document_id

        temp_id = f"temp-{uuid.uuid4().hex}"
        optimistic = FeedbackMessage(
            id=temp_id,
            message=text,
            sender_type=self.viewer_role,
            created_at=datetime.now(timezone.utc),
            is_read=True,
        )
        # Appended before any network call so the page can scroll to it
        self._entries[temp_id] = optimistic
        self._pending.add(temp_id)

        generation = self._generation
        try:
            response = await self._post(text)
        except BaseException:
            # Includes cancellation: no reply means the entry must not linger
            self._pending.discard(temp_id)
            self._entries.pop(temp_id, None)
            logger.info("Feedback message for document %s rolled back", self.document_id)
            raise
        self._pending.discard(temp_id)

        if not self._is_current(generation):
            return optimistic

        saved = DocumentService.parse_message(response)
        if saved is None:
            # Acknowledged without the message body; take the server's thread
            await self.refresh()
            return optimistic

        saved = saved.model_copy(update={"is_read": True})
        if f"id:{saved.id}" in self._entries:
            # A refresh already brought in the server copy
            self._entries.pop(temp_id, None)
        else:
            self._entries[temp_id] = saved
        return saved

    async def _post(self, text: str):
        if self.viewer_role == SenderType.ADMIN and self.admin_service is not None:
            return await self.admin_service.add_admin_feedback_message(self.document_id, text)

        if self.property_id is None:
            self.property_id = await self.document_service.get_document_property(self.document_id)
        return await self.document_service.add_feedback_message(
            self.property_id, self.document_id, text, sender_type=self.viewer_role
        )

    async def mark_read(self, document_id) -> bool:
        """
        Mark counter-party messages read while the thread is on screen.

        Returns:
            True if the backend was called, False when there was nothing to do
        """
        self._check_document(document_id)
        if not self.visible or self.unread_count == 0 or self.property_id is None:
            return False

        generation = self._generation
        await self.document_service.mark_feedback_read(self.property_id, self.document_id)
        if not self._is_current(generation):
            return True

        unread = [
            key for key, m in self._entries.items()
            if not self.is_self_authored(m) and not m.is_read
        ]
        for key in unread:
            self._entries[key] = self._entries[key].model_copy(update={"is_read": True})
        if self.document is not None:
            self.document.feedback_read = True
        return True

    def close(self):
        """Unmount: results that arrive afterwards are dropped"""
        self._closed = True
        self._generation += 1
        self.visible = False

    def snapshot(self) -> dict:
        ordered = sorted(self._entries.items(), key=lambda item: item[1].created_at)
        return {
            "document": self.document.model_dump(mode="json") if self.document else None,
            "messages": [
                {**m.model_dump(mode="json"), "pending": key in self._pending}
                for key, m in ordered
            ],
            "unread_count": self.unread_count,
        }
