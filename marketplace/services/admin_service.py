"""
Admin API Service
Reviewer side of the document feedback thread
"""
from marketplace.services.api_client import ApiClient


class AdminService(ApiClient):
    """Service for admin-only document endpoints"""

    async def add_admin_feedback_message(self, document_id, message: str) -> dict:
        """Post a reviewer message to a document's feedback thread"""
        return await self._request(
            "POST",
            f"/admin/documents/{document_id}/feedback-thread",
            json={"message": message, "sender_type": "admin"},
        )
