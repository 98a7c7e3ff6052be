"""
Property API Service
"""
from marketplace.models import Document
from marketplace.services.api_client import ApiClient


class PropertyService(ApiClient):
    """Service for property lookups"""

    async def get_property_documents(self, property_id) -> list[Document]:
        """Get all verification documents uploaded for a property"""
        data = await self._request("GET", f"/properties/{property_id}/documents")
        items = data.get("items", []) if isinstance(data, dict) else data
        return [self._parse(Document, item) for item in items]
