"""
Auth API Service
Resolves the user behind the caller's session
"""
from marketplace.models import User
from marketplace.services.api_client import ApiClient


class AuthService(ApiClient):
    """Service for the current-user endpoint"""

    async def get_current_user(self) -> User:
        """Get the user owning the session's access token"""
        data = await self._request("GET", "/users/me")
        return self._parse(User, data)
