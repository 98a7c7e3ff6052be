"""
Marketplace REST API client
Shared transport and error normalization for the per-resource services
"""
import logging
from typing import Any, Optional
import httpx
from pydantic import BaseModel, ValidationError as PayloadError
from marketplace.config import settings
from marketplace.errors import (
    ApiError,
    AuthRequiredError,
    NotFoundError,
    TransientNetworkError,
)
from marketplace.models import Session

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull the backend's human-readable message out of an error response"""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Request failed with status {response.status_code}"

    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            # FastAPI-style validation errors
            if isinstance(value, list) and value and isinstance(value[0], dict) and value[0].get("msg"):
                return value[0]["msg"]
    return response.text or f"Request failed with status {response.status_code}"


class ApiClient:
    """Base class for marketplace API services"""

    def __init__(self, session: Optional[Session], http: Optional[httpx.AsyncClient] = None):
        self.session = session
        self.http = http or get_http_client()

    async def _request(self, method: str, path: str, json: Any = None, params: dict | None = None) -> Any:
        """
        Send an authenticated request and return the decoded JSON body.

        Raises:
            AuthRequiredError: no session, or the backend answered 401
            NotFoundError: 403 or 404
            ApiError: any other 4xx, with the backend's message
            TransientNetworkError: request failure (connection, timeout, decoding) or 5xx
        """
        if self.session is None:
            raise AuthRequiredError()

        headers = {"Authorization": self.session.authorization}

        try:
            response = await self.http.request(method, path, json=json, params=params, headers=headers)
        except httpx.RequestError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransientNetworkError() from e

        status = response.status_code
        if status == 401:
            raise AuthRequiredError()
        if status in (403, 404):
            raise NotFoundError()
        if 400 <= status < 500:
            message = _error_message(response)
            logger.info("%s %s rejected (%s): %s", method, path, status, message)
            raise ApiError(message, status_code=status)
        if status >= 500:
            logger.error("%s %s server error %s", method, path, status)
            raise TransientNetworkError(
                "Something went wrong on our side. Please try again.",
                upstream_status=status,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"detail": response.text}

    @staticmethod
    def _parse(model: type[BaseModel], data: Any):
        """Validate a response body against the expected model

        Raises:
            TransientNetworkError: the body does not have the expected shape
        """
        try:
            return model.model_validate(data)
        except PayloadError as e:
            logger.error("Unexpected %s payload from the API: %s", model.__name__, e)
            raise TransientNetworkError("We received an unexpected response. Please try again.") from e


# Global instance
_http_client = None


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client"""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout,
            headers={"Content-Type": "application/json"},
        )
    return _http_client


async def close_http_client():
    """Close the shared HTTP client"""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
