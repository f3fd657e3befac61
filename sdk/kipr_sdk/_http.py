"""
Internal HTTP transport for the KIPR SDK.

This module provides the low-level JSON-over-HTTPS communication layer.
It is internal to the SDK and should not be used directly by users.

Users should use RestClient instead, which provides the entity API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .config import ClientSettings
from .errors import AuthenticationError, KiprError, TransportError, error_from_dict

logger = logging.getLogger(__name__)


class HttpTransport:
    """Internal HTTP client for the KIPR REST API.

    Owns one httpx.AsyncClient, attaches the bearer token, and maps error
    responses onto SDK exceptions. Network failures and 5xx responses become
    TransportError without exposing httpx types to callers.

    This is an internal class - users should use RestClient instead.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the transport.

        Args:
            settings: Client configuration
            transport: Optional httpx transport (e.g. ASGITransport in tests)
        """
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout,
            verify=settings.verify_tls,
            headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Raises:
            KiprError: The SDK error matching the error body
            TransportError: On network failure or an undecodable error
        """
        request_headers = dict(headers or {})
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=request_headers
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {method} {path}", url=path) from e
        except httpx.HTTPError as e:
            logger.debug(f"{method} {path} failed: {type(e).__name__}")
            raise TransportError(f"Request failed: {method} {path}", url=path) from e

        if response.is_success:
            return response

        raise self._error(response, path)

    async def call(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body (None for 204)."""
        response = await self.request(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"Invalid JSON in response to {method} {path}",
                url=path,
                status_code=response.status_code,
            ) from e

    def _error(self, response: httpx.Response, path: str) -> KiprError:
        status = response.status_code
        if status >= 500:
            logger.warning(f"Service error {status} for {path}")
            return TransportError(
                f"Service unavailable ({status})", url=path, status_code=status
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            if status == 401:
                return AuthenticationError()
            return TransportError(
                f"Unexpected response ({status}) for {path}", url=path, status_code=status
            )
        return error_from_dict(body, status)
