"""HTTP client for the softphone server."""
import logging
from typing import Any, Dict, Optional

import httpx

from softphone.core.exceptions import ProviderRequestFailed

logger = logging.getLogger(__name__)


class SoftphoneApiClient:
    """Async client for the token, call and status endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, action: str, **kwargs) -> Dict[str, Any]:
        """
        Send a request and return its JSON body.

        Raises:
            ProviderRequestFailed: transport failure or non-2xx answer, carrying
                the server's ``error`` text when it sent one
        """
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"[API CLIENT] {action} failed: {type(e).__name__}: {str(e)}")
            raise ProviderRequestFailed(f"{action} failed: {str(e) or type(e).__name__}") from e

        if response.is_error:
            raise ProviderRequestFailed(self._error_text(response, action), code=response.status_code)
        return response.json()

    @staticmethod
    def _error_text(response: httpx.Response, action: str) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"{action} failed with HTTP {response.status_code}"

    async def fetch_token(self) -> str:
        body = await self._request("GET", "/token", "Token request")
        return body["token"]

    async def place_call(self, number: str) -> Dict[str, Any]:
        """Ask the server to dial ``number``; returns ``{callId, status, bridgeName}``."""
        return await self._request("POST", "/call/outgoing", "Call request", json={"To": number})

    async def fetch_status(self, call_id: str) -> Optional[str]:
        """Cached status of a call, as a raw provider status string."""
        body = await self._request("GET", f"/call/status/{call_id}", "Status request")
        return body.get("status")

    async def hang_up(self, call_id: Optional[str] = None, bridge_name: Optional[str] = None) -> Dict[str, Any]:
        payload = {"callId": call_id, "bridgeName": bridge_name}
        return await self._request("POST", "/call/hangup", "Hang-up request", json=payload)

    async def aclose(self) -> None:
        await self.client.aclose()
