"""Unit tests for the softphone HTTP client."""
import json

import httpx
import pytest

from softphone.core.exceptions import ProviderRequestFailed
from softphone.services.call_session.api_client import SoftphoneApiClient

BASE_URL = "http://softphone.test"


def make_client(handler):
    transport = httpx.MockTransport(handler)
    return SoftphoneApiClient(BASE_URL, client=httpx.AsyncClient(transport=transport, base_url=BASE_URL))


class TestSoftphoneApiClient:
    """Test requests and error translation."""

    @pytest.mark.asyncio
    async def test_fetch_token(self):
        """Test the token is read from the response."""
        def handler(request):
            assert request.url.path == "/token"
            return httpx.Response(200, json={"token": "jwt"})

        client = make_client(handler)

        assert await client.fetch_token() == "jwt"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_place_call(self):
        """Test the number is posted as To."""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"callId": "CA1", "status": "initiated", "bridgeName": "conf_1"})

        client = make_client(handler)
        placed = await client.place_call("5551234567")

        assert seen == {"path": "/call/outgoing", "body": {"To": "5551234567"}}
        assert placed["callId"] == "CA1"
        assert placed["bridgeName"] == "conf_1"

    @pytest.mark.asyncio
    async def test_fetch_status(self):
        """Test the raw status is returned."""
        def handler(request):
            assert request.url.path == "/call/status/CA1"
            return httpx.Response(200, json={"callId": "CA1", "status": "ringing"})

        assert await make_client(handler).fetch_status("CA1") == "ringing"

    @pytest.mark.asyncio
    async def test_hang_up(self):
        """Test both identifiers are sent."""
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "status": "completed"})

        result = await make_client(handler).hang_up(call_id="CA1", bridge_name="conf_1")

        assert seen["body"] == {"callId": "CA1", "bridgeName": "conf_1"}
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_server_error_text(self):
        """Test the server's error text is surfaced."""
        def handler(request):
            return httpx.Response(500, json={"error": "Failed to initiate call: Invalid 'To' Phone Number"})

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await make_client(handler).place_call("123")

        assert exc_info.value.message == "Failed to initiate call: Invalid 'To' Phone Number"
        assert exc_info.value.code == 500

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        """Test non-JSON errors still raise with the status code."""
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await make_client(handler).fetch_status("CA1")

        assert "502" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test network failures are translated."""
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await make_client(handler).fetch_token()

        assert "connection refused" in exc_info.value.message
