"""FastAPI dependencies."""
from starlette.requests import HTTPConnection

from softphone.core.config import settings
from softphone.services.bridge.controller import ConferenceBridgeController
from softphone.services.relay.relay import StatusRelay
from softphone.services.telephony.provider import TelephonyProvider


def get_status_relay(connection: HTTPConnection) -> StatusRelay:
    """Get the process-wide status relay built at startup."""
    return connection.app.state.status_relay


def get_telephony_provider(connection: HTTPConnection) -> TelephonyProvider:
    return connection.app.state.provider


def get_bridge_controller(connection: HTTPConnection) -> ConferenceBridgeController:
    """Get the conference bridge controller built at startup."""
    return connection.app.state.bridge_controller


def get_base_url(connection: HTTPConnection) -> str:
    """
    Get the base URL for provider callbacks.

    Uses BASE_URL if set (e.g. an ngrok tunnel), otherwise the URL the
    request came in on.
    """
    if settings.base_url:
        return settings.base_url.rstrip("/")
    return str(connection.base_url).rstrip("/")
