"""Shared test fixtures and configuration."""
import pytest
import os
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+15550001111")

from softphone.main import app
from softphone.core.config import Settings
from softphone.core.dependencies import (
    get_bridge_controller,
    get_status_relay,
    get_telephony_provider,
)
from softphone.core.exceptions import ProviderRequestFailed
from softphone.services.bridge.controller import ConferenceBridgeController
from softphone.services.call_session.device import CallingDevice, DeviceCall, DeviceSession
from softphone.services.call_session.state_machine import CallStateMachine
from softphone.services.relay.relay import StatusRelay
from softphone.services.telephony.provider import ProviderCall, ProviderMessage, TelephonyProvider


class FakeTelephonyProvider(TelephonyProvider):
    """In-memory provider that records every request."""

    def __init__(self):
        self.created: List[Dict] = []
        self.calls: Dict[str, ProviderCall] = {}
        self.fetches: List[str] = []
        self.ended_calls: List[str] = []
        self.ended_conferences: List[str] = []
        self.create_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.end_error: Optional[Exception] = None
        self.conference_error: Optional[Exception] = None
        self.token_error: Optional[Exception] = None
        self.messages: List[ProviderMessage] = []
        self.message_error: Optional[Exception] = None
        self._sequence = 0

    async def create_call(self, to, twiml, status_callback, status_callback_events):
        if self.create_error:
            raise self.create_error
        self._sequence += 1
        sid = f"CA{self._sequence:032d}"
        self.created.append(
            {
                "sid": sid,
                "to": to,
                "twiml": twiml,
                "status_callback": status_callback,
                "status_callback_events": status_callback_events,
            }
        )
        self.calls[sid] = ProviderCall(sid=sid, status="queued", direction="outbound-api")
        return sid

    async def fetch_call(self, call_sid):
        self.fetches.append(call_sid)
        if self.fetch_error:
            raise self.fetch_error
        if call_sid not in self.calls:
            raise ProviderRequestFailed(
                f"The requested resource /Calls/{call_sid}.json was not found", code=20404
            )
        return self.calls[call_sid]

    async def end_call(self, call_sid):
        if self.end_error:
            raise self.end_error
        self.ended_calls.append(call_sid)

    async def end_conference(self, friendly_name):
        if self.conference_error:
            raise self.conference_error
        self.ended_conferences.append(friendly_name)
        return True

    async def send_message(self, to, body):
        if self.message_error:
            raise self.message_error
        message = ProviderMessage(
            sid=f"SM{len(self.messages) + 1:032d}",
            body=body,
            from_number="+15550001111",
            to=to,
            status="queued",
            date_created=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )
        self.messages.append(message)
        return message

    def mint_access_token(self, identity, ttl):
        if self.token_error:
            raise self.token_error
        return f"token-{identity}-{ttl}"


class RecordingSubscriber:
    """Relay subscriber that records what it was sent."""

    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def send_event(self, event, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append((event, data))


class FakeDeviceCall(DeviceCall):
    """SDK call object whose callbacks are fired by the test."""

    def __init__(self, parameters: Optional[Dict[str, str]] = None):
        self._parameters = parameters or {}
        self.handlers: Dict[str, List[Callable]] = {}
        self.accepted = 0
        self.rejected = 0
        self.disconnected = 0
        self.muted: Optional[bool] = None

    @property
    def parameters(self):
        return self._parameters

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)

    def emit(self, event, *args):
        for callback in self.handlers.get(event, []):
            callback(*args)

    def accept(self):
        self.accepted += 1

    def reject(self):
        self.rejected += 1

    def disconnect(self):
        self.disconnected += 1

    def mute(self, muted):
        self.muted = muted


class FakeDevice(CallingDevice):
    """SDK device; registration is confirmed unless told otherwise."""

    def __init__(self, token: str, confirm_registration: bool = True, connect_error: Optional[Exception] = None):
        self.token = token
        self.confirm_registration = confirm_registration
        self.connect_error = connect_error
        self.handlers: Dict[str, List[Callable]] = {}
        self.connects: List[Dict[str, str]] = []
        self.calls: List[FakeDeviceCall] = []
        self.registered = False
        self.destroyed = False

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)

    def emit(self, event, *args):
        for callback in self.handlers.get(event, []):
            callback(*args)

    async def register(self):
        self.registered = True
        if self.confirm_registration:
            self.emit("registered")

    async def connect(self, params):
        if self.connect_error:
            raise self.connect_error
        call = FakeDeviceCall({"To": params["To"]})
        self.connects.append(params)
        self.calls.append(call)
        return call

    def destroy(self):
        self.destroyed = True


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        twilio_account_sid="ACtest",
        twilio_auth_token="test-token",
        twilio_phone_number="+15550001111",
        twilio_api_key="SKtest",
        twilio_api_secret="test-secret",
        twilio_twiml_app_sid="APtest",
        client_identity="browser-user",
    )


@pytest.fixture
def fake_provider():
    return FakeTelephonyProvider()


@pytest.fixture
def status_relay(fake_provider):
    return StatusRelay(fake_provider)


@pytest.fixture
def bridge_controller(fake_provider, test_settings):
    return ConferenceBridgeController(fake_provider, test_settings)


@pytest.fixture
def test_client(fake_provider, status_relay, bridge_controller):
    """Create FastAPI test client with overrides."""
    # Override dependencies
    app.dependency_overrides[get_status_relay] = lambda: status_relay
    app.dependency_overrides[get_bridge_controller] = lambda: bridge_controller
    app.dependency_overrides[get_telephony_provider] = lambda: fake_provider

    # One event loop for every request and socket, so background pushes land
    with TestClient(app) as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def remote_hangup():
    return AsyncMock(return_value={"success": True, "status": "completed"})


@pytest.fixture
def machine(remote_hangup):
    """State machine with short timers; dispatch needs a running loop."""
    return CallStateMachine(
        remote_hangup=remote_hangup,
        quiet_period=0.05,
        ring_timeout=0.05,
        tick_interval=0.01,
    )


@pytest.fixture
def devices():
    """Every FakeDevice the device factory created."""
    return []


@pytest.fixture
def device_session(machine, devices):
    def factory(token):
        device = FakeDevice(token)
        devices.append(device)
        return device

    return DeviceSession(factory, AsyncMock(return_value="test-token"), machine, ready_timeout=0.05)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
