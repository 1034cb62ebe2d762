"""Unit tests for the device session and local call handles."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import FakeDevice, FakeDeviceCall
from softphone.core.exceptions import LocalMediaError
from softphone.services.call_session.device import (
    ONE_WAY_WARNING,
    DeviceSession,
    DeviceState,
    HandleKind,
    LocalCallHandle,
)
from softphone.services.call_session.models import CallEvent, CallStatus, EventKind


def start_outbound(machine):
    dialing = machine.dispatch(CallEvent.local(EventKind.DIAL, remote_address="+15551234567"))
    session_id = dialing.session.session_id
    machine.dispatch(
        CallEvent.local(EventKind.PLACED, session_id=session_id, call_id="CA1", bridge_name="conf_1")
    )
    return session_id


class TestLocalCallHandle:
    """Test the tagged local call handle."""

    def test_device_handle_drives_sdk_call(self):
        """Test device handles forward every operation to the SDK call."""
        call = FakeDeviceCall()
        handle = LocalCallHandle.device("leg-1", call, "CA1")

        handle.accept()
        handle.mute(True)
        handle.disconnect()
        handle.reject()

        assert handle.kind == HandleKind.DEVICE
        assert handle.has_audio is True
        assert (call.accepted, call.disconnected, call.rejected) == (1, 1, 1)
        assert call.muted is True

    def test_rest_only_handle(self):
        """Test rest-only handles only track local state."""
        handle = LocalCallHandle.rest_only("leg-1", "CA1")

        handle.disconnect()
        handle.reject()
        handle.mute(True)

        assert handle.kind == HandleKind.REST_ONLY
        assert handle.muted is True
        with pytest.raises(LocalMediaError):
            handle.accept()


class TestInitialize:
    """Test device registration."""

    @pytest.mark.asyncio
    async def test_registers_device(self, device_session, devices):
        """Test a token is fetched and the device registered."""
        assert await device_session.initialize() is True

        assert device_session.state == DeviceState.REGISTERED
        assert devices[0].token == "test-token"
        assert devices[0].registered is True

    @pytest.mark.asyncio
    async def test_assumes_ready_without_confirmation(self, machine):
        """Test a silent device is treated as ready after the grace period."""
        session = DeviceSession(
            lambda token: FakeDevice(token, confirm_registration=False),
            AsyncMock(return_value="test-token"),
            machine,
            ready_timeout=0.01,
        )

        assert await session.initialize() is True
        assert session.state == DeviceState.REGISTERED

    @pytest.mark.asyncio
    async def test_token_failure_surfaced(self, machine):
        """Test a failed token fetch is a warning, not an exception."""
        session = DeviceSession(
            FakeDevice, AsyncMock(side_effect=RuntimeError("Token request failed")), machine
        )

        assert await session.initialize() is False
        assert session.state == DeviceState.ERROR
        assert "Failed to initialize device" in machine.error_message

    @pytest.mark.asyncio
    async def test_device_error_is_not_ready(self, device_session, devices):
        """Test a device that reported an error is not assumed ready."""
        await device_session.initialize()
        devices[0].emit("error", "31204 JWT invalid")

        assert device_session.is_ready is False
        assert device_session.machine.error_message == "Device error: 31204 JWT invalid"
        assert device_session.machine.status == CallStatus.IDLE

    @pytest.mark.asyncio
    async def test_destroy(self, device_session, devices):
        """Test destroying tears down the device."""
        await device_session.initialize()
        device_session.destroy()

        assert devices[0].destroyed is True
        assert device_session.state == DeviceState.UNREGISTERED

    def test_built_outside_event_loop(self, machine, devices):
        """Test a session built before the loop starts registers inside it."""
        def factory(token):
            device = FakeDevice(token)
            devices.append(device)
            return device

        session = DeviceSession(factory, AsyncMock(return_value="test-token"), machine, ready_timeout=0.05)

        assert asyncio.run(session.initialize()) is True
        assert session.state == DeviceState.REGISTERED
        assert devices[0].registered is True


class TestIncoming:
    """Test inbound calls offered by the device."""

    @pytest.mark.asyncio
    async def test_incoming_then_accept(self, device_session, devices, machine):
        """Test an offered call rings and the SDK accept answers it."""
        await device_session.initialize()
        call = FakeDeviceCall({"CallSid": "CAin", "From": "+15559876543"})

        devices[0].emit("incoming", call)
        assert machine.status == CallStatus.INCOMING
        assert machine.session.remote_address == "+15559876543"

        call.emit("accept", call)
        assert machine.status == CallStatus.IN_PROGRESS

        call.emit("disconnect", call)
        assert machine.status == CallStatus.COMPLETED
        await machine.aclose()

    @pytest.mark.asyncio
    async def test_caller_hangs_up_before_answer(self, device_session, devices, machine):
        """Test a cancelled offer returns to idle."""
        await device_session.initialize()
        call = FakeDeviceCall({"CallSid": "CAin", "From": "+15559876543"})

        devices[0].emit("incoming", call)
        call.emit("cancel")

        assert machine.status == CallStatus.IDLE
        assert call.rejected == 0

    @pytest.mark.asyncio
    async def test_call_error_keeps_call(self, device_session, devices, machine):
        """Test a call-level SDK error does not end the call."""
        await device_session.initialize()
        call = FakeDeviceCall({"CallSid": "CAin", "From": "+15559876543"})
        devices[0].emit("incoming", call)
        call.emit("accept")

        call.emit("error", "31005 connection error")

        assert machine.status == CallStatus.IN_PROGRESS
        assert machine.error_message == "Call error: 31005 connection error"
        await machine.aclose()

    @pytest.mark.asyncio
    async def test_callbacks_from_old_call_ignored(self, device_session, devices, machine):
        """Test a late disconnect from a previous call cannot end the next one."""
        await device_session.initialize()
        old = FakeDeviceCall({"CallSid": "CAold", "From": "+15550000001"})
        devices[0].emit("incoming", old)
        old.emit("cancel")

        new = FakeDeviceCall({"CallSid": "CAnew", "From": "+15550000002"})
        devices[0].emit("incoming", new)
        new.emit("accept")
        old.emit("disconnect")

        assert machine.status == CallStatus.IN_PROGRESS
        assert machine.session.call_id == "CAnew"
        await machine.aclose()


class TestConnectToBridge:
    """Test joining the local leg to an outbound bridge."""

    @pytest.mark.asyncio
    async def test_device_leg(self, device_session, devices, machine):
        """Test a registered device dials into the bridge."""
        await device_session.initialize()
        session_id = start_outbound(machine)

        handle = await device_session.connect_to_bridge("conf_1", "CA1", session_id)

        assert handle.kind == HandleKind.DEVICE
        assert devices[0].connects == [{"To": "conference:conf_1"}]
        assert machine.local_leg is handle
        assert machine.session.local_leg_id == handle.leg_id

        devices[0].calls[0].emit("accept")
        assert machine.status == CallStatus.IN_PROGRESS
        await machine.aclose()

    @pytest.mark.asyncio
    async def test_rest_only_when_not_ready(self, device_session, machine):
        """Test an unregistered device falls back to a rest-only handle."""
        session_id = start_outbound(machine)

        handle = await device_session.connect_to_bridge("conf_1", "CA1", session_id)

        assert handle.kind == HandleKind.REST_ONLY
        assert handle.call_id == "CA1"
        assert machine.error_message == ONE_WAY_WARNING
        assert machine.status == CallStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_rest_only_when_connect_fails(self, machine):
        """Test a failing connect still leaves the call controllable."""
        session = DeviceSession(
            lambda token: FakeDevice(token, connect_error=RuntimeError("mic denied")),
            AsyncMock(return_value="test-token"),
            machine,
            ready_timeout=0.01,
        )
        await session.initialize()
        session_id = start_outbound(machine)

        handle = await session.connect_to_bridge("conf_1", "CA1", session_id)

        assert handle.kind == HandleKind.REST_ONLY
        assert machine.local_leg is handle

    @pytest.mark.asyncio
    async def test_leg_for_ended_call_is_dropped(self, device_session, devices, machine):
        """Test a leg joining after the user hung up is disconnected."""
        await device_session.initialize()
        session_id = start_outbound(machine)
        machine.dispatch(CallEvent.local(EventKind.HANGUP))

        await device_session.connect_to_bridge("conf_1", "CA1", session_id)

        assert devices[0].calls[0].disconnected == 1
        await asyncio.sleep(0)
        await machine.aclose()
