"""Conference bridge controller."""
import itertools
import logging
import secrets
import time
from typing import Optional

from pydantic import BaseModel

from softphone.core.config import Settings
from softphone.core.exceptions import InvalidArgument, ProviderRequestFailed
from softphone.services.telephony import twiml
from softphone.services.telephony.numbers import BRIDGE_PREFIX, normalize_number
from softphone.services.telephony.provider import (
    CALL_NOT_IN_PROGRESS,
    LEG_EVENTS,
    TelephonyProvider,
)

logger = logging.getLogger(__name__)

CONFERENCE_STATUS_PATH = "/call/conference-status"
LEG_STATUS_PATH = "/call/status"

_bridge_sequence = itertools.count(1)


def generate_bridge_name() -> str:
    """
    Generate a bridge name unique for the life of the process.

    Epoch milliseconds plus a process-wide sequence number plus a random
    suffix, so names also stay distinct across restarts and replicas.
    """
    millis = int(time.time() * 1000)
    return f"conf_{millis}_{next(_bridge_sequence)}_{secrets.token_hex(4)}"


class PlacedCall(BaseModel):
    """Result of a successful outbound dial request."""

    call_id: str
    bridge_name: str
    to: str


class HangupResult(BaseModel):
    """Outcome of a hang-up request."""

    call_ended: bool = False
    bridge_ended: bool = False


class ConferenceBridgeController:
    """Creates two-leg bridges and issues the provider instructions for them."""

    def __init__(self, provider: TelephonyProvider, settings: Settings):
        self.provider = provider
        self.settings = settings

    def _callback_url(self, base_url: str, path: str) -> str:
        return f"{base_url.rstrip('/')}{path}"

    async def place_outbound_call(self, raw_number: str, base_url: str) -> PlacedCall:
        """
        Dial the remote party into a new bridge.

        Returns as soon as the provider accepts the dial request; ringing and
        answer arrive later as status webhooks. Nothing is cached here.

        Raises:
            InvalidArgument: empty or undialable destination
            CallInitiationFailed: the provider rejected the request
        """
        to = normalize_number(raw_number, self.settings.default_country_code)
        bridge_name = generate_bridge_name()
        logger.info(f"[BRIDGE] Placing outbound call - To: {to}, Bridge: {bridge_name}")

        instructions = twiml.outbound_bridge_twiml(
            bridge_name,
            caller_id=self.settings.twilio_phone_number,
            status_callback=self._callback_url(base_url, CONFERENCE_STATUS_PATH),
            announcement=self.settings.wait_announcement,
            wait_url=self.settings.wait_url,
            timeout=self.settings.dial_timeout_seconds,
        )
        call_id = await self.provider.create_call(
            to=to,
            twiml=instructions,
            status_callback=self._callback_url(base_url, LEG_STATUS_PATH),
            status_callback_events=LEG_EVENTS,
        )

        logger.info(f"[BRIDGE] Call initiated - CallSid: {call_id}, To: {to}, Bridge: {bridge_name}")
        return PlacedCall(call_id=call_id, bridge_name=bridge_name, to=to)

    def join_bridge(self, bridge_name: str, base_url: str) -> str:
        """Instructions for a leg entering a bridge the other leg started."""
        if not bridge_name:
            raise InvalidArgument("Bridge name is required")
        logger.info(f"[BRIDGE] Leg joining bridge: {bridge_name}")
        return twiml.join_bridge_twiml(
            bridge_name, status_callback=self._callback_url(base_url, CONFERENCE_STATUS_PATH)
        )

    def route_client_leg(self, to: str, base_url: str) -> str:
        """Answer a browser leg; only bridge joins are supported."""
        to = (to or "").strip()
        if to.startswith(BRIDGE_PREFIX):
            return self.join_bridge(to[len(BRIDGE_PREFIX):], base_url)
        logger.warning(f"[BRIDGE] Unsupported browser leg destination: '{to}'")
        return twiml.say_twiml("Invalid connection request")

    def route_incoming(self, from_number: Optional[str]) -> str:
        """Instructions sending an inbound PSTN caller to the browser client."""
        caller = from_number or "an unknown number"
        logger.info(f"[BRIDGE] Routing incoming call from {caller} to client '{self.settings.client_identity}'")
        return twiml.incoming_call_twiml(caller, self.settings.client_identity)

    async def hang_up(
        self, call_id: Optional[str] = None, bridge_name: Optional[str] = None
    ) -> HangupResult:
        """
        End the far leg and/or the bridge.

        Best effort: a call the provider reports as already finished counts as
        ended, and bridge teardown failures are only logged because the bridge
        also collapses when its last leg exits.

        Raises:
            InvalidArgument: neither identifier given
            ProviderRequestFailed: the provider refused to end a live call
        """
        if not call_id and not bridge_name:
            raise InvalidArgument("Call SID or bridge name is required")

        result = HangupResult()
        if call_id:
            try:
                await self.provider.end_call(call_id)
                logger.info(f"[HANGUP] Call hung up via REST API - CallSid: {call_id}")
            except ProviderRequestFailed as e:
                if e.code != CALL_NOT_IN_PROGRESS:
                    raise
                logger.info(f"[HANGUP] Call already ended - CallSid: {call_id}")
            result.call_ended = True

        if bridge_name:
            try:
                result.bridge_ended = await self.provider.end_conference(bridge_name)
            except ProviderRequestFailed as e:
                logger.warning(f"[HANGUP] Could not end bridge {bridge_name}: {e}")
        return result

    def mint_device_token(self) -> str:
        """
        Mint the browser device credential.

        Raises:
            ProviderNotConfigured: token secrets are missing
        """
        return self.provider.mint_access_token(
            self.settings.client_identity, self.settings.token_ttl_seconds
        )
