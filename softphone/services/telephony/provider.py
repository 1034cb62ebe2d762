"""Telephony provider adapter."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import VoiceGrant
from twilio.rest import Client

from softphone.core.config import Settings
from softphone.core.exceptions import (
    CallInitiationFailed,
    ProviderNotConfigured,
    ProviderRequestFailed,
)

logger = logging.getLogger(__name__)

# Twilio answers this when updating a call that has already ended
CALL_NOT_IN_PROGRESS = 21220

LEG_EVENTS = ["initiated", "ringing", "answered", "completed"]


class ProviderCall(BaseModel):
    """Provider-side view of one call leg."""

    sid: str
    status: str
    direction: Optional[str] = None
    duration_seconds: Optional[int] = None


class ProviderMessage(BaseModel):
    """Provider-side view of one text message."""

    sid: str
    body: str
    from_number: Optional[str] = None
    to: str
    status: Optional[str] = None
    date_created: Optional[datetime] = None


class TelephonyProvider(ABC):
    """Abstract base class for telephony providers."""

    @abstractmethod
    async def create_call(
        self,
        to: str,
        twiml: str,
        status_callback: str,
        status_callback_events: List[str],
    ) -> str:
        """Start a call leg and return its identifier."""
        pass

    @abstractmethod
    async def fetch_call(self, call_sid: str) -> ProviderCall:
        """Get the live status of a call leg."""
        pass

    @abstractmethod
    async def end_call(self, call_sid: str) -> None:
        """Complete a call leg."""
        pass

    @abstractmethod
    async def end_conference(self, friendly_name: str) -> bool:
        """End the in-progress conference with this name, if any."""
        pass

    @abstractmethod
    async def send_message(self, to: str, body: str) -> ProviderMessage:
        """Send a text message from the configured number."""
        pass

    @abstractmethod
    def mint_access_token(self, identity: str, ttl: int) -> str:
        """Produce an opaque credential a browser device can register with."""
        pass


def _duration(value) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class TwilioProvider(TelephonyProvider):
    """Twilio REST implementation of the provider."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        twiml_app_sid: Optional[str] = None,
        client: Optional[Client] = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.api_key = api_key
        self.api_secret = api_secret
        self.twiml_app_sid = twiml_app_sid
        self.client = client or Client(account_sid, auth_token)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioProvider":
        """Build a provider from application settings."""
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
            api_key=settings.twilio_api_key,
            api_secret=settings.twilio_api_secret,
            twiml_app_sid=settings.twilio_twiml_app_sid,
        )

    async def create_call(
        self,
        to: str,
        twiml: str,
        status_callback: str,
        status_callback_events: List[str],
    ) -> str:
        try:
            call = await run_in_threadpool(
                self.client.calls.create,
                to=to,
                from_=self.from_number,
                twiml=twiml,
                status_callback=status_callback,
                status_callback_event=status_callback_events,
                status_callback_method="POST",
            )
        except TwilioRestException as e:
            raise CallInitiationFailed(e.msg, code=e.code) from e
        except (TwilioException, OSError) as e:
            raise CallInitiationFailed(str(e)) from e
        return call.sid

    async def fetch_call(self, call_sid: str) -> ProviderCall:
        try:
            call = await run_in_threadpool(self.client.calls(call_sid).fetch)
        except TwilioRestException as e:
            raise ProviderRequestFailed(e.msg, code=e.code) from e
        except (TwilioException, OSError) as e:
            raise ProviderRequestFailed(str(e)) from e
        return ProviderCall(
            sid=call.sid,
            status=(call.status or "").lower(),
            direction=call.direction,
            duration_seconds=_duration(call.duration),
        )

    async def end_call(self, call_sid: str) -> None:
        try:
            await run_in_threadpool(
                self.client.calls(call_sid).update, status="completed"
            )
        except TwilioRestException as e:
            raise ProviderRequestFailed(e.msg, code=e.code) from e
        except (TwilioException, OSError) as e:
            raise ProviderRequestFailed(str(e)) from e

    async def end_conference(self, friendly_name: str) -> bool:
        try:
            conferences = await run_in_threadpool(
                self.client.conferences.list,
                friendly_name=friendly_name,
                status="in-progress",
                limit=1,
            )
            if not conferences:
                return False
            await run_in_threadpool(
                self.client.conferences(conferences[0].sid).update,
                status="completed",
            )
        except TwilioRestException as e:
            raise ProviderRequestFailed(e.msg, code=e.code) from e
        except (TwilioException, OSError) as e:
            raise ProviderRequestFailed(str(e)) from e
        return True

    async def send_message(self, to: str, body: str) -> ProviderMessage:
        try:
            message = await run_in_threadpool(
                self.client.messages.create,
                body=body,
                to=to,
                from_=self.from_number,
            )
        except TwilioRestException as e:
            raise ProviderRequestFailed(e.msg, code=e.code) from e
        except (TwilioException, OSError) as e:
            raise ProviderRequestFailed(str(e)) from e
        return ProviderMessage(
            sid=message.sid,
            body=message.body or body,
            from_number=message.from_ or self.from_number,
            to=message.to or to,
            status=message.status,
            date_created=message.date_created,
        )

    def mint_access_token(self, identity: str, ttl: int) -> str:
        if not all([self.account_sid, self.api_key, self.api_secret, self.twiml_app_sid]):
            logger.error(
                f"[TOKEN] Missing Twilio credentials - "
                f"api_key: {bool(self.api_key)}, api_secret: {bool(self.api_secret)}, "
                f"twiml_app_sid: {bool(self.twiml_app_sid)}"
            )
            raise ProviderNotConfigured(
                "Missing required Twilio credentials. Please check server configuration."
            )

        token = AccessToken(
            self.account_sid,
            self.api_key,
            self.api_secret,
            identity=identity,
            ttl=ttl,
        )
        token.add_grant(
            VoiceGrant(
                outgoing_application_sid=self.twiml_app_sid,
                incoming_allow=True,
            )
        )
        jwt = token.to_jwt()
        return jwt.decode("utf-8") if isinstance(jwt, bytes) else str(jwt)
