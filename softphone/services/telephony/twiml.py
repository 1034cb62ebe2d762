"""TwiML builders for the two-leg conference bridge."""
from twilio.twiml.messaging_response import MessagingResponse
from twilio.twiml.voice_response import Dial, VoiceResponse

from softphone.services.telephony.numbers import spoken_number

# Conference lifecycle events reported to the conference status webhook
BRIDGE_EVENTS = "start end join leave"
JOIN_EVENTS = "join leave"


def outbound_bridge_twiml(
    bridge_name: str,
    caller_id: str,
    status_callback: str,
    announcement: str,
    wait_url: str,
    timeout: int = 30,
) -> str:
    """
    Instructions for the far (PSTN) leg of an outbound call.

    The far leg starts the bridge when it enters and tears it down when it
    leaves.
    """
    response = VoiceResponse()
    response.say(announcement)
    dial = Dial(timeout=timeout, caller_id=caller_id)
    dial.conference(
        bridge_name,
        start_conference_on_enter=True,
        end_conference_on_exit=True,
        status_callback=status_callback,
        status_callback_event=BRIDGE_EVENTS,
        wait_url=wait_url,
        wait_method="GET",
    )
    response.append(dial)
    return str(response)


def join_bridge_twiml(bridge_name: str, status_callback: str) -> str:
    """
    Instructions for a leg joining a bridge another leg already started.

    Leaving ends the bridge, so a two-party bridge collapses when either
    side hangs up.
    """
    response = VoiceResponse()
    dial = Dial()
    dial.conference(
        bridge_name,
        start_conference_on_enter=False,
        end_conference_on_exit=True,
        wait_url="",
        status_callback=status_callback,
        status_callback_event=JOIN_EVENTS,
    )
    response.append(dial)
    return str(response)


def incoming_call_twiml(from_number: str, client_identity: str) -> str:
    """Announce the caller and ring the registered browser client."""
    response = VoiceResponse()
    response.say(f"Incoming call from {spoken_number(from_number)}")
    dial = Dial()
    dial.client(client_identity)
    response.append(dial)
    return str(response)


def say_twiml(text: str) -> str:
    """Speak a short message and end."""
    response = VoiceResponse()
    response.say(text)
    return str(response)


def empty_messaging_twiml() -> str:
    """Acknowledge an inbound text without replying to it."""
    return str(MessagingResponse())
