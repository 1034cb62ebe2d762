"""Phone number normalization and display helpers."""
import re

from softphone.core.exceptions import InvalidArgument

CLIENT_PREFIX = "client:"
BRIDGE_PREFIX = "conference:"

_NON_DIGITS = re.compile(r"\D")


def normalize_number(raw_number: str, country_code: str = "1") -> str:
    """
    Normalize a dialed destination to E.164-like form.

    Numbers already carrying a ``+`` or a client address prefix are passed
    through unchanged. Otherwise every non-digit is stripped and a bare
    10-digit local number gets the default country code.

    Raises:
        InvalidArgument: if nothing dialable is left after trimming
    """
    number = (raw_number or "").strip()
    if not number:
        raise InvalidArgument("Please provide a phone number to call.")

    if number.startswith("+") or number.startswith(CLIENT_PREFIX):
        return number

    digits = _NON_DIGITS.sub("", number)
    if not digits:
        raise InvalidArgument(f"'{raw_number}' does not contain a phone number.")

    if len(digits) == 10:
        return f"+{country_code}{digits}"
    return f"+{digits}"


def format_phone_number(number: str) -> str:
    """Format a number for display, e.g. ``+1 (555) 123-4567``."""
    if not number:
        return ""
    digits = _NON_DIGITS.sub("", number)
    if len(digits) == 11:
        return f"+{digits[0]} ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[0:3]}) {digits[3:6]}-{digits[6:]}"
    return number


def spoken_number(number: str) -> str:
    """Strip the leading plus so announcements read the digits."""
    return number.replace("+", "")
