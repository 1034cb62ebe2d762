"""Call session constants."""

# Fallback poll cadence while a tracked call is live
POLL_INTERVAL_SECONDS = 2.0

# How long a finished call shows its summary before the phone goes idle
QUIET_PERIOD_SECONDS = 3.0

# Unanswered incoming calls are rejected after this long
RING_TIMEOUT_SECONDS = 30.0

DURATION_TICK_SECONDS = 1.0

# Proceed as registered if the device never reports it within this window
DEVICE_READY_TIMEOUT_SECONDS = 3.0

PUSH_RECONNECT_DELAY_SECONDS = 2.0

# Raw provider statuses after which no live transition is expected
TERMINAL_STATUSES = frozenset(["completed", "failed", "busy", "no-answer", "canceled"])

# Raw provider statuses that map onto a live client status
CONNECTING_STATUSES = frozenset(["queued", "initiated"])
RINGING_STATUSES = frozenset(["ringing"])
IN_PROGRESS_STATUSES = frozenset(["in-progress", "answered"])
