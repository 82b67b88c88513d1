"""Error taxonomy for the link protocol, biometric queries and session control.

Transport-level failures (``LinkUnavailable``, ``RequestTimeout``,
``SerializationError``) are recovered locally by queueing, dropping or
degrading.  Only ``PlatformSessionError`` raised from ``SessionController.start``
is meant to reach the user-facing layer.
"""

from __future__ import annotations


class WorkoutError(Exception):
    """Base class for all Pacelink workout errors."""


# ---------------------------------------------------------------------------
# Link channel
# ---------------------------------------------------------------------------


class LinkUnavailable(WorkoutError):
    """The companion is not reachable, so a request cannot be attempted."""


class RequestTimeout(WorkoutError):
    """No reply arrived within the request timeout."""

    def __init__(self, kind: str, timeout: float) -> None:
        super().__init__(f"No reply to '{kind}' request within {timeout:.1f}s")
        self.kind = kind
        self.timeout = timeout


class SerializationError(WorkoutError):
    """An inbound payload could not be decoded into a LinkMessage."""


# ---------------------------------------------------------------------------
# Biometric store
# ---------------------------------------------------------------------------


class AuthorizationDenied(WorkoutError):
    """Access to the biometric store has not been granted."""


class PlatformUnavailable(WorkoutError):
    """The biometric store is not available on this device."""


class PlatformSessionError(WorkoutError):
    """The platform workout session could not be created or failed while running."""


# ---------------------------------------------------------------------------
# Session control
# ---------------------------------------------------------------------------


class SessionConflict(WorkoutError):
    """A session was started while another one is still live."""


class InvalidTransition(WorkoutError):
    """A session command is not valid in the current state."""

    def __init__(self, current: str, command: str) -> None:
        super().__init__(f"Cannot {command} a session in state '{current}'")
        self.current = current
        self.command = command
