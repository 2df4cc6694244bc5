"""
Exception taxonomy for the queue load-test harness.

Only two of these ever end a journey early: :class:`AuthenticationFailure`
stops a user before browsing, and :class:`ProtocolViolation` stops the
queue phase.  Everything else a journey encounters is recorded as a
failed check and the journey carries on.
"""

from __future__ import annotations


class LoadTestError(Exception):
    """Base class for every error raised by the harness."""


class ConfigurationError(LoadTestError):
    """A behavior profile, threshold file or setting is invalid."""


class AuthenticationFailure(LoadTestError):
    """Login was refused or did not yield the credential cookies."""

    def __init__(self, username: str, status_code: int, reason: str = "") -> None:
        self.username = username
        self.status_code = status_code
        self.reason = reason
        message = f"Login failed for {username} (status {status_code})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ProtocolViolation(LoadTestError):
    """The queue-entry response could not be interpreted."""


class RealtimeConnectionError(LoadTestError):
    """
    The realtime queue channel failed.

    Raised for handshake failures and transport errors.  A connection
    that the harness closed itself never produces this error.
    """
