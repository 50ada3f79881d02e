"""Exceptions surfaced by the ticker.

Once a stream is running nothing is raised to the caller; these objects are
delivered as the argument of ``error`` events instead.
"""

from __future__ import annotations


class TickerError(Exception):
    """Base class for all ticker failures."""


class AuthenticationError(TickerError):
    """Handshake rejected with HTTP 401/403 (bad api_key or access_token)."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"WebSocket handshake rejected with HTTP {status}")


class ServerMessageError(TickerError):
    """Error message pushed by the server on the text channel."""


class ReconnectExhaustedError(TickerError):
    """Raised into ``error`` handlers when reconnection gives up."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Gave up reconnecting after {attempts} attempts")
