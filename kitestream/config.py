"""Ticker configuration and credentials.

Everything here is an immutable value built once per ticker instance; there
is no module-level mutable state.

Credentials are read from the environment (optionally a ``.env`` file)::

    ZERODHA_API_KEY=...
    ZERODHA_ACCESS_TOKEN=...
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_ROOT = "wss://ws.kite.trade"

# Service limits on caller-supplied reconnect settings.
MAX_RECONNECT_ATTEMPTS = 300
MIN_RECONNECT_MAX_DELAY = 5.0


# ---------------------------------------------------------------------------
# Reconnect policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff settings.

    Attempt ``n`` (starting at 1) waits
    ``min(max_delay, base_delay * backoff_multiplier ** (n - 1))`` seconds.
    """

    enabled: bool = True
    max_attempts: int = 50
    base_delay: float = 1.0               # seconds
    max_delay: float = 60.0               # seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Reconnect delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    @classmethod
    def bounded(
        cls,
        max_attempts: int | None = None,
        max_delay: float | None = None,
        enabled: bool = True,
    ) -> ReconnectPolicy:
        """Build a policy from user settings, clamped to the service limits.

        At most 300 attempts; the delay cap is never below 5 seconds.
        """
        defaults = cls()
        attempts = max_attempts or defaults.max_attempts
        delay = max_delay or defaults.max_delay
        return cls(
            enabled=enabled,
            max_attempts=min(attempts, MAX_RECONNECT_ATTEMPTS),
            max_delay=max(delay, MIN_RECONNECT_MAX_DELAY),
        )

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError(f"attempt numbering starts at 1, got {attempt}")
        return min(self.max_delay, self.base_delay * self.backoff_multiplier ** (attempt - 1))

    def delays(self) -> Iterator[float]:
        """Delay of every permitted attempt, in order."""
        for attempt in range(1, self.max_attempts + 1):
            yield self.delay_for(attempt)


# ---------------------------------------------------------------------------
# Ticker config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TickerConfig:
    root: str = DEFAULT_ROOT
    read_timeout: float = 5.0             # no frame for this long -> reconnect
    connect_timeout: float = 10.0
    close_timeout: float = 5.0
    max_frame_size: int = 2**22
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    # segment id -> price divisor, consulted before the built-in table
    price_divisors: Mapping[int, float] | None = None
    user_agent: str = "kitestream/0.1.0"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Credentials:
    """Opaque session credentials; never refreshed by the ticker."""

    api_key: str
    access_token: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(api_key={self.api_key!r}, access_token='***')"


def load_credentials(env_path: str | Path | None = None) -> Credentials:
    """Read credentials from the environment, loading ``.env`` first.

    Raises ``ValueError`` when either value is missing.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        for p in (Path(".env"), Path("../.env")):
            if p.exists():
                load_dotenv(p)
                break

    api_key = os.getenv("ZERODHA_API_KEY", "")
    access_token = os.getenv("ZERODHA_ACCESS_TOKEN", "")
    if not api_key or not access_token:
        raise ValueError(
            "Missing Kite credentials. Set ZERODHA_API_KEY and "
            "ZERODHA_ACCESS_TOKEN in the environment or .env"
        )
    return Credentials(api_key=api_key, access_token=access_token)
