"""Subscription registry.

Holds the *desired* server-side subscription state: which instrument tokens
are streamed and at which mode.  It is independent of the connection and is
never cleared on disconnect, so the connection manager can replay it verbatim
after every reconnect.
"""

from __future__ import annotations

import logging
import operator
import threading
from collections.abc import Iterable

from kitestream.ticks import Mode

logger = logging.getLogger(__name__)

DEFAULT_MODE = Mode.QUOTE


def _tokens(tokens: Iterable[int]) -> list[int]:
    """Deduplicate while keeping first-seen order."""
    seen: dict[int, None] = {}
    for token in tokens:
        if isinstance(token, bool):
            raise ValueError(f"Instrument token must be an int, got {token!r}")
        try:
            token = operator.index(token)
        except TypeError:
            raise ValueError(f"Instrument token must be an int, got {token!r}") from None
        if not 0 <= token <= 0xFFFFFFFF:
            raise ValueError(f"Instrument token out of u32 range: {token}")
        seen[token] = None
    return list(seen)


class SubscriptionRegistry:
    """Thread-safe ``{instrument_token: Mode}`` map."""

    def __init__(self) -> None:
        self._modes: dict[int, Mode] = {}
        self._lock = threading.Lock()

    def subscribe(self, tokens: Iterable[int], mode: Mode | str = DEFAULT_MODE) -> list[int]:
        """Add *tokens* at *mode*; tokens already present keep their mode.

        Returns the tokens that were newly added.
        """
        mode = Mode(mode)
        added = []
        with self._lock:
            for token in _tokens(tokens):
                if token not in self._modes:
                    self._modes[token] = mode
                    added.append(token)
        if added:
            logger.debug("Subscribed %d tokens at %s", len(added), mode.value)
        return added

    def unsubscribe(self, tokens: Iterable[int]) -> list[int]:
        """Remove *tokens*; returns the ones that were present."""
        removed = []
        with self._lock:
            for token in _tokens(tokens):
                if self._modes.pop(token, None) is not None:
                    removed.append(token)
        if removed:
            logger.debug("Unsubscribed %d tokens", len(removed))
        return removed

    def set_mode(self, mode: Mode | str, tokens: Iterable[int]) -> list[int]:
        """Set *mode* for *tokens*, subscribing any that are not present.

        Returns the tokens whose entry changed.
        """
        mode = Mode(mode)
        changed = []
        with self._lock:
            for token in _tokens(tokens):
                if self._modes.get(token) is not mode:
                    self._modes[token] = mode
                    changed.append(token)
        return changed

    def snapshot(self) -> dict[int, Mode]:
        with self._lock:
            return dict(self._modes)

    def by_mode(self) -> dict[Mode, list[int]]:
        """Current tokens grouped per mode, for batched replay."""
        groups: dict[Mode, list[int]] = {}
        for token, mode in sorted(self.snapshot().items()):
            groups.setdefault(mode, []).append(token)
        return groups

    def clear(self) -> None:
        with self._lock:
            self._modes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._modes)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._modes

    def __repr__(self) -> str:
        return f"SubscriptionRegistry({len(self)} tokens)"
