"""Text-frame parsing.

Besides binary ticks the server pushes JSON text messages on the same socket:

- ``{"type": "order", "data": {...}}``  order postback
- ``{"type": "error", "data": "..."}``  server-side error notice

Anything else is ignored.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from kitestream.errors import ServerMessageError
from kitestream.events import EventKind

logger = logging.getLogger(__name__)


def parse_text_message(text: str | bytes) -> tuple[EventKind, Any] | None:
    """Map a text frame to the event it should raise.

    Returns ``(EventKind.ORDER_UPDATE, payload)``,
    ``(EventKind.ERROR, ServerMessageError)`` or ``None``.
    """
    try:
        message = json.loads(text)
    except (TypeError, ValueError) as e:
        logger.debug("Ignoring non-JSON text frame: %s", e)
        return None

    if not isinstance(message, dict):
        return None

    kind = message.get("type")
    if kind == "order":
        return EventKind.ORDER_UPDATE, message.get("data")
    if kind == "error":
        return EventKind.ERROR, ServerMessageError(str(message.get("data", "")))

    logger.debug("Ignoring text frame of type %r", kind)
    return None
