"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    ERROR = "error"


class EventType(StrEnum):
    START = "start"
    TEXT = "text"
    THINKING = "thinking"
    DEALS = "deals"
    COUPONS = "coupons"
    DONE = "done"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.DONE, EventType.ERROR})

# Deal and coupon records are opaque to the client
Record = dict[str, Any]
