"""Conversation data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from deal_assistant.core.types import MessageRole, Record


def new_message_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    id: str
    role: MessageRole
    content: str = ""
    thinking: Optional[str] = None
    deals: Optional[list[Record]] = None
    coupons: Optional[list[Record]] = None
    is_streaming: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    metadata: Optional[dict[str, Any]] = None
    cached: Optional[bool] = None
