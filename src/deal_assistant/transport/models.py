"""Wire payloads exchanged with the assistant API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from deal_assistant.core.types import TERMINAL_EVENTS, EventType, MessageRole, Record


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StreamEvent(_Payload):
    """One decoded server-sent event."""

    type: EventType
    content: str = ""
    deals: list[Record] = Field(default_factory=list)
    coupons: list[Record] = Field(default_factory=list)
    error: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS


class ChatReply(_Payload):
    success: bool
    content: Optional[str] = None
    deals: Optional[list[Record]] = None
    coupons: Optional[list[Record]] = None
    cached: bool = False
    request_id: Optional[str] = Field(default=None, alias="requestId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    error: Optional[str] = None


class HistoryMessage(_Payload):
    id: str
    role: MessageRole
    content: str = ""
    created_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None


class HistoryReply(_Payload):
    success: bool
    messages: Optional[list[HistoryMessage]] = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ChatRequest:
    message: str
    conversation_id: Optional[str] = None
    context: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if self.conversation_id:
            body["conversationId"] = self.conversation_id
        if self.context:
            body["context"] = dict(self.context)
        return body
