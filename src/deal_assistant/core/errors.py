"""Exception hierarchy surfaced through the session's error callback."""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all assistant failures."""


class StreamDisconnected(AssistantError):
    """The event stream dropped without a server-emitted error."""


class ServerStreamError(AssistantError):
    """The server emitted an ``error`` event on the stream."""


class ChatRequestFailed(AssistantError):
    """A non-streaming chat request failed or returned ``success: false``."""


class HistoryLoadFailed(AssistantError):
    """Loading a stored conversation failed."""
