from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from prompter_live.core.models import Comment


class ChatSourceError(RuntimeError):
    """A transient chat-source failure; callers may retry."""


class NoActiveSourceError(ChatSourceError):
    """No live chat could be resolved for the configured identity."""


class SourceEndedError(Exception):
    """
    The active chat has ended.

    Not a ChatSourceError, so retry loops let it through; the caller waits for
    the rediscovery interval and resolves a new chat.
    """


@dataclass(frozen=True, slots=True)
class ChatPage:
    messages: Sequence[Comment]
    next_cursor: Optional[str]
    suggested_interval_seconds: float = 0.0


class ChatSource(Protocol):
    """Contract for a polled chat platform (listing and posting)."""

    async def resolve_active_source(self) -> str:
        """Return the id of the currently live chat, or raise NoActiveSourceError."""

    async def list_new_messages(self, source_id: str, cursor: Optional[str]) -> ChatPage:
        """Return one page of messages after `cursor`; raise SourceEndedError when the chat is over."""

    async def post_message(self, source_id: str, text: str) -> None:
        """Post `text` to the chat identified by `source_id`."""
