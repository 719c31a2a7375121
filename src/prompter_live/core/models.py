from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True, slots=True)
class Comment:
    id: str
    author: str
    author_id: Optional[str]
    text: str
    published_at: datetime


@dataclass(frozen=True, slots=True)
class RequestMetadata:
    author: str
    timestamp: datetime
    comment_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OutboundRequest:
    """The unit of input submitted to an AI session."""

    text: str
    metadata: RequestMetadata

    @classmethod
    def from_comment(cls, comment: Comment, *, template: str = "{author} says: {text}") -> "OutboundRequest":
        return cls(
            text=template.format(author=comment.author, text=comment.text),
            metadata=RequestMetadata(
                author=comment.author,
                timestamp=comment.published_at,
                comment_id=comment.id,
            ),
        )


@dataclass(frozen=True, slots=True)
class ChunkEvent:
    exchange_id: int
    text: str


@dataclass(frozen=True, slots=True)
class CompleteEvent:
    exchange_id: int
    full_text: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    exchange_id: int
    cause: BaseException = field(compare=False)


ResponseEvent = Union[ChunkEvent, CompleteEvent, ErrorEvent]
TerminalEvent = Union[CompleteEvent, ErrorEvent]


def is_terminal(event: ResponseEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


class SessionState(str, enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
