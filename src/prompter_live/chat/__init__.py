"""Chat-source contracts, the polling cursor owner and the YouTube implementation."""

from prompter_live.chat.interfaces import (
    ChatPage,
    ChatSource,
    ChatSourceError,
    NoActiveSourceError,
    SourceEndedError,
)
from prompter_live.chat.poller import ChatPoller, PollCursor, PollResult

__all__ = [
    "ChatPage",
    "ChatPoller",
    "ChatSource",
    "ChatSourceError",
    "NoActiveSourceError",
    "PollCursor",
    "PollResult",
    "SourceEndedError",
]
