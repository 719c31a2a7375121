"""AI session contracts (submit + event stream), the streaming implementation and its test double."""

from prompter_live.ai.interfaces import AIProvider, AISession, ProviderChat, SessionBusyError, SessionClosedError
from prompter_live.ai.mock import MockAISession
from prompter_live.ai.session import StreamingAISession

__all__ = [
    "AIProvider",
    "AISession",
    "MockAISession",
    "ProviderChat",
    "SessionBusyError",
    "SessionClosedError",
    "StreamingAISession",
]
