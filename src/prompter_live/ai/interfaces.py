from __future__ import annotations

from typing import AsyncIterator, Protocol

from prompter_live.core.models import OutboundRequest, ResponseEvent


class SessionBusyError(RuntimeError):
    """Raised by submit() while a previous exchange has not reached its terminal event."""


class SessionClosedError(RuntimeError):
    pass


class ProviderChat(Protocol):
    """One open conversation with the AI provider."""

    def stream(self, text: str) -> AsyncIterator[str]:
        """Send one input and yield text deltas until the reply is complete."""


class AIProvider(Protocol):
    async def open_chat(self, *, model: str, system_instruction: str) -> ProviderChat:
        """Open a conversation for `model`, primed with `system_instruction`."""


class AISession(Protocol):
    """
    Streaming session contract.

    `submit` starts one exchange and returns its id without waiting for output;
    `next_event` yields the exchange's chunks followed by exactly one terminal
    event (CompleteEvent or ErrorEvent). Exchanges never overlap.
    """

    async def submit(self, request: OutboundRequest) -> int:
        ...

    async def next_event(self) -> ResponseEvent:
        ...

    async def close(self) -> None:
        ...
