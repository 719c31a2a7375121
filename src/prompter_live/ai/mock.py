from __future__ import annotations

import asyncio
from typing import Optional, Sequence, Union

from prompter_live.ai.interfaces import SessionBusyError, SessionClosedError
from prompter_live.core.models import ChunkEvent, CompleteEvent, ErrorEvent, OutboundRequest, ResponseEvent

ScriptedReply = Union[str, BaseException]

_CLOSED = object()


class MockAISession:
    """
    A deterministic in-memory AI session for end-to-end pipeline testing.

    Exchanges answer from `replies` in order (an exception entry produces an
    ErrorEvent) and fall back to the fixed `reply_text` once the script runs out.
    """

    def __init__(
        self,
        *,
        reply_text: str = "Mock AI response: thanks for your comment.",
        replies: Optional[Sequence[ScriptedReply]] = None,
    ) -> None:
        self.reply_text = reply_text
        self.submitted: list[OutboundRequest] = []
        self.close_calls = 0
        self._script = list(replies or ())
        self._events: asyncio.Queue[object] = asyncio.Queue()
        self._exchange_id = 0
        self._busy = False
        self._closed = False

    async def submit(self, request: OutboundRequest) -> int:
        if self._closed:
            raise SessionClosedError("AI session is closed.")
        if self._busy:
            raise SessionBusyError(f"AI session is busy. exchange_id={self._exchange_id}")
        self._busy = True
        self._exchange_id += 1
        self.submitted.append(request)

        reply: ScriptedReply = self._script.pop(0) if self._script else self.reply_text
        if isinstance(reply, BaseException):
            self._events.put_nowait(ErrorEvent(exchange_id=self._exchange_id, cause=reply))
        else:
            if reply:
                self._events.put_nowait(ChunkEvent(exchange_id=self._exchange_id, text=reply))
            self._events.put_nowait(CompleteEvent(exchange_id=self._exchange_id, full_text=reply))
        return self._exchange_id

    async def next_event(self) -> ResponseEvent:
        item = await self._events.get()
        if item is _CLOSED:
            self._events.put_nowait(_CLOSED)
            raise SessionClosedError("AI session is closed.")
        if isinstance(item, (CompleteEvent, ErrorEvent)):
            self._busy = False
        return item  # type: ignore[return-value]

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        self._events.put_nowait(_CLOSED)
