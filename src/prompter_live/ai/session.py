from __future__ import annotations

import asyncio
import logging
from typing import Literal, Optional

from prompter_live.ai.interfaces import AIProvider, ProviderChat, SessionBusyError, SessionClosedError
from prompter_live.core.models import (
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    OutboundRequest,
    ResponseEvent,
    SessionState,
)

logger = logging.getLogger(__name__)

ChunkMode = Literal["aggregate", "delta"]

_CLOSED = object()


class StreamingAISession:
    """
    Turns a provider chat into the submit/next_event contract.

    Each exchange runs in its own consumer task which is the only writer of the
    session state after submit() has moved it to SENDING:

        IDLE -> SENDING -> STREAMING -> COMPLETED -> IDLE
                           STREAMING -> FAILED    -> IDLE

    In "delta" mode every provider delta becomes a ChunkEvent; in "aggregate" mode
    a single ChunkEvent carries the whole reply. Either way the chunks of a
    successful exchange concatenate to the CompleteEvent text.
    """

    def __init__(
        self,
        chat: ProviderChat,
        *,
        chunk_mode: ChunkMode = "aggregate",
        exchange_timeout_seconds: float = 60.0,
    ) -> None:
        self._chat = chat
        self._chunk_mode = chunk_mode
        self._exchange_timeout_seconds = exchange_timeout_seconds
        self._state = SessionState.IDLE
        self._lock = asyncio.Lock()
        self._events: asyncio.Queue[object] = asyncio.Queue()
        self._buffer: list[str] = []
        self._exchange_id = 0
        self._consumer: Optional[asyncio.Task[None]] = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        provider: AIProvider,
        *,
        model: str,
        system_instruction: str,
        chunk_mode: ChunkMode = "aggregate",
        exchange_timeout_seconds: float = 60.0,
    ) -> "StreamingAISession":
        chat = await provider.open_chat(model=model, system_instruction=system_instruction)
        logger.info("ai.session_opened model=%s chunk_mode=%s", model, chunk_mode)
        return cls(chat, chunk_mode=chunk_mode, exchange_timeout_seconds=exchange_timeout_seconds)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, request: OutboundRequest) -> int:
        async with self._lock:
            if self._closed:
                raise SessionClosedError("AI session is closed.")
            if self._state is not SessionState.IDLE:
                raise SessionBusyError(f"AI session is busy. state={self._state.value} exchange_id={self._exchange_id}")
            self._exchange_id += 1
            exchange_id = self._exchange_id
            self._state = SessionState.SENDING
            self._buffer = []
            self._consumer = asyncio.create_task(
                self._consume(exchange_id, request),
                name=f"ai-exchange-{exchange_id}",
            )
        logger.info(
            "ai.exchange_submitted exchange_id=%s author=%s comment_id=%s",
            exchange_id,
            request.metadata.author,
            request.metadata.comment_id,
        )
        return exchange_id

    async def next_event(self) -> ResponseEvent:
        item = await self._events.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._events.put_nowait(_CLOSED)
            raise SessionClosedError("AI session is closed.")
        return item  # type: ignore[return-value]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        consumer = self._consumer
        if consumer is not None and not consumer.done():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                logger.info("ai.exchange_cancelled exchange_id=%s", self._exchange_id)
        self._events.put_nowait(_CLOSED)
        logger.info("ai.session_closed exchanges=%s", self._exchange_id)

    async def _consume(self, exchange_id: int, request: OutboundRequest) -> None:
        try:
            await asyncio.wait_for(
                self._stream_reply(exchange_id, request),
                timeout=self._exchange_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._state = SessionState.FAILED
            logger.warning(
                "ai.exchange_failed exchange_id=%s partial_chars=%d error=%s",
                exchange_id,
                sum(len(part) for part in self._buffer),
                type(exc).__name__,
            )
            self._events.put_nowait(ErrorEvent(exchange_id=exchange_id, cause=exc))
        else:
            self._state = SessionState.COMPLETED
            full_text = "".join(self._buffer)
            logger.info("ai.exchange_completed exchange_id=%s chars=%d", exchange_id, len(full_text))
            self._events.put_nowait(CompleteEvent(exchange_id=exchange_id, full_text=full_text))

        async with self._lock:
            self._buffer = []
            self._state = SessionState.IDLE

    async def _stream_reply(self, exchange_id: int, request: OutboundRequest) -> None:
        stream = self._chat.stream(request.text)
        self._state = SessionState.STREAMING
        async for delta in stream:
            if not delta:
                continue
            self._buffer.append(delta)
            if self._chunk_mode == "delta":
                self._events.put_nowait(ChunkEvent(exchange_id=exchange_id, text=delta))
        if self._chunk_mode == "aggregate" and self._buffer:
            self._events.put_nowait(ChunkEvent(exchange_id=exchange_id, text="".join(self._buffer)))
