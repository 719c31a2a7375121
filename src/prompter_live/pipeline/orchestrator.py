from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from prompter_live.ai.interfaces import AISession, SessionBusyError
from prompter_live.chat.interfaces import ChatSource, ChatSourceError, NoActiveSourceError, SourceEndedError
from prompter_live.chat.poller import ChatPoller
from prompter_live.config.models import AppConfig, PipelineSettings
from prompter_live.core.backoff import RETRYABLE_HTTP_ERRORS, BackoffPolicy, SleepFn
from prompter_live.core.models import (
    ChunkEvent,
    Comment,
    CompleteEvent,
    ErrorEvent,
    OutboundRequest,
    TerminalEvent,
)
from prompter_live.pipeline.poster import ReplyPoster
from prompter_live.pipeline.sanitizer import has_visible_content, sanitize

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Awaitable[AISession]]

POLL_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = RETRYABLE_HTTP_ERRORS + (ChatSourceError,)

# No chat to poll right now; waited out with the rediscovery interval, never escalated.
POLL_REDISCOVERY_ERRORS: tuple[type[BaseException], ...] = (SourceEndedError, NoActiveSourceError)

# Slack on top of the session's own per-exchange timeout.
EXCHANGE_WAIT_GRACE_SECONDS = 5.0


class PipelineError(RuntimeError):
    """Fatal pipeline failure; the cause is chained."""


class PipelineOrchestrator:
    """
    Runs the chat -> AI -> chat loop under one stop signal.

    Two units run concurrently: the receive unit drains AI session events,
    sanitizes replies and hands them to the poster; the poll/send unit polls the
    chat, submits each new comment and waits for that exchange's terminal event
    (relayed by the receive unit) before submitting the next one. Replies go to
    the chat the comment was polled from. The first unit failure or the stop
    signal ends run(), and the session is closed exactly once on every exit path.
    """

    def __init__(
        self,
        *,
        poller: ChatPoller,
        session_factory: SessionFactory,
        poster: ReplyPoster,
        settings: PipelineSettings,
        comment_template: str = "{author} says: {text}",
        exchange_wait_seconds: float = 60.0 + EXCHANGE_WAIT_GRACE_SECONDS,
        halt_on_ai_error: bool = False,
        sleep: SleepFn = asyncio.sleep,
        shutdown_grace_seconds: float = 5.0,
    ) -> None:
        self._poller = poller
        self._session_factory = session_factory
        self._poster = poster
        self._settings = settings
        self._comment_template = comment_template
        self._exchange_wait_seconds = exchange_wait_seconds
        self._halt_on_ai_error = halt_on_ai_error
        self._sleep = sleep
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._backoff = BackoffPolicy(
            max_attempts=settings.max_retries,
            base_delay_seconds=settings.initial_backoff_seconds,
            factor=settings.backoff_factor,
        )
        # exchange id -> chat the reply belongs to; set by the poll/send unit
        # right after submit, removed once the exchange is over or abandoned.
        self._reply_targets: dict[int, Optional[str]] = {}

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Drive the pipeline until `stop_event` is set (returns normally) or a unit
        fails (raises PipelineError). Cancelling the calling task also tears down.
        """
        stop_event = stop_event if stop_event is not None else asyncio.Event()
        try:
            session = await self._session_factory()
        except Exception as exc:
            raise PipelineError("AI session could not be established.") from exc

        logger.info(
            "pipeline.started poll_interval_seconds=%s max_retries=%s comment_length_cap=%s",
            self._settings.poll_interval_seconds,
            self._settings.max_retries,
            self._settings.comment_length_cap,
        )
        self._reply_targets.clear()
        terminals: asyncio.Queue[TerminalEvent] = asyncio.Queue()
        units = [
            asyncio.create_task(self._receive_unit(session, terminals), name="pipeline-receive"),
            asyncio.create_task(self._poll_send_unit(session, terminals), name="pipeline-poll-send"),
        ]
        stop_task = asyncio.create_task(stop_event.wait(), name="pipeline-stop")
        try:
            done, _ = await asyncio.wait([*units, stop_task], return_when=asyncio.FIRST_COMPLETED)
            if stop_task in done:
                logger.info("pipeline.stop_requested")
                return
            for task in units:
                if task not in done:
                    continue
                exc = task.exception()
                if isinstance(exc, PipelineError):
                    raise exc
                if exc is not None:
                    raise PipelineError(f"Pipeline unit failed. unit={task.get_name()}") from exc
                raise PipelineError(f"Pipeline unit exited unexpectedly. unit={task.get_name()}")
        finally:
            for task in (*units, stop_task):
                task.cancel()
            await asyncio.gather(*units, stop_task, return_exceptions=True)
            await self._poster.drain(timeout_seconds=self._shutdown_grace_seconds)
            await session.close()
            logger.info("pipeline.stopped")

    async def _receive_unit(self, session: AISession, terminals: asyncio.Queue[TerminalEvent]) -> None:
        # Exchanges that already produced a chunk; their CompleteEvent is not posted again.
        chunked: set[int] = set()
        while True:
            event = await session.next_event()
            if isinstance(event, ChunkEvent):
                chunked.add(event.exchange_id)
                self._publish(event.text, exchange_id=event.exchange_id)
            elif isinstance(event, CompleteEvent):
                if event.exchange_id not in chunked:
                    self._publish(event.full_text, exchange_id=event.exchange_id)
                chunked.discard(event.exchange_id)
                self._reply_targets.pop(event.exchange_id, None)
                terminals.put_nowait(event)
            elif isinstance(event, ErrorEvent):
                chunked.discard(event.exchange_id)
                self._reply_targets.pop(event.exchange_id, None)
                logger.warning("pipeline.exchange_failed exchange_id=%s error=%r", event.exchange_id, event.cause)
                terminals.put_nowait(event)
                if self._halt_on_ai_error:
                    raise PipelineError(f"AI exchange failed. exchange_id={event.exchange_id}") from event.cause

    def _publish(self, raw_text: str, *, exchange_id: int) -> None:
        if exchange_id not in self._reply_targets:
            logger.info("pipeline.abandoned_reply_dropped exchange_id=%s raw_chars=%d", exchange_id, len(raw_text))
            return
        text = sanitize(
            raw_text,
            self._settings.comment_length_cap,
            suffix=self._settings.truncation_suffix,
        )
        if not has_visible_content(text):
            logger.info("pipeline.reply_suppressed exchange_id=%s raw_chars=%d", exchange_id, len(raw_text))
            return
        self._poster.dispatch(self._reply_targets[exchange_id], text, exchange_id=exchange_id)

    async def _poll_send_unit(self, session: AISession, terminals: asyncio.Queue[TerminalEvent]) -> None:
        interval = self._settings.poll_interval_seconds
        while True:
            delay = interval
            try:
                result = await self._backoff.run(
                    "poll",
                    self._poller.poll,
                    retry_on=POLL_RETRYABLE_ERRORS,
                    give_up_on=POLL_REDISCOVERY_ERRORS,
                    sleep=self._sleep,
                )
            except POLL_REDISCOVERY_ERRORS as exc:
                delay = self._settings.rediscovery_interval_seconds
                logger.info("pipeline.rediscovery_wait reason=%s delay_seconds=%s", type(exc).__name__, delay)
            except POLL_RETRYABLE_ERRORS as exc:
                raise PipelineError(
                    f"Chat polling failed after {self._backoff.max_attempts} attempts."
                ) from exc
            else:
                if result.suggested_interval_seconds > 0:
                    interval = result.suggested_interval_seconds
                    delay = interval
                source_id = self._poller.active_source_id
                for comment in sorted(result.comments, key=lambda c: c.published_at):
                    await self._run_exchange(session, terminals, comment, source_id=source_id)
            await self._sleep(delay)

    async def _run_exchange(
        self,
        session: AISession,
        terminals: asyncio.Queue[TerminalEvent],
        comment: Comment,
        *,
        source_id: Optional[str],
    ) -> None:
        logger.info("pipeline.comment_received comment_id=%s author=%s", comment.id, comment.author)
        request = OutboundRequest.from_comment(comment, template=self._comment_template)
        try:
            exchange_id = await session.submit(request)
        except SessionBusyError:
            logger.warning("pipeline.comment_skipped_busy comment_id=%s", comment.id)
            return
        # Recorded before this unit suspends again, so the receive unit sees it
        # ahead of the exchange's first event.
        self._reply_targets[exchange_id] = source_id

        try:
            terminal = await asyncio.wait_for(
                self._await_terminal(terminals, exchange_id),
                timeout=self._exchange_wait_seconds,
            )
        except asyncio.TimeoutError:
            self._reply_targets.pop(exchange_id, None)
            logger.warning(
                "pipeline.exchange_timeout exchange_id=%s comment_id=%s timeout_seconds=%s",
                exchange_id,
                comment.id,
                self._exchange_wait_seconds,
            )
            return
        logger.info(
            "pipeline.exchange_done exchange_id=%s comment_id=%s outcome=%s",
            exchange_id,
            comment.id,
            "complete" if isinstance(terminal, CompleteEvent) else "error",
        )

    @staticmethod
    async def _await_terminal(terminals: asyncio.Queue[TerminalEvent], exchange_id: int) -> TerminalEvent:
        while True:
            terminal = await terminals.get()
            if terminal.exchange_id == exchange_id:
                return terminal
            logger.info("pipeline.stale_terminal_dropped exchange_id=%s", terminal.exchange_id)


def build_orchestrator(
    config: AppConfig,
    *,
    source: ChatSource,
    session_factory: SessionFactory,
    sleep: SleepFn = asyncio.sleep,
) -> PipelineOrchestrator:
    settings = config.pipeline
    poller = ChatPoller(source, retention_seconds=settings.retention_seconds)
    poster = ReplyPoster(
        source,
        backoff=BackoffPolicy(
            max_attempts=settings.max_retries,
            base_delay_seconds=settings.initial_backoff_seconds,
            factor=settings.backoff_factor,
        ),
        dry_run=config.app.dry_run,
        sleep=sleep,
    )
    return PipelineOrchestrator(
        poller=poller,
        session_factory=session_factory,
        poster=poster,
        settings=settings,
        comment_template=config.ai.comment_template,
        exchange_wait_seconds=config.ai.exchange_timeout_seconds + EXCHANGE_WAIT_GRACE_SECONDS,
        halt_on_ai_error=config.ai.halt_on_error,
        sleep=sleep,
    )
