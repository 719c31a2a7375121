from __future__ import annotations

import asyncio
import logging
from typing import Optional

from prompter_live.chat.interfaces import ChatSource, ChatSourceError
from prompter_live.core.backoff import RETRYABLE_HTTP_ERRORS, BackoffPolicy, SleepFn

logger = logging.getLogger(__name__)


class ReplyPoster:
    """
    Fire-and-forget delivery of replies to the chat source.

    dispatch() never blocks its caller: each post runs as its own task, is retried
    with the backoff policy on transient errors and only logged when it fails.
    Posts may complete out of order.
    """

    def __init__(
        self,
        source: ChatSource,
        *,
        backoff: BackoffPolicy,
        dry_run: bool = False,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._source = source
        self._backoff = backoff
        self._dry_run = dry_run
        self._sleep = sleep
        self._pending: set[asyncio.Task[None]] = set()
        self.posted_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispatch(self, source_id: Optional[str], text: str, *, exchange_id: int) -> Optional[asyncio.Task[None]]:
        if self._dry_run:
            logger.info("post.dry_run exchange_id=%s chars=%d text=%r", exchange_id, len(text), text)
            return None
        if source_id is None:
            logger.warning("post.no_active_source exchange_id=%s chars=%d", exchange_id, len(text))
            return None

        task = asyncio.create_task(self._post(source_id, text, exchange_id=exchange_id), name=f"post-{exchange_id}")
        self._pending.add(task)
        task.add_done_callback(self._on_post_done)
        return task

    async def _post(self, source_id: str, text: str, *, exchange_id: int) -> None:
        await self._backoff.run(
            "post_message",
            lambda: self._source.post_message(source_id, text),
            retry_on=RETRYABLE_HTTP_ERRORS + (ChatSourceError,),
            sleep=self._sleep,
            log_context=f"exchange_id={exchange_id} source_id={source_id}",
        )
        self.posted_count += 1
        logger.info("post.delivered exchange_id=%s source_id=%s chars=%d", exchange_id, source_id, len(text))

    def _on_post_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("post.failed task=%s", task.get_name())

    async def drain(self, *, timeout_seconds: float) -> None:
        """Wait up to `timeout_seconds` for in-flight posts, then cancel the rest."""
        if not self._pending:
            return
        pending = set(self._pending)
        _, still_running = await asyncio.wait(pending, timeout=timeout_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("post.drain_cancelled count=%d", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
