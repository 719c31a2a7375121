from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from prompter_live.chat.interfaces import ChatSource, SourceEndedError
from prompter_live.core.models import Comment

logger = logging.getLogger(__name__)


@dataclass
class PollCursor:
    continuation_token: Optional[str] = None
    last_seen_timestamp: Optional[datetime] = None
    # comment id -> clock reading when it was first delivered
    recent_ids: dict[str, float] = field(default_factory=dict)
    active_source_id: Optional[str] = None

    def reset_source(self) -> None:
        self.active_source_id = None
        self.continuation_token = None


@dataclass(frozen=True, slots=True)
class PollResult:
    comments: Sequence[Comment]
    suggested_interval_seconds: float


class ChatPoller:
    """
    Sequential poller over a ChatSource.

    Owns the PollCursor: resolves the live chat lazily, de-duplicates comment ids
    within the retention window and resets itself when the source reports it ended.
    Retrying is left to the caller; every exception other than SourceEndedError
    propagates unchanged.
    """

    def __init__(
        self,
        source: ChatSource,
        *,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._cursor = PollCursor()

    @property
    def cursor(self) -> PollCursor:
        return self._cursor

    @property
    def active_source_id(self) -> Optional[str]:
        return self._cursor.active_source_id

    async def poll(self) -> PollResult:
        cursor = self._cursor
        if cursor.active_source_id is None:
            cursor.active_source_id = await self._source.resolve_active_source()
            logger.info("chat.source_resolved source_id=%s", cursor.active_source_id)

        source_id = cursor.active_source_id
        try:
            page = await self._source.list_new_messages(source_id, cursor.continuation_token)
        except SourceEndedError:
            logger.info("chat.source_ended source_id=%s", source_id)
            cursor.reset_source()
            raise

        now = self._clock()
        fresh: list[Comment] = []
        for comment in page.messages:
            if comment.id in cursor.recent_ids:
                continue
            cursor.recent_ids[comment.id] = now
            fresh.append(comment)
            if cursor.last_seen_timestamp is None or comment.published_at > cursor.last_seen_timestamp:
                cursor.last_seen_timestamp = comment.published_at

        cursor.continuation_token = page.next_cursor
        self._expire_recent_ids(now)

        if fresh:
            logger.info(
                "chat.poll_fetched source_id=%s received=%d new=%d",
                source_id,
                len(page.messages),
                len(fresh),
            )
        return PollResult(comments=tuple(fresh), suggested_interval_seconds=page.suggested_interval_seconds)

    def _expire_recent_ids(self, now: float) -> None:
        cutoff = now - self._retention_seconds
        expired = [comment_id for comment_id, seen_at in self._cursor.recent_ids.items() if seen_at < cutoff]
        for comment_id in expired:
            del self._cursor.recent_ids[comment_id]
