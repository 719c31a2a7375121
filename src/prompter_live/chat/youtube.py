from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

import aiohttp

from prompter_live.chat.interfaces import ChatPage, ChatSourceError, NoActiveSourceError, SourceEndedError
from prompter_live.chat.oauth import OAuthError
from prompter_live.core.models import Comment

logger = logging.getLogger(__name__)

API_BASE_URL = "https://www.googleapis.com/youtube/v3"

_SOURCE_ENDED_REASONS = frozenset({"liveChatEnded", "liveChatNotFound", "liveChatDisabled"})


class AccessTokenProvider(Protocol):
    async def access_token(self) -> str: ...

    async def invalidate(self) -> None: ...


def _error_reasons(payload: Any) -> set[str]:
    if not isinstance(payload, Mapping):
        return set()
    error = payload.get("error")
    if not isinstance(error, Mapping):
        return set()
    reasons = {str(e.get("reason")) for e in error.get("errors") or () if isinstance(e, Mapping) and e.get("reason")}
    return reasons


def _parse_published_at(raw: Optional[str]) -> datetime:
    if raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("youtube.timestamp_parse_failed value=%s", raw)
        else:
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def parse_chat_item(item: Mapping[str, Any]) -> Optional[Comment]:
    comment_id = item.get("id")
    if not comment_id:
        return None
    snippet = item.get("snippet") or {}
    author = item.get("authorDetails") or {}
    text = snippet.get("displayMessage") or (snippet.get("textMessageDetails") or {}).get("messageText") or ""
    if not text.strip():
        return None
    return Comment(
        id=str(comment_id),
        author=author.get("displayName") or "",
        author_id=author.get("channelId") or snippet.get("authorChannelId"),
        text=text,
        published_at=_parse_published_at(snippet.get("publishedAt")),
    )


def parse_chat_page(payload: Mapping[str, Any]) -> ChatPage:
    comments = []
    for item in payload.get("items") or ():
        comment = parse_chat_item(item)
        if comment is not None:
            comments.append(comment)
    interval_ms = payload.get("pollingIntervalMillis") or 0
    return ChatPage(
        messages=tuple(comments),
        next_cursor=payload.get("nextPageToken"),
        suggested_interval_seconds=float(interval_ms) / 1000.0,
    )


class YouTubeChatSource:
    """ChatSource backed by the YouTube Data API v3 live chat endpoints."""

    def __init__(
        self,
        *,
        http: aiohttp.ClientSession,
        token_provider: AccessTokenProvider,
        channel_id: str,
        request_timeout_seconds: float = 15.0,
        max_results: int = 200,
    ) -> None:
        self._http = http
        self._token_provider = token_provider
        self._channel_id = channel_id
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._max_results = max_results

    async def _authorization_token(self, path: str) -> str:
        # A refresh that hit a rate limit, a 5xx or the network is retried like any
        # other chat request; a missing or rejected grant stays an OAuthError.
        try:
            return await self._token_provider.access_token()
        except OAuthError as exc:
            if not exc.transient:
                raise
            raise ChatSourceError(f"Token refresh failed transiently. path={path} status={exc.status}") from exc
        except aiohttp.ClientError as exc:
            raise ChatSourceError(f"Token refresh request failed. path={path} error={type(exc).__name__}") from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any],
        body: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        token = await self._authorization_token(path)
        headers = {"Authorization": f"Bearer {token}"}
        async with self._http.request(
            method,
            f"{API_BASE_URL}/{path}",
            params=dict(params),
            json=body,
            headers=headers,
            timeout=self._timeout,
        ) as response:
            raw = await response.text()
            try:
                payload = json.loads(raw) if raw else {}
            except ValueError as exc:
                raise ChatSourceError(f"YouTube API returned invalid JSON. path={path} status={response.status}") from exc

            if response.status == 401:
                await self._token_provider.invalidate()
                raise ChatSourceError(f"YouTube API rejected the access token. path={path}")
            if response.status >= 400:
                reasons = _error_reasons(payload)
                if reasons & _SOURCE_ENDED_REASONS:
                    raise SourceEndedError(f"Live chat is no longer available. reasons={sorted(reasons)}")
                raise ChatSourceError(
                    f"YouTube API request failed. path={path} status={response.status} reasons={sorted(reasons)}"
                )
            if not isinstance(payload, dict):
                raise ChatSourceError(f"YouTube API returned a non-object payload. path={path}")
            return payload

    async def resolve_active_source(self) -> str:
        search = await self._request(
            "GET",
            "search",
            params={
                "part": "id",
                "channelId": self._channel_id,
                "eventType": "live",
                "type": "video",
                "maxResults": 1,
            },
        )
        items = search.get("items") or []
        if not items:
            raise NoActiveSourceError(f"No active live broadcast found. channel_id={self._channel_id}")
        video_id = (items[0].get("id") or {}).get("videoId")
        if not video_id:
            raise NoActiveSourceError(f"Live search result carried no video id. channel_id={self._channel_id}")

        videos = await self._request(
            "GET",
            "videos",
            params={"part": "liveStreamingDetails", "id": video_id},
        )
        video_items = videos.get("items") or []
        details = (video_items[0].get("liveStreamingDetails") or {}) if video_items else {}
        live_chat_id = details.get("activeLiveChatId")
        if not live_chat_id:
            raise NoActiveSourceError(f"Broadcast has no active live chat. video_id={video_id}")
        logger.info("youtube.live_chat_found video_id=%s live_chat_id=%s", video_id, live_chat_id)
        return str(live_chat_id)

    async def list_new_messages(self, source_id: str, cursor: Optional[str]) -> ChatPage:
        params: dict[str, Any] = {
            "liveChatId": source_id,
            "part": "snippet,authorDetails",
            "maxResults": self._max_results,
        }
        if cursor:
            params["pageToken"] = cursor
        payload = await self._request("GET", "liveChat/messages", params=params)
        if payload.get("offlineAt"):
            raise SourceEndedError(f"Live chat went offline. offline_at={payload['offlineAt']}")
        return parse_chat_page(payload)

    async def post_message(self, source_id: str, text: str) -> None:
        await self._request(
            "POST",
            "liveChat/messages",
            params={"part": "snippet"},
            body={
                "snippet": {
                    "liveChatId": source_id,
                    "type": "textMessageEvent",
                    "textMessageDetails": {"messageText": text},
                }
            },
        )
        logger.info("youtube.message_posted live_chat_id=%s chars=%d", source_id, len(text))
