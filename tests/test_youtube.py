import json
import unittest
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from prompter_live.chat.interfaces import ChatSourceError, NoActiveSourceError, SourceEndedError
from prompter_live.chat.oauth import OAuthError
from prompter_live.chat.youtube import YouTubeChatSource, _error_reasons, parse_chat_item, parse_chat_page


def _item(comment_id: str, text: str, *, author: str = "alice", published: str = "2025-01-01T12:00:00Z") -> dict:
    return {
        "id": comment_id,
        "snippet": {"displayMessage": text, "publishedAt": published, "authorChannelId": f"UC-{author}"},
        "authorDetails": {"displayName": author, "channelId": f"UC-{author}"},
    }


class _FakeResponse:
    def __init__(self, status: int, payload: Any) -> None:
        self.status = status
        self._body = json.dumps(payload) if payload is not None else ""

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> "_FakeResponse":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class _FakeHttp:
    def __init__(self, *responses: tuple[int, Any]) -> None:
        self._responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        status, payload = self._responses.pop(0)
        return _FakeResponse(status, payload)


class _FakeTokens:
    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.invalidated = 0
        self._error = error

    async def access_token(self) -> str:
        if self._error is not None:
            raise self._error
        return "token-1"

    async def invalidate(self) -> None:
        self.invalidated += 1


def _error(reason: str, status: int = 403) -> tuple[int, dict]:
    return status, {"error": {"code": status, "errors": [{"reason": reason}]}}


class ParsingTests(unittest.TestCase):
    def test_parse_chat_item(self) -> None:
        comment = parse_chat_item(_item("m1", "hello", published="2025-01-01T12:00:05.500Z"))

        assert comment is not None
        self.assertEqual(comment.id, "m1")
        self.assertEqual(comment.author, "alice")
        self.assertEqual(comment.author_id, "UC-alice")
        self.assertEqual(comment.text, "hello")
        self.assertEqual(comment.published_at, datetime(2025, 1, 1, 12, 0, 5, 500000, tzinfo=timezone.utc))

    def test_items_without_id_or_text_are_skipped(self) -> None:
        self.assertIsNone(parse_chat_item({"snippet": {"displayMessage": "x"}}))
        self.assertIsNone(parse_chat_item(_item("m2", "   ")))

    def test_parse_chat_page(self) -> None:
        chat_page = parse_chat_page(
            {
                "items": [_item("m1", "one"), _item("m2", ""), _item("m3", "three", author="bob")],
                "nextPageToken": "next",
                "pollingIntervalMillis": 2500,
            }
        )

        self.assertEqual([c.id for c in chat_page.messages], ["m1", "m3"])
        self.assertEqual(chat_page.next_cursor, "next")
        self.assertEqual(chat_page.suggested_interval_seconds, 2.5)

    def test_error_reasons(self) -> None:
        self.assertEqual(_error_reasons(_error("liveChatEnded")[1]), {"liveChatEnded"})
        self.assertEqual(_error_reasons({"error": "flat"}), set())
        self.assertEqual(_error_reasons(["not", "a", "mapping"]), set())


class YouTubeChatSourceTests(unittest.IsolatedAsyncioTestCase):
    def _source(self, http: _FakeHttp, tokens: Optional[_FakeTokens] = None) -> YouTubeChatSource:
        return YouTubeChatSource(http=http, token_provider=tokens or _FakeTokens(), channel_id="UC-channel")  # type: ignore[arg-type]

    async def test_resolve_active_source_follows_search_then_video(self) -> None:
        http = _FakeHttp(
            (200, {"items": [{"id": {"videoId": "vid-1"}}]}),
            (200, {"items": [{"liveStreamingDetails": {"activeLiveChatId": "live-chat-1"}}]}),
        )

        self.assertEqual(await self._source(http).resolve_active_source(), "live-chat-1")
        self.assertTrue(http.requests[0]["url"].endswith("/search"))
        self.assertEqual(http.requests[0]["params"]["eventType"], "live")
        self.assertEqual(http.requests[1]["params"]["id"], "vid-1")
        self.assertEqual(http.requests[0]["headers"]["Authorization"], "Bearer token-1")

    async def test_resolve_without_broadcast_raises(self) -> None:
        http = _FakeHttp((200, {"items": []}))
        with self.assertRaises(NoActiveSourceError):
            await self._source(http).resolve_active_source()

    async def test_list_new_messages_passes_page_token(self) -> None:
        http = _FakeHttp((200, {"items": [_item("m1", "hi")], "nextPageToken": "t2", "pollingIntervalMillis": 1000}))

        chat_page = await self._source(http).list_new_messages("live-chat-1", "t1")

        self.assertEqual(http.requests[0]["params"]["pageToken"], "t1")
        self.assertEqual(http.requests[0]["params"]["liveChatId"], "live-chat-1")
        self.assertEqual(chat_page.next_cursor, "t2")

    async def test_ended_chat_raises_source_ended(self) -> None:
        with self.assertRaises(SourceEndedError):
            await self._source(_FakeHttp(_error("liveChatEnded"))).list_new_messages("c", None)
        with self.assertRaises(SourceEndedError):
            await self._source(_FakeHttp((200, {"offlineAt": "2025-01-01T13:00:00Z", "items": []}))).list_new_messages(
                "c", None
            )

    async def test_other_errors_raise_chat_source_error(self) -> None:
        with self.assertRaises(ChatSourceError):
            await self._source(_FakeHttp(_error("rateLimitExceeded"))).list_new_messages("c", None)
        with self.assertRaises(ChatSourceError):
            await self._source(_FakeHttp((500, None))).list_new_messages("c", None)

    async def test_unauthorized_invalidates_token(self) -> None:
        tokens = _FakeTokens()
        with self.assertRaises(ChatSourceError):
            await self._source(_FakeHttp(_error("authError", status=401)), tokens).post_message("c", "hi")
        self.assertEqual(tokens.invalidated, 1)

    async def test_transient_token_refresh_failure_is_retryable(self) -> None:
        for error in (
            OAuthError("Token request failed with status 503.", status=503),
            OAuthError("Token request failed with status 429.", status=429),
            aiohttp.ClientConnectionError("reset"),
        ):
            http = _FakeHttp()
            with self.assertRaises(ChatSourceError) as ctx:
                await self._source(http, _FakeTokens(error)).list_new_messages("c", None)
            self.assertIs(ctx.exception.__cause__, error)
            self.assertEqual(http.requests, [])

    async def test_permanent_token_failure_stays_oauth_error(self) -> None:
        for error in (
            OAuthError("Access token expired and no refresh token is stored."),
            OAuthError("Token request failed with status 400.", status=400),
        ):
            with self.assertRaises(OAuthError):
                await self._source(_FakeHttp(), _FakeTokens(error)).list_new_messages("c", None)

    async def test_post_message_sends_text_snippet(self) -> None:
        http = _FakeHttp((200, {"id": "posted"}))

        await self._source(http).post_message("live-chat-1", "Hello alice!")

        request = http.requests[0]
        self.assertEqual(request["method"], "POST")
        self.assertEqual(
            request["json"]["snippet"],
            {
                "liveChatId": "live-chat-1",
                "type": "textMessageEvent",
                "textMessageDetails": {"messageText": "Hello alice!"},
            },
        )


if __name__ == "__main__":
    unittest.main()
