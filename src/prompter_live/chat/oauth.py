from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import aiohttp
from aiohttp import web
from pydantic import BaseModel, ConfigDict

from prompter_live.config.models import YouTubeSettings

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
YOUTUBE_SCOPE = "https://www.googleapis.com/auth/youtube.force-ssl"


class OAuthError(RuntimeError):
    """Authorization or token refresh failed; `status` is the token endpoint's HTTP status when there was one."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def transient(self) -> bool:
        return self.status is not None and (self.status == 429 or self.status >= 500)


class StoredToken(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    # Unix timestamp; None means the expiry is unknown.
    expires_at: Optional[float] = None

    def expires_within(self, seconds: float, *, now: float) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - now <= seconds


class TokenStore:
    """Reads and writes the persisted OAuth token JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StoredToken:
        if not self._path.exists():
            raise OAuthError(f"Token file not found: {self._path}. Run the 'auth' command first.")
        raw = self._path.read_text(encoding="utf-8")
        try:
            return StoredToken.model_validate_json(raw)
        except ValueError as exc:
            raise OAuthError(f"Token file is not valid: {self._path}") from exc

    def save(self, token: StoredToken) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(token.model_dump(mode="json"), indent=2), encoding="utf-8")
        tmp_path.replace(self._path)
        logger.info("oauth.token_saved path=%s", self._path)


def redirect_uri_for(port: int) -> str:
    return f"http://localhost:{port}/"


def build_authorization_url(*, client_id: str, redirect_uri: str, state: str, scope: str = YOUTUBE_SCOPE) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scope,
        "state": state,
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"


def _token_from_response(payload: dict[str, Any], *, now: float, previous: Optional[StoredToken] = None) -> StoredToken:
    access_token = payload.get("access_token")
    if not access_token:
        raise OAuthError(f"Token endpoint returned no access_token. keys={sorted(payload)}")
    expires_in = payload.get("expires_in")
    refresh_token = payload.get("refresh_token") or (previous.refresh_token if previous is not None else None)
    return StoredToken(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type=payload.get("token_type", "Bearer"),
        expires_at=now + float(expires_in) if expires_in is not None else None,
    )


async def _post_token_request(http: aiohttp.ClientSession, form: dict[str, str]) -> dict[str, Any]:
    async with http.post(TOKEN_ENDPOINT, data=form) as response:
        payload = await response.json(content_type=None)
        if response.status != 200:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise OAuthError(
                f"Token request failed with status {response.status}. error={error}",
                status=response.status,
            )
        if not isinstance(payload, dict):
            raise OAuthError("Token endpoint returned a non-object payload.")
        return payload


async def exchange_code(
    http: aiohttp.ClientSession,
    *,
    settings: YouTubeSettings,
    code: str,
    redirect_uri: str,
    clock: Callable[[], float] = time.time,
) -> StoredToken:
    payload = await _post_token_request(
        http,
        {
            "code": code,
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
    )
    return _token_from_response(payload, now=clock())


async def run_authorization_flow(
    http: aiohttp.ClientSession,
    *,
    settings: YouTubeSettings,
    store: TokenStore,
    announce: Callable[[str], None] = print,
) -> StoredToken:
    """
    Run the interactive consent flow and persist the resulting token.

    A local HTTP receiver on `settings.oauth_port` waits for the redirect for at most
    `settings.oauth_timeout_seconds`.
    """
    state = secrets.token_urlsafe(16)
    redirect_uri = redirect_uri_for(settings.oauth_port)
    code_future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    async def handle_redirect(request: web.Request) -> web.Response:
        params = request.query
        if params.get("state") != state:
            logger.warning("oauth.state_mismatch remote=%s", request.remote)
            return web.Response(status=400, text="Invalid state parameter.")
        if "error" in params:
            if not code_future.done():
                code_future.set_exception(OAuthError(f"Authorization was denied. error={params['error']}"))
            return web.Response(status=400, text="Authorization failed. You can close this window.")
        code = params.get("code")
        if not code:
            return web.Response(status=400, text="Missing authorization code.")
        if not code_future.done():
            code_future.set_result(code)
        return web.Response(text="Authorization complete. You can close this window.")

    app = web.Application()
    app.router.add_get("/", handle_redirect)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", settings.oauth_port)
    await site.start()
    logger.info("oauth.receiver_started port=%s", settings.oauth_port)
    try:
        announce(
            "Open the following URL in a browser and allow access to the YouTube channel:\n"
            + build_authorization_url(client_id=settings.client_id, redirect_uri=redirect_uri, state=state)
        )
        try:
            code = await asyncio.wait_for(code_future, timeout=settings.oauth_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise OAuthError(
                f"Timed out waiting for the authorization redirect. timeout_seconds={settings.oauth_timeout_seconds}"
            ) from exc
    finally:
        await runner.cleanup()

    token = await exchange_code(http, settings=settings, code=code, redirect_uri=redirect_uri)
    store.save(token)
    return token


class OAuthTokenProvider:
    """Hands out a valid access token, refreshing and re-saving it before it expires."""

    def __init__(
        self,
        *,
        settings: YouTubeSettings,
        store: TokenStore,
        http: aiohttp.ClientSession,
        refresh_margin_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._http = http
        self._refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock
        self._token: Optional[StoredToken] = None
        self._lock = asyncio.Lock()

    async def access_token(self) -> str:
        async with self._lock:
            if self._token is None:
                self._token = self._store.load()
            if self._token.expires_within(self._refresh_margin_seconds, now=self._clock()):
                self._token = await self._refresh(self._token)
            return self._token.access_token

    async def invalidate(self) -> None:
        """Force a refresh on the next access_token() call."""
        async with self._lock:
            if self._token is not None:
                self._token = self._token.model_copy(update={"expires_at": 0.0})

    async def _refresh(self, token: StoredToken) -> StoredToken:
        if not token.refresh_token:
            raise OAuthError("Access token expired and no refresh token is stored. Run the 'auth' command again.")
        logger.info("oauth.refreshing_token")
        payload = await _post_token_request(
            self._http,
            {
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "refresh_token": token.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        refreshed = _token_from_response(payload, now=self._clock(), previous=token)
        self._store.save(refreshed)
        return refreshed
