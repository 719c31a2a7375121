from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

import aiohttp

from prompter_live.ai import MockAISession, StreamingAISession
from prompter_live.chat.oauth import OAuthError, OAuthTokenProvider, TokenStore, run_authorization_flow
from prompter_live.chat.youtube import YouTubeChatSource
from prompter_live.config import YamlConfigLoader
from prompter_live.config.models import AppConfig, CliOverrides, ConfigLoadRequest
from prompter_live.llm import CrynuxChatProvider
from prompter_live.logging import init_logging
from prompter_live.pipeline import PipelineError, build_orchestrator
from prompter_live.pipeline.orchestrator import SessionFactory

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "data/config/config.yaml"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prompter-live",
        description="Replies to YouTube live chat comments with a streaming AI model",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to config.yaml (default: {DEFAULT_CONFIG_PATH}, optional when omitted)",
    )
    parser.add_argument(
        "--no-dotenv",
        action="store_true",
        help="Disable loading .env (env overrides still apply)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: auth
    auth_parser = subparsers.add_parser("auth", help="Authorize access to the YouTube channel and store the token")
    auth_parser.add_argument("--oauth-port", type=int, default=None, help="Local port for the OAuth redirect")

    # Command: run
    run_parser = subparsers.add_parser("run", help="Start the live chat pipeline")
    run_parser.add_argument("--channel-id", default=None, help="YouTube channel id (UC... format) to watch")
    run_parser.add_argument("--poll-interval", type=float, default=None, help="Polling interval in seconds")
    run_parser.add_argument("--api-key", default=None, help="LLM API key (or set PROMPTER__AI__LLM__API_KEY)")
    run_parser.add_argument("--model", default=None, help="LLM model name")
    run_parser.add_argument("--instruction", default=None, help="System instruction for the AI persona")
    run_parser.add_argument("--dry-run", action="store_true", help="Generate replies but do not post them")
    run_parser.add_argument("--max-chars", type=int, default=None, help="Maximum characters per posted reply")
    run_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Run the pipeline for N seconds then exit (useful for smoke testing).",
    )
    run_parser.add_argument(
        "--mock-reply-text",
        default=None,
        help="Answer every comment with this fixed text instead of calling the LLM",
    )

    return parser


def _cli_overrides(args: argparse.Namespace) -> CliOverrides:
    if args.command == "auth":
        return CliOverrides(oauth_port=args.oauth_port)
    if args.command == "run":
        return CliOverrides(
            channel_id=args.channel_id,
            poll_interval_seconds=args.poll_interval,
            api_key=args.api_key,
            model=args.model,
            system_instruction=args.instruction,
            comment_length_cap=args.max_chars,
            dry_run=True if args.dry_run else None,
        )
    return CliOverrides()


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config or DEFAULT_CONFIG_PATH,
        yaml_optional=args.config is None,
        dotenv_path=None if args.no_dotenv else ".env",
        overrides=_cli_overrides(args),
    )
    return await loader.load(request)


def _missing_settings(config: AppConfig, *, require_channel: bool, require_llm: bool) -> list[str]:
    required = {
        "youtube.client_id": config.youtube.client_id,
        "youtube.client_secret": config.youtube.client_secret,
    }
    if require_channel:
        required["youtube.channel_id"] = config.youtube.channel_id
    if require_llm:
        required.update(
            {
                "ai.llm.base_url": config.ai.llm.base_url,
                "ai.llm.api_key": config.ai.llm.api_key,
                "ai.llm.model": config.ai.llm.model,
            }
        )
    return sorted(name for name, value in required.items() if not value)


def _session_factory(config: AppConfig, *, mock_reply_text: Optional[str]) -> SessionFactory:
    if mock_reply_text is not None:

        async def open_mock_session() -> MockAISession:
            return MockAISession(reply_text=mock_reply_text)

        return open_mock_session

    provider = CrynuxChatProvider(
        llm=config.ai.llm,
        max_history_turns=config.ai.max_history_turns,
        max_reply_chars=config.pipeline.comment_length_cap,
    )

    async def open_session() -> StreamingAISession:
        return await StreamingAISession.open(
            provider,
            model=config.ai.llm.model,
            system_instruction=config.ai.system_instruction,
            chunk_mode=config.ai.chunk_mode,
            exchange_timeout_seconds=config.ai.exchange_timeout_seconds,
        )

    return open_session


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt is handled in main().
            logger.debug("app.signal_handler_unavailable signal=%s", sig)


async def _run_pipeline(args: argparse.Namespace, config: AppConfig) -> int:
    missing = _missing_settings(config, require_channel=True, require_llm=args.mock_reply_text is None)
    if missing:
        logger.error("app.invalid_config missing=%s", ",".join(missing))
        return EXIT_CONFIG_ERROR

    logger.info(
        "app.starting_pipeline dry_run=%s channel_id=%s model=%s mock=%s",
        config.app.dry_run,
        config.youtube.channel_id,
        config.ai.llm.model,
        args.mock_reply_text is not None,
    )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    timer: Optional[asyncio.TimerHandle] = None
    if args.run_seconds is not None:
        timer = asyncio.get_running_loop().call_later(args.run_seconds, stop_event.set)

    async with aiohttp.ClientSession() as http:
        token_provider = OAuthTokenProvider(
            settings=config.youtube,
            store=TokenStore(config.youtube.token_path),
            http=http,
        )
        source = YouTubeChatSource(
            http=http,
            token_provider=token_provider,
            channel_id=config.youtube.channel_id,
            request_timeout_seconds=config.youtube.request_timeout_seconds,
        )
        orchestrator = build_orchestrator(
            config,
            source=source,
            session_factory=_session_factory(config, mock_reply_text=args.mock_reply_text),
        )
        try:
            await orchestrator.run(stop_event)
        except PipelineError:
            logger.exception("app.pipeline_failed")
            return EXIT_FAILURE
        finally:
            if timer is not None:
                timer.cancel()

    logger.info("app.stopped_gracefully")
    return EXIT_OK


async def _run_auth(config: AppConfig) -> int:
    missing = _missing_settings(config, require_channel=False, require_llm=False)
    if missing:
        logger.error("app.invalid_config missing=%s", ",".join(missing))
        return EXIT_CONFIG_ERROR

    logger.info("app.starting_auth oauth_port=%s token_path=%s", config.youtube.oauth_port, config.youtube.token_path)
    async with aiohttp.ClientSession() as http:
        try:
            await run_authorization_flow(http, settings=config.youtube, store=TokenStore(config.youtube.token_path))
        except (OAuthError, aiohttp.ClientError):
            logger.exception("app.auth_failed")
            return EXIT_FAILURE
    logger.info("app.auth_complete token_path=%s", config.youtube.token_path)
    return EXIT_OK


async def _main_async(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = await _load_config(args)
    except (FileNotFoundError, KeyError, TypeError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    init_logging(config.logging)

    if args.command == "auth":
        return await _run_auth(config)
    if args.command == "run":
        return await _run_pipeline(args, config)
    return EXIT_CONFIG_ERROR


def main() -> None:
    try:
        exit_code = asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("app.interrupted_by_user")
        exit_code = EXIT_OK
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
