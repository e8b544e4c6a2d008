"""Main entry point for viewer-bot."""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from pydantic import SecretStr

from viewer_bot.config import Config, load_config
from viewer_bot.core import (
    AnthropicCompletionProvider,
    BotIdentity,
    ContextFormatter,
    CooldownGate,
    ResponsePacer,
    SignatureVerifier,
    SlidingWindowRateLimiter,
    TranscriptSessions,
)
from viewer_bot.core.logging import get_session_stats, set_ai_debug
from viewer_bot.orchestrator import InteractionOrchestrator
from viewer_bot.storage import ChannelSettingsStore, MessageStore
from viewer_bot.tracing import TraceStore
from viewer_bot.twitch import AppTokenProvider, HelixClient, SubscriptionManager, TokenCache
from viewer_bot.twitch.webhook import EventSubDispatcher
from viewer_bot.web import create_app


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


def load_secrets_from_env(config: Config) -> Config:
    """Fill credentials from the conventional environment names if unset."""
    if not config.llm.anthropic_api_key:
        key = os.getenv("ANTHROPIC_API_KEY")
        if key:
            config.llm.anthropic_api_key = SecretStr(key)

    twitch = config.twitch
    if not twitch.client_id:
        twitch.client_id = os.getenv("TWITCH_CLIENT_ID", "")
    if not twitch.client_secret:
        secret = os.getenv("TWITCH_CLIENT_SECRET")
        if secret:
            twitch.client_secret = SecretStr(secret)
    if not twitch.webhook_secret:
        secret = os.getenv("TWITCH_WEBHOOK_SECRET")
        if secret:
            twitch.webhook_secret = SecretStr(secret)
    if not twitch.bot_user_id:
        twitch.bot_user_id = os.getenv("TWITCH_BOT_USER_ID", "")

    return config


@dataclass
class Application:
    """Everything the server needs, built once per process."""

    app: FastAPI
    orchestrator: InteractionOrchestrator
    helix: HelixClient
    token_provider: AppTokenProvider
    messages: MessageStore
    channels: ChannelSettingsStore
    traces: TraceStore
    transcripts: TranscriptSessions

    async def close(self) -> None:
        await self.transcripts.stop_all()
        await self.helix.close()
        await self.token_provider.close()
        self.messages.close()
        self.channels.close()
        self.traces.close()


def build_application(config: Config) -> Application:
    """Wire stores, Twitch clients, the engine and the HTTP app."""
    twitch = config.twitch
    if not twitch.webhook_secret:
        raise ValueError("TWITCH_WEBHOOK_SECRET must be set")
    if not twitch.bot_user_id:
        raise ValueError("TWITCH_BOT_USER_ID must be set")
    anthropic_key = (
        config.llm.anthropic_api_key.get_secret_value()
        if config.llm.anthropic_api_key
        else ""
    )
    if not anthropic_key:
        raise ValueError("ANTHROPIC_API_KEY must be set")

    storage = config.storage
    messages = MessageStore(storage.database_path, max_per_channel=storage.max_messages_per_channel)
    channels = ChannelSettingsStore(storage.database_path)
    traces = TraceStore(storage.traces_path)
    traces.prune(keep_last=storage.keep_traces)

    token_provider = AppTokenProvider(auth_base=twitch.auth_base, scopes=twitch.scopes)
    tokens = TokenCache(token_provider, buffer_seconds=twitch.token_refresh_buffer_seconds)
    helix = HelixClient(twitch, tokens)

    bot = BotIdentity(user_id=twitch.bot_user_id, anonymous_name=config.chat.anonymous_name)
    orchestrator = InteractionOrchestrator(
        config=config,
        messages=messages,
        channels=channels,
        formatter=ContextFormatter(config.chat, bot),
        gate=CooldownGate(config.chat.default_cooldown_seconds),
        pacer=ResponsePacer(config.pacing),
        completion=AnthropicCompletionProvider(anthropic_key),
        chat_sender=helix,
        bot=bot,
        trace_store=traces,
    )
    subscriptions = SubscriptionManager(helix, channels, bot_user_id=twitch.bot_user_id)
    dispatcher = EventSubDispatcher(
        SignatureVerifier(twitch.webhook_secret.get_secret_value()),
        subscriptions,
        orchestrator,
    )
    transcripts = TranscriptSessions(
        on_flush=orchestrator.handle_transcript,
        delay_seconds=config.transcript.flush_delay_seconds,
    )

    app = create_app(
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        subscriptions=subscriptions,
        channels=channels,
        messages=messages,
        transcripts=transcripts,
        tokens=tokens,
        twitch_config=twitch,
        rate_limiter=SlidingWindowRateLimiter(config.rate_limit),
        trace_store=traces,
    )
    return Application(
        app=app,
        orchestrator=orchestrator,
        helix=helix,
        token_provider=token_provider,
        messages=messages,
        channels=channels,
        traces=traces,
        transcripts=transcripts,
    )


async def async_main(
    config_path: str | None = None,
    debug: bool = False,
    debug_ai: bool = False,
) -> None:
    """Async main entry point."""
    setup_logging(debug)
    logger = logging.getLogger(__name__)

    # Load .env file if present
    load_dotenv()

    # Load configuration
    config = load_config(config_path)
    config = load_secrets_from_env(config)

    # Set global AI debug flag
    if debug_ai:
        set_ai_debug(True)
        logger.info("AI debug logging enabled - full completion inputs and outputs will be logged")

    try:
        application = build_application(config)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("Starting Viewer Bot...")
    logger.info(f"Bot user id: {config.twitch.bot_user_id}")
    logger.info(f"Webhook callback: {config.twitch.callback_url}")
    logger.info(f"Model: {config.llm.model}")

    server = uvicorn.Server(
        uvicorn.Config(
            application.app,
            host=config.server.host,
            port=config.server.port,
            log_level="warning",
        )
    )
    logger.info(f"Listening on http://{config.server.host}:{config.server.port}")

    try:
        await server.serve()
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        await application.close()
        logger.info(f"SESSION_STATS: {get_session_stats().summary_line()}")


def main() -> None:
    """Main entry point (sync wrapper)."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Viewer Bot: AI chat participant for Twitch streams",
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--debug-ai",
        action="store_true",
        help="Log full inputs and outputs for all completion calls",
    )

    args = parser.parse_args()

    asyncio.run(async_main(
        config_path=args.config,
        debug=args.debug,
        debug_ai=args.debug_ai,
    ))


if __name__ == "__main__":
    main()
