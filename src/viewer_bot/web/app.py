"""FastAPI application exposing the webhook, settings, transcript and cron endpoints."""

import logging
from typing import Annotated, Any

from fastapi import BackgroundTasks, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from viewer_bot.config import TwitchConfig
from viewer_bot.core.logging import get_session_stats
from viewer_bot.core.ratelimit import SlidingWindowRateLimiter
from viewer_bot.core.transcript import TranscriptSessions
from viewer_bot.errors import UpstreamError
from viewer_bot.models import ChannelSubscriptionState, ChatEvent
from viewer_bot.orchestrator import InteractionOrchestrator, InteractionResult
from viewer_bot.storage import ChannelSettingsStore, MessageStore
from viewer_bot.tracing import TraceStore
from viewer_bot.twitch.auth import TokenCache
from viewer_bot.twitch.subscriptions import ReconcileResult, SubscriptionManager
from viewer_bot.twitch.webhook import EventSubDispatcher

logger = logging.getLogger(__name__)


class BotSettingsUpdate(BaseModel):
    """Body of ``POST /api/channels/{id}/bot``. Omitted fields are left alone."""

    enabled: bool | None = None
    prompt: str | None = None
    cooldown_seconds: Annotated[int, Field(ge=1, le=300)] | None = None
    broadcaster_name: str | None = None


class TranscriptFragment(BaseModel):
    text: str
    is_final: bool = True
    broadcaster_name: str = ""


def channel_to_dict(state: ChannelSubscriptionState) -> dict[str, Any]:
    return {
        "broadcaster_id": state.broadcaster_id,
        "platform": state.platform,
        "broadcaster_name": state.broadcaster_name,
        "is_live": state.is_live,
        "bot_enabled": state.bot_enabled,
        "bot_prompt": state.bot_prompt,
        "cooldown_seconds": state.cooldown_seconds,
        "last_interaction_at": (
            state.last_interaction_at.isoformat() if state.last_interaction_at else None
        ),
    }


def event_to_dict(event: ChatEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "broadcaster_id": event.broadcaster_id,
        "chatter_id": event.chatter_id,
        "chatter_name": event.chatter_name,
        "text": event.text,
        "source_type": event.source_type.value,
        "provider_message_id": event.provider_message_id,
        "created_at": event.created_at.isoformat(),
        "responded_to": event.responded_to,
    }


def reconcile_to_dict(result: ReconcileResult) -> dict[str, Any]:
    return {
        "ok": result.ok,
        "desired": sorted(result.desired),
        "kept": [sub.id for sub in result.kept],
        "operations": [
            {
                "action": op.action,
                "type": op.sub_type,
                "status": op.status.value,
                "subscription_id": op.subscription_id,
                "error": op.error,
            }
            for op in result.operations
        ],
        "errors": result.errors,
    }


def interaction_to_dict(result: InteractionResult) -> dict[str, Any]:
    return {
        "broadcaster_id": result.trace.broadcaster_id if result.trace else None,
        "state": result.state.value,
        "reason": result.reason,
        "reply": result.reply,
        "trace_id": result.trace_id,
    }


def create_app(
    dispatcher: EventSubDispatcher,
    orchestrator: InteractionOrchestrator,
    subscriptions: SubscriptionManager,
    channels: ChannelSettingsStore,
    messages: MessageStore,
    transcripts: TranscriptSessions,
    tokens: TokenCache,
    twitch_config: TwitchConfig,
    rate_limiter: SlidingWindowRateLimiter,
    trace_store: TraceStore | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        dispatcher: Verifies and routes EventSub webhooks
        orchestrator: Runs reply cycles (used by the cron endpoint)
        subscriptions: Reconciles EventSub subscriptions after settings changes
        channels: Channel settings store
        messages: Chat event store
        transcripts: Per-broadcaster transcript buffers
        tokens: App access token cache
        twitch_config: Client credentials for the token endpoint
        rate_limiter: Limits the token endpoint per client host
        trace_store: Optional trace store for the ``/traces`` endpoints

    Returns:
        A configured FastAPI application.
    """
    app = FastAPI(title="Viewer Bot")

    @app.get("/health")
    async def health():
        return {"status": "ok", "stats": get_session_stats().summary()}

    @app.post("/api/twitch/webhook")
    async def twitch_webhook(request: Request, background_tasks: BackgroundTasks):
        """EventSub callback. The body must reach the verifier unmodified."""
        body = await request.body()
        result = await dispatcher.handle(request.headers, body)
        if result.follow_up is not None:
            background_tasks.add_task(result.follow_up)
        if result.status == 204:
            return Response(status_code=204)
        return Response(content=result.body, status_code=result.status, media_type=result.content_type)

    @app.get("/api/twitch/token")
    async def twitch_token(request: Request):
        """App access token for the browser client, rate limited per host."""
        client_key = request.client.host if request.client else "unknown"
        if not rate_limiter.hit(client_key):
            retry_after = rate_limiter.retry_after(client_key)
            logger.warning(f"RATE_LIMIT: token endpoint for {client_key}, retry in {retry_after:.0f}s")
            return JSONResponse(
                {"error": "Too many requests"},
                status_code=429,
                headers={"Retry-After": str(max(1, round(retry_after)))},
            )

        secret = twitch_config.client_secret
        try:
            token = await tokens.get(
                twitch_config.client_id, secret.get_secret_value() if secret else ""
            )
        except UpstreamError as e:
            logger.error(f"TOKEN: request failed: {e}")
            return JSONResponse({"error": "Failed to get token"}, status_code=500)
        return {"accessToken": token}

    @app.post("/api/channels/{broadcaster_id}/bot")
    async def update_bot_settings(broadcaster_id: str, update: BotSettingsUpdate):
        """Toggle the bot, set its prompt or cooldown, then reconcile subscriptions."""
        changes: dict[str, Any] = {}
        if update.prompt is not None:
            changes["bot_prompt"] = update.prompt
        if update.cooldown_seconds is not None:
            changes["cooldown_seconds"] = update.cooldown_seconds
        if update.broadcaster_name is not None:
            changes["broadcaster_name"] = update.broadcaster_name
        channels.update(broadcaster_id, **changes)

        if update.enabled is not None:
            reconcile = await subscriptions.set_bot_enabled(broadcaster_id, update.enabled)
        else:
            reconcile = await subscriptions.reconcile(broadcaster_id)

        state = channels.get(broadcaster_id)
        return {
            "channel": channel_to_dict(state) if state else None,
            "reconcile": reconcile_to_dict(reconcile),
        }

    @app.get("/api/channels/{broadcaster_id}/messages")
    async def recent_messages(
        broadcaster_id: str, limit: Annotated[int, Query(ge=1, le=100)] = 50
    ):
        """Most recent events for a channel, newest first."""
        return {
            "messages": [event_to_dict(e) for e in messages.query_recent(broadcaster_id, limit)]
        }

    @app.post("/api/channels/{broadcaster_id}/transcript", status_code=202)
    async def add_transcript(broadcaster_id: str, fragment: TranscriptFragment):
        buf = transcripts.add(
            broadcaster_id,
            fragment.text,
            is_final=fragment.is_final,
            broadcaster_name=fragment.broadcaster_name,
        )
        return {"state": buf.state.value, "pending": buf.pending_text}

    @app.post("/api/channels/{broadcaster_id}/transcript/stop")
    async def stop_transcript(broadcaster_id: str):
        event = await transcripts.stop(broadcaster_id)
        return {"flushed": event_to_dict(event) if event else None}

    @app.post("/api/cron/chat-interaction")
    async def chat_interaction():
        """Run one idle tick for every live channel with the bot enabled."""
        results = await orchestrator.tick_all()
        return {"results": [interaction_to_dict(r) for r in results]}

    @app.get("/traces")
    async def traces_list(
        broadcaster_id: str | None = None,
        outcome: str | None = None,
        limit: Annotated[int, Query(ge=1, le=500)] = 50,
    ):
        """List recent traces with optional filtering."""
        if trace_store is None:
            return JSONResponse({"error": "Tracing not configured"}, status_code=503)
        summaries = trace_store.recent(limit=limit, broadcaster_id=broadcaster_id, outcome=outcome)
        return {
            "traces": [
                {
                    "id": s.id,
                    "created_at": s.created_at.isoformat(),
                    "broadcaster_id": s.broadcaster_id,
                    "source": s.source,
                    "trigger_text": s.trigger_text,
                    "outcome": s.outcome,
                }
                for s in summaries
            ]
        }

    @app.get("/traces/{trace_id}")
    async def trace_detail(trace_id: str):
        """Full trace with every step."""
        if trace_store is None:
            return JSONResponse({"error": "Tracing not configured"}, status_code=503)
        trace = trace_store.get(trace_id)
        if trace is None:
            return JSONResponse({"error": "Trace not found"}, status_code=404)
        return trace.to_dict()

    return app
