"""Interaction orchestrator: decides whether and what the bot says."""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from viewer_bot.config import Config, PriorityPolicy
from viewer_bot.core.completion import CompletionProvider
from viewer_bot.core.cooldown import CooldownGate
from viewer_bot.core.formatter import ContextFormatter
from viewer_bot.core.logging import get_session_stats, log_timing
from viewer_bot.core.pacer import ResponsePacer
from viewer_bot.core.roles import BotIdentity, classify_role, is_bot_author
from viewer_bot.errors import UpstreamError
from viewer_bot.models import ChannelSubscriptionState, ChatEvent, Role, SourceType, utcnow
from viewer_bot.storage import ChannelSettingsStore, MessageStore
from viewer_bot.tracing import TraceContext, TraceStore
from viewer_bot.twitch.api import ChatSender

logger = logging.getLogger(__name__)

# How often to log session stats (every N replies)
STATS_LOG_INTERVAL = 25


class InteractionState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    PERSISTED = "persisted"
    GATE_CHECKED = "gate_checked"
    CONTEXT_BUILT = "context_built"
    COMPLETION_REQUESTED = "completion_requested"
    PACED = "paced"
    SENT = "sent"
    RECORDED = "recorded"
    # Terminal
    REJECTED = "rejected"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    InteractionState.RECORDED,
    InteractionState.REJECTED,
    InteractionState.SKIPPED,
    InteractionState.FAILED,
})


@dataclass
class InteractionResult:
    """Where a cycle ended and why."""

    state: InteractionState
    reason: str = ""
    reply: str | None = None
    event: ChatEvent | None = None  # Stored event (with id) once persisted
    trace_id: str | None = None
    trace: TraceContext | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES


class InteractionOrchestrator:
    """Runs the reply cycle for chat messages, transcript segments and ticks.

    Message path: ingest (persist, dedup) then respond (gate, context,
    completion, pacing, send, record). Tick path enters at the gate with no
    trigger. No locks are held: ``last_interaction_at`` is read fresh at gate
    time, so two replies racing inside one cooldown are tolerated.
    """

    def __init__(
        self,
        config: Config,
        messages: MessageStore,
        channels: ChannelSettingsStore,
        formatter: ContextFormatter,
        gate: CooldownGate,
        pacer: ResponsePacer,
        completion: CompletionProvider,
        chat_sender: ChatSender,
        bot: BotIdentity,
        trace_store: TraceStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            config: Application configuration
            messages: Chat event log
            channels: Per-channel settings and live status
            formatter: Builds the completion request
            gate: Cooldown check
            pacer: Computes the delay before posting
            completion: Language model provider
            chat_sender: Posts the reply to chat
            bot: The bot's own chat identity
            trace_store: Where finished cycles are recorded (optional)
            clock: Current UTC time
            sleep: Awaited with the pacing delay in seconds
        """
        self._config = config
        self._messages = messages
        self._channels = channels
        self._formatter = formatter
        self._gate = gate
        self._pacer = pacer
        self._completion = completion
        self._chat_sender = chat_sender
        self._bot = bot
        self._trace_store = trace_store
        self._clock = clock
        self._sleep = sleep

    # -- Entry points -------------------------------------------------------

    def ingest(self, event: ChatEvent, trace: TraceContext | None = None) -> InteractionResult:
        """Persist an inbound event. Ends at PERSISTED unless dropped."""
        ctx = trace or self._new_trace(event.broadcaster_id, event.text, event.source_type.value)
        ctx.add_step(
            stage=InteractionState.RECEIVED.value,
            inputs={"chatter": event.chatter_name, "provider_message_id": event.provider_message_id},
            outputs={},
            decision="Event received",
        )

        if not event.broadcaster_id or not event.text.strip():
            return self._finish(ctx, InteractionState.REJECTED, "empty broadcaster or text")
        ctx.add_step(
            stage=InteractionState.VERIFIED.value,
            inputs={"source_type": event.source_type.value},
            outputs={},
            decision="Event is well-formed",
        )

        try:
            stored = self._messages.insert(event)
        except sqlite3.Error as e:
            logger.error(f"PERSIST: failed for {event.broadcaster_id}: {e}")
            return self._finish(ctx, InteractionState.FAILED, f"storage error: {e}")

        if stored is None:
            get_session_stats().increment("duplicates_dropped")
            logger.info(
                f"PERSIST: duplicate {event.provider_message_id} for {event.broadcaster_id}, dropped"
            )
            return self._finish(ctx, InteractionState.SKIPPED, "duplicate")

        get_session_stats().increment("messages_stored")
        ctx.add_step(
            stage=InteractionState.PERSISTED.value,
            inputs={},
            outputs={"event_id": stored.id},
            decision="Stored",
        )
        logger.info(
            f"MSG_RECEIVED: [{stored.broadcaster_id}] <{stored.chatter_name}> {stored.text}"
        )
        return InteractionResult(
            state=InteractionState.PERSISTED,
            reason="stored",
            event=stored,
            trace_id=ctx.id,
            trace=ctx,
        )

    async def respond(
        self, event: ChatEvent, trace: TraceContext | None = None
    ) -> InteractionResult:
        """Run the reply cycle for a persisted event."""
        ctx = trace or self._new_trace(event.broadcaster_id, event.text, event.source_type.value)

        if is_bot_author(event, self._bot):
            return self._finish(ctx, InteractionState.SKIPPED, "own message", event=event)

        channel = self._channels.get(event.broadcaster_id)
        if channel is None:
            return self._finish(ctx, InteractionState.SKIPPED, "unknown channel", event=event)
        if not channel.bot_enabled:
            return self._finish(ctx, InteractionState.SKIPPED, "bot disabled", event=event)
        if event.source_type == SourceType.TWITCH and not channel.is_live:
            return self._finish(ctx, InteractionState.SKIPPED, "channel offline", event=event)
        if self._formatter.is_spam(event.text):
            return self._finish(ctx, InteractionState.SKIPPED, "spam", event=event)

        return await self._run_cycle(ctx, channel, trigger=event)

    async def handle_chat_message(self, event: ChatEvent) -> InteractionResult:
        """Ingest a chat message and reply to it in one go."""
        result = self.ingest(event)
        if result.state != InteractionState.PERSISTED or result.event is None:
            return result
        return await self.respond(result.event, trace=result.trace)

    async def handle_transcript(self, event: ChatEvent) -> InteractionResult:
        """Same path as chat for a flushed transcript segment."""
        if event.source_type != SourceType.TRANSCRIPT:
            raise ValueError(f"Expected a transcript event, got {event.source_type.value}")
        return await self.handle_chat_message(event)

    async def handle_tick(self, broadcaster_id: str) -> InteractionResult:
        """Idle prompt: reply to the channel without a new trigger."""
        ctx = self._new_trace(broadcaster_id, "", "tick")
        channel = self._channels.get(broadcaster_id)
        if channel is None or not channel.is_active:
            return self._finish(ctx, InteractionState.SKIPPED, "channel not active")
        return await self._run_cycle(ctx, channel, trigger=None)

    async def tick_all(self) -> list[InteractionResult]:
        """One tick for every live channel with the bot enabled."""
        results = []
        for channel in self._channels.list_active():
            results.append(await self.handle_tick(channel.broadcaster_id))
        logger.info(
            f"TICK: {len(results)} channels, "
            f"{sum(1 for r in results if r.state == InteractionState.RECORDED)} replied"
        )
        return results

    # -- Cycle --------------------------------------------------------------

    async def _run_cycle(
        self,
        ctx: TraceContext,
        channel: ChannelSubscriptionState,
        trigger: ChatEvent | None,
    ) -> InteractionResult:
        pipeline_start = time.perf_counter()
        broadcaster_id = channel.broadcaster_id

        # Gate
        gate_result = self._gate.check(
            channel.last_interaction_at, self._clock(), channel.cooldown_seconds
        )
        ctx.add_step(
            stage=InteractionState.GATE_CHECKED.value,
            inputs={
                "last_interaction_at": (
                    channel.last_interaction_at.isoformat() if channel.last_interaction_at else None
                ),
                "cooldown_seconds": gate_result.cooldown_seconds,
            },
            outputs={
                "allowed": gate_result.allowed,
                "remaining_seconds": gate_result.remaining.total_seconds(),
            },
            decision=str(gate_result),
        )
        if not gate_result.allowed:
            return self._finish(ctx, InteractionState.SKIPPED, "cooldown", event=trigger)

        # Context
        recent = self._messages.query_recent(broadcaster_id, self._config.chat.message_window)
        if trigger is None and not recent:
            return self._finish(ctx, InteractionState.SKIPPED, "no messages")

        priority = self._select_priority(recent, trigger)
        request = self._formatter.format(
            recent,
            priority_event=priority,
            bot_prompt=channel.bot_prompt,
            broadcaster_name=channel.broadcaster_name,
        )
        ctx.add_step(
            stage=InteractionState.CONTEXT_BUILT.value,
            inputs={"window": len(recent), "policy": self._config.chat.priority_policy.value},
            outputs={
                "turns": len(request.conversation),
                "priority_event_id": priority.id if priority else None,
            },
            decision=f"Priority: {priority.text[:60]!r}" if priority else "No priority message",
        )

        # Completion
        llm = self._config.llm
        try:
            with log_timing(logger, "Completion"):
                completion = await self._completion.complete(
                    request.messages,
                    model=llm.model,
                    max_tokens=llm.max_tokens,
                    temperature=llm.temperature,
                )
        except UpstreamError as e:
            return self._finish(ctx, InteractionState.FAILED, f"completion error: {e}", event=trigger)

        reply = completion.text.strip()
        ctx.add_llm_step(
            stage=InteractionState.COMPLETION_REQUESTED.value,
            inputs={"max_tokens": llm.max_tokens, "temperature": llm.temperature},
            outputs={"chars": len(reply), "stop_reason": completion.stop_reason},
            decision="Reply generated" if reply else "Empty reply",
            model=completion.model,
            prompt=request.to_dicts(),
            raw_response=completion.text,
            token_usage=completion.usage,
        )
        if not reply:
            return self._finish(ctx, InteractionState.SKIPPED, "empty completion", event=trigger)

        # Pacing
        delay_ms = self._pacer.delay_for(reply)
        await self._sleep(delay_ms / 1000)
        ctx.add_step(
            stage=InteractionState.PACED.value,
            inputs={"chars": len(reply)},
            outputs={"delay_ms": round(delay_ms)},
            decision=f"Waited {delay_ms:.0f}ms",
        )

        # Send
        stats = get_session_stats()
        try:
            await self._chat_sender.send_chat_message(broadcaster_id, reply)
        except UpstreamError as e:
            stats.increment("replies_failed")
            return self._finish(ctx, InteractionState.FAILED, f"send error: {e}", event=trigger)

        stats.increment("replies_sent")
        ctx.add_step(
            stage=InteractionState.SENT.value,
            inputs={},
            outputs={"reply": reply},
            decision="Posted to chat",
        )
        pipeline_elapsed = (time.perf_counter() - pipeline_start) * 1000
        logger.info(f"REPLY_SENT: [{broadcaster_id}] {reply!r} total={pipeline_elapsed:.0f}ms")
        if stats.replies_sent % STATS_LOG_INTERVAL == 0:
            logger.info(f"SESSION_STATS: {stats.summary_line()}")

        # Record
        self._channels.update(broadcaster_id, last_interaction_at=self._clock())
        marked = self._mark_answered(recent, priority)
        ctx.add_step(
            stage=InteractionState.RECORDED.value,
            inputs={},
            outputs={"marked_responded": marked},
            decision="Interaction recorded",
        )
        return self._finish(ctx, InteractionState.RECORDED, "replied", reply=reply, event=trigger)

    def _is_unanswered_user_event(self, event: ChatEvent) -> bool:
        return (
            not event.responded_to
            and not is_bot_author(event, self._bot)
            and classify_role(event, self._bot) == Role.USER
            and not self._formatter.is_spam(event.text)
        )

    def _select_priority(
        self, recent: list[ChatEvent], trigger: ChatEvent | None
    ) -> ChatEvent | None:
        """Pick the message the reply should address.

        ``recent`` is newest first. With no trigger (ticks) the trigger policy
        falls back to the newest unanswered event.
        """
        unanswered = [e for e in recent if self._is_unanswered_user_event(e)]
        if self._config.chat.priority_policy == PriorityPolicy.OLDEST_UNANSWERED:
            return unanswered[-1] if unanswered else trigger
        if trigger is not None:
            return trigger
        return unanswered[0] if unanswered else None

    def _mark_answered(self, recent: list[ChatEvent], priority: ChatEvent | None) -> list[int]:
        """Flag the priority event and the rest of the unanswered window."""
        ids = [e.id for e in recent if e.id is not None and self._is_unanswered_user_event(e)]
        if priority is not None and priority.id is not None and priority.id not in ids:
            ids.append(priority.id)

        marked = []
        for event_id in ids:
            try:
                if self._messages.mark_responded(event_id):
                    marked.append(event_id)
            except sqlite3.Error as e:
                logger.warning(f"RECORD: could not mark event {event_id} responded: {e}")
        return marked

    # -- Tracing ------------------------------------------------------------

    def _new_trace(self, broadcaster_id: str, trigger_text: str, source: str) -> TraceContext:
        return TraceContext(broadcaster_id=broadcaster_id, trigger_text=trigger_text, source=source)

    def _finish(
        self,
        ctx: TraceContext,
        state: InteractionState,
        reason: str,
        reply: str | None = None,
        event: ChatEvent | None = None,
    ) -> InteractionResult:
        ctx.outcome = state.value
        ctx.final_result = reply
        if state != InteractionState.RECORDED:
            ctx.add_step(stage=state.value, inputs={}, outputs={}, decision=reason)

        level = logging.ERROR if state == InteractionState.FAILED else logging.INFO
        logger.log(level, f"INTERACTION: [{ctx.broadcaster_id}] {state.value.upper()} reason={reason}")

        if self._trace_store is not None:
            try:
                self._trace_store.save(ctx)
            except sqlite3.Error as e:
                logger.warning(f"TRACE: could not save trace {ctx.id[:8]}: {e}")

        return InteractionResult(
            state=state,
            reason=reason,
            reply=reply,
            event=event,
            trace_id=ctx.id,
            trace=ctx,
        )
