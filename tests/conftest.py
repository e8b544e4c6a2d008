"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from viewer_bot.config import ChatConfig, Config, PacingConfig
from viewer_bot.core.completion import CompletionResult
from viewer_bot.core.cooldown import CooldownGate
from viewer_bot.core.formatter import ContextFormatter
from viewer_bot.core.logging import reset_session_stats
from viewer_bot.core.pacer import ResponsePacer
from viewer_bot.core.roles import BotIdentity
from viewer_bot.errors import UpstreamError
from viewer_bot.models import ChatEvent, CompletionMessage, SourceType
from viewer_bot.orchestrator import InteractionOrchestrator
from viewer_bot.storage import ChannelSettingsStore, MessageStore
from viewer_bot.tracing import TraceStore
from viewer_bot.twitch.events import Subscription
from viewer_bot.twitch.subscriptions import SubscriptionManager

BOT_USER_ID = "900"
BOT_NAME = "ViewerAIBot"
BROADCASTER_ID = "100"
START = datetime(2026, 3, 1, 20, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeEventSub:
    """In-memory stand-in for the Helix EventSub endpoints."""

    def __init__(self):
        self.subscriptions: list[Subscription] = []
        self.conflict_on_create: set[str] = set()
        self.fail_on_create: set[str] = set()
        self.fail_on_delete: set[str] = set()
        self.fail_list = False
        self.created: list[str] = []
        self.deleted: list[str] = []
        self._ids = count(1)

    def add(self, sub_type: str, broadcaster_id: str, status: str = "enabled") -> Subscription:
        sub = Subscription(
            id=f"sub-{next(self._ids)}",
            type=sub_type,
            status=status,
            condition={"broadcaster_user_id": broadcaster_id},
        )
        self.subscriptions.append(sub)
        return sub

    def of_type(self, sub_type: str, broadcaster_id: str = BROADCASTER_ID) -> list[Subscription]:
        return [
            s for s in self.subscriptions
            if s.type == sub_type and s.broadcaster_id == broadcaster_id
        ]

    async def list_subscriptions(self, user_id: str) -> list[Subscription]:
        if self.fail_list:
            raise UpstreamError("GET /eventsub/subscriptions returned 503", status=503)
        return [s for s in self.subscriptions if user_id in s.condition.values()]

    async def create_subscription(
        self, sub_type: str, condition: dict[str, str], version: str = "1"
    ) -> Subscription:
        if sub_type in self.conflict_on_create:
            raise UpstreamError("subscription already exists", status=409)
        if sub_type in self.fail_on_create:
            raise UpstreamError("internal error", status=500)
        sub = Subscription(
            id=f"sub-{next(self._ids)}",
            type=sub_type,
            version=version,
            status="webhook_callback_verification_pending",
            condition=condition,
        )
        self.subscriptions.append(sub)
        self.created.append(sub_type)
        return sub

    async def delete_subscription(self, subscription_id: str) -> None:
        if subscription_id in self.fail_on_delete:
            raise UpstreamError("internal error", status=500)
        self.subscriptions = [s for s in self.subscriptions if s.id != subscription_id]
        self.deleted.append(subscription_id)


class FakeChatSender:
    """Records outgoing chat messages."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.error: UpstreamError | None = None

    async def send_chat_message(self, broadcaster_id: str, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((broadcaster_id, text))


class FakeCompletion:
    """Returns a canned reply and keeps the requests it saw."""

    def __init__(self, reply: str = "hey chat! 👋"):
        self.reply = reply
        self.error: UpstreamError | None = None
        self.calls: list[dict] = []

    async def complete(
        self,
        messages: list[CompletionMessage],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        self.calls.append({
            "messages": list(messages),
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.error is not None:
            raise self.error
        return CompletionResult(
            text=self.reply,
            model=model,
            stop_reason="end_turn",
            usage={"input_tokens": 42, "output_tokens": 7},
        )


def make_event(
    text: str,
    chatter_id: str = "200",
    chatter_name: str = "alice",
    broadcaster_id: str = BROADCASTER_ID,
    source_type: SourceType = SourceType.TWITCH,
    created_at: datetime | None = None,
    provider_message_id: str | None = None,
    responded_to: bool = False,
) -> ChatEvent:
    kwargs = {}
    if provider_message_id is not None:
        kwargs["provider_message_id"] = provider_message_id
    return ChatEvent(
        broadcaster_id=broadcaster_id,
        chatter_id=chatter_id,
        chatter_name=chatter_name,
        text=text,
        source_type=source_type,
        created_at=created_at or START,
        responded_to=responded_to,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def fresh_stats():
    """Session stats are process-global; start every test from zero."""
    reset_session_stats()
    yield
    reset_session_stats()


@pytest.fixture
def default_config() -> Config:
    """Provide a default configuration for testing."""
    return Config()


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig()


@pytest.fixture
def bot() -> BotIdentity:
    return BotIdentity(user_id=BOT_USER_ID)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def message_store(tmp_path: Path) -> MessageStore:
    store = MessageStore(tmp_path / "viewer_bot.db")
    yield store
    store.close()


@pytest.fixture
def channel_store(tmp_path: Path) -> ChannelSettingsStore:
    store = ChannelSettingsStore(tmp_path / "viewer_bot.db")
    yield store
    store.close()


@pytest.fixture
def trace_store(tmp_path: Path) -> TraceStore:
    store = TraceStore(tmp_path / "traces.db")
    yield store
    store.close()


@pytest.fixture
def eventsub() -> FakeEventSub:
    return FakeEventSub()


@pytest.fixture
def chat_sender() -> FakeChatSender:
    return FakeChatSender()


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def subscription_manager(
    eventsub: FakeEventSub, channel_store: ChannelSettingsStore
) -> SubscriptionManager:
    return SubscriptionManager(eventsub, channel_store, bot_user_id=BOT_USER_ID)


@pytest.fixture
def orchestrator(
    default_config: Config,
    message_store: MessageStore,
    channel_store: ChannelSettingsStore,
    trace_store: TraceStore,
    completion: FakeCompletion,
    chat_sender: FakeChatSender,
    bot: BotIdentity,
    clock: FakeClock,
    sleep: AsyncMock,
) -> InteractionOrchestrator:
    return InteractionOrchestrator(
        config=default_config,
        messages=message_store,
        channels=channel_store,
        formatter=ContextFormatter(default_config.chat, bot),
        gate=CooldownGate(default_config.chat.default_cooldown_seconds),
        pacer=ResponsePacer(PacingConfig(variation=0.0)),
        completion=completion,
        chat_sender=chat_sender,
        bot=bot,
        trace_store=trace_store,
        clock=clock,
        sleep=sleep,
    )


@pytest.fixture
def live_channel(channel_store: ChannelSettingsStore):
    """A live channel with the bot enabled and no prior interaction."""
    return channel_store.update(
        BROADCASTER_ID, broadcaster_name="streamer_sam", is_live=True, bot_enabled=True
    )
