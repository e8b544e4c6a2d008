"""Core data types shared by the stores, formatter and orchestrator."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    """Where a chat event came from."""

    TWITCH = "twitch"
    TRANSCRIPT = "transcript"


class Role(str, Enum):
    """Conversation role in a completion request."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatEvent:
    """One chat message or finalized transcript segment.

    ``id`` is assigned by the message store on insert; events built from a
    webhook or transcript flush carry ``id=None`` until persisted.
    """

    broadcaster_id: str
    chatter_id: str
    chatter_name: str
    text: str
    source_type: SourceType = SourceType.TWITCH
    provider_message_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    responded_to: bool = False
    id: int | None = None


@dataclass
class ChannelSubscriptionState:
    """Per-channel bot settings and live status."""

    broadcaster_id: str
    platform: str = "twitch"
    broadcaster_name: str = ""
    is_live: bool = False
    bot_enabled: bool = False
    bot_prompt: str = ""
    cooldown_seconds: int | None = None
    last_interaction_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Live and enabled: the only state in which chat is subscribed."""
        return self.is_live and self.bot_enabled


@dataclass(frozen=True)
class CompletionMessage:
    """A single role-tagged message."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class CompletionRequest:
    """Ordered messages for one completion call. Built per cycle, never stored."""

    messages: list[CompletionMessage] = field(default_factory=list)

    @property
    def system_messages(self) -> list[CompletionMessage]:
        return [m for m in self.messages if m.role == Role.SYSTEM]

    @property
    def conversation(self) -> list[CompletionMessage]:
        return [m for m in self.messages if m.role != Role.SYSTEM]

    def to_dicts(self) -> list[dict[str, str]]:
        return [m.to_dict() for m in self.messages]
