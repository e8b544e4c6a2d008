"""EventSub payload parsing.

Webhook bodies are parsed once, at the boundary, into one of a closed set of
notification types. Anything we do not handle becomes ``Other`` and is
acknowledged without further processing.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from viewer_bot.errors import ValidationError
from viewer_bot.models import ChatEvent, SourceType, utcnow

MESSAGE_TYPE_VERIFICATION = "webhook_callback_verification"
MESSAGE_TYPE_NOTIFICATION = "notification"
MESSAGE_TYPE_REVOCATION = "revocation"

STREAM_ONLINE = "stream.online"
STREAM_OFFLINE = "stream.offline"
CHAT_MESSAGE = "channel.chat.message"


class Subscription(BaseModel):
    """An EventSub subscription as reported by Helix or a webhook envelope."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    type: str
    version: str = "1"
    status: str = ""
    condition: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def broadcaster_id(self) -> str:
        return self.condition.get("broadcaster_user_id", "")


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    challenge: str | None = None
    subscription: Subscription
    event: dict[str, Any] | None = None


class _StreamEventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    broadcaster_user_id: str
    broadcaster_user_login: str = ""
    broadcaster_user_name: str = ""
    started_at: datetime | None = None


class _ChatText(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str


class _ChatMessagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    broadcaster_user_id: str
    chatter_user_id: str
    chatter_user_login: str = ""
    chatter_user_name: str = ""
    message_id: str
    message: _ChatText


@dataclass(frozen=True)
class Verification:
    challenge: str
    subscription: Subscription


@dataclass(frozen=True)
class StreamOnline:
    broadcaster_id: str
    broadcaster_name: str = ""
    started_at: datetime | None = None


@dataclass(frozen=True)
class StreamOffline:
    broadcaster_id: str
    broadcaster_name: str = ""


@dataclass(frozen=True)
class ChatMessage:
    message_id: str
    broadcaster_id: str
    chatter_id: str
    chatter_name: str
    text: str

    def to_chat_event(self, created_at: datetime | None = None) -> ChatEvent:
        return ChatEvent(
            broadcaster_id=self.broadcaster_id,
            chatter_id=self.chatter_id,
            chatter_name=self.chatter_name,
            text=self.text,
            source_type=SourceType.TWITCH,
            provider_message_id=self.message_id,
            created_at=created_at or utcnow(),
        )


@dataclass(frozen=True)
class Revocation:
    subscription: Subscription


@dataclass(frozen=True)
class Other:
    raw_type: str


Notification = Verification | StreamOnline | StreamOffline | ChatMessage | Revocation | Other


def parse_notification(message_type: str, body: bytes | str) -> Notification:
    """Parse a verified webhook body into a Notification.

    Raises:
        ValidationError: body is not JSON or required fields are missing
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Body must be a JSON object")

    try:
        envelope = _Envelope.model_validate(data)

        if message_type == MESSAGE_TYPE_VERIFICATION:
            if not envelope.challenge:
                raise ValidationError("Verification request without challenge")
            return Verification(challenge=envelope.challenge, subscription=envelope.subscription)

        if message_type == MESSAGE_TYPE_REVOCATION:
            return Revocation(subscription=envelope.subscription)

        if message_type != MESSAGE_TYPE_NOTIFICATION:
            return Other(raw_type=message_type)

        sub_type = envelope.subscription.type
        if envelope.event is None and sub_type in (STREAM_ONLINE, STREAM_OFFLINE, CHAT_MESSAGE):
            raise ValidationError(f"{sub_type} notification without event")

        if sub_type == STREAM_ONLINE:
            payload = _StreamEventPayload.model_validate(envelope.event)
            return StreamOnline(
                broadcaster_id=payload.broadcaster_user_id,
                broadcaster_name=payload.broadcaster_user_name or payload.broadcaster_user_login,
                started_at=payload.started_at,
            )
        if sub_type == STREAM_OFFLINE:
            payload = _StreamEventPayload.model_validate(envelope.event)
            return StreamOffline(
                broadcaster_id=payload.broadcaster_user_id,
                broadcaster_name=payload.broadcaster_user_name or payload.broadcaster_user_login,
            )
        if sub_type == CHAT_MESSAGE:
            chat = _ChatMessagePayload.model_validate(envelope.event)
            return ChatMessage(
                message_id=chat.message_id,
                broadcaster_id=chat.broadcaster_user_id,
                chatter_id=chat.chatter_user_id,
                chatter_name=chat.chatter_user_name or chat.chatter_user_login,
                text=chat.message.text,
            )
        return Other(raw_type=sub_type)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed {message_type} payload: {e}") from e
