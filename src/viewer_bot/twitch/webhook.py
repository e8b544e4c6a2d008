"""EventSub webhook handling: verify, parse, route."""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from viewer_bot.core.logging import get_session_stats
from viewer_bot.core.signature import SignatureVerifier
from viewer_bot.errors import AuthenticationError, ValidationError
from viewer_bot.orchestrator import InteractionOrchestrator, InteractionResult, InteractionState
from viewer_bot.twitch.events import (
    ChatMessage,
    Other,
    Revocation,
    StreamOffline,
    StreamOnline,
    Verification,
    parse_notification,
)
from viewer_bot.twitch.subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)

HEADER_MESSAGE_ID = "twitch-eventsub-message-id"
HEADER_TIMESTAMP = "twitch-eventsub-message-timestamp"
HEADER_SIGNATURE = "twitch-eventsub-message-signature"
HEADER_MESSAGE_TYPE = "twitch-eventsub-message-type"

REQUIRED_HEADERS = (HEADER_MESSAGE_ID, HEADER_TIMESTAMP, HEADER_SIGNATURE, HEADER_MESSAGE_TYPE)


@dataclass
class WebhookResponse:
    """What to send back to Twitch, plus work to run after responding."""

    status: int
    body: str = ""
    content_type: str = "text/plain"
    follow_up: Callable[[], Awaitable[InteractionResult]] | None = None


class EventSubDispatcher:
    """Turns a raw webhook request into a response and side effects.

    The signature is checked against the untouched body bytes before any
    parsing. Chat messages are persisted before the response goes out; the
    reply cycle is returned as ``follow_up`` so the caller can run it after
    acknowledging, keeping the pacing delay out of the request.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        subscriptions: SubscriptionManager,
        orchestrator: InteractionOrchestrator,
    ):
        self._verifier = verifier
        self._subscriptions = subscriptions
        self._orchestrator = orchestrator

    async def handle(self, headers: Mapping[str, str], body: bytes) -> WebhookResponse:
        stats = get_session_stats()
        stats.increment("webhooks_received")
        lowered = {k.lower(): v for k, v in headers.items()}

        missing = [h for h in REQUIRED_HEADERS if not lowered.get(h)]
        if missing:
            stats.increment("webhooks_rejected")
            logger.warning(f"WEBHOOK: missing headers {missing}")
            return WebhookResponse(status=400, body="Missing EventSub headers")

        message_id = lowered[HEADER_MESSAGE_ID]
        message_type = lowered[HEADER_MESSAGE_TYPE]
        try:
            self._verifier.require_valid(
                message_id, lowered[HEADER_TIMESTAMP], lowered[HEADER_SIGNATURE], body
            )
        except AuthenticationError:
            stats.increment("webhooks_rejected")
            return WebhookResponse(status=403, body="Invalid signature")

        try:
            notification = parse_notification(message_type, body)
        except ValidationError as e:
            stats.increment("webhooks_rejected")
            logger.warning(f"WEBHOOK: dropped {message_type} {message_id}: {e}")
            return WebhookResponse(status=400, body="Malformed payload")

        logger.debug(f"WEBHOOK: {message_type} {message_id} -> {type(notification).__name__}")

        if isinstance(notification, Verification):
            sub = notification.subscription
            logger.info(f"WEBHOOK: verified {sub.type} subscription {sub.id}")
            return WebhookResponse(status=200, body=notification.challenge)

        if isinstance(notification, Revocation):
            self._subscriptions.handle_revocation(notification)
            return WebhookResponse(status=204)

        if isinstance(notification, StreamOnline):
            await self._subscriptions.handle_stream_online(notification)
            return WebhookResponse(status=204)

        if isinstance(notification, StreamOffline):
            await self._subscriptions.handle_stream_offline(notification)
            return WebhookResponse(status=204)

        if isinstance(notification, ChatMessage):
            result = self._orchestrator.ingest(notification.to_chat_event())
            if result.state != InteractionState.PERSISTED or result.event is None:
                return WebhookResponse(status=204)
            stored, trace = result.event, result.trace

            async def reply() -> InteractionResult:
                return await self._orchestrator.respond(stored, trace=trace)

            return WebhookResponse(status=204, follow_up=reply)

        if isinstance(notification, Other):
            logger.info(f"WEBHOOK: ignoring {notification.raw_type}")
        return WebhookResponse(status=204)
