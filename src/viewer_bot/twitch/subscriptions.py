"""Keeps upstream EventSub subscriptions in line with channel state."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from viewer_bot.core.logging import get_session_stats
from viewer_bot.errors import UpstreamError
from viewer_bot.storage import ChannelSettingsStore
from viewer_bot.twitch.api import EventSubClient
from viewer_bot.twitch.events import (
    CHAT_MESSAGE,
    STREAM_OFFLINE,
    STREAM_ONLINE,
    Revocation,
    StreamOffline,
    StreamOnline,
    Subscription,
)

logger = logging.getLogger(__name__)

MANAGED_TYPES = frozenset({STREAM_ONLINE, STREAM_OFFLINE, CHAT_MESSAGE})

# Statuses that will never deliver again; treated as absent and replaced.
FAILED_STATUSES = frozenset({
    "webhook_callback_verification_failed",
    "notification_failures_exceeded",
    "authorization_revoked",
    "moderator_removed",
    "user_removed",
    "version_removed",
})


class OpStatus(str, Enum):
    CREATED = "created"
    CONFLICT_IGNORED = "conflict_ignored"  # 409: already exists, counts as success
    DELETED = "deleted"
    FAILED = "failed"


@dataclass
class SubscriptionOp:
    """One create or delete issued during a reconcile."""

    action: str  # "create" | "delete"
    sub_type: str
    status: OpStatus
    subscription_id: str = ""
    error: str | None = None


@dataclass
class ReconcileResult:
    """Outcome of reconciling one broadcaster."""

    broadcaster_id: str
    desired: set[str] = field(default_factory=set)
    kept: list[Subscription] = field(default_factory=list)
    operations: list[SubscriptionOp] = field(default_factory=list)
    list_error: str | None = None

    @property
    def errors(self) -> list[str]:
        errs = [f"{op.action} {op.sub_type}: {op.error}" for op in self.operations if op.status == OpStatus.FAILED]
        if self.list_error:
            errs.insert(0, f"list: {self.list_error}")
        return errs

    @property
    def ok(self) -> bool:
        return not self.errors

    def __str__(self) -> str:
        counts: dict[str, int] = {}
        for op in self.operations:
            counts[op.status.value] = counts.get(op.status.value, 0) + 1
        parts = ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "no-op"
        return (
            f"Reconcile[{'OK' if self.ok else 'ERR'}] {self.broadcaster_id}: "
            f"desired={sorted(self.desired)} kept={len(self.kept)} {parts}"
        )


class SubscriptionManager:
    """Reconciles desired subscriptions against what Twitch reports.

    stream.online and stream.offline are always wanted for a known channel;
    channel.chat.message only while the channel is live with the bot enabled.
    Every create/delete is attempted even if an earlier one fails, and
    nothing is rolled back: the next reconcile converges.
    """

    def __init__(self, client: EventSubClient, channels: ChannelSettingsStore, bot_user_id: str):
        self._client = client
        self._channels = channels
        self._bot_user_id = bot_user_id

    def _condition(self, sub_type: str, broadcaster_id: str) -> dict[str, str]:
        if sub_type == CHAT_MESSAGE:
            return {"broadcaster_user_id": broadcaster_id, "user_id": self._bot_user_id}
        return {"broadcaster_user_id": broadcaster_id}

    async def reconcile(
        self, broadcaster_id: str, desired_enabled: bool | None = None
    ) -> ReconcileResult:
        state = self._channels.get(broadcaster_id) or self._channels.update(broadcaster_id)
        enabled = state.bot_enabled if desired_enabled is None else desired_enabled

        desired = {STREAM_ONLINE, STREAM_OFFLINE}
        if state.is_live and enabled:
            desired.add(CHAT_MESSAGE)
        result = ReconcileResult(broadcaster_id=broadcaster_id, desired=desired)

        try:
            current = await self._client.list_subscriptions(broadcaster_id)
        except UpstreamError as e:
            result.list_error = str(e)
            logger.error(f"RECONCILE: could not list subscriptions for {broadcaster_id}: {e}")
            return result

        to_delete: list[Subscription] = []
        kept_types: set[str] = set()
        for sub in current:
            if sub.broadcaster_id != broadcaster_id or sub.type not in MANAGED_TYPES:
                continue
            if sub.status in FAILED_STATUSES or sub.type not in desired or sub.type in kept_types:
                to_delete.append(sub)
            else:
                kept_types.add(sub.type)
                result.kept.append(sub)

        # Deletes first so a replacement create does not collide with a dead entry
        for sub in to_delete:
            result.operations.append(await self._delete(sub))

        for sub_type in sorted(desired - kept_types):
            result.operations.append(await self._create(sub_type, broadcaster_id))

        if result.ok:
            logger.info(f"RECONCILE: {result}")
        else:
            logger.error(f"RECONCILE: {result} errors={result.errors}")
        return result

    async def _create(self, sub_type: str, broadcaster_id: str) -> SubscriptionOp:
        try:
            created = await self._client.create_subscription(
                sub_type, self._condition(sub_type, broadcaster_id)
            )
        except UpstreamError as e:
            if e.is_conflict:
                logger.info(f"RECONCILE: {sub_type} for {broadcaster_id} already exists (409)")
                return SubscriptionOp("create", sub_type, OpStatus.CONFLICT_IGNORED)
            return SubscriptionOp("create", sub_type, OpStatus.FAILED, error=str(e))

        get_session_stats().increment("subscriptions_created")
        return SubscriptionOp("create", sub_type, OpStatus.CREATED, subscription_id=created.id)

    async def _delete(self, sub: Subscription) -> SubscriptionOp:
        try:
            await self._client.delete_subscription(sub.id)
        except UpstreamError as e:
            return SubscriptionOp("delete", sub.type, OpStatus.FAILED, subscription_id=sub.id, error=str(e))

        get_session_stats().increment("subscriptions_deleted")
        return SubscriptionOp("delete", sub.type, OpStatus.DELETED, subscription_id=sub.id)

    async def handle_stream_online(self, event: StreamOnline) -> ReconcileResult:
        changes: dict = {"is_live": True}
        if event.broadcaster_name:
            changes["broadcaster_name"] = event.broadcaster_name
        self._channels.update(event.broadcaster_id, **changes)
        logger.info(f"STREAM_ONLINE: {event.broadcaster_id} ({event.broadcaster_name})")
        return await self.reconcile(event.broadcaster_id)

    async def handle_stream_offline(self, event: StreamOffline) -> ReconcileResult:
        self._channels.update(event.broadcaster_id, is_live=False)
        logger.info(f"STREAM_OFFLINE: {event.broadcaster_id} ({event.broadcaster_name})")
        return await self.reconcile(event.broadcaster_id)

    def handle_revocation(self, revocation: Revocation) -> None:
        """Log and drop. A later reconcile recreates it if still wanted."""
        sub = revocation.subscription
        logger.warning(
            f"REVOKED: {sub.type} subscription {sub.id} for {sub.broadcaster_id} "
            f"reason={sub.status}"
        )

    async def set_bot_enabled(self, broadcaster_id: str, enabled: bool) -> ReconcileResult:
        self._channels.update(broadcaster_id, bot_enabled=enabled)
        return await self.reconcile(broadcaster_id, desired_enabled=enabled)
