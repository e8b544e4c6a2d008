"""Tests for EventSub subscription reconciliation."""

import pytest

from viewer_bot.storage import ChannelSettingsStore
from viewer_bot.twitch.events import (
    CHAT_MESSAGE,
    STREAM_OFFLINE,
    STREAM_ONLINE,
    Revocation,
    StreamOffline,
    StreamOnline,
    Subscription,
)
from viewer_bot.twitch.subscriptions import OpStatus, SubscriptionManager

from conftest import BOT_USER_ID, BROADCASTER_ID, FakeEventSub


def counts(eventsub: FakeEventSub) -> dict[str, int]:
    return {t: len(eventsub.of_type(t)) for t in (STREAM_ONLINE, STREAM_OFFLINE, CHAT_MESSAGE)}


class TestReconcile:
    """Tests for SubscriptionManager.reconcile."""

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)

        first = await subscription_manager.reconcile(BROADCASTER_ID, desired_enabled=True)
        second = await subscription_manager.reconcile(BROADCASTER_ID, desired_enabled=True)

        assert first.ok and second.ok
        assert counts(eventsub) == {STREAM_ONLINE: 1, STREAM_OFFLINE: 1, CHAT_MESSAGE: 1}
        assert second.operations == []

    @pytest.mark.asyncio
    async def test_chat_condition_includes_bot(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)
        await subscription_manager.reconcile(BROADCASTER_ID)

        chat = eventsub.of_type(CHAT_MESSAGE)[0]
        assert chat.condition == {"broadcaster_user_id": BROADCASTER_ID, "user_id": BOT_USER_ID}

    @pytest.mark.asyncio
    async def test_unknown_channel_gets_stream_subscriptions_only(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        result = await subscription_manager.reconcile(BROADCASTER_ID)

        assert result.desired == {STREAM_ONLINE, STREAM_OFFLINE}
        assert counts(eventsub) == {STREAM_ONLINE: 1, STREAM_OFFLINE: 1, CHAT_MESSAGE: 0}
        assert channel_store.get(BROADCASTER_ID) is not None

    @pytest.mark.asyncio
    async def test_enabled_but_offline_has_no_chat(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=False, bot_enabled=True)
        await subscription_manager.reconcile(BROADCASTER_ID)
        assert counts(eventsub)[CHAT_MESSAGE] == 0

    @pytest.mark.asyncio
    async def test_disable_removes_chat(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)
        await subscription_manager.reconcile(BROADCASTER_ID)

        result = await subscription_manager.set_bot_enabled(BROADCASTER_ID, False)

        assert result.ok
        assert counts(eventsub) == {STREAM_ONLINE: 1, STREAM_OFFLINE: 1, CHAT_MESSAGE: 0}
        assert channel_store.get(BROADCASTER_ID).bot_enabled is False

    @pytest.mark.asyncio
    async def test_conflict_counts_as_success(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)
        eventsub.conflict_on_create.add(CHAT_MESSAGE)

        result = await subscription_manager.reconcile(BROADCASTER_ID)

        assert result.ok
        statuses = {op.sub_type: op.status for op in result.operations}
        assert statuses[CHAT_MESSAGE] == OpStatus.CONFLICT_IGNORED
        assert statuses[STREAM_ONLINE] == OpStatus.CREATED

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_successes_and_converges(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)
        eventsub.fail_on_create.add(STREAM_OFFLINE)

        result = await subscription_manager.reconcile(BROADCASTER_ID)

        assert not result.ok
        assert len(result.errors) == 1
        assert "stream.offline" in result.errors[0]
        assert counts(eventsub) == {STREAM_ONLINE: 1, STREAM_OFFLINE: 0, CHAT_MESSAGE: 1}

        eventsub.fail_on_create.clear()
        retry = await subscription_manager.reconcile(BROADCASTER_ID)

        assert retry.ok
        assert counts(eventsub) == {STREAM_ONLINE: 1, STREAM_OFFLINE: 1, CHAT_MESSAGE: 1}
        assert eventsub.created.count(STREAM_ONLINE) == 1

    @pytest.mark.asyncio
    async def test_failed_status_is_replaced(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
    ):
        dead = eventsub.add(STREAM_ONLINE, BROADCASTER_ID, status="notification_failures_exceeded")

        result = await subscription_manager.reconcile(BROADCASTER_ID)

        assert result.ok
        assert dead.id in eventsub.deleted
        online = eventsub.of_type(STREAM_ONLINE)
        assert len(online) == 1
        assert online[0].id != dead.id

    @pytest.mark.asyncio
    async def test_duplicates_are_collapsed(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
    ):
        keep = eventsub.add(STREAM_ONLINE, BROADCASTER_ID)
        extra = eventsub.add(STREAM_ONLINE, BROADCASTER_ID)
        eventsub.add(STREAM_OFFLINE, BROADCASTER_ID)

        result = await subscription_manager.reconcile(BROADCASTER_ID)

        assert result.ok
        assert [s.id for s in eventsub.of_type(STREAM_ONLINE)] == [keep.id]
        assert eventsub.deleted == [extra.id]
        assert eventsub.created == []

    @pytest.mark.asyncio
    async def test_list_failure_reported(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
    ):
        eventsub.fail_list = True

        result = await subscription_manager.reconcile(BROADCASTER_ID)

        assert not result.ok
        assert result.list_error
        assert result.operations == []

    @pytest.mark.asyncio
    async def test_failed_delete_reported(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)
        await subscription_manager.reconcile(BROADCASTER_ID)
        chat = eventsub.of_type(CHAT_MESSAGE)[0]
        eventsub.fail_on_delete.add(chat.id)

        result = await subscription_manager.set_bot_enabled(BROADCASTER_ID, False)

        assert not result.ok
        assert [op.status for op in result.operations] == [OpStatus.FAILED]


class TestStreamEvents:
    """Tests for stream.online / stream.offline / revocation handling."""

    @pytest.mark.asyncio
    async def test_online_subscribes_chat_when_enabled(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, bot_enabled=True)

        await subscription_manager.handle_stream_online(
            StreamOnline(broadcaster_id=BROADCASTER_ID, broadcaster_name="streamer_sam")
        )

        state = channel_store.get(BROADCASTER_ID)
        assert state.is_live is True
        assert state.broadcaster_name == "streamer_sam"
        assert counts(eventsub)[CHAT_MESSAGE] == 1

    @pytest.mark.asyncio
    async def test_offline_removes_chat(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, bot_enabled=True)
        await subscription_manager.handle_stream_online(StreamOnline(broadcaster_id=BROADCASTER_ID))

        await subscription_manager.handle_stream_offline(StreamOffline(broadcaster_id=BROADCASTER_ID))

        assert channel_store.get(BROADCASTER_ID).is_live is False
        assert counts(eventsub) == {STREAM_ONLINE: 1, STREAM_OFFLINE: 1, CHAT_MESSAGE: 0}

    @pytest.mark.asyncio
    async def test_revoked_subscription_recreated_later(
        self,
        subscription_manager: SubscriptionManager,
        eventsub: FakeEventSub,
        channel_store: ChannelSettingsStore,
    ):
        channel_store.update(BROADCASTER_ID, is_live=True, bot_enabled=True)
        await subscription_manager.reconcile(BROADCASTER_ID)
        chat = eventsub.of_type(CHAT_MESSAGE)[0]

        # Twitch drops it on its side and tells us
        eventsub.subscriptions.remove(chat)
        revoked = Subscription(
            id=chat.id,
            type=CHAT_MESSAGE,
            status="authorization_revoked",
            condition=chat.condition,
        )
        subscription_manager.handle_revocation(Revocation(subscription=revoked))
        assert counts(eventsub)[CHAT_MESSAGE] == 0

        await subscription_manager.reconcile(BROADCASTER_ID)
        assert counts(eventsub)[CHAT_MESSAGE] == 1
