"""Tests for role classification and context formatting."""

from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from viewer_bot.config import ChatConfig
from viewer_bot.core.formatter import ContextFormatter
from viewer_bot.core.roles import BotIdentity, classify_role, is_bot_author
from viewer_bot.models import Role, SourceType

from conftest import BOT_NAME, BOT_USER_ID, START, make_event


class TestClassifyRole:
    """Tests for classify_role."""

    def test_other_chatter_is_user(self, bot: BotIdentity):
        assert classify_role(make_event("hi"), bot) == Role.USER

    def test_bot_message_is_assistant(self, bot: BotIdentity):
        event = make_event("hi", chatter_id=BOT_USER_ID, chatter_name=BOT_NAME)
        assert classify_role(event, bot) == Role.ASSISTANT

    def test_anonymous_name_is_user(self, bot: BotIdentity):
        """Bot id with the anonymous placeholder name does not count as the bot."""
        event = make_event("hi", chatter_id=BOT_USER_ID, chatter_name="Anonymous")
        assert classify_role(event, bot) == Role.USER

    def test_empty_name_is_user(self, bot: BotIdentity):
        event = make_event("hi", chatter_id=BOT_USER_ID, chatter_name="")
        assert classify_role(event, bot) == Role.USER

    def test_transcript_is_user(self, bot: BotIdentity):
        """Speech from a transcript is never the bot, whatever the id says."""
        event = make_event(
            "hi", chatter_id=BOT_USER_ID, chatter_name=BOT_NAME, source_type=SourceType.TRANSCRIPT
        )
        assert classify_role(event, bot) == Role.USER

    def test_is_bot_author(self, bot: BotIdentity):
        assert is_bot_author(make_event("x", chatter_id=BOT_USER_ID), bot)
        assert not is_bot_author(make_event("x"), bot)
        assert not is_bot_author(make_event("x", chatter_id=""), BotIdentity(user_id=""))


class TestContextFormatter:
    """Tests for ContextFormatter."""

    def test_spam_is_dropped(self, bot: BotIdentity):
        formatter = ContextFormatter(ChatConfig(spam_keywords=["followers.online"]), bot)
        events = [
            make_event("spam followers.online", chatter_name="spammer"),
            make_event("hello", chatter_name="alice", created_at=START + timedelta(seconds=1)),
        ]

        request = formatter.format(events)

        contents = [m.content for m in request.conversation]
        assert contents == ["alice: hello"]
        assert request.conversation[0].role == Role.USER

    def test_spam_match_is_case_insensitive(self, chat_config: ChatConfig, bot: BotIdentity):
        formatter = ContextFormatter(chat_config, bot)
        assert formatter.is_spam("Get CHEAP VIEWERS now")
        assert not formatter.is_spam("cheap tricks")

    def test_sorted_oldest_first(self, chat_config: ChatConfig, bot: BotIdentity):
        """Store hands events back newest-first; the model sees them in order."""
        formatter = ContextFormatter(chat_config, bot)
        newest_first = [
            make_event("third", created_at=START + timedelta(seconds=2)),
            make_event("second", created_at=START + timedelta(seconds=1)),
            make_event("first", created_at=START),
        ]

        request = formatter.format(newest_first)

        assert [m.content for m in request.conversation] == [
            "alice: first",
            "alice: second",
            "alice: third",
        ]

    def test_system_prompt_first_with_suffix(self, chat_config: ChatConfig, bot: BotIdentity):
        formatter = ContextFormatter(chat_config, bot)
        request = formatter.format([make_event("hi")], bot_prompt="Be a pirate.")

        first = request.messages[0]
        assert first.role == Role.SYSTEM
        assert first.content.startswith("Be a pirate.")
        assert first.content.endswith(chat_config.global_prompt_suffix)

    def test_empty_prompt_uses_default_with_streamer_name(
        self, chat_config: ChatConfig, bot: BotIdentity
    ):
        formatter = ContextFormatter(chat_config, bot)
        request = formatter.format([], broadcaster_name="streamer_sam")

        system = request.messages[0].content
        assert "streamer_sam" in system
        assert "{STREAMER_NAME}" not in system

    def test_priority_message_is_second_system(self, chat_config: ChatConfig, bot: BotIdentity):
        formatter = ContextFormatter(chat_config, bot)
        trigger = make_event("what game is this?")

        request = formatter.format([trigger], priority_event=trigger)

        assert [m.role for m in request.messages[:2]] == [Role.SYSTEM, Role.SYSTEM]
        assert request.messages[1].content == (
            'Respond specifically to this message: "what game is this?"'
        )

    def test_no_priority_single_system(self, chat_config: ChatConfig, bot: BotIdentity):
        request = ContextFormatter(chat_config, bot).format([make_event("hi")])
        assert len(request.system_messages) == 1

    def test_labels(self, chat_config: ChatConfig, bot: BotIdentity):
        formatter = ContextFormatter(chat_config, bot)
        events = [
            make_event("so today we", source_type=SourceType.TRANSCRIPT, chatter_name="sam"),
            make_event("lol", chatter_name="", created_at=START + timedelta(seconds=1)),
            make_event(
                "hey!",
                chatter_id=BOT_USER_ID,
                chatter_name=BOT_NAME,
                created_at=START + timedelta(seconds=2),
            ),
        ]

        conversation = formatter.format(events).conversation

        assert [(m.role, m.content) for m in conversation] == [
            (Role.USER, "streamer: so today we"),
            (Role.USER, "anonymous: lol"),
            (Role.ASSISTANT, f"{BOT_NAME}: hey!"),
        ]

    def test_keeps_most_recent_turns(self, bot: BotIdentity):
        formatter = ContextFormatter(ChatConfig(context_size=3), bot)
        events = [
            make_event(f"msg {i}", created_at=START + timedelta(seconds=i)) for i in range(6)
        ]

        conversation = formatter.format(events).conversation

        assert [m.content for m in conversation] == ["alice: msg 3", "alice: msg 4", "alice: msg 5"]

    @settings(max_examples=50)
    @given(n_events=st.integers(min_value=0, max_value=40), k=st.integers(min_value=1, max_value=15))
    def test_never_more_than_k_turns(self, n_events, k):
        formatter = ContextFormatter(ChatConfig(context_size=k), BotIdentity(user_id=BOT_USER_ID))
        events = [
            make_event(f"msg {i}", created_at=START + timedelta(seconds=i)) for i in range(n_events)
        ]

        request = formatter.format(events, priority_event=events[-1] if events else None)

        assert len(request.conversation) <= k
        systems = len(request.system_messages)
        assert all(m.role == Role.SYSTEM for m in request.messages[:systems])
        assert request.messages[0].role == Role.SYSTEM
