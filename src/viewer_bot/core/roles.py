"""Role classification for stored chat events.

This is the single place that decides whether an event was written by the
bot itself. The formatter and the orchestrator both go through it.
"""

from dataclasses import dataclass

from viewer_bot.models import ChatEvent, Role, SourceType


@dataclass(frozen=True)
class BotIdentity:
    """Who the bot is on the chat platform."""

    user_id: str
    anonymous_name: str = "anonymous"
    source_type: SourceType = SourceType.TWITCH


def is_bot_author(event: ChatEvent, bot: BotIdentity) -> bool:
    """True if the chatter id is the bot's own platform id."""
    return bool(bot.user_id) and event.chatter_id == bot.user_id


def classify_role(event: ChatEvent, bot: BotIdentity) -> Role:
    """Map an event to ``assistant`` or ``user``.

    An event is the bot's own turn only when all three hold: the chatter id is
    the bot's id, the chatter name is a real name rather than the anonymous
    placeholder, and it came from the bot's own channel type.
    """
    name = (event.chatter_name or "").strip().lower()
    if (
        is_bot_author(event, bot)
        and name
        and name != bot.anonymous_name.lower()
        and event.source_type == bot.source_type
    ):
        return Role.ASSISTANT
    return Role.USER
