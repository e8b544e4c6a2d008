"""Turns stored chat events into a completion request."""

import logging
from collections.abc import Iterable

from viewer_bot.config import ChatConfig
from viewer_bot.core.roles import BotIdentity, classify_role
from viewer_bot.models import (
    ChatEvent,
    CompletionMessage,
    CompletionRequest,
    Role,
    SourceType,
)

logger = logging.getLogger(__name__)

STREAMER_LABEL = "streamer"
PRIORITY_TEMPLATE = 'Respond specifically to this message: "{text}"'


class ContextFormatter:
    """Builds the role-tagged conversation sent to the completion provider.

    Order of operations:
    1. Drop spam (case-insensitive substring match on the denylist)
    2. Sort oldest-first; the store hands events back newest-first
    3. Classify each event as user/assistant and render ``label: text``
    4. Keep only the most recent ``context_size`` turns
    5. Prepend the channel prompt and, if given, the priority instruction
    """

    def __init__(self, config: ChatConfig, bot: BotIdentity):
        self._config = config
        self._bot = bot
        self._spam = [k.lower() for k in config.spam_keywords if k]

    def is_spam(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(keyword in lowered for keyword in self._spam)

    def speaker_label(self, event: ChatEvent) -> str:
        if event.source_type == SourceType.TRANSCRIPT:
            return STREAMER_LABEL
        return event.chatter_name or self._config.anonymous_name

    def render(self, event: ChatEvent) -> CompletionMessage:
        return CompletionMessage(
            role=classify_role(event, self._bot),
            content=f"{self.speaker_label(event)}: {event.text}",
        )

    def system_prompt(self, bot_prompt: str, broadcaster_name: str = "") -> str:
        """Channel prompt followed by the global behaviour suffix."""
        prompt = bot_prompt or self._config.default_prompt
        prompt = prompt.replace("{STREAMER_NAME}", broadcaster_name or STREAMER_LABEL)
        return prompt + self._config.global_prompt_suffix

    def format(
        self,
        recent_events: Iterable[ChatEvent],
        priority_event: ChatEvent | None = None,
        bot_prompt: str = "",
        broadcaster_name: str = "",
    ) -> CompletionRequest:
        events = [e for e in recent_events if not self.is_spam(e.text)]
        events.sort(key=lambda e: e.created_at)

        turns = [self.render(e) for e in events]
        if len(turns) > self._config.context_size:
            turns = turns[-self._config.context_size:]

        messages = [
            CompletionMessage(
                role=Role.SYSTEM,
                content=self.system_prompt(bot_prompt, broadcaster_name),
            )
        ]
        if priority_event is not None:
            messages.append(
                CompletionMessage(
                    role=Role.SYSTEM,
                    content=PRIORITY_TEMPLATE.format(text=priority_event.text),
                )
            )
        messages.extend(turns)

        logger.debug(
            f"Formatted context: {len(turns)} turns, "
            f"priority={'yes' if priority_event else 'no'}"
        )
        return CompletionRequest(messages=messages)
