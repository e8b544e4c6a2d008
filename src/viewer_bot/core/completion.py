"""Completion provider backed by the Anthropic Messages API."""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic

from viewer_bot.core.logging import get_session_stats, log_llm_call, log_llm_response
from viewer_bot.errors import UpstreamError
from viewer_bot.models import CompletionMessage, Role

logger = logging.getLogger(__name__)

# Placeholder turn used when the window is empty or opens with the bot speaking;
# the Messages API wants the conversation to start with a user turn.
EMPTY_CHAT_TURN = "(chat is quiet right now)"


@dataclass
class CompletionResult:
    """Text returned by the provider plus accounting."""

    text: str
    model: str
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


class CompletionProvider(Protocol):
    async def complete(
        self,
        messages: list[CompletionMessage],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult: ...


def to_anthropic_messages(
    messages: list[CompletionMessage],
) -> tuple[str, list[dict[str, Any]]]:
    """Split system messages out and merge consecutive same-role turns."""
    system_parts = [m.content for m in messages if m.role == Role.SYSTEM]
    turns: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == Role.SYSTEM:
            continue
        if turns and turns[-1]["role"] == msg.role.value:
            turns[-1]["content"] += "\n" + msg.content
        else:
            turns.append({"role": msg.role.value, "content": msg.content})

    if not turns or turns[0]["role"] != Role.USER.value:
        turns.insert(0, {"role": Role.USER.value, "content": EMPTY_CHAT_TURN})

    return "\n\n".join(system_parts), turns


class AnthropicCompletionProvider:
    """Generates chat replies with Claude."""

    def __init__(self, api_key: str, client: anthropic.AsyncAnthropic | None = None):
        """Initialize the provider.

        Args:
            api_key: Anthropic API key
            client: Pre-built client (tests inject one)
        """
        self._anthropic = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(
        self,
        messages: list[CompletionMessage],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        system_prompt, turns = to_anthropic_messages(messages)

        log_llm_call(
            operation="Chat reply",
            model=model,
            system_prompt=system_prompt,
            messages=turns,
            config={"max_tokens": max_tokens, "temperature": temperature},
        )

        try:
            response = await self._anthropic.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=turns,
            )
        except anthropic.APIStatusError as e:
            logger.error(f"COMPLETION: model={model} status={e.status_code} error={e}")
            raise UpstreamError(f"Completion request failed: {e}", status=e.status_code) from e
        except anthropic.APIError as e:
            logger.error(f"COMPLETION: model={model} error={e}")
            raise UpstreamError(f"Completion request failed: {e}") from e

        text = "".join(block.text for block in response.content if block.type == "text").strip()
        usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }

        log_llm_response(
            operation="Chat reply",
            response_text=text,
            usage=usage,
            stop_reason=response.stop_reason,
        )
        logger.info(
            f"COMPLETION: model={model} tokens_in={usage['input_tokens']} "
            f"tokens_out={usage['output_tokens']} stop={response.stop_reason}"
        )
        get_session_stats().increment_api_call(model)

        return CompletionResult(
            text=text,
            model=model,
            stop_reason=response.stop_reason,
            usage=usage,
        )
