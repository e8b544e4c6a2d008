"""Core decision engine."""

from .completion import AnthropicCompletionProvider, CompletionProvider, CompletionResult
from .cooldown import CooldownGate, GateResult, allowed
from .formatter import ContextFormatter
from .pacer import ResponsePacer
from .ratelimit import SlidingWindowRateLimiter
from .roles import BotIdentity, classify_role, is_bot_author
from .signature import SignatureVerifier
from .transcript import BufferState, TranscriptSessions, UtteranceBuffer

__all__ = [
    "AnthropicCompletionProvider",
    "BotIdentity",
    "BufferState",
    "CompletionProvider",
    "CompletionResult",
    "ContextFormatter",
    "CooldownGate",
    "GateResult",
    "ResponsePacer",
    "SignatureVerifier",
    "SlidingWindowRateLimiter",
    "TranscriptSessions",
    "UtteranceBuffer",
    "allowed",
    "classify_role",
    "is_bot_author",
]
