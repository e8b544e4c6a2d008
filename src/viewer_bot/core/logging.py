"""Logging utilities for viewer-bot."""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generator

# AI debug mode flag
_ai_debug: bool = False
_ai_debug_lock = Lock()


def set_ai_debug(enabled: bool) -> None:
    """Enable or disable AI debug logging."""
    global _ai_debug
    with _ai_debug_lock:
        _ai_debug = enabled


def is_ai_debug() -> bool:
    """Check if AI debug logging is enabled."""
    with _ai_debug_lock:
        return _ai_debug


# Dedicated logger for AI debug output
_ai_logger = logging.getLogger("viewer_bot.ai_debug")


def log_llm_call(
    operation: str,
    model: str,
    system_prompt: str | None = None,
    messages: list[dict[str, Any]] | None = None,
    config: dict[str, Any] | None = None,
) -> None:
    """Log the input to an LLM call when AI debug is enabled."""
    if not is_ai_debug():
        return

    parts = [
        f"\n{'='*80}",
        f"LLM CALL: {operation}",
        f"Model: {model}",
        f"{'='*80}",
    ]

    if system_prompt:
        parts.append(f"\n--- SYSTEM PROMPT ---\n{system_prompt}")

    if messages:
        parts.append(f"\n--- MESSAGES ---\n{json.dumps(messages, indent=2, default=str)}")

    if config:
        parts.append(f"\n--- CONFIG ---\n{json.dumps(config, indent=2, default=str)}")

    _ai_logger.info("\n".join(parts))


def log_llm_response(
    operation: str,
    response_text: str | None = None,
    usage: dict[str, Any] | None = None,
    stop_reason: str | None = None,
) -> None:
    """Log the output from an LLM call when AI debug is enabled."""
    if not is_ai_debug():
        return

    parts = [
        f"\n{'-'*80}",
        f"LLM RESPONSE: {operation}",
        f"{'-'*80}",
    ]

    if response_text:
        parts.append(f"\n--- RESPONSE TEXT ---\n{response_text}")

    if stop_reason:
        parts.append(f"\n--- STOP REASON ---\n{stop_reason}")

    if usage:
        parts.append(f"\n--- USAGE ---\n{json.dumps(usage, indent=2, default=str)}")

    parts.append(f"{'='*80}\n")

    _ai_logger.info("\n".join(parts))


@dataclass
class SessionStats:
    """Cumulative statistics for a session.

    Thread-safe counters for tracking bot activity metrics.
    """

    webhooks_received: int = 0
    webhooks_rejected: int = 0
    duplicates_dropped: int = 0
    messages_stored: int = 0
    gate_passes: int = 0
    gate_fails: int = 0
    replies_sent: int = 0
    replies_failed: int = 0
    subscriptions_created: int = 0
    subscriptions_deleted: int = 0
    api_calls: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, stat: str, amount: int = 1) -> None:
        """Increment a stat counter."""
        with self._lock:
            if hasattr(self, stat) and stat != "_lock":
                current = getattr(self, stat)
                if isinstance(current, int):
                    setattr(self, stat, current + amount)

    def increment_api_call(self, model: str) -> None:
        """Track an API call to a specific model."""
        with self._lock:
            self.api_calls[model] = self.api_calls.get(model, 0) + 1

    def summary(self) -> dict[str, Any]:
        """Return a summary of all stats."""
        with self._lock:
            total_gate = self.gate_passes + self.gate_fails
            return {
                "webhooks": self.webhooks_received,
                "rejected": self.webhooks_rejected,
                "duplicates": self.duplicates_dropped,
                "stored": self.messages_stored,
                "gate_rate": f"{100 * self.gate_passes / max(1, total_gate):.0f}%",
                "replies": self.replies_sent,
                "failures": self.replies_failed,
                "subs_created": self.subscriptions_created,
                "subs_deleted": self.subscriptions_deleted,
                "api_calls": dict(self.api_calls),
            }

    def summary_line(self) -> str:
        """Return a single-line summary for logging."""
        with self._lock:
            total_gate = self.gate_passes + self.gate_fails
            gate_pct = 100 * self.gate_passes / max(1, total_gate)
            return (
                f"webhooks={self.webhooks_received} rejected={self.webhooks_rejected} "
                f"stored={self.messages_stored} gate_rate={gate_pct:.0f}% "
                f"replies={self.replies_sent} failures={self.replies_failed}"
            )


# Global session stats instance
_session_stats: SessionStats | None = None
_stats_lock = Lock()


def get_session_stats() -> SessionStats:
    """Get the global session stats instance."""
    global _session_stats
    with _stats_lock:
        if _session_stats is None:
            _session_stats = SessionStats()
        return _session_stats


def reset_session_stats() -> None:
    """Reset session stats (mainly for testing)."""
    global _session_stats
    with _stats_lock:
        _session_stats = SessionStats()


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str
) -> Generator[None, None, None]:
    """Context manager for timing operations.

    Logs at DEBUG level on completion.

    Example:
        with log_timing(logger, "Context build"):
            request = formatter.format(...)
        # Logs: "Context build completed in 1.23ms"
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
