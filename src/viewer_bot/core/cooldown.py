"""Cooldown gate deciding whether the bot may speak."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from viewer_bot.core.logging import get_session_stats

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 6


def allowed(
    last_interaction_at: datetime | None,
    now: datetime,
    cooldown_seconds: int | float,
) -> bool:
    """True if no interaction was recorded or the cooldown has fully elapsed."""
    if last_interaction_at is None:
        return True
    return (now - last_interaction_at) >= timedelta(seconds=cooldown_seconds)


@dataclass
class GateResult:
    """Result of a cooldown check."""

    allowed: bool
    cooldown_seconds: int | float
    elapsed: timedelta | None  # None when there was no previous interaction

    @property
    def remaining(self) -> timedelta:
        if self.allowed or self.elapsed is None:
            return timedelta(0)
        return timedelta(seconds=self.cooldown_seconds) - self.elapsed

    def __str__(self) -> str:
        status = "PASS" if self.allowed else "FAIL"
        elapsed = "never" if self.elapsed is None else f"{self.elapsed.total_seconds():.1f}s"
        return f"Gate[{status}]: cooldown={self.cooldown_seconds}s elapsed={elapsed}"


class CooldownGate:
    """Applies the per-channel cooldown, falling back to a default.

    Range limits on the cooldown belong to the settings layer; the gate uses
    whatever value it is given.
    """

    def __init__(self, default_cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS):
        self._default = default_cooldown_seconds

    def check(
        self,
        last_interaction_at: datetime | None,
        now: datetime,
        cooldown_seconds: int | float | None = None,
    ) -> GateResult:
        cooldown = self._default if cooldown_seconds is None else cooldown_seconds
        elapsed = None if last_interaction_at is None else now - last_interaction_at
        result = GateResult(
            allowed=allowed(last_interaction_at, now, cooldown),
            cooldown_seconds=cooldown,
            elapsed=elapsed,
        )

        logger.info(f"COOLDOWN: {result}")
        stats = get_session_stats()
        if result.allowed:
            stats.increment("gate_passes")
        else:
            stats.increment("gate_fails")
        return result
