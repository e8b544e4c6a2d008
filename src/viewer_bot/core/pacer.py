"""Human-like delay before posting a reply."""

import random

from viewer_bot.config import PacingConfig


class ResponsePacer:
    """Computes how long to wait before sending a generated reply.

    total = typing time (length / chars_per_second) + thinking time
            (base_thinking_ms scaled by length / 100), jittered by
            +/- variation * total / 2, then clamped to [min, max].
    """

    def __init__(self, config: PacingConfig, rng: random.Random | None = None):
        self._config = config
        self._rng = rng or random.Random()

    def delay(self, message_length: int) -> float:
        """Delay in milliseconds for a reply of ``message_length`` characters."""
        cfg = self._config
        length = max(0, message_length)

        typing_ms = length / cfg.chars_per_second * 1000
        thinking_ms = cfg.base_thinking_ms * (1 + length / 100)
        total = typing_ms + thinking_ms

        spread = total * cfg.variation
        total += self._rng.uniform(-spread / 2, spread / 2)

        return min(max(total, cfg.min_delay_ms), cfg.max_delay_ms)

    def delay_for(self, text: str) -> float:
        return self.delay(len(text))
