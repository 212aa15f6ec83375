"""Human-like spacing between attack commands."""

from __future__ import annotations

import random

from autofarm.core.logging import get_logger

log = get_logger("humanizer")


class Humanizer:
    """Generates jittered delays around a configured base."""

    def __init__(self, delay_range: tuple[float, float], jitter_factor: float = 0.3) -> None:
        self.delay_range = delay_range
        self.jitter_factor = jitter_factor

    def attack_delay(self, base: float) -> float:
        """Gaussian delay between ``base * low`` and ``base * high`` seconds."""
        if base <= 0:
            return 0.0
        low, high = (base * factor for factor in self.delay_range)
        mean = (low + high) / 2
        stddev = (high - low) / 4  # ~95% of values within range
        delay = random.gauss(mean, stddev)
        delay += delay * self.jitter_factor * random.uniform(-1, 1)
        delay = max(low * 0.5, min(delay, high * 1.5))  # clamp
        log.debug("attack_delay", base=base, seconds=round(delay, 2))
        return delay
