"""
Reconnect Supervisor for the streaming client.

Computes capped exponential backoff with multiplicative jitter and keeps the
attempt counter. It owns no timer itself: the connection asks it for the
next delay and schedules the retry on its own mailbox.
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from alpa.stream.config import ConnectionConfig

logger = logging.getLogger(__name__)


class ReconnectSupervisor:
    """
    Backoff policy and attempt counter for one connection.

        delay(n) = min(base * 2^(n-1), max_delay) * jitter,  jitter ~ U(jitter_min, jitter_max)

    The counter only resets on entry into CONNECTED (see reset()). Once
    max_attempts retries have been scheduled without a successful
    authentication in between, next_delay() returns None.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        base_delay_s: float = 1.0,
        max_delay_s: float = 60.0,
        jitter_range: tuple[float, float] = (0.5, 1.5),
        rng: Optional[random.Random] = None,
    ) -> None:
        self._max_attempts = max_attempts
        self._base_delay_s = base_delay_s
        self._max_delay_s = max_delay_s
        self._jitter_min, self._jitter_max = jitter_range
        self._rng = rng or random.Random()
        self._attempts = 0

    @classmethod
    def from_config(
        cls, config: ConnectionConfig, rng: Optional[random.Random] = None
    ) -> ReconnectSupervisor:
        return cls(
            max_attempts=config.max_reconnect_attempts,
            base_delay_s=config.base_reconnect_delay_s,
            max_delay_s=config.max_reconnect_delay_s,
            jitter_range=(config.jitter_min, config.jitter_max),
            rng=rng,
        )

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self._max_attempts

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based), jitter applied."""
        delay = self._base_delay_s * (2 ** (max(attempt, 1) - 1))
        delay = min(delay, self._max_delay_s)
        jitter = self._rng.uniform(self._jitter_min, self._jitter_max)
        return float(delay * jitter)

    def next_delay(self) -> Optional[float]:
        """
        Register a disconnect and return the delay before the next retry.

        Returns:
            Seconds to wait, or None when the attempt cap has been reached.
        """
        if self.exhausted:
            return None
        self._attempts += 1
        return self.backoff_delay(self._attempts)

    def reset(self) -> None:
        """Called on entry into CONNECTED only."""
        if self._attempts:
            logger.debug(f"Reconnect attempts reset after {self._attempts}")
        self._attempts = 0
