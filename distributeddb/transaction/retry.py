"""
Backoff settings for retrying aborted transactions.

Aborted transactions are retried with exponential backoff and jitter until
an elapsed-time budget runs out.
"""

import random
from dataclasses import dataclass
from typing import Optional

from distributeddb.errors import AbortedError
from distributeddb.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetrySettings:
    """
    Configuration for transaction retry behavior.

    Attributes:
        initial_backoff_ms: Backoff before the first retry
        max_backoff_ms: Maximum backoff between two attempts
        backoff_multiplier: Growth factor applied per attempt
        jitter_ms: Random jitter added to each backoff
        total_timeout_ms: Elapsed-time budget for all attempts of a transaction
    """
    initial_backoff_ms: int = 10
    max_backoff_ms: int = 32000
    backoff_multiplier: float = 2.0
    jitter_ms: int = 20
    total_timeout_ms: int = 30000

    def __post_init__(self):
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0 or self.jitter_ms < 0:
            raise ValueError("Backoff values must not be negative")

        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be at least 1.0")

        if self.total_timeout_ms <= 0:
            raise ValueError("total_timeout_ms must be positive")

    @classmethod
    def from_config(cls, config) -> "RetrySettings":
        """
        Build settings from the ``retry.*`` keys of a Config.

        Args:
            config: Config instance

        Returns:
            Retry settings, with defaults for missing keys
        """
        defaults = cls()
        return cls(
            initial_backoff_ms=int(config.get("retry.initial_backoff_ms", defaults.initial_backoff_ms)),
            max_backoff_ms=int(config.get("retry.max_backoff_ms", defaults.max_backoff_ms)),
            backoff_multiplier=float(config.get("retry.backoff_multiplier", defaults.backoff_multiplier)),
            jitter_ms=int(config.get("retry.jitter_ms", defaults.jitter_ms)),
            total_timeout_ms=int(config.get("retry.total_timeout_ms", defaults.total_timeout_ms)),
        )


class BackoffCalculator:
    """
    Computes the delay before the next attempt.

    Implements:
    - Exponential backoff: delay grows by the multiplier each retry
    - Maximum backoff: caps delay at maximum
    - Random jitter: prevents conflicting transactions retrying in lockstep
    - Server hint: a retry delay sent with the abort wins over the formula
    """

    def __init__(self, settings: Optional[RetrySettings] = None, rng: Optional[random.Random] = None):
        """
        Initialize backoff calculator.

        Args:
            settings: Retry settings
            rng: Random source for jitter
        """
        self.settings = settings or RetrySettings()
        self._rng = rng or random.Random()

    def delay_ms(self, attempt: int, error: Optional[AbortedError] = None) -> int:
        """
        Calculate backoff delay.

        Formula: min(initial * multiplier^attempt, max) + jitter

        Args:
            attempt: Number of the attempt that just failed (0-indexed)
            error: The abort that ended the attempt

        Returns:
            Backoff delay in milliseconds
        """
        if error is not None and error.retry_delay_ms is not None:
            return max(0, error.retry_delay_ms)

        exponential_backoff = self.settings.initial_backoff_ms * (
            self.settings.backoff_multiplier ** attempt
        )

        backoff = int(min(exponential_backoff, self.settings.max_backoff_ms))

        jitter = self._rng.randint(0, self.settings.jitter_ms) if self.settings.jitter_ms else 0

        return backoff + jitter
