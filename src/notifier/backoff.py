import random

from src.models.model_notify import RetryPolicy


class Backoff:
    """Exponential backoff with jitter, driven by a RetryPolicy."""

    def __init__(self, policy: RetryPolicy):
        self.policy = policy

    def delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        base = self.policy.base_delay * (self.policy.backoff_factor ** (attempt - 1))
        capped = min(base, self.policy.max_delay)
        # Add jitter: +/- jitter_factor of the delay
        jitter = capped * self.policy.jitter_factor * (2 * random.random() - 1)
        return max(0.0, capped + jitter)

    def total_budget(self) -> float:
        """Upper bound of the time spent sleeping between attempts."""
        return sum(
            min(
                self.policy.base_delay * (self.policy.backoff_factor ** (n - 1)),
                self.policy.max_delay,
            )
            * (1 + self.policy.jitter_factor)
            for n in range(1, self.policy.max_attempts)
        )
