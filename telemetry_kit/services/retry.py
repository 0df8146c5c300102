import random


class RetryStrategy:
    """Exponential backoff with up to one second of random jitter."""

    def __init__(self, max_retries: int = 5, base_delay_ms: int = 1000):
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (0-based)."""
        exponential_ms = self.base_delay_ms * 2 ** attempt
        jitter_ms = random.randint(0, 999)
        return (exponential_ms + jitter_ms) / 1000

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries
