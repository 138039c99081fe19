"""
Client-side rate limiting for Kubernetes API calls.

Every access review and cred spec lookup the webhook makes costs an API
server request. A token bucket caps the sustained rate (QPS) while letting
short bursts through, so a flood of pod creations can't turn into a flood
of API requests.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from gmsa_webhook.observability.metrics import record_rate_limit_wait

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """
    Async token bucket implementation for rate limiting.

    Uses the token bucket algorithm with continuous token refill.
    Waiters are served one at a time via an asyncio lock.
    """

    rate: float  # tokens per second
    capacity: int  # maximum burst capacity
    tokens: float = field(init=False)
    last_update: float = field(init=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self):
        """Initialize token bucket to full capacity."""
        if self.rate <= 0:
            raise ValueError(f"rate must be positive, got {self.rate}")
        if self.capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {self.capacity}")
        self.tokens = float(self.capacity)
        self.last_update = time.monotonic()

    async def acquire(self) -> None:
        """
        Acquire a token, waiting as long as necessary.

        The wait ends early only if the calling task is cancelled.
        """
        start_time = time.monotonic()

        async with self.lock:
            while True:
                now = time.monotonic()
                elapsed = now - self.last_update

                # Refill tokens based on elapsed time
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                self.last_update = now

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    record_rate_limit_wait(now - start_time)
                    return

                await asyncio.sleep((1.0 - self.tokens) / self.rate)

    def available_tokens(self) -> float:
        """Get current number of available tokens (not lock-protected)."""
        now = time.monotonic()
        elapsed = now - self.last_update
        return min(self.capacity, self.tokens + elapsed * self.rate)
