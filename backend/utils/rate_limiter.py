"""Sliding-window rate limiting for login and OTP endpoints."""
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-process limiter; one instance per protected action."""

    def __init__(self, name: str, max_attempts: int, window_minutes: int):
        self.name = name
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self.attempts: Dict[str, Deque[datetime]] = defaultdict(deque)

    def hit(self, key: str) -> Optional[int]:
        """Record an attempt. Returns seconds to wait if the key is over the limit."""
        now = datetime.now(timezone.utc)
        window = self.attempts[key]
        while window and now - window[0] >= self.window:
            window.popleft()

        if len(window) >= self.max_attempts:
            wait_seconds = int((window[0] + self.window - now).total_seconds()) + 1
            logger.warning(f"Rate limit hit: {self.name} key={key}")
            return wait_seconds

        window.append(now)
        return None

    def reset(self, key: str) -> None:
        self.attempts.pop(key, None)
