"""
Rolling-window token budget for metered AI providers.
"""
import math
import time
import logging
from typing import Callable, Dict, List, Optional

from core.cache import Cache

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIMIT = 30000
DEFAULT_WINDOW_SECONDS = 60
CACHE_EXPIRY_SECONDS = 120
CHARS_PER_TOKEN = 4


class TokenBudgetLimiter:
    """Keeps {timestamp, tokens} entries for the last window in the cache."""

    def __init__(
        self,
        cache: Cache,
        provider: str = "anthropic",
        limit: int = DEFAULT_TOKEN_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.provider = provider
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    @property
    def cache_key(self) -> str:
        return f"token_usage:{self.provider}"

    def _entries(self) -> List[Dict]:
        """Entries still inside the window, oldest first."""
        cutoff = self.clock() - self.window_seconds
        entries = self.cache.get(self.cache_key) or []
        return sorted((e for e in entries if e['timestamp'] > cutoff), key=lambda e: e['timestamp'])

    def current_usage(self) -> int:
        return sum(e['tokens'] for e in self._entries())

    def can_send(self, estimated_tokens: int) -> bool:
        return self.current_usage() + estimated_tokens <= self.limit

    def wait_time(self, estimated_tokens: int) -> int:
        """
        Seconds until enough old entries leave the window for the request to fit.

        Returns 0 when the request fits now. A request larger than the limit
        itself waits for the whole window to drain.
        """
        entries = self._entries()
        usage = sum(e['tokens'] for e in entries)
        if usage + estimated_tokens <= self.limit:
            return 0

        now = self.clock()
        for entry in entries:
            usage -= entry['tokens']
            if usage + estimated_tokens <= self.limit:
                return max(0, math.ceil(self.window_seconds - (now - entry['timestamp'])))

        if not entries:
            return 0
        return max(0, math.ceil(self.window_seconds - (now - entries[-1]['timestamp'])))

    def record_used(self, tokens: Optional[int]):
        if not tokens or tokens <= 0:
            return
        entries = self._entries()
        entries.append({'timestamp': self.clock(), 'tokens': int(tokens)})
        self.cache.set(self.cache_key, entries, ttl=CACHE_EXPIRY_SECONDS)
        logger.debug(f"[token_budget] {self.provider}: recorded {tokens} tokens, window usage {self.current_usage()}")

    @staticmethod
    def estimate_tokens(text: Optional[str]) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)
