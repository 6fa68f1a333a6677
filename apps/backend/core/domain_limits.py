"""
Per-domain rate limiting by minimum spacing between requests
"""
import time
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.cache import Cache
from core.config import Settings

logger = logging.getLogger(__name__)

RATE_LIMIT_TTL_SECONDS = 3600


class DomainRateLimiter:
    """
    Tracks the last request per domain in a shared cache.

    Not a queue: callers check allowed() or wait_if_needed() themselves,
    then call record_request().
    """

    def __init__(
        self,
        cache: Cache,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cache = cache
        self.settings = settings or Settings()
        self.clock = clock
        self.sleep = sleep

    @staticmethod
    def _key(domain: str) -> str:
        return f"rate_limit:{domain.lower()}"

    def spacing(self, domain: str) -> float:
        return self.settings.domain_spacing(domain)

    def _elapsed(self, domain: str) -> Optional[float]:
        last_request = self.cache.get(self._key(domain))
        if last_request is None:
            return None
        return self.clock() - float(last_request)

    def allowed(self, domain: str) -> bool:
        """True if at least the configured spacing has passed since the last request."""
        elapsed = self._elapsed(domain)
        return elapsed is None or elapsed >= self.spacing(domain)

    def record_request(self, domain: str):
        self.cache.set(self._key(domain), self.clock(), ttl=RATE_LIMIT_TTL_SECONDS)

    def wait_time(self, domain: str) -> float:
        """Seconds until the next request to this domain is allowed."""
        elapsed = self._elapsed(domain)
        if elapsed is None:
            return 0.0
        return max(0.0, self.spacing(domain) - elapsed)

    async def wait_if_needed(self, domain: str, crawl_delay: Optional[int] = None):
        """Sleep until the domain is allowed, honouring a larger robots crawl-delay."""
        wait = self.wait_time(domain)
        if crawl_delay:
            elapsed = self._elapsed(domain)
            if elapsed is not None:
                wait = max(wait, crawl_delay - elapsed)
        if wait > 0:
            logger.debug(f"[domain_limits] Waiting {wait:.2f}s for min interval - {domain}")
            await self.sleep(wait)
