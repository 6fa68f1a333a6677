"""
HTTP client shared by the static fetcher, robots checker, embed resolver and
board API fetchers.

Transport errors are retried with exponential backoff. A 429/503 carrying
Retry-After is waited out (capped) and requested once more; the second
response is returned whatever its status.
"""
import os
import time
import asyncio
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.config import DEFAULT_UA

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 2
MAX_RETRY_AFTER_SECONDS = 60
DEFAULT_MAX_SIZE_KB = 5120
RETRY_AFTER_STATUSES = (429, 503)

REALISTIC_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


def retry_after_seconds(value: Optional[str], now: Optional[float] = None) -> int:
    """Seconds to wait for a Retry-After value (delta or HTTP date), capped."""
    if not value:
        return 0
    value = value.strip()
    if value.isdigit():
        seconds = int(value)
    else:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.warning(f"[net] Unparseable Retry-After: {value!r}")
            return 0
        seconds = int(when.timestamp() - (now if now is not None else time.time()))
    return max(0, min(seconds, MAX_RETRY_AFTER_SECONDS))


class HTTPClient:
    """GET-only client with a bot User-Agent and transport-level retries"""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.user_agent = user_agent or os.getenv("JOBSCRAPE_CRAWLER_UA", DEFAULT_UA)
        self.timeout = timeout
        self.transport = transport
        self.sleep = sleep

    def headers_for(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Accept-Encoding": "gzip, deflate",
        }
        headers.update(extra or {})
        return headers

    @retry(
        stop=stop_after_attempt(MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        reraise=True
    )
    async def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_size_kb: int = DEFAULT_MAX_SIZE_KB,
    ) -> Tuple[int, Dict[str, str], bytes, int]:
        """
        GET a URL.

        Args:
            url: URL to fetch
            headers: Headers merged over the defaults
            params: Query parameters
            timeout: Per-call timeout override in seconds
            max_size_kb: Bodies above this are truncated

        Returns:
            (status_code, headers, body, content_length_bytes)
        """
        response = await self._get(url, headers, params, timeout, max_size_kb)

        status, response_headers = response[0], response[1]
        if status in RETRY_AFTER_STATUSES:
            wait = retry_after_seconds(response_headers.get("retry-after"))
            if wait:
                logger.info(f"[net] {status} for {url}, retrying once after {wait}s")
                await self.sleep(wait)
                response = await self._get(url, headers, params, timeout, max_size_kb)

        return response

    async def _get(self, url, headers, params, timeout, max_size_kb) -> Tuple[int, Dict[str, str], bytes, int]:
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(timeout or self.timeout),
                                         follow_redirects=True, transport=self.transport) as client:
                response = await client.get(url, headers=self.headers_for(headers), params=params)
        except httpx.TimeoutException as e:
            logger.error(f"[net] Timeout fetching {url}: {e}")
            raise
        except httpx.ConnectError as e:
            logger.error(f"[net] Connection error fetching {url}: {e}")
            raise

        response_headers = dict(response.headers)
        size = len(response.content)
        limit = max_size_kb * 1024
        body = response.content
        if size > limit:
            logger.warning(f"[net] Truncating {url}: {size} bytes over {max_size_kb}KB")
            body = body[:limit]

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[net] GET {response.status_code} {url} ({size} bytes, {elapsed_ms}ms)")
        return response.status_code, response_headers, body, size
