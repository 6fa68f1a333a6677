"""
Static HTML fetch with transparent caching and board-aware cleaning.
"""
import hashlib
import logging
from datetime import datetime
from typing import Dict, Optional

import httpx

from core.cache import Cache
from core.config import Settings
from core.net import HTTPClient
from crawler.cleaners import clean_html

logger = logging.getLogger(__name__)


def html_cache_key(url: str) -> str:
    return f"html:{hashlib.sha256(url.encode()).hexdigest()}"


class HtmlFetcher:
    """Fetches a job page once and serves later attempts from the cache"""

    def __init__(self, cache: Cache, settings: Optional[Settings] = None, http_client: Optional[HTTPClient] = None):
        self.cache = cache
        self.settings = settings or Settings()
        self.http_client = http_client or HTTPClient(
            user_agent=self.settings.user_agent,
            timeout=self.settings.request_timeout,
        )

    def cached(self, url: str) -> Optional[Dict]:
        """Cached fetch payload for a URL, if still valid."""
        entry = self.cache.get(html_cache_key(url))
        if entry and entry.get('html_content'):
            return entry
        return None

    def invalidate(self, url: str):
        self.cache.delete(html_cache_key(url))

    def remember(self, url: str, html_content: str, cleaned_html: Optional[str], http_status: Optional[int] = None,
                 fetched_via: str = 'http', fetch_mode: str = 'static', content_type: Optional[str] = None):
        """Cache fetched HTML so retries can extract without refetching."""
        self.cache.set(html_cache_key(url), {
            'html_content': html_content,
            'cleaned_html': cleaned_html,
            'http_status': http_status,
            'content_type': content_type,
            'fetched_via': fetched_via,
            'fetch_mode': fetch_mode,
            'fetched_at': datetime.utcnow().isoformat(),
        }, ttl=self.settings.html_cache_ttl_seconds)

    async def fetch(self, url: str, board_type: Optional[str] = None, use_cache: bool = True) -> Dict:
        """
        Fetch HTML for a job page.

        Args:
            url: Job page URL
            board_type: Detected board, selects the cleaner
            use_cache: Serve a cached copy when one exists

        Returns:
            {
                'success': bool,
                'html_content': str or None,
                'cleaned_html': str or None,
                'from_cache': bool,
                'http_status': int or None,
                'error': str or None
            }
        """
        if use_cache:
            entry = self.cached(url)
            if entry:
                logger.debug(f"[html_fetch] Cache hit for {url}")
                cleaned = entry.get('cleaned_html') or clean_html(entry['html_content'], board_type)
                return {
                    'success': True,
                    'html_content': entry['html_content'],
                    'cleaned_html': cleaned,
                    'from_cache': True,
                    'http_status': entry.get('http_status'),
                    'fetch_mode': entry.get('fetch_mode') or 'static',
                    'error': None,
                }

        try:
            status, headers, body, size = await self.http_client.fetch(url, timeout=self.settings.request_timeout)
        except httpx.TimeoutException as e:
            return self._failure(f"Request timeout: {e}")
        except Exception as e:
            return self._failure(f"Failed to fetch HTML: {e}")

        if not 200 <= status < 300:
            logger.warning(f"[html_fetch] HTTP {status} for {url}")
            return self._failure(f"HTTP {status}: Failed to fetch HTML", http_status=status)

        html = body.decode('utf-8', errors='ignore')
        cleaned = clean_html(html, board_type)

        self.remember(url, html, cleaned, http_status=status, content_type=headers.get('content-type'))

        return {
            'success': True,
            'html_content': html,
            'cleaned_html': cleaned,
            'from_cache': False,
            'http_status': status,
            'error': None,
        }

    @staticmethod
    def _failure(error: str, http_status: Optional[int] = None) -> Dict:
        return {
            'success': False,
            'html_content': None,
            'cleaned_html': None,
            'from_cache': False,
            'http_status': http_status,
            'error': error,
        }
