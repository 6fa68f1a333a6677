"""
Robots.txt fetching, caching, and parsing
"""
import logging
from typing import Optional, Dict, List, Tuple
from urllib.parse import urlparse

from core.cache import Cache
from core.net import HTTPClient

logger = logging.getLogger(__name__)

ROBOTS_CACHE_SECONDS = 24 * 3600
ROBOTS_TIMEOUT = 10.0
BOT_TOKEN = "jobscrapebot"


class RobotsChecker:
    """Handles robots.txt fetching, caching, and checking. Fails open."""

    def __init__(self, cache: Cache, http_client: Optional[HTTPClient] = None, user_agent: str = BOT_TOKEN):
        self.cache = cache
        self.http_client = http_client or HTTPClient()
        self.user_agent = user_agent

    def _parse_robots_txt(self, robots_txt: str) -> Tuple[List[str], List[str], Optional[int]]:
        """
        Parse robots.txt content for our bot and the wildcard group.

        Returns:
            (disallow_paths, allow_paths, crawl_delay_seconds)
        """
        disallow_paths = []
        allow_paths = []
        crawl_delay = None
        in_relevant_section = False
        last_was_agent = False

        for line in robots_txt.split('\n'):
            line = line.split('#', 1)[0].strip()
            if not line or ':' not in line:
                continue

            key, value = line.split(':', 1)
            key = key.strip().lower()
            value = value.strip()

            if key == 'user-agent':
                matches = value.lower() in ['*', BOT_TOKEN, self.user_agent.lower()]
                # Consecutive User-agent lines share one group
                in_relevant_section = matches or (last_was_agent and in_relevant_section)
                last_was_agent = True
                continue

            last_was_agent = False
            if not in_relevant_section:
                continue

            if key == 'disallow':
                if value:  # Empty disallow means allow all
                    disallow_paths.append(value)
            elif key == 'allow':
                if value:
                    allow_paths.append(value)
            elif key == 'crawl-delay':
                try:
                    crawl_delay = int(float(value))
                except ValueError:
                    logger.warning(f"[robots] Invalid crawl-delay: {value}")

        return disallow_paths, allow_paths, crawl_delay

    @staticmethod
    def _path_allowed(path: str, disallow_paths: List[str], allow_paths: List[str]) -> bool:
        """Longest matching rule wins, Allow wins ties."""
        longest_disallow = max((len(p) for p in disallow_paths if path.startswith(p)), default=-1)
        longest_allow = max((len(p) for p in allow_paths if path.startswith(p)), default=-1)
        if longest_disallow < 0:
            return True
        return longest_allow >= longest_disallow

    async def get_robots_info(self, url: str) -> Dict:
        """
        Get robots.txt info for a URL (cached or fresh).

        Returns:
            {
                'allowed': bool,
                'crawl_delay': int or None,
                'cached': bool,
                'disallow_paths': list
            }
        """
        try:
            parsed = urlparse(url)
            host = parsed.netloc
            if not host:
                return {'allowed': True, 'crawl_delay': None, 'cached': False, 'disallow_paths': []}

            path = parsed.path or '/'
            if parsed.query:
                path = f"{path}?{parsed.query}"
            cache_key = f"robots_txt:{host}"

            rules = self.cache.get(cache_key)
            cached = rules is not None
            if cached:
                logger.debug(f"[robots] Using cached robots.txt for {host}")
            else:
                rules = await self._fetch_rules(f"{parsed.scheme or 'https'}://{host}/robots.txt")
                self.cache.set(cache_key, rules, ttl=ROBOTS_CACHE_SECONDS)

            return {
                'allowed': self._path_allowed(path, rules['disallow'], rules['allow']),
                'crawl_delay': rules.get('crawl_delay'),
                'cached': cached,
                'disallow_paths': rules['disallow'],
            }

        except Exception as e:
            logger.error(f"[robots] Error checking robots.txt for {url}: {e}")
            return {'allowed': True, 'crawl_delay': None, 'cached': False, 'disallow_paths': []}

    async def _fetch_rules(self, robots_url: str) -> Dict:
        logger.info(f"[robots] Fetching {robots_url}")
        status, headers, body, size = await self.http_client.fetch(
            robots_url, max_size_kb=500, timeout=ROBOTS_TIMEOUT
        )

        if status == 200:
            robots_txt = body.decode('utf-8', errors='ignore')
            disallow, allow, crawl_delay = self._parse_robots_txt(robots_txt)
        else:
            # Missing or unreadable robots.txt means everything is allowed
            if status != 404:
                logger.warning(f"[robots] Unexpected status {status} for {robots_url}")
            disallow, allow, crawl_delay = [], [], None

        return {'disallow': disallow, 'allow': allow, 'crawl_delay': crawl_delay}

    async def allowed(self, url: str) -> bool:
        info = await self.get_robots_info(url)
        return info['allowed']

    async def crawl_delay(self, url: str) -> Optional[int]:
        info = await self.get_robots_info(url)
        return info['crawl_delay']
