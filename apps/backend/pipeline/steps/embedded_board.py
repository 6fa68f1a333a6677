"""
Resolve Greenhouse gh_jid embeds on marketing sites into the hosted job page.

The visible page is usually a shell; the job content is served from
job-boards.greenhouse.io.
"""
import re
import logging
from typing import Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from bs4 import BeautifulSoup

from core.net import HTTPClient, REALISTIC_UA
from crawler.cleaners import clean_html
from crawler.html_fetch import HtmlFetcher
from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)

GREENHOUSE_FOR_PATTERN = re.compile(r'embed/job_board/js\?for=([a-zA-Z0-9_-]+)')
GREENHOUSE_EMBED_URL = "https://job-boards.greenhouse.io/embed/job_board"
MIN_EMBED_TEXT_LENGTH = 800


def query_param(url: str, key: str) -> Optional[str]:
    try:
        values = parse_qs(urlparse(url).query).get(key)
    except ValueError:
        return None
    return values[0] if values else None


def greenhouse_embed_url(for_key: str, jid: str, source: Optional[str] = None) -> str:
    query = {'for': for_key, 'gh_jid': jid}
    if source:
        query['gh_src'] = source
    return f"{GREENHOUSE_EMBED_URL}?{urlencode(query)}"


def text_length(html: Optional[str]) -> int:
    if not html:
        return 0
    try:
        return len(BeautifulSoup(html, 'html.parser').get_text().strip())
    except Exception:
        return 0


class ResolveEmbeddedJobBoard(Step):
    name = "resolve_embedded_job_board"

    def __init__(self, http_client: Optional[HTTPClient] = None, html_fetcher: Optional[HtmlFetcher] = None):
        self.http_client = http_client or HTTPClient(user_agent=REALISTIC_UA, timeout=30)
        self.html_fetcher = html_fetcher

    async def call(self, ctx: Context) -> Signal:
        if ctx.board_type != "greenhouse":
            return self.continue_()

        jid = query_param(ctx.url, "gh_jid")
        if not jid:
            return self.continue_()

        match = GREENHOUSE_FOR_PATTERN.search(ctx.html_content or "")
        if not match:
            return self.continue_()
        for_key = match.group(1)

        # Lets the API step use the boards API for marketing-site URLs
        ctx.company_slug = ctx.company_slug or for_key
        ctx.job_id = ctx.job_id or jid

        embed_url = greenhouse_embed_url(for_key, jid, query_param(ctx.url, "gh_src"))

        async def fetch(event):
            result = await self._fetch(embed_url)
            event.set_output(
                success=result['success'],
                http_status=result.get('http_status'),
                cleaned_text_length=text_length(result.get('cleaned_html')),
                error=result.get('error'),
                fetch_mode="greenhouse_embed",
            )
            return result

        try:
            resolved = await ctx.event_recorder.record(
                "greenhouse_embed_fetch",
                {'board_type': 'greenhouse', 'for_key': for_key, 'gh_jid': jid, 'embed_url': embed_url},
                fetch,
            )
        except Exception as e:
            logger.warning(f"[embedded_board] Embed fetch failed for {ctx.url}: {e}")
            return self.continue_()

        if not resolved['success']:
            return self.continue_()

        # Only switch when the embed clearly carries the job, not another shell
        if text_length(resolved['cleaned_html']) < MIN_EMBED_TEXT_LENGTH:
            logger.info(f"[embedded_board] Embed for {ctx.url} too short, keeping original page")
            return self.continue_()

        ctx.html_content = resolved['html_content']
        ctx.cleaned_html = resolved['cleaned_html']
        ctx.fetch_mode = "greenhouse_embed"
        if self.html_fetcher is not None:
            self.html_fetcher.remember(
                ctx.url, ctx.html_content, ctx.cleaned_html,
                http_status=resolved.get('http_status'), fetch_mode="greenhouse_embed",
            )
        return self.continue_()

    async def _fetch(self, url: str) -> Dict:
        try:
            status, headers, body, size = await self.http_client.fetch(
                url, headers={'Accept': 'text/html', 'Accept-Language': 'en-US,en;q=0.9'},
            )
        except httpx.TimeoutException as e:
            return {'success': False, 'error': f"Embedded fetch timeout: {e}"}
        except Exception as e:
            return {'success': False, 'error': f"Embedded fetch failed: {e}"}

        if not 200 <= status < 300:
            return {'success': False, 'error': f"HTTP {status}: Failed to fetch embedded HTML", 'http_status': status}

        html = body.decode('utf-8', errors='ignore')
        return {
            'success': True,
            'html_content': html,
            'cleaned_html': clean_html(html, 'greenhouse'),
            'http_status': status,
        }
