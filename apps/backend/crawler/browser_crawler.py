"""
Browser-based fetch using Playwright for JavaScript-heavy job pages.
"""
import time
import asyncio
import logging
from typing import Optional, List, Dict, Tuple
from playwright.async_api import async_playwright

from crawler.cleaners import clean_html
from core.net import REALISTIC_UA

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_WAIT_SECONDS = 10
HARD_TIMEOUT_SECONDS = 90
MAX_HTML_BYTES = 5 * 1024 * 1024
MAX_IFRAMES_TO_CHECK = 5
IFRAME_WAIT_SECONDS = 6
SELECTOR_POLL_SECONDS = 0.25

# Best-effort signals that job content has rendered
JOB_CONTENT_SELECTORS = [
    "[data-testid*='job']",
    "[data-testid*='description']",
    "[data-testid*='posting']",
    "[class*='job-description']",
    "[class*='jobDescription']",
    "[class*='job-details']",
    "[class*='jobDetails']",
    "[id*='job-description']",
    "[id*='jobDescription']",
    "main",
]


class RenderedHtmlFetcher:
    """Renders a page in headless Chromium under a hard wall-clock timeout"""

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        wait: int = DEFAULT_WAIT_SECONDS,
        hard_timeout: int = HARD_TIMEOUT_SECONDS,
        ws_endpoint: Optional[str] = None,
    ):
        self.timeout = timeout
        self.wait = wait
        self.hard_timeout = hard_timeout
        self.ws_endpoint = ws_endpoint

    async def fetch(self, url: str, board_type: Optional[str] = None) -> Dict:
        """
        Render a URL and return its final DOM.

        Args:
            url: URL to render
            board_type: Detected board, selects the cleaner

        Returns:
            {
                'success': bool,
                'html': str or None,
                'cleaned_html': str or None,
                'cleaned_text_length': int,
                'selector_found': bool,
                'found_selectors': list,
                'selector_wait_ms': int or None,
                'iframe_used': bool,
                'error': str or None
            }
        """
        try:
            return await asyncio.wait_for(self._render(url, board_type), timeout=self.hard_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[browser] Rendered fetch hard timeout after {self.hard_timeout}s for {url}")
            return self._error_result(f"Rendered fetch timed out after {self.hard_timeout} seconds")
        except Exception as e:
            logger.error(f"[browser] Rendered fetch failed for {url}: {e}")
            return self._error_result(f"Rendered fetch failed: {e}")

    async def _render(self, url: str, board_type: Optional[str]) -> Dict:
        async with async_playwright() as p:
            if self.ws_endpoint:
                browser = await p.chromium.connect(self.ws_endpoint)
            else:
                browser = await p.chromium.launch(headless=True)

            try:
                page = await browser.new_page(user_agent=REALISTIC_UA)
                await page.set_extra_http_headers({
                    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
                    'Accept-Language': 'en-US,en;q=0.9'
                })

                await page.goto(url, wait_until='domcontentloaded', timeout=self.timeout * 1000)

                started = time.monotonic()
                selector_found, found_selectors = await self._wait_for_any_selector(
                    page, JOB_CONTENT_SELECTORS, min(self.wait, 15)
                )

                iframe_candidate = None
                if not selector_found:
                    iframe_candidate = await self._probe_iframes(page)
                selector_wait_ms = int((time.monotonic() - started) * 1000)

                html = await page.content()
                if len(html.encode('utf-8')) > MAX_HTML_BYTES:
                    logger.warning(f"[browser] Rendered HTML over {MAX_HTML_BYTES} bytes, truncating - {url}")
                    html = html.encode('utf-8')[:MAX_HTML_BYTES].decode('utf-8', errors='ignore')

                cleaned = clean_html(html, board_type)
                iframe_used = False

                if iframe_candidate:
                    iframe_html, iframe_selectors = iframe_candidate
                    iframe_cleaned = clean_html(iframe_html, board_type)
                    # Prefer iframe HTML when it yields more text
                    if len(iframe_cleaned) > len(cleaned):
                        html, cleaned = iframe_html, iframe_cleaned
                        found_selectors = iframe_selectors
                        selector_found = True
                        iframe_used = True

                logger.info(f"[browser] Rendered {url}: {len(cleaned)} chars, selector_found={selector_found}, iframe_used={iframe_used}")

                return {
                    'success': True,
                    'html': html,
                    'cleaned_html': cleaned,
                    'cleaned_text_length': len(cleaned),
                    'selector_found': selector_found,
                    'found_selectors': found_selectors[:10],
                    'selector_wait_ms': selector_wait_ms,
                    'iframe_used': iframe_used,
                    'error': None,
                }
            finally:
                await browser.close()

    async def _wait_for_any_selector(self, target, selectors: List[str], timeout: float) -> Tuple[bool, List[str]]:
        """Poll a page or frame until any selector matches or the timeout passes."""
        deadline = time.monotonic() + timeout
        while True:
            found = []
            for selector in selectors:
                try:
                    if await target.query_selector(selector):
                        found.append(selector)
                except Exception as e:
                    logger.debug(f"[browser] Selector probe failed for {selector}: {e}")
            if found:
                return True, found
            if time.monotonic() >= deadline:
                return False, []
            await asyncio.sleep(SELECTOR_POLL_SECONDS)

    async def _probe_iframes(self, page) -> Optional[Tuple[str, List[str]]]:
        """Return (html, selectors) of the first iframe that shows job content."""
        for frame in page.main_frame.child_frames[:MAX_IFRAMES_TO_CHECK]:
            try:
                found, selectors = await self._wait_for_any_selector(frame, JOB_CONTENT_SELECTORS, IFRAME_WAIT_SECONDS)
                if found:
                    return await frame.content(), selectors
            except Exception as e:
                logger.debug(f"[browser] Iframe probe failed: {e}")
        return None

    @staticmethod
    def _error_result(message: str) -> Dict:
        return {
            'success': False,
            'html': None,
            'cleaned_html': None,
            'cleaned_text_length': 0,
            'selector_found': False,
            'found_selectors': [],
            'selector_wait_ms': None,
            'iframe_used': False,
            'error': message,
        }
