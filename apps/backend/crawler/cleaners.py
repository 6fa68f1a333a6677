"""
HTML cleaners: strip boilerplate, keep the main content as text, cap token volume.
"""
import re
import logging
from typing import List, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_TOKENS = 25000
CHARS_PER_TOKEN = 3
MAX_CHARS = MAX_TOKENS * CHARS_PER_TOKEN
MIN_CONTENT_LENGTH = 100

REMOVE_TAGS = ['script', 'style', 'noscript', 'iframe', 'svg', 'nav', 'header', 'footer', 'form']

REMOVE_SELECTORS = [
    "[class*='cookie']",
    "[id*='cookie']",
    "[class*='consent']",
    "[id*='consent']",
    "[class*='popup']",
    "[class*='modal']",
    "[class*='newsletter']",
    "[aria-hidden='true']",
    "[hidden]",
    "[style*='display:none']",
    "[style*='display: none']",
]

MAIN_CONTENT_SELECTORS = [
    'main',
    'article',
    "[role='main']",
    '.content',
    '#content',
    '.main-content',
    '#root',
    '#app',
    '#__next',
    "[class*='container']",
    "[class*='content']",
    'body',
]


class BaseCleaner:
    """Generic cleaner; board subclasses put their own content selectors first."""

    content_selectors: List[str] = []

    def clean(self, html: Optional[str]) -> str:
        if not html or not html.strip():
            return ""
        try:
            soup = BeautifulSoup(html, 'html.parser')
            self._strip_boilerplate(soup)
            node = self._main_content(soup)
            text = node.get_text(separator='\n') if node is not None else soup.get_text(separator='\n')
            return self._truncate(self._normalize_whitespace(text))
        except Exception as e:
            logger.warning(f"[cleaners] Cleaning failed, falling back to raw text: {e}")
            return self._truncate(self._normalize_whitespace(re.sub(r'<[^>]+>', ' ', html)))

    def _strip_boilerplate(self, soup: BeautifulSoup):
        for tag in soup(REMOVE_TAGS):
            if not tag.decomposed:
                tag.decompose()
        for selector in REMOVE_SELECTORS:
            for element in soup.select(selector):
                # Nested matches die with their parent
                if not element.decomposed and element.name not in ('html', 'body', 'main'):
                    element.decompose()

    def _main_content(self, soup: BeautifulSoup):
        for selector in self.content_selectors + MAIN_CONTENT_SELECTORS:
            try:
                node = soup.select_one(selector)
            except Exception:
                continue
            if node is not None and len(node.get_text(strip=True)) >= MIN_CONTENT_LENGTH:
                return node

        divs = soup.find_all('div')
        if divs:
            return max(divs, key=lambda d: len(d.get_text(strip=True)))
        return soup

    @staticmethod
    def _normalize_whitespace(text: str) -> str:
        lines = [re.sub(r'[ \t ]+', ' ', line).strip() for line in text.splitlines()]
        text = '\n'.join(line for line in lines if line)
        return re.sub(r'\n{3,}', '\n\n', text).strip()

    @staticmethod
    def _truncate(text: str) -> str:
        if len(text) <= MAX_CHARS:
            return text
        cut = text[:MAX_CHARS]
        boundary = max(cut.rfind('. '), cut.rfind('.\n'), cut.rfind('\n'))
        if boundary > MAX_CHARS // 2:
            cut = cut[:boundary + 1]
        return cut.rstrip()


class GreenhouseCleaner(BaseCleaner):
    content_selectors = ['#content', '.job__description', '#app_body', '.opening']


class LeverCleaner(BaseCleaner):
    content_selectors = ['.posting-page', '.content', '.section-wrapper']


class AshbyCleaner(BaseCleaner):
    content_selectors = ['.ashby-job-posting-right-pane', "[class*='_details_']"]


CLEANERS = {
    'greenhouse': GreenhouseCleaner,
    'lever': LeverCleaner,
    'ashby': AshbyCleaner,
}


def get_cleaner(board_type: Optional[str] = None) -> BaseCleaner:
    return CLEANERS.get(board_type or '', BaseCleaner)()


def clean_html(html: Optional[str], board_type: Optional[str] = None) -> str:
    return get_cleaner(board_type).clean(html)
