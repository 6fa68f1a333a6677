"""
Cheap generic HTML scraping with CSS selectors.

Runs before any board-specific, API or AI extraction and only ever fills
blank listing fields.
"""
import re
import time
import logging
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from pipeline.salary import SalaryRangeValidator

logger = logging.getLogger(__name__)

FIELD_SELECTORS = {
    'title': [
        "h1.job-title", "[data-job-title]", "[class*='job-title']", "[id*='job-title']",
        "h1", ".title", "[class*='title']",
    ],
    'location': [
        "[data-location]", "[class*='location']", "[id*='location']", "address",
        ".location", "[class*='address']",
    ],
    'company_name': [
        "[data-company]", "[class*='company']", "[id*='company']", ".company",
        ".company-name", "[itemprop='name']",
    ],
    'description': [
        "[data-description]", "[class*='description']", "[id*='description']",
        ".description", ".job-description", "main p", "article p", "[role='main'] p",
    ],
    'about_company': [
        "[data-about]", "[id*='about']", "[class*='about']", ".about", ".about-us", ".company-about",
    ],
    'company_culture': [
        "[data-culture]", "[id*='culture']", "[class*='culture']", "[id*='values']",
        "[class*='values']", "[id*='mission']", "[class*='mission']",
    ],
    'salary': [
        "[data-salary]", "[class*='salary']", "[id*='salary']", ".salary", "[class*='compensation']",
    ],
}

COOKIE_BANNER_SELECTOR = (
    "div[id*='cookie'], div[class*='cookie'], div[id*='consent'], "
    "div[class*='consent'], div[id*='gdpr'], div[class*='gdpr']"
)

COOKIE_TEXT_PATTERNS = [
    re.compile(p, re.I) for p in (
        r'select which cookies', r'accept.*cookies', r'cookie.*preferences',
        r'manage.*cookies', r'cookie.*consent',
    )
]

LOCATION_TEXT_PATTERNS = [
    re.compile(r'(?:Location|Location:)\s*([A-Z][^,\n]{2,50}(?:,\s*[A-Z]{2})?)', re.I),
    re.compile(r'([A-Z][^,\n]{2,50},\s*[A-Z]{2})'),
    re.compile(r'(Remote|Hybrid|On-site|Onsite)', re.I),
]

MONEY_SIGNAL = re.compile(
    r'\b(?:salary|compensation|pay|remuneration|total\s+comp|ote|base)\b|[$€£]|\b(?:usd|eur|gbp|pln|chf|cad|aud)\b',
    re.I,
)

AMOUNT = r'\d[\d\s,.]*\d\s*[kK]?'
RANGE_PATTERNS = [
    re.compile(
        rf'(?P<cur>[$€£])?\s*(?P<min>{AMOUNT})\s*(?:-|–|—|\bto\b)\s*(?P<cur2>[$€£])?\s*(?P<max>{AMOUNT})\s*(?P<code>(?-i:[A-Z]{{3}})\b)?',
        re.I,
    ),
    re.compile(rf'(?P<min>{AMOUNT})\s*(?P<code>(?-i:[A-Z]{{3}})\b)\s*(?:-|–|—|\bto\b)\s*(?P<max>{AMOUNT})', re.I),
]
SINGLE_PATTERN = re.compile(rf'(?P<cur>[$€£])?\s*(?P<min>{AMOUNT})\s*\+\s*(?P<code>(?-i:[A-Z]{{3}})\b)?', re.I)

CURRENCY_SYMBOLS = {'$': 'USD', '€': 'EUR', '£': 'GBP'}

MAX_BLOCK_CHARS = 2000


def _squish(text: str) -> str:
    return re.sub(r'\s+', ' ', text or '').strip()


class HtmlScraper:
    """Extracts basic job fields from raw HTML using ordered CSS selectors."""

    def __init__(self):
        self.selectors_tried: Dict[str, List[str]] = {}
        self.field_results: Dict[str, Dict] = {}
        self.duration_ms: Optional[int] = None

    def extract(self, html_content: Optional[str]) -> Dict:
        """
        Extract fields from HTML.

        Returns:
            Dict with only the fields that were found: title, location,
            remote_type, salary_min, salary_max, salary_currency, description,
            company_name, about_company, company_culture, job_role_title.
        """
        if not html_content or not html_content.strip():
            return {}

        started = time.monotonic()
        try:
            soup = BeautifulSoup(html_content, 'html.parser')
            for banner in soup.select(COOKIE_BANNER_SELECTOR):
                if not banner.decomposed:
                    banner.decompose()

            result = {
                'title': self._track('title', lambda: self._extract_title(soup)),
                'location': self._track('location', lambda: self._extract_location(soup)),
                'remote_type': self._track('remote_type', lambda: self._extract_remote_type(soup)),
                'description': self._track('description', lambda: self._extract_description(soup)),
                'company_name': self._track('company_name', lambda: self._extract_company_name(soup)),
                'about_company': self._track('about_company', lambda: self._extract_about_company(soup)),
                'company_culture': self._track('company_culture', lambda: self._extract_company_culture(soup)),
            }

            salary = self._track('salary', lambda: self._extract_salary(soup))
            if salary:
                result['salary_min'] = salary['min']
                result['salary_max'] = salary['max']
                result['salary_currency'] = salary['currency']

            result['job_role_title'] = result['title']
            result = {k: v for k, v in result.items() if v is not None}
        except Exception as e:
            logger.error(f"[html_scraper] HTML scraping failed: {e}")
            return {}
        finally:
            self.duration_ms = int((time.monotonic() - started) * 1000)

        if result:
            logger.info(f"[html_scraper] Extracted {sorted(result.keys())} in {self.duration_ms}ms")
        else:
            logger.info(f"[html_scraper] No data extracted in {self.duration_ms}ms")
        return result

    def extraction_rate(self) -> float:
        if not self.field_results:
            return 0.0
        successful = sum(1 for r in self.field_results.values() if r['success'])
        return successful / len(self.field_results)

    def _track(self, field: str, fn):
        self.selectors_tried.setdefault(field, [])
        value = fn()
        self.field_results[field] = {
            'success': bool(value),
            'value': value[:500] + "..." if isinstance(value, str) and len(value) > 500 else value,
            'selectors_tried': list(self.selectors_tried[field]),
        }
        return value or None

    def _first(self, soup: BeautifulSoup, field: str, selector: str) -> Optional[Tag]:
        self.selectors_tried[field].append(selector)
        return soup.select_one(selector)

    def _extract_title(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in FIELD_SELECTORS['title']:
            element = self._first(soup, 'title', selector)
            if element is None:
                continue
            title = element.get_text().strip()
            if any(p.search(title) for p in COOKIE_TEXT_PATTERNS):
                continue
            if 3 < len(title) < 200:
                return title
        return None

    def _extract_location(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in FIELD_SELECTORS['location']:
            element = self._first(soup, 'location', selector)
            if element is None:
                continue
            location = element.get_text().strip()
            if location and len(location) < 200:
                return location

        self.selectors_tried['location'].append('text_pattern_search')
        text = soup.get_text()
        for pattern in LOCATION_TEXT_PATTERNS:
            match = pattern.search(text)
            if match and match.group(1):
                return match.group(1).strip()
        return None

    def _extract_remote_type(self, soup: BeautifulSoup) -> Optional[str]:
        self.selectors_tried['remote_type'].append('text_pattern_search')
        text = soup.get_text().lower()
        if re.search(r'\b(remote|work from home|wfh|distributed|anywhere)\b', text):
            return 'remote'
        if re.search(r'\b(hybrid|flexible|partially remote)\b', text):
            return 'hybrid'
        if re.search(r'\b(on.?site|on.?premise|in.?office|in.?person)\b', text):
            return 'on_site'
        return None

    def _extract_description(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in FIELD_SELECTORS['description']:
            self.selectors_tried['description'].append(selector)
            elements = soup.select(selector)
            if not elements:
                continue
            text = "\n\n".join(e.get_text() for e in elements[:3]).strip()
            if text:
                return text[:MAX_BLOCK_CHARS]
        return None

    def _extract_company_name(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in FIELD_SELECTORS['company_name']:
            element = self._first(soup, 'company_name', selector)
            if element is None:
                continue
            name = (element.get('content') or element.get('alt') or element.get_text() or '').strip()
            if name and len(name) < 100:
                return name

        self.selectors_tried['company_name'].append('meta_tags')
        meta = soup.select_one("meta[property='og:site_name'], meta[name='company']")
        if meta is not None:
            name = meta.get('content') or meta.get('value')
            if name and name.strip():
                return name.strip()
        return None

    def _extract_about_company(self, soup: BeautifulSoup) -> Optional[str]:
        return self._block_from_selectors(soup, 'about_company') or self._section_by_heading(
            soup, re.compile(r'about\s+(the\s+)?company|about\s+us|who\s+we\s+are', re.I)
        )

    def _extract_company_culture(self, soup: BeautifulSoup) -> Optional[str]:
        return self._block_from_selectors(soup, 'company_culture') or self._section_by_heading(
            soup, re.compile(r'culture|values|mission|principles|how\s+we\s+work', re.I)
        )

    def _block_from_selectors(self, soup: BeautifulSoup, field: str) -> Optional[str]:
        for selector in FIELD_SELECTORS[field]:
            element = self._first(soup, field, selector)
            if element is None:
                continue
            text = _squish(element.get_text(separator=' '))
            if text:
                return text[:MAX_BLOCK_CHARS]
        return None

    @staticmethod
    def _section_by_heading(soup: BeautifulSoup, heading_re) -> Optional[str]:
        """Collect sibling blocks after a matching heading until the next h1-h6."""
        for heading in soup.select("h1, h2, h3, h4, strong, b"):
            if not heading_re.search(_squish(heading.get_text())):
                continue
            chunks: List[str] = []
            for node in heading.next_siblings:
                if not isinstance(node, Tag):
                    continue
                if re.match(r'^h[1-6]$', node.name or '', re.I):
                    break
                text = _squish(node.get_text(separator=' '))
                if not text:
                    continue
                chunks.append(text)
                if len("\n\n".join(chunks)) >= MAX_BLOCK_CHARS:
                    break
            combined = "\n\n".join(chunks).strip()
            if combined:
                return combined[:MAX_BLOCK_CHARS]
        return None

    def _extract_salary(self, soup: BeautifulSoup) -> Optional[Dict]:
        salary_text = None
        for selector in FIELD_SELECTORS['salary']:
            element = self._first(soup, 'salary', selector)
            if element is not None:
                salary_text = element.get_text()
                break

        if salary_text is None:
            self.selectors_tried['salary'].append('text_pattern_search')
            salary_text = compensation_candidate_text(soup.get_text(separator='\n'))

        if not salary_text or not salary_text.strip():
            return None

        parsed = parse_salary_from_text(salary_text)
        if not parsed:
            return None

        normalized = SalaryRangeValidator.normalize(
            min=parsed['min'], max=parsed['max'], currency=parsed['currency'], context_text=salary_text,
        )
        if not normalized['valid']:
            logger.debug(f"[html_scraper] Rejected salary {parsed}: {normalized['reason']}")
            return None
        return {'min': normalized['min'], 'max': normalized['max'], 'currency': normalized['currency']}


def compensation_candidate_text(text: str) -> str:
    """Only the lines likely to mention compensation, at most 15."""
    lines = [line.strip() for line in (text or '').splitlines() if line.strip()]
    return "\n".join([line for line in lines if MONEY_SIGNAL.search(line)][:15])


def _currency_from_match(match) -> Optional[str]:
    groups = match.groupdict()
    code = (groups.get('code') or '').strip().upper()
    if code:
        return code
    symbol = (groups.get('cur') or groups.get('cur2') or '').strip()
    return CURRENCY_SYMBOLS.get(symbol)


def parse_salary_from_text(text: str) -> Optional[Dict]:
    if not text or not MONEY_SIGNAL.search(text):
        return None

    for pattern in RANGE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        currency = _currency_from_match(match)
        if not currency:
            return None
        return {'min': match.group('min'), 'max': match.group('max'), 'currency': currency}

    match = SINGLE_PATTERN.search(text)
    if not match:
        return None
    currency = _currency_from_match(match)
    if not currency:
        return None
    return {'min': match.group('min'), 'max': None, 'currency': currency}
