"""
Board-specific selector extractors.

A result's `success` only means the required fields were found; whether it
is accepted is decided by the caller against the confidence threshold.
"""
import re
import logging
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

EXTRACTOR_KIND = "job_board_selectors"

REQUIRED_FIELDS = ['title', 'company_name', 'description']

FIELD_WEIGHTS = {
    'title': 0.25,
    'company_name': 0.25,
    'description': 0.15,
    'location': 0.05,
    'requirements': 0.075,
    'responsibilities': 0.075,
    'benefits': 0.05,
    'about_company': 0.05,
    'company_culture': 0.05,
}

MISSING_REQUIRED_CAP = 0.69


class BoardExtractor:
    """Selectors-first extractor; subclasses override the selector lists."""

    title_selectors = ["h1"]
    company_selectors: List[str] = []
    location_selectors = ["[class*='location']", "[data-location]", "address"]
    description_selectors = ["[class*='description']", "[data-description]", "main", "article"]
    requirements_selectors: List[str] = []
    responsibilities_selectors: List[str] = []
    about_company_selectors = ["[id*='about']", "[class*='about']", ".about", ".about-us"]
    company_culture_selectors = [
        "[id*='culture']", "[class*='culture']", "[id*='values']",
        "[class*='values']", "[id*='mission']", "[class*='mission']",
    ]

    def __init__(self, board_type: str):
        self.board_type = board_type

    def extract(self, html_content: Optional[str]) -> Dict:
        if not html_content or not html_content.strip():
            return self._failure("No HTML provided")

        try:
            soup = BeautifulSoup(html_content, 'html.parser')
            selectors_tried: Dict[str, List[str]] = {}
            fields = {
                'title': self.title_selectors,
                'company_name': self.company_selectors,
                'location': self.location_selectors,
                'description': self.description_selectors,
                'about_company': self.about_company_selectors,
                'company_culture': self.company_culture_selectors,
                'requirements': self.requirements_selectors,
                'responsibilities': self.responsibilities_selectors,
            }
            data = {}
            for field, selectors in fields.items():
                value = self.pick_text(soup, selectors, selectors_tried, field)
                if value:
                    data[field] = value
        except Exception as e:
            logger.warning(f"[board_extractors] {self.board_type} extraction failed: {e}")
            return self._failure(str(e))

        missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
        return {
            'success': not missing,
            'extractor_kind': EXTRACTOR_KIND,
            'board_type': self.board_type,
            'extraction_method': 'html',
            'provider': self.board_type,
            'confidence': self.confidence_for(data),
            'missing_fields': missing,
            'extracted_fields': list(data.keys()),
            'selectors_tried': selectors_tried,
            'data': data,
        }

    def confidence_for(self, data: Dict) -> float:
        score = sum(weight for field, weight in FIELD_WEIGHTS.items() if data.get(field))
        # Missing required fields keep the cascade going
        if any(not data.get(f) for f in REQUIRED_FIELDS):
            score = min(score, MISSING_REQUIRED_CAP)
        return round(max(0.0, min(score, 1.0)), 3)

    def pick_text(self, soup: BeautifulSoup, selectors: List[str], selectors_tried: Dict, field: str) -> Optional[str]:
        selectors_tried[field] = []
        for selector in selectors:
            selectors_tried[field].append(selector)
            node = soup.select_one(selector)
            if node is None:
                continue
            text = self.node_text(node)
            if text:
                return text
        return None

    @staticmethod
    def node_text(node) -> str:
        raw = node.get('content') or node.get('alt') or node.get('aria-label') or node.get('title') or node.get_text(separator=' ')
        return re.sub(r'\s+', ' ', str(raw)).strip()

    def _failure(self, message: str) -> Dict:
        return {
            'success': False,
            'extractor_kind': EXTRACTOR_KIND,
            'board_type': self.board_type,
            'extraction_method': 'html',
            'provider': self.board_type,
            'confidence': 0.0,
            'error': message,
            'missing_fields': list(REQUIRED_FIELDS),
            'extracted_fields': [],
            'selectors_tried': {},
            'data': {},
        }


class AshbyExtractor(BoardExtractor):
    """
    Ashby pages (jobs.ashbyhq.com).

    Only metadata and the raw description come from selectors; structured
    lists live inside the description, so confidence is capped to let AI
    extraction run.
    """

    STRUCTURED_CAP = 0.65
    MIN_DESCRIPTION_LENGTH = 50

    title_selectors = [
        ".ashby-job-posting-heading",
        "h1[class*='_title_']",
        "h1",
        "meta[property='og:title']",
    ]
    company_selectors = [
        ".ashby-job-posting-header img[alt]",
        "[class*='_navLogoWordmarkImage_']",
        "title",
    ]
    location_selectors = [
        ".ashby-job-posting-left-pane [class*='_section_']:first-of-type p",
        "[class*='_section_'] p",
    ]
    description_selectors = [
        ".ashby-job-posting-right-pane",
        "[class*='_details_']",
        "[class*='_content_']",
        "meta[name='description']",
    ]
    about_company_selectors: List[str] = []
    company_culture_selectors: List[str] = []

    def confidence_for(self, data: Dict) -> float:
        score = super().confidence_for(data)
        if data.get('requirements') or data.get('responsibilities'):
            return score
        return min(score, self.STRUCTURED_CAP)

    def pick_text(self, soup: BeautifulSoup, selectors: List[str], selectors_tried: Dict, field: str) -> Optional[str]:
        selectors_tried[field] = []
        for selector in selectors:
            selectors_tried[field].append(selector)
            node = soup.select_one(selector)
            if node is None:
                continue

            # "Job Title @ Company"
            if field == 'company_name' and selector == 'title':
                title_text = node.get_text()
                if '@' in title_text:
                    company = title_text.split('@')[-1].strip()
                    if company:
                        return company
                continue

            if node.name == 'img' and (node.get('alt') or '').strip():
                return node['alt'].strip()

            text = self.node_text(node)
            min_length = self.MIN_DESCRIPTION_LENGTH if field == 'description' else 1
            if text and len(text) >= min_length:
                return text
        return None


EXTRACTORS = {
    'ashby': AshbyExtractor,
}


def get_board_extractor(board_type: Optional[str]) -> Optional[BoardExtractor]:
    """Extractor for a detected board, or None for unknown boards."""
    if not board_type or board_type == 'unknown':
        return None
    return EXTRACTORS.get(board_type, BoardExtractor)(board_type)
