"""
Structured job-board API fetchers (Greenhouse, Lever).

Both return a normalized job dict with confidence 1.0 and extraction
method "api", or {'error': ..., 'confidence': 0.0} on failure.
"""
import re
import json
import html
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from core.net import HTTPClient

logger = logging.getLogger(__name__)

API_USER_AGENT = "JobScrapeBot/1.0 (+https://jobscrape.dev/bot)"


class BaseApiFetcher:
    """Shared request and normalization logic for board APIs"""

    provider_name = "api"

    def __init__(self, http_client: Optional[HTTPClient] = None):
        self.http_client = http_client or HTTPClient(user_agent=API_USER_AGENT, timeout=30)

    async def fetch(self, url: str, job_id: Optional[str] = None, company_slug: Optional[str] = None) -> Dict:
        raise NotImplementedError(f"{self.__class__.__name__} must implement fetch")

    async def _get_json(self, api_url: str):
        """GET a JSON endpoint. Returns (status, parsed body or None)."""
        status, headers, body, size = await self.http_client.fetch(
            api_url,
            headers={'Accept': 'application/json'},
            max_size_kb=2048,
        )
        if status != 200:
            return status, None
        return status, json.loads(body.decode('utf-8'))

    def normalize(self, **fields) -> Dict:
        return {
            'title': fields.get('title'),
            'company': fields.get('company'),
            'description': fields.get('description'),
            'requirements': fields.get('requirements'),
            'responsibilities': fields.get('responsibilities'),
            'location': fields.get('location'),
            'remote_type': fields.get('remote_type') or 'on_site',
            'salary_min': fields.get('salary_min'),
            'salary_max': fields.get('salary_max'),
            'salary_currency': fields.get('salary_currency') or 'USD',
            'equity_info': fields.get('equity_info'),
            'benefits': fields.get('benefits'),
            'perks': fields.get('perks'),
            'custom_sections': fields.get('custom_sections') or {},
            'confidence': 1.0,
            'extraction_method': 'api',
            'provider': self.provider_name,
        }

    @staticmethod
    def strip_html(content: Optional[str]) -> Optional[str]:
        if not content:
            return None
        text = BeautifulSoup(content, 'html.parser').get_text(separator=' ')
        return re.sub(r'\s+', ' ', text).strip() or None

    @staticmethod
    def iso_timestamp(value) -> Optional[str]:
        """Normalize an API timestamp (ISO string or epoch millis) to ISO 8601."""
        if value is None or value == "":
            return None
        try:
            if isinstance(value, (int, float)):
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
            return date_parser.isoparse(str(value)).isoformat()
        except (ValueError, OverflowError) as e:
            logger.debug(f"[api_fetch] Unparseable timestamp {value!r}: {e}")
            return str(value)


class GreenhouseFetcher(BaseApiFetcher):
    """Greenhouse public job board API"""

    BASE_URL = "https://boards-api.greenhouse.io/v1/boards"
    provider_name = "greenhouse"

    SECTION_KEYWORDS = {
        'requirements': ['requirements', 'qualifications', 'what you bring', "what you'll need", 'about you'],
        'responsibilities': ['responsibilities', "what you'll do", 'the role', 'your role'],
        'benefits': ['benefits', 'perks', 'what we offer'],
    }

    async def fetch(self, url: str, job_id: Optional[str] = None, company_slug: Optional[str] = None) -> Dict:
        company_slug = company_slug or self._slug_from_url(url)
        job_id = job_id or self._job_id_from_url(url)
        if not company_slug:
            return {'error': 'Cannot fetch without company slug', 'confidence': 0.0}
        if not job_id:
            return {'error': 'Cannot fetch without job ID', 'confidence': 0.0}

        api_url = f"{self.BASE_URL}/{company_slug}/jobs/{job_id}"
        logger.info(f"[api_fetch] Greenhouse API fetch {api_url}")
        try:
            status, data = await self._get_json(api_url)
        except Exception as e:
            logger.error(f"[api_fetch] Greenhouse API fetch failed for {url}: {e}")
            return {'error': str(e), 'confidence': 0.0}

        if data is None:
            logger.warning(f"[api_fetch] Greenhouse API returned {status} for {api_url}")
            return {'error': f"API request failed: {status}", 'confidence': 0.0, 'http_status': status}

        return self.parse(data)

    def parse(self, data: Dict) -> Dict:
        location = (data.get('location') or {}).get('name')
        content_html = html.unescape(data.get('content') or '')
        sections = self.split_sections(content_html)

        return self.normalize(
            title=data.get('title'),
            company=data.get('company_name'),
            description=content_html,
            requirements=sections.get('requirements'),
            responsibilities=sections.get('responsibilities'),
            benefits=sections.get('benefits'),
            location=location,
            remote_type=remote_type_from_location(location),
            salary_currency='USD',
            custom_sections=self._custom_sections(data),
        )

    def split_sections(self, content_html: str) -> Dict[str, str]:
        """Split posting HTML on h2/h3/strong headings into known sections."""
        if not content_html:
            return {}
        soup = BeautifulSoup(content_html, 'html.parser')
        sections: Dict[str, str] = {}

        for heading in soup.find_all(['h2', 'h3', 'strong']):
            key = self._section_key(heading.get_text(strip=True))
            if not key or key in sections:
                continue

            parts: List[str] = []
            # <strong> headings usually sit inside a <p>
            anchor = heading.parent if heading.name == 'strong' and heading.parent.name == 'p' else heading
            for sibling in anchor.find_next_siblings():
                if sibling.name in ('h2', 'h3') or (sibling.name == 'p' and sibling.find('strong') and len(sibling.get_text(strip=True)) < 80):
                    break
                text = sibling.get_text(separator='\n', strip=True)
                if text:
                    parts.append(text)
            if parts:
                sections[key] = '\n'.join(parts)
        return sections

    def _section_key(self, heading: str) -> Optional[str]:
        heading = heading.lower().rstrip(':')
        for key, keywords in self.SECTION_KEYWORDS.items():
            if any(k in heading for k in keywords):
                return key
        return None

    @staticmethod
    def _custom_sections(data: Dict) -> Dict:
        sections = {}
        if data.get('departments'):
            sections['departments'] = [d.get('name') for d in data['departments']]
        if data.get('offices'):
            sections['offices'] = [o.get('name') for o in data['offices']]
        if data.get('updated_at'):
            sections['updated_at'] = BaseApiFetcher.iso_timestamp(data['updated_at'])
        if data.get('absolute_url'):
            sections['absolute_url'] = data['absolute_url']
        return sections

    @staticmethod
    def _slug_from_url(url: str) -> Optional[str]:
        match = re.search(r'boards\.greenhouse\.io/([^/?#]+)', url or '')
        return match.group(1) if match else None

    @staticmethod
    def _job_id_from_url(url: str) -> Optional[str]:
        match = re.search(r'/jobs?/(\d+)', url or '') or re.search(r'gh_jid=([^&]+)', url or '')
        return match.group(1) if match else None


class LeverFetcher(BaseApiFetcher):
    """Lever public postings API"""

    BASE_URL = "https://api.lever.co/v0/postings"
    provider_name = "lever"

    REQUIREMENT_KEYS = ['requirements', 'qualifications']
    RESPONSIBILITY_KEYS = ['responsibilities', 'role']

    async def fetch(self, url: str, job_id: Optional[str] = None, company_slug: Optional[str] = None) -> Dict:
        company_slug = company_slug or self._slug_from_url(url)
        job_id = job_id or self._job_id_from_url(url)
        if not company_slug:
            return {'error': 'Cannot fetch without company slug', 'confidence': 0.0}

        api_url = f"{self.BASE_URL}/{company_slug}/{job_id}" if job_id else f"{self.BASE_URL}/{company_slug}"
        logger.info(f"[api_fetch] Lever API fetch {api_url}")
        try:
            status, data = await self._get_json(api_url)
        except Exception as e:
            logger.error(f"[api_fetch] Lever API fetch failed for {url}: {e}")
            return {'error': str(e), 'confidence': 0.0}

        if data is None:
            logger.warning(f"[api_fetch] Lever API returned {status} for {api_url}")
            return {'error': f"API request failed: {status}", 'confidence': 0.0, 'http_status': status}

        if job_id:
            return self.parse(data)

        posting = next((p for p in data if p.get('hostedUrl') == url), None)
        if posting is None:
            return {'error': 'Job not found', 'confidence': 0.0}
        return self.parse(posting)

    def parse(self, data: Dict) -> Dict:
        categories = data.get('categories') or {}
        workplace = data.get('workplaceType')
        remote_type = workplace if workplace in ('remote', 'hybrid') else 'on_site'

        return self.normalize(
            title=data.get('text'),
            description=data.get('description') or data.get('descriptionPlain'),
            requirements=self._lists_matching(data.get('lists'), self.REQUIREMENT_KEYS),
            responsibilities=self._lists_matching(data.get('lists'), self.RESPONSIBILITY_KEYS),
            location=categories.get('location') or data.get('location'),
            remote_type=remote_type,
            salary_currency='USD',
            custom_sections=self._custom_sections(data),
        )

    @staticmethod
    def _lists_matching(lists: Optional[List[Dict]], keys: List[str]) -> Optional[str]:
        if not lists:
            return None
        matching = [l for l in lists if any(k in str(l.get('text', '')).lower() for k in keys)]
        if not matching:
            return None
        chunks = []
        for item in matching:
            content = item.get('content')
            if isinstance(content, str):
                content = re.sub(r'<[^>]+>', '\n', content)
                content = re.sub(r'\n{2,}', '\n', content).strip()
            chunks.append(content)
        return '\n\n'.join(c for c in chunks if c)

    def _custom_sections(self, data: Dict) -> Dict:
        sections = {}
        categories = data.get('categories')
        if categories:
            sections['team'] = categories.get('team')
            sections['department'] = categories.get('department')
            sections['commitment'] = categories.get('commitment')
        if data.get('applyUrl'):
            sections['apply_url'] = data['applyUrl']
        if data.get('hostedUrl'):
            sections['hosted_url'] = data['hostedUrl']
        if data.get('createdAt'):
            sections['created_at'] = self.iso_timestamp(data['createdAt'])

        other = [
            l for l in data.get('lists') or []
            if not any(k in str(l.get('text', '')).lower() for k in ('requirement', 'responsibilit', 'qualif', 'role'))
        ]
        if other:
            sections['additional_info'] = [{'title': l.get('text'), 'content': l.get('content')} for l in other]
        return sections

    @staticmethod
    def _slug_from_url(url: str) -> Optional[str]:
        match = re.search(r'jobs\.lever\.co/([^/?#]+)', url or '')
        return match.group(1) if match else None

    @staticmethod
    def _job_id_from_url(url: str) -> Optional[str]:
        match = re.search(r'jobs\.lever\.co/[^/]+/([^/?#]+)', url or '')
        return match.group(1) if match else None


def remote_type_from_location(location: Optional[str]) -> str:
    lowered = (location or '').lower()
    if 'remote' in lowered:
        return 'remote'
    if 'hybrid' in lowered:
        return 'hybrid'
    return 'on_site'


FETCHERS = {
    'greenhouse': GreenhouseFetcher,
    'lever': LeverFetcher,
}


def get_fetcher(board_type: str, http_client: Optional[HTTPClient] = None) -> Optional[BaseApiFetcher]:
    fetcher_cls = FETCHERS.get(board_type)
    return fetcher_cls(http_client) if fetcher_cls else None
