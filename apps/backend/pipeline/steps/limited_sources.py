"""
Boards that hide job content behind a login (LinkedIn, Indeed, Glassdoor).

Only public meta tags and JSON-LD are read; the rest of the pipeline still
runs with lower expectations.
"""
import re
import json
import logging
from typing import Dict, Optional

from bs4 import BeautifulSoup

from crawler.board_detector import LIMITED_BOARDS
from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)


def _meta(soup: BeautifulSoup, attr: str, value: str) -> Optional[str]:
    tag = soup.find('meta', attrs={attr: value})
    content = tag.get('content') if tag else None
    return content.strip() if content and content.strip() else None


def parse_linkedin_title(title: Optional[str]) -> Optional[str]:
    """Strip the " | LinkedIn" suffix and the trailing company part."""
    if not title or not title.strip():
        return None
    title = re.sub(r'\s*\|\s*LinkedIn\s*$', '', title, flags=re.I)
    if ' at ' in title:
        return title.split(' at ')[0].strip()
    if ' - ' in title:
        return title.split(' - ')[0].strip()
    return title.strip()


def schema_org_job(soup: BeautifulSoup) -> Dict:
    result = {}
    for script in soup.find_all('script', attrs={'type': 'application/ld+json'}):
        try:
            data = json.loads(script.string or script.get_text() or '')
        except ValueError:
            continue
        for schema in data if isinstance(data, list) else [data]:
            if not isinstance(schema, dict) or schema.get('@type') != 'JobPosting':
                continue
            organization = schema.get('hiringOrganization') or {}
            location = schema.get('jobLocation') or {}
            if isinstance(location, list):
                location = location[0] if location else {}
            salary = (schema.get('baseSalary') or {}).get('value') or {}
            result.setdefault('title', schema.get('title'))
            result.setdefault('description', schema.get('description'))
            result.setdefault('company', organization.get('name') if isinstance(organization, dict) else None)
            result.setdefault('location', (location.get('address') or {}).get('addressLocality')
                              if isinstance(location, dict) else None)
            if isinstance(salary, dict):
                result.setdefault('salary_min', salary.get('minValue'))
                result.setdefault('salary_max', salary.get('maxValue'))
    return {k: v for k, v in result.items() if v is not None}


def extract_meta_tags(html_content: Optional[str]) -> Dict:
    """Best public data from Open Graph, Twitter card, standard meta and JSON-LD."""
    if not html_content or not html_content.strip():
        return {}
    soup = BeautifulSoup(html_content, 'html.parser')
    schema = schema_org_job(soup)

    title_tag = soup.find('title')
    og_image = _meta(soup, 'property', 'og:image')
    result = {
        'title': parse_linkedin_title(
            _meta(soup, 'property', 'og:title')
            or _meta(soup, 'name', 'twitter:title')
            or (title_tag.get_text().strip() if title_tag else None)
            or schema.get('title')
        ),
        'company': _meta(soup, 'property', 'og:site_name') or schema.get('company'),
        'description': (
            _meta(soup, 'property', 'og:description')
            or _meta(soup, 'name', 'twitter:description')
            or _meta(soup, 'name', 'description')
            or schema.get('description')
        ),
        'logo_url': og_image if og_image and 'logo' in og_image else None,
        'location': schema.get('location'),
    }
    return {k: v for k, v in result.items() if v}


class HandleLimitedSources(Step):
    name = "limited_source_handling"

    async def call(self, ctx: Context) -> Signal:
        if ctx.board_type not in LIMITED_BOARDS:
            return self.continue_()

        async def handle(event):
            meta = extract_meta_tags(ctx.html_content)
            ctx.limited_extraction = True
            if meta:
                ctx.updater.update_limited(ctx, meta)
                description = meta.get('description') or ''
                event.set_output(
                    extracted_fields=list(meta.keys()),
                    extraction_quality="limited",
                    title=meta.get('title'),
                    company=meta.get('company'),
                    description_preview=description[:100] or None,
                )
            else:
                event.set_output(extracted_fields=[], extraction_quality="limited", reason="No meta tags found")
            return meta

        await ctx.event_recorder.record(
            "limited_source_handling", {'board_type': ctx.board_type, 'url': ctx.url}, handle,
        )
        return self.continue_()
