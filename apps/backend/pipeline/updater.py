"""
Writes extraction results into the job listing sink.

Every write fills a field only when the listing has it blank or still holds
a placeholder; company and job role links are only replaced when missing or
placeholders.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional

from core.entity_resolver import EntityResolver
from pipeline.models import ExtractionResult

logger = logging.getLogger(__name__)

PLACEHOLDER_COMPANY_NAMES = ["Unknown Company", "Unknown"]
PLACEHOLDER_JOB_ROLES = ["Unknown Position", "Unknown Role", "Unknown"]
PLACEHOLDER_VALUES = {p.lower() for p in PLACEHOLDER_COMPANY_NAMES + PLACEHOLDER_JOB_ROLES}

# Schema defaults that stand in for "not extracted yet"
COLUMN_DEFAULTS = {'remote_type': 'on_site'}

PRELIMINARY_FIELDS = ['title', 'location', 'remote_type', 'description', 'about_company', 'company_culture',
                      'salary_min', 'salary_max', 'salary_currency']

FINAL_FIELDS = ['title', 'description', 'about_company', 'company_culture', 'requirements',
                'responsibilities', 'salary_min', 'salary_max', 'salary_currency', 'equity_info',
                'benefits', 'perks', 'location', 'remote_type']

LIMITED_REASONS = {
    'linkedin': "LinkedIn requires authentication for full job details",
    'indeed': "Indeed limits public access to job content",
    'glassdoor': "Glassdoor requires authentication for full job details",
}
DEFAULT_LIMITED_REASON = "Source has limited public access"


class ListingSink(ABC):
    """Where job listings are read from and written to."""

    @abstractmethod
    def get_listing(self, listing_id) -> Optional[Dict]:
        ...

    @abstractmethod
    def update_listing(self, listing_id, updates: Dict):
        ...

    def get_company(self, company_id) -> Optional[Dict]:
        return None

    def get_job_role(self, role_id) -> Optional[Dict]:
        return None


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _fillable(field: str, current) -> bool:
    """Blank, a placeholder string, or the column default."""
    if _blank(current):
        return True
    if field in COLUMN_DEFAULTS and current == COLUMN_DEFAULTS[field]:
        return True
    return isinstance(current, str) and current.strip().lower() in PLACEHOLDER_VALUES


def is_placeholder_company(company: Optional[Dict]) -> bool:
    if not company:
        return True
    name = (company.get('name') or '').lower()
    return any(p.lower() in name for p in PLACEHOLDER_COMPANY_NAMES)


def is_placeholder_job_role(job_role: Optional[Dict]) -> bool:
    if not job_role:
        return True
    title = (job_role.get('title') or '').lower()
    return any(p.lower() in title for p in PLACEHOLDER_JOB_ROLES)


def limited_extraction_reason(board_type: Optional[str]) -> str:
    return LIMITED_REASONS.get(board_type or '', DEFAULT_LIMITED_REASON)


class JobListingUpdater:
    def __init__(self, sink: ListingSink, resolver: Optional[EntityResolver] = None,
                 now: Callable[[], datetime] = datetime.utcnow):
        self.sink = sink
        self.resolver = resolver or EntityResolver(sink)
        self.now = now

    def _listing(self, ctx) -> Optional[Dict]:
        listing_id = ctx.target.listing_id
        if listing_id is None:
            return None
        listing = self.sink.get_listing(listing_id)
        if listing is None:
            logger.warning(f"[updater] Listing {listing_id} not found")
        return listing

    def _linked(self, listing: Dict):
        company = self.sink.get_company(listing['company_id']) if listing.get('company_id') else None
        job_role = self.sink.get_job_role(listing['job_role_id']) if listing.get('job_role_id') else None
        return company, job_role

    def update_preliminary(self, ctx, data: Dict) -> bool:
        """
        Fill blank listing fields from the cheap HTML scrape.

        Returns:
            True when anything was written
        """
        listing = self._listing(ctx)
        if listing is None or not data:
            return False

        updates = {}
        for field in PRELIMINARY_FIELDS:
            value = data.get(field)
            if not _blank(value) and _fillable(field, listing.get(field)) and value != listing.get(field):
                updates[field] = value

        company, job_role = self._linked(listing)
        company_name = data.get('company_name')
        if company_name and is_placeholder_company(company):
            resolved = self.resolver.find_or_create_company(company_name, ctx.url)
            if resolved and resolved.get('id') != listing.get('company_id'):
                updates['company_id'] = resolved['id']

        role_title = data.get('job_role_title') or data.get('title')
        if role_title and is_placeholder_job_role(job_role):
            resolved = self.resolver.find_or_create_job_role(role_title)
            if resolved and resolved.get('id') != listing.get('job_role_id'):
                updates['job_role_id'] = resolved['id']

        if not updates:
            return False
        self.sink.update_listing(listing['id'], updates)
        logger.info(f"[updater] Preliminary update for listing {listing['id']}: {sorted(updates)}")
        return True

    def update_final(self, ctx, result: ExtractionResult) -> bool:
        """
        Apply the accepted extraction to the listing.

        Only blank or placeholder fields are written; real data already on
        the listing is kept even when the result disagrees.
        """
        listing = self._listing(ctx)
        if listing is None:
            return False

        updates = {}
        for field in FINAL_FIELDS:
            value = getattr(result, field)
            if not _blank(value) and _fillable(field, listing.get(field)):
                updates[field] = value

        custom_sections = dict(listing.get('custom_sections') or {})
        custom_sections.update(result.custom_sections or {})
        updates['custom_sections'] = custom_sections

        scraped_data = dict(listing.get('scraped_data') or {})
        scraped_data.update(self.scraped_metadata(ctx, result))
        updates['scraped_data'] = scraped_data

        company, job_role = self._linked(listing)

        if result.company and is_placeholder_company(company):
            resolved = self.resolver.find_or_create_company(result.company, ctx.url)
            if resolved and resolved.get('id') != listing.get('company_id'):
                updates['company_id'] = resolved['id']

        role_title = result.job_role or result.title
        if role_title and is_placeholder_job_role(job_role):
            resolved = self.resolver.find_or_create_job_role(role_title)
            if resolved and resolved.get('id') != listing.get('job_role_id'):
                updates['job_role_id'] = resolved['id']

        self.sink.update_listing(listing['id'], updates)
        logger.info(
            f"[updater] Final update for listing {listing['id']} via {result.extraction_method}: "
            f"{sorted(k for k in updates if k not in ('custom_sections', 'scraped_data'))}"
        )
        return True

    def update_limited(self, ctx, meta: Dict) -> bool:
        """Store what a limited source exposes publicly plus why it is limited."""
        listing = self._listing(ctx)
        if listing is None:
            return False

        updates = {}
        if meta.get('title') and _blank(listing.get('title')):
            updates['title'] = meta['title']

        scraped_data = dict(listing.get('scraped_data') or {})
        scraped_data.update({
            'job_board': ctx.board_type,
            'extraction_quality': 'limited',
            'limited_extraction_reason': limited_extraction_reason(ctx.board_type),
            'meta_extraction': meta,
        })
        updates['scraped_data'] = scraped_data

        company, _ = self._linked(listing)
        if meta.get('company') and is_placeholder_company(company):
            resolved = self.resolver.find_or_create_company(meta['company'])
            if resolved:
                updates['company_id'] = resolved['id']

        self.sink.update_listing(listing['id'], updates)
        return True

    def scraped_metadata(self, ctx, result: ExtractionResult) -> Dict:
        return {
            'status': 'completed',
            'extraction_method': result.extraction_method or 'ai',
            'provider': result.provider,
            'model': result.model,
            'confidence_score': result.confidence,
            'tokens_used': result.tokens_used,
            'extracted_at': self.now().isoformat(),
            'duration_seconds': ctx.elapsed_seconds(),
        }
