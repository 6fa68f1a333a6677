"""
Company / job role resolution with fuzzy name and domain matching.
"""
import re
import logging
from typing import Dict, Optional
from urllib.parse import urlparse

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)

COMPANY_SUFFIXES = [
    r'\s+inc\.?$',
    r'\s+llc\.?$',
    r'\s+corp\.?$',
    r'\s+corporation$',
    r'\s+ltd\.?$',
    r'\s+limited$',
    r'\s+co\.?$',
    r'\s+company$',
    r'\s+\.io$',
    r'\s+\.com$',
    r'\s+\.net$',
    r'\s+\.org$',
]

JOB_BOARD_DOMAINS = [
    'greenhouse.io', 'lever.co', 'linkedin.com', 'indeed.com', 'glassdoor.com',
    'workable.com', 'jobvite.com', 'icims.com', 'smartrecruiters.com',
    'bamboohr.com', 'ashbyhq.com',
]


def normalize_company_name(name: Optional[str]) -> Optional[str]:
    """'Acme Corp.' -> 'Acme', 'koinly inc' -> 'Koinly'"""
    if not name or not name.strip():
        return None
    normalized = name.strip()
    for suffix in COMPANY_SUFFIXES:
        normalized = re.sub(suffix, '', normalized, flags=re.IGNORECASE)
    return ' '.join(word.capitalize() for word in normalized.strip().split())


def names_similar(name1: Optional[str], name2: Optional[str]) -> bool:
    if not name1 or not name2:
        return False
    a, b = name1.lower(), name2.lower()
    if a == b or a in b or b in a:
        return True
    max_distance = min(len(name1), len(name2)) // 3
    return Levenshtein.distance(a, b) <= max(max_distance, 2)


def normalize_domain(domain: Optional[str]) -> str:
    if not domain:
        return ""
    domain = re.sub(r'^https?://', '', domain)
    domain = domain.split('/')[0].lower()
    return re.sub(r'^www\.', '', domain)


def extract_domain(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return normalize_domain(host) if host else None


def domains_match(domain1: Optional[str], domain2: Optional[str]) -> bool:
    """Exact, subdomain, or same two-label base (careers.acme.io ~ www.acme.io)."""
    if not domain1 or not domain2:
        return False
    d1, d2 = normalize_domain(domain1), normalize_domain(domain2)
    if d1 == d2:
        return True
    if d1.endswith(f".{d2}") or d2.endswith(f".{d1}"):
        return True
    parts1, parts2 = d1.split('.'), d2.split('.')
    if len(parts1) >= 2 and len(parts2) >= 2:
        return parts1[-2:] == parts2[-2:]
    return False


class EntityResolver:
    """Find-or-create canonical company and job role records in a store."""

    def __init__(self, store):
        self.store = store

    def find_or_create_company(self, name: Optional[str], url: Optional[str] = None,
                               existing: Optional[Dict] = None) -> Optional[Dict]:
        """
        Resolve a company by, in order: the already-linked company, domain,
        exact normalized name, fuzzy name. Creates one when nothing matches.
        """
        if not name or not name.strip():
            return existing

        normalized_name = normalize_company_name(name)
        domain = extract_domain(url)
        if domain and any(domains_match(domain, board) for board in JOB_BOARD_DOMAINS):
            # A board host says nothing about the employer
            domain = None

        if existing:
            if domain and existing.get('website'):
                if domains_match(domain, extract_domain(existing['website'])):
                    return existing
            if names_similar(normalized_name, normalize_company_name(existing.get('name'))):
                return existing

        companies = self.store.list_companies()

        if domain:
            for company in companies:
                website = company.get('website')
                if website and domains_match(domain, extract_domain(website)):
                    return company

        for company in companies:
            if company.get('name') == normalized_name:
                return company

        for company in companies:
            if names_similar(normalized_name, normalize_company_name(company.get('name'))):
                return company

        website = f"https://{domain}" if domain else None
        logger.info(f"[entity_resolver] Creating company {normalized_name!r} ({website})")
        return self.store.create_company(normalized_name, website)

    def find_or_create_job_role(self, title: Optional[str], existing: Optional[Dict] = None) -> Optional[Dict]:
        if not title or not title.strip():
            return existing
        return self.store.find_or_create_job_role(title.strip())
