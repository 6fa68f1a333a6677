"""
Tests for listing updates and company / job role resolution.
"""
from unittest.mock import MagicMock

import pytest

from core.entity_resolver import (
    EntityResolver,
    domains_match,
    extract_domain,
    names_similar,
    normalize_company_name,
)
from pipeline.models import Attempt, Context, ExtractionResult, Target
from pipeline.updater import (
    DEFAULT_LIMITED_REASON,
    JobListingUpdater,
    is_placeholder_company,
    is_placeholder_job_role,
    limited_extraction_reason,
)

URL = "https://careers.acme.io/jobs/1"


def make_ctx(listing_id, url=URL, board_type="unknown"):
    target = Target(url=url, listing_id=listing_id)
    ctx = Context(
        target=target,
        attempt=Attempt(url=url, domain="careers.acme.io", listing_id=listing_id, id=1),
        event_recorder=MagicMock(),
        settings=MagicMock(),
    )
    ctx.board_type = board_type
    return ctx


@pytest.fixture
def placeholder_listing(store):
    company = store.create_company("Unknown Company")
    role = store.find_or_create_job_role("Unknown Position")
    return store.add_listing({
        'url': URL,
        'title': None,
        'description': "",
        'location': "Berlin",
        'remote_type': 'on_site',
        'company_id': company['id'],
        'job_role_id': role['id'],
        'custom_sections': {'source': "import"},
        'scraped_data': {'imported': True},
    })


class TestPlaceholders:
    def test_placeholder_company(self):
        assert is_placeholder_company(None)
        assert is_placeholder_company({'name': "unknown company"})
        assert not is_placeholder_company({'name': "Acme"})

    def test_placeholder_role(self):
        assert is_placeholder_job_role({'title': "Unknown Role"})
        assert not is_placeholder_job_role({'title': "Engineer"})

    def test_limited_reason(self):
        assert "LinkedIn" in limited_extraction_reason("linkedin")
        assert limited_extraction_reason("workday") == DEFAULT_LIMITED_REASON


class TestUpdatePreliminary:
    """Cheap scrape results only fill blanks."""

    def test_fills_blanks_only(self, store, placeholder_listing):
        updater = JobListingUpdater(store)
        ctx = make_ctx(placeholder_listing['id'])

        written = updater.update_preliminary(ctx, {
            'title': "Data Engineer",
            'description': "Build pipelines",
            'location': "Paris",
            'remote_type': 'remote',
        })

        listing = store.get_listing(placeholder_listing['id'])
        assert written is True
        assert listing['title'] == "Data Engineer"
        assert listing['description'] == "Build pipelines"
        assert listing['location'] == "Berlin"
        assert listing['remote_type'] == 'remote'

    def test_replaces_placeholder_links(self, store, placeholder_listing):
        updater = JobListingUpdater(store)
        ctx = make_ctx(placeholder_listing['id'])

        updater.update_preliminary(ctx, {'company_name': "Acme Inc", 'job_role_title': "Data Engineer"})

        listing = store.get_listing(placeholder_listing['id'])
        assert store.get_company(listing['company_id'])['name'] == "Acme"
        assert store.get_job_role(listing['job_role_id'])['title'] == "Data Engineer"

    def test_keeps_real_company(self, store, placeholder_listing):
        real = store.create_company("Globex", "https://globex.com")
        store.update_listing(placeholder_listing['id'], {'company_id': real['id']})
        updater = JobListingUpdater(store)

        updater.update_preliminary(make_ctx(placeholder_listing['id']), {'company_name': "Initech"})

        assert store.get_listing(placeholder_listing['id'])['company_id'] == real['id']

    def test_no_listing(self, store):
        assert JobListingUpdater(store).update_preliminary(make_ctx(None), {'title': "X"}) is False


class TestUpdateFinal:
    """Accepted results fill blanks and placeholders, never real data."""

    def test_fills_blanks_and_merges(self, store, placeholder_listing, clock):
        updater = JobListingUpdater(store, now=clock.now)
        ctx = make_ctx(placeholder_listing['id'])

        updater.update_final(ctx, ExtractionResult.from_dict({
            'title': "Backend Engineer",
            'company': "Acme",
            'location': "Lisbon",
            'remote_type': "hybrid",
            'requirements': "Python",
            'custom_sections': {'departments': ["Engineering"]},
            'extraction_method': "api",
            'provider': "greenhouse",
            'confidence': 1.0,
        }))

        listing = store.get_listing(placeholder_listing['id'])
        assert listing['title'] == "Backend Engineer"
        assert listing['requirements'] == "Python"
        assert listing['location'] == "Berlin"
        assert listing['remote_type'] == "hybrid"
        assert listing['custom_sections'] == {'source': "import", 'departments': ["Engineering"]}
        assert listing['scraped_data']['imported'] is True
        assert listing['scraped_data']['extraction_method'] == "api"
        assert listing['scraped_data']['confidence_score'] == 1.0
        assert listing['scraped_data']['extracted_at'] == clock.now().isoformat()
        assert store.get_company(listing['company_id'])['name'] == "Acme"
        assert store.get_job_role(listing['job_role_id'])['title'] == "Backend Engineer"

    def test_keeps_real_data(self, store):
        globex = store.create_company("Globex", "https://globex.com")
        role = store.find_or_create_job_role("Staff Engineer")
        listing = store.add_listing({
            'url': URL,
            'title': "Staff Engineer",
            'description': "Lead the platform team and own reliability.",
            'location': "Paris",
            'company_id': globex['id'],
            'job_role_id': role['id'],
        })

        JobListingUpdater(store).update_final(make_ctx(listing['id']), ExtractionResult.from_dict({
            'title': "Engineer??",
            'description': "junk",
            'location': "Nowhere",
            'company': "Some Other",
            'salary_min': 90000,
            'salary_currency': "EUR",
            'confidence': 0.3,
        }))

        updated = store.get_listing(listing['id'])
        assert updated['title'] == "Staff Engineer"
        assert updated['description'] == "Lead the platform team and own reliability."
        assert updated['location'] == "Paris"
        assert updated['company_id'] == globex['id']
        assert updated['job_role_id'] == role['id']
        assert updated['salary_min'] == 90000
        assert updated['salary_currency'] == "EUR"
        assert len(store.companies) == 1

    def test_placeholder_text_is_replaced(self, store):
        listing = store.add_listing({'url': URL, 'title': "Unknown Position"})

        JobListingUpdater(store).update_final(
            make_ctx(listing['id']), ExtractionResult.from_dict({'title': "Data Engineer"}),
        )

        assert store.get_listing(listing['id'])['title'] == "Data Engineer"

    def test_company_name_alias(self, store, placeholder_listing):
        JobListingUpdater(store).update_final(
            make_ctx(placeholder_listing['id']),
            ExtractionResult.from_dict({'company_name': "Initech", 'title': "Analyst"}),
        )

        listing = store.get_listing(placeholder_listing['id'])
        assert store.get_company(listing['company_id'])['name'] == "Initech"


class TestUpdateLimited:
    def test_records_limited_metadata(self, store, placeholder_listing):
        ctx = make_ctx(placeholder_listing['id'], url="https://www.linkedin.com/jobs/view/1", board_type="linkedin")

        JobListingUpdater(store).update_limited(ctx, {'title': "Designer", 'company': "Acme"})

        listing = store.get_listing(placeholder_listing['id'])
        assert listing['title'] == "Designer"
        assert listing['scraped_data']['extraction_quality'] == "limited"
        assert "LinkedIn" in listing['scraped_data']['limited_extraction_reason']
        assert store.get_company(listing['company_id'])['name'] == "Acme"


class TestEntityResolver:
    """Company matching by domain and name."""

    def test_normalize_company_name(self):
        assert normalize_company_name("Acme Corp.") == "Acme"
        assert normalize_company_name("koinly inc") == "Koinly"
        assert normalize_company_name("  ") is None

    def test_domains(self):
        assert extract_domain("https://www.acme.io/careers") == "acme.io"
        assert domains_match("careers.acme.io", "www.acme.io")
        assert not domains_match("acme.io", "globex.com")

    def test_names_similar(self):
        assert names_similar("Acme", "Acme Labs")
        assert names_similar("Stripe", "Stripee")
        assert names_similar("Shopify", "Shopfiy")
        assert not names_similar("Acme", "Globex")

    def test_find_or_create_company_is_idempotent(self, store):
        resolver = EntityResolver(store)

        first = resolver.find_or_create_company("Acme Inc", "https://careers.acme.io/jobs/1")
        second = resolver.find_or_create_company("ACME", "https://www.acme.io")

        assert first['id'] == second['id']
        assert first['website'] == "https://careers.acme.io"
        assert len(store.companies) == 1

    def test_board_domain_is_not_company_website(self, store):
        company = EntityResolver(store).find_or_create_company("Acme", "https://boards.greenhouse.io/acme/jobs/1")
        assert company['website'] is None

    def test_existing_company_preferred(self, store):
        existing = store.create_company("Acme", "https://acme.io")
        resolver = EntityResolver(store)

        assert resolver.find_or_create_company("Acme Labs", existing=existing) is existing

    def test_job_role(self, store):
        resolver = EntityResolver(store)
        role = resolver.find_or_create_job_role(" Data Engineer ")

        assert resolver.find_or_create_job_role("data engineer")['id'] == role['id']
        assert resolver.find_or_create_job_role("") is None
