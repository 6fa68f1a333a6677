"""
End-to-end pipeline runs through the orchestrator with stubbed HTTP, browser
and AI extractor. No network access.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import Settings
from crawler.html_fetch import html_cache_key
from orchestrator import ScrapeOrchestrator
from pipeline.models import AttemptStatus, Signal, Target
from pipeline.runner import NO_RESULT_MESSAGE, Runner
from pipeline.steps import AiExtract, ApiExtract, ResolveEmbeddedJobBoard, Step
from pipeline.steps.limited_sources import extract_meta_tags, parse_linkedin_title
from pipeline.steps.permissions import DISALLOWED_MESSAGE

from conftest import JOB_PAGE_HTML, http_response, stub_http_client

URL = "https://careers.acme.io/jobs/42"
GREENHOUSE_URL = "https://boards.greenhouse.io/acme/jobs/55"
LINKEDIN_URL = "https://www.linkedin.com/jobs/view/123"

LINKEDIN_HTML = """
<html><head>
  <title>Senior Engineer at Acme | LinkedIn</title>
  <meta property="og:description" content="Join Acme to build the future of logistics.">
</head><body><div id="root"></div></body></html>
"""

SHELL_HTML = '<html><body><div id="root"></div><script>window.__NEXT_DATA__={}</script></body></html>'


def stub_ai(confidence=0.9, **fields):
    result = {
        'title': "Senior Python Engineer",
        'company': "Acme",
        'location': "Berlin, DE",
        'confidence': confidence,
        'provider': "openai",
        'model': "gpt-4o-mini",
        'tokens_used': 1200,
    }
    result.update(fields)
    extractor = MagicMock()
    extractor.extract = AsyncMock(return_value=result)
    return extractor


def build(settings, store, cache, clock, *responses, ai=None, rendered_fetcher=None):
    orchestrator = ScrapeOrchestrator(
        settings, store, cache,
        http_client=stub_http_client(*(responses or (http_response(200, JOB_PAGE_HTML),))),
        rendered_fetcher=rendered_fetcher or MagicMock(),
        now=clock.now,
    )
    if ai is not None:
        orchestrator.steps[-1] = AiExtract(store, extractor_for=lambda ctx: ai)
    return orchestrator


def event_types(store, attempt):
    return [e.event_type for e in store.events_for_attempt(attempt.id)]


@pytest.fixture
def placeholder_listing(store):
    company = store.create_company("Unknown Company")
    return store.add_listing({'url': GREENHOUSE_URL, 'title': None, 'company_id': company['id']})


class Boom(Step):
    name = "boom"

    async def call(self, ctx):
        raise RuntimeError("boom")


class TestRunner:
    """Step ordering and orchestration-level failure."""

    @pytest.mark.asyncio
    async def test_exception_fails_attempt_and_reraises(self, settings, store, cache, clock):
        orchestrator = build(settings, store, cache, clock)
        attempt = orchestrator.lifecycle.create_or_reuse(Target(url=URL))
        ctx = orchestrator.context_for(Target(url=URL), attempt)

        with pytest.raises(RuntimeError):
            await Runner([Boom()]).run(ctx)

        assert attempt.status == AttemptStatus.FAILED
        assert attempt.failed_step == "orchestration"
        assert attempt.error_message == "boom"
        failure = store.events_for_attempt(attempt.id, "failure")[0]
        assert failure.error_type == "RuntimeError"

    @pytest.mark.asyncio
    async def test_no_result_fails_attempt(self, settings, store, cache, clock):
        orchestrator = build(settings, store, cache, clock)
        attempt = orchestrator.lifecycle.create_or_reuse(Target(url=URL))

        assert await Runner([]).run(orchestrator.context_for(Target(url=URL), attempt)) is False
        assert attempt.status == AttemptStatus.FAILED
        assert attempt.error_message == NO_RESULT_MESSAGE


class TestAiPath:
    """Unknown boards fall through to the provider chain."""

    @pytest.mark.asyncio
    async def test_no_providers_fails_low_confidence(self, settings, store, cache, clock):
        orchestrator = build(settings, store, cache, clock)

        success, attempt = await orchestrator.execute(Target(url=URL))

        assert success is False
        assert attempt.status == AttemptStatus.FAILED
        assert attempt.failed_step == "ai_extraction"
        assert attempt.error_message.startswith("Low confidence")
        assert event_types(store, attempt)[:3] == ["job_board_detection", "permission_check", "html_fetch"]
        assert store.events_for_attempt(attempt.id, "permission_check")[0].status == "skipped"

    @pytest.mark.asyncio
    async def test_stub_extractor_completes(self, settings, store, cache, clock):
        orchestrator = build(settings, store, cache, clock, ai=stub_ai())

        success, attempt = await orchestrator.execute(Target(url=URL))

        assert success is True
        assert attempt.status == AttemptStatus.COMPLETED
        assert attempt.extraction_method == "ai"
        assert attempt.provider == "openai"
        assert attempt.confidence_score == 0.9
        assert attempt.response_metadata == {'model': "gpt-4o-mini", 'tokens_used': 1200}
        assert event_types(store, attempt)[-1] == "completion"

    @pytest.mark.asyncio
    async def test_low_confidence_keeps_partial_data(self, settings, store, cache, clock):
        listing = store.add_listing({'url': URL, 'title': None, 'description': None})
        ai = stub_ai(confidence=0.0, best_confidence=0.4, description="Partial description")
        orchestrator = build(settings, store, cache, clock, ai=ai)
        orchestrator.steps = [s for s in orchestrator.steps if s.name != "html_scrape"]

        success, attempt = await orchestrator.execute(Target(url=URL, listing_id=listing['id']))

        assert success is False
        assert attempt.error_message == "Low confidence: 0.4"
        assert store.get_listing(listing['id'])['description'] == "Partial description"

    @pytest.mark.asyncio
    async def test_recently_completed_target_is_skipped(self, settings, store, cache, clock):
        orchestrator = build(settings, store, cache, clock, ai=stub_ai())
        await orchestrator.execute(Target(url=URL))
        clock.advance(30)

        assert await orchestrator.execute(Target(url=URL)) == (True, None)
        assert len(store.attempts) == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_stops_pipeline(self, settings, store, cache, clock):
        ai = stub_ai()
        orchestrator = build(settings, store, cache, clock, http_response(404, "gone"), ai=ai)

        success, attempt = await orchestrator.execute(Target(url=URL))

        assert success is False
        assert attempt.failed_step == "html_fetch"
        assert attempt.error_message.startswith("HTTP 404")
        ai.extract.assert_not_awaited()


class TestApiPath:
    @pytest.mark.asyncio
    async def test_greenhouse_api_completes(self, settings, store, cache, clock, placeholder_listing):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value={
            'title': "Backend Engineer",
            'company': "Acme",
            'location': "Remote - US",
            'remote_type': "remote",
            'confidence': 1.0,
            'extraction_method': "api",
        })
        ai = stub_ai()
        orchestrator = build(settings, store, cache, clock, ai=ai)
        orchestrator.steps[-2] = ApiExtract(store, fetcher_for=lambda board_type: fetcher)

        success, attempt = await orchestrator.execute(Target(url=GREENHOUSE_URL, listing_id=placeholder_listing['id']))

        assert success is True
        assert attempt.extraction_method == "api"
        assert attempt.provider == "greenhouse"
        assert fetcher.fetch.await_args.kwargs == {'job_id': "55", 'company_slug': "acme"}
        ai.extract.assert_not_awaited()

        listing = store.get_listing(placeholder_listing['id'])
        assert listing['title'] == "Backend Engineer"
        assert listing['remote_type'] == "remote"
        assert listing['scraped_data']['extraction_method'] == "api"
        assert store.get_company(listing['company_id'])['name'] == "Acme"

    @pytest.mark.asyncio
    async def test_api_disabled_is_skipped(self, store, cache, clock):
        settings = Settings(politeness_enabled=False, js_rendering_enabled=False,
                            greenhouse_enabled=False, api_population_enabled=False)
        orchestrator = build(settings, store, cache, clock, ai=stub_ai())

        success, attempt = await orchestrator.execute(Target(url=GREENHOUSE_URL))

        assert success is True
        assert attempt.extraction_method == "ai"
        event = store.events_for_attempt(attempt.id, "api_extraction")[0]
        assert event.output['skipped_reason'] == "api_population_disabled"


class TestLimitedSources:
    def test_parse_linkedin_title(self):
        assert parse_linkedin_title("Senior Engineer at Acme | LinkedIn") == "Senior Engineer"
        assert parse_linkedin_title("Designer - Globex") == "Designer"
        assert parse_linkedin_title(" ") is None

    def test_meta_tags_and_json_ld(self):
        html = """
        <html><head>
          <meta property="og:title" content="Analyst at Initech | LinkedIn">
          <script type="application/ld+json">
            {"@type": "JobPosting", "title": "Analyst",
             "hiringOrganization": {"name": "Initech"},
             "jobLocation": {"address": {"addressLocality": "Austin"}}}
          </script>
        </head></html>
        """
        meta = extract_meta_tags(html)

        assert meta['title'] == "Analyst"
        assert meta['company'] == "Initech"
        assert meta['location'] == "Austin"

    @pytest.mark.asyncio
    async def test_linkedin_listing_marked_limited(self, settings, store, cache, clock):
        listing = store.add_listing({'url': LINKEDIN_URL, 'title': None})
        orchestrator = build(settings, store, cache, clock, http_response(200, LINKEDIN_HTML))

        success, attempt = await orchestrator.execute(Target(url=LINKEDIN_URL, listing_id=listing['id']))

        assert success is False
        event = store.events_for_attempt(attempt.id, "limited_source_handling")[0]
        assert event.status == "success"
        assert event.output['extraction_quality'] == "limited"

        updated = store.get_listing(listing['id'])
        assert updated['title'] == "Senior Engineer"
        assert updated['scraped_data']['extraction_quality'] == "limited"


class TestPermissions:
    @pytest.mark.asyncio
    async def test_robots_disallow_fails_attempt(self, store, cache, clock):
        settings = Settings(js_rendering_enabled=False)
        orchestrator = build(
            settings, store, cache, clock,
            http_response(200, "User-agent: *\nDisallow: /\n", {'content-type': 'text/plain'}),
        )

        success, attempt = await orchestrator.execute(Target(url=URL))

        assert success is False
        assert attempt.failed_step == "permission_check"
        assert attempt.error_message == DISALLOWED_MESSAGE
        assert orchestrator.http_client.fetch.await_count == 1
        assert "html_fetch" not in event_types(store, attempt)


class TestRenderedFallback:
    @pytest.mark.asyncio
    async def test_disabled_rendering_is_recorded_as_skipped(self, settings, store, cache, clock):
        rendered = MagicMock()
        rendered.fetch = AsyncMock()
        orchestrator = build(settings, store, cache, clock, http_response(200, SHELL_HTML),
                             ai=stub_ai(), rendered_fetcher=rendered)

        _, attempt = await orchestrator.execute(Target(url=URL))

        event = store.events_for_attempt(attempt.id, "js_heavy_detected")[0]
        assert event.status == "skipped"
        assert event.output['skipped_reason'] == "js_rendering_disabled"
        rendered.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_js_shell_is_rendered_and_cached(self, store, cache, clock):
        settings = Settings(politeness_enabled=False, js_rendering_enabled=True)
        rendered = MagicMock()
        rendered.fetch = AsyncMock(return_value={
            'success': True,
            'html': JOB_PAGE_HTML,
            'cleaned_html': "Senior Python Engineer at Acme " * 40,
            'cleaned_text_length': 1200,
            'selector_found': True,
        })
        ai = stub_ai()
        orchestrator = build(settings, store, cache, clock, http_response(200, SHELL_HTML),
                             ai=ai, rendered_fetcher=rendered)

        success, attempt = await orchestrator.execute(Target(url=URL))

        assert success is True
        rendered.fetch.assert_awaited_once()
        event = store.events_for_attempt(attempt.id, "rendered_html_fetch")[0]
        assert event.output['rendered_shell'] is False
        assert cache.get(html_cache_key(URL))['fetch_mode'] == "rendered"
        assert ai.extract.await_args.kwargs['html_content'] == JOB_PAGE_HTML


class TestEmbeddedBoard:
    """Greenhouse gh_jid embeds on marketing sites."""

    MARKETING_URL = "https://acme.com/careers?gh_jid=4455&gh_src=abc"
    SHELL = '<html><body><script src="https://boards.greenhouse.io/embed/job_board/js?for=acme"></script></body></html>'

    def context(self, settings, store, cache, clock, url=MARKETING_URL, board_type="greenhouse"):
        orchestrator = build(settings, store, cache, clock)
        target = Target(url=url)
        ctx = orchestrator.context_for(target, orchestrator.lifecycle.create_or_reuse(target))
        ctx.board_type = board_type
        ctx.html_content = self.SHELL
        return orchestrator, ctx

    @pytest.mark.asyncio
    async def test_embed_replaces_shell(self, settings, store, cache, clock):
        orchestrator, ctx = self.context(settings, store, cache, clock)
        embed = '<div id="content">' + "<p>Build pipelines for our logistics platform.</p>" * 30 + "</div>"
        client = stub_http_client(http_response(200, embed))
        step = ResolveEmbeddedJobBoard(http_client=client, html_fetcher=orchestrator.html_fetcher)

        assert await step.call(ctx) == Signal.CONTINUE

        embed_url = client.fetch.await_args.args[0]
        assert embed_url.startswith("https://job-boards.greenhouse.io/embed/job_board?")
        assert "for=acme" in embed_url and "gh_jid=4455" in embed_url and "gh_src=abc" in embed_url
        assert ctx.company_slug == "acme"
        assert ctx.job_id == "4455"
        assert ctx.fetch_mode == "greenhouse_embed"
        assert ctx.html_content == embed
        assert cache.get(html_cache_key(self.MARKETING_URL))['fetch_mode'] == "greenhouse_embed"
        assert store.events_for_attempt(ctx.attempt.id, "greenhouse_embed_fetch")[0].output['success'] is True

    @pytest.mark.asyncio
    async def test_short_embed_keeps_original_page(self, settings, store, cache, clock):
        _, ctx = self.context(settings, store, cache, clock)
        step = ResolveEmbeddedJobBoard(http_client=stub_http_client(http_response(200, "<div>Loading</div>")))

        assert await step.call(ctx) == Signal.CONTINUE
        assert ctx.fetch_mode == "static"
        assert ctx.html_content == self.SHELL
        assert ctx.company_slug == "acme"

    @pytest.mark.asyncio
    async def test_only_greenhouse_embeds_are_resolved(self, settings, store, cache, clock):
        client = stub_http_client(http_response(200, ""))
        step = ResolveEmbeddedJobBoard(http_client=client)

        _, lever_ctx = self.context(settings, store, cache, clock, board_type="lever")
        assert await step.call(lever_ctx) == Signal.CONTINUE

        _, plain_ctx = self.context(settings, store, cache, clock, url="https://boards.greenhouse.io/acme/jobs/55")
        assert await step.call(plain_ctx) == Signal.CONTINUE

        client.fetch.assert_not_awaited()


class TestCascadeGate:
    """Each stage completes only at or above the confidence threshold."""

    ASHBY_URL = "https://jobs.ashbyhq.com/acme/123"
    ASHBY_HTML = """
    <html><head><title>Senior Engineer @ Acme</title></head><body>
      <div class="ashby-job-posting-left-pane"><div class="_section_x1"><p>Berlin, DE</p></div></div>
      <h1 class="ashby-job-posting-heading">Senior Engineer</h1>
      <div class="ashby-job-posting-right-pane">
        Acme is hiring a senior engineer to build the routing platform that moves
        parcels across Europe. You will own services end to end.
      </div>
    </body></html>
    """

    def api_fetcher(self, confidence):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value={
            'title': "Backend Engineer", 'company': "Acme", 'confidence': confidence,
        })
        return fetcher

    @pytest.mark.asyncio
    async def test_selectors_complete_at_threshold(self, store, cache, clock):
        settings = Settings(politeness_enabled=False, js_rendering_enabled=False, confidence_threshold=0.6)
        ai = stub_ai()
        orchestrator = build(settings, store, cache, clock, http_response(200, self.ASHBY_HTML), ai=ai)

        success, attempt = await orchestrator.execute(Target(url=self.ASHBY_URL))

        assert success is True
        assert attempt.extraction_method == "html"
        assert attempt.provider == "ashby"
        assert attempt.confidence_score == 0.65
        ai.extract.assert_not_awaited()
        assert event_types(store, attempt)[-1] == "completion"

    @pytest.mark.asyncio
    async def test_selectors_below_threshold_continue(self, settings, store, cache, clock):
        ai = stub_ai()
        orchestrator = build(settings, store, cache, clock, http_response(200, self.ASHBY_HTML), ai=ai)

        success, attempt = await orchestrator.execute(Target(url=self.ASHBY_URL))

        event = store.events_for_attempt(attempt.id, "selectors_extraction")[0]
        assert event.output['confidence'] == 0.65
        assert success is True
        assert attempt.extraction_method == "ai"
        ai.extract.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_low_confidence_api_falls_through_to_ai(self, settings, store, cache, clock):
        ai = stub_ai()
        orchestrator = build(settings, store, cache, clock, ai=ai)
        orchestrator.steps[-2] = ApiExtract(store, fetcher_for=lambda board_type: self.api_fetcher(0.5))

        success, attempt = await orchestrator.execute(Target(url=GREENHOUSE_URL))

        assert success is True
        assert attempt.extraction_method == "ai"
        assert store.events_for_attempt(attempt.id, "api_extraction")[0].output['success'] is False
        ai.extract.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_every_stage_below_threshold_fails_at_ai(self, settings, store, cache, clock):
        orchestrator = build(settings, store, cache, clock, ai=stub_ai(confidence=0.4))
        orchestrator.steps[-2] = ApiExtract(store, fetcher_for=lambda board_type: self.api_fetcher(0.5))

        success, attempt = await orchestrator.execute(Target(url=GREENHOUSE_URL))

        assert success is False
        assert attempt.status == AttemptStatus.FAILED
        assert attempt.failed_step == "ai_extraction"
        assert attempt.error_message == "Low confidence: 0.4"
        stages = [t for t in event_types(store, attempt)
                  if t in ("selectors_extraction", "api_extraction", "ai_extraction")]
        assert stages == ["selectors_extraction", "api_extraction", "ai_extraction"]
