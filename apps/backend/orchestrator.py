"""
Scrape orchestrator: wires the shared services and runs the step pipeline
for one target at a time.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from core.cache import Cache, InMemoryCache, PostgresCache
from core.config import Settings
from core.domain_limits import DomainRateLimiter
from core.net import HTTPClient
from core.robots import RobotsChecker
from core.token_budget import TokenBudgetLimiter
from crawler.browser_crawler import RenderedHtmlFetcher
from crawler.html_fetch import HtmlFetcher
from pipeline.attempts import AttemptLifecycle
from pipeline.events import EventRecorder
from pipeline.models import Attempt, Context, Target
from pipeline.runner import Runner
from pipeline.steps import (
    AiExtract,
    ApiExtract,
    CheckPermissions,
    DetectJobBoard,
    FetchHtml,
    HandleLimitedSources,
    HtmlScrape,
    RenderedFallback,
    ResolveEmbeddedJobBoard,
    SelectorsExtract,
    Step,
)
from pipeline.store import InMemoryStore, PostgresStore
from pipeline.updater import JobListingUpdater

logger = logging.getLogger(__name__)


class ScrapeOrchestrator:
    """Owns the services a run needs; every run gets a fresh Context."""

    def __init__(
        self,
        settings: Settings,
        store,
        cache: Cache,
        http_client: Optional[HTTPClient] = None,
        rendered_fetcher: Optional[RenderedHtmlFetcher] = None,
        steps: Optional[List[Step]] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings
        self.store = store
        self.cache = cache
        self.now = now
        self.http_client = http_client or HTTPClient(
            user_agent=settings.user_agent,
            timeout=settings.request_timeout,
        )
        self.lifecycle = AttemptLifecycle(store, settings, now=now)
        self.updater = JobListingUpdater(store, now=now)
        self.html_fetcher = HtmlFetcher(cache, settings, self.http_client)
        self.robots = RobotsChecker(cache, self.http_client, settings.user_agent)
        self.rate_limiter = DomainRateLimiter(cache, settings)
        self.token_budget = TokenBudgetLimiter(
            cache, 'anthropic', settings.anthropic_token_limit, settings.token_window_seconds,
        )
        self.rendered_fetcher = rendered_fetcher or RenderedHtmlFetcher(ws_endpoint=settings.playwright_ws_endpoint)
        self.steps = steps if steps is not None else self.build_default_steps()

    def build_default_steps(self) -> List[Step]:
        return [
            DetectJobBoard(),
            CheckPermissions(self.robots, self.rate_limiter),
            FetchHtml(self.html_fetcher),
            ResolveEmbeddedJobBoard(html_fetcher=self.html_fetcher),
            RenderedFallback(self.rendered_fetcher, self.html_fetcher),
            HandleLimitedSources(),
            HtmlScrape(),
            SelectorsExtract(),
            ApiExtract(self.store, http_client=self.http_client, token_budget=self.token_budget),
            AiExtract(self.store, token_budget=self.token_budget, timeout=self.settings.ai_timeout_seconds),
        ]

    def context_for(self, target: Target, attempt: Attempt, use_cache: bool = True) -> Context:
        recorder = EventRecorder(self.store, attempt)
        # Continue numbering after events from earlier runs of the same attempt
        recorder.current_step = len(self.store.events_for_attempt(attempt.id)) if attempt.id is not None else 0
        return Context(
            target=target,
            attempt=attempt,
            event_recorder=recorder,
            settings=self.settings,
            lifecycle=self.lifecycle,
            updater=self.updater,
            use_cache=use_cache,
            confidence_threshold=self.settings.confidence_threshold,
        )

    async def execute(
        self,
        target: Target,
        force: bool = False,
        attempt: Optional[Attempt] = None,
        use_cache: bool = True,
    ) -> Tuple[bool, Optional[Attempt]]:
        """
        Run the pipeline for a target.

        Args:
            target: What to scrape
            force: Skip attempt reuse and the recently-completed check
            attempt: Existing attempt to continue, used by retries
            use_cache: Serve HTML from the cache when present

        Returns:
            (success, attempt). attempt is None when the target was skipped
            because it completed recently.
        """
        if attempt is None:
            attempt = self.lifecycle.create_or_reuse(target, force=force)
            if attempt is None:
                logger.info(f"[orchestrator] Skipping {target.url}, completed recently")
                return True, None

        ctx = self.context_for(target, attempt, use_cache=use_cache)
        logger.info(f"[orchestrator] Starting attempt {attempt.id} for {target.url}")
        success = await Runner(self.steps).run(ctx)
        logger.info(
            f"[orchestrator] Attempt {attempt.id} finished success={success} "
            f"status={attempt.status.value} in {ctx.elapsed_seconds()}s"
        )
        return success, attempt

    async def extract(self, target: Target, force: bool = False) -> bool:
        """Run the pipeline and report success only."""
        success, _ = await self.execute(target, force=force)
        return success


def get_orchestrator(settings: Optional[Settings] = None) -> ScrapeOrchestrator:
    """Build an orchestrator from the environment, using Postgres when DATABASE_URL is set."""
    settings = settings or Settings.from_env()
    if settings.db_url:
        store = PostgresStore(settings.db_url)
        cache = PostgresCache(settings.db_url)
    else:
        logger.warning("[orchestrator] DATABASE_URL not set, using in-memory store and cache")
        store = InMemoryStore()
        cache = InMemoryCache()
    return ScrapeOrchestrator(settings, store, cache)
