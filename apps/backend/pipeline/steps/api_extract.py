"""
Extraction through a board's public API (Greenhouse, Lever).
"""
import logging
from typing import Callable, Optional

from core.net import HTTPClient
from core.token_budget import TokenBudgetLimiter
from crawler.api_fetch import BaseApiFetcher, get_fetcher
from crawler.board_detector import API_SUPPORTED_BOARDS
from pipeline.ai_extractor import JobPostProcessor
from pipeline.models import Context, ExtractionResult, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)


class ApiExtract(Step):
    name = "api_extraction"

    def __init__(self, store, http_client: Optional[HTTPClient] = None,
                 fetcher_for: Optional[Callable[[str], Optional[BaseApiFetcher]]] = None,
                 token_budget: Optional[TokenBudgetLimiter] = None):
        self.store = store
        self.token_budget = token_budget
        self.fetcher_for = fetcher_for or (lambda board_type: get_fetcher(board_type, http_client))

    @staticmethod
    def api_enabled(ctx: Context) -> bool:
        # The Greenhouse boards API is public, so it has its own switch
        if ctx.board_type == "greenhouse" and ctx.settings.greenhouse_enabled:
            return True
        return ctx.settings.api_population_enabled

    async def call(self, ctx: Context) -> Signal:
        if ctx.board_type not in API_SUPPORTED_BOARDS or not ctx.company_slug:
            return self.continue_()

        if not self.api_enabled(ctx):
            ctx.event_recorder.record_skipped(
                "api_extraction", "api_population_disabled", {'board_type': ctx.board_type},
            )
            return self.continue_()

        try:
            return await self._extract(ctx)
        except Exception as e:
            logger.error(f"[api_extract] API extraction failed for {ctx.url}: {type(e).__name__}: {e}")
            return self.continue_()

    async def _extract(self, ctx: Context) -> Signal:
        fetcher = self.fetcher_for(ctx.board_type)

        async def fetch(event):
            result = await fetcher.fetch(ctx.url, job_id=ctx.job_id, company_slug=ctx.company_slug) if fetcher else None
            if result:
                confidence = result.get('confidence')
                event.set_output(
                    success=confidence is not None and confidence >= ctx.confidence_threshold,
                    confidence=confidence,
                    provider=ctx.board_type,
                    extracted_fields=ExtractionResult.from_dict(result).extracted_fields(),
                )
            else:
                event.set_output(success=False, error="No result from API")
            return result

        api_result = await ctx.event_recorder.record(
            "api_extraction",
            {'board_type': ctx.board_type, 'company_slug': ctx.company_slug, 'job_id': ctx.job_id},
            fetch,
        )

        confidence = (api_result or {}).get('confidence')
        if confidence is None or confidence < ctx.confidence_threshold:
            return self.continue_()

        if ctx.board_type == "greenhouse" and ctx.settings.ai_postprocess_enabled:
            postprocessor = JobPostProcessor(
                self.store, ctx.settings, attempt_id=ctx.attempt.id, token_budget=self.token_budget,
            )
            api_result = await postprocessor.enrich(ctx.url, api_result)

        ctx.event_recorder.record_simple(
            "data_update", status="success", input={'source': 'api'}, output={'confidence': confidence},
        )
        ctx.updater.update_final(
            ctx, ExtractionResult.from_dict(dict(api_result, extraction_method="api", provider=ctx.board_type)),
        )
        ctx.event_recorder.record_completion({'method': 'api', 'confidence': confidence, 'provider': ctx.board_type})
        ctx.lifecycle.complete(
            ctx, extraction_method="api", provider=ctx.board_type, confidence=confidence,
            model=api_result.get('model'), tokens_used=api_result.get('tokens_used'),
        )
        return self.stop_success()
