"""
Last-resort extraction with the LLM provider chain.
"""
import asyncio
import logging
from typing import Callable, Optional

from core.token_budget import TokenBudgetLimiter
from pipeline.ai_extractor import AiJobExtractor
from pipeline.attempts import can_transition
from pipeline.models import Context, ExtractionResult, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)

AI_EXTRACTION_TIMEOUT_SECONDS = 120


class AiExtract(Step):
    name = "ai_extraction"

    def __init__(self, store, extractor_for: Optional[Callable[[Context], AiJobExtractor]] = None,
                 token_budget: Optional[TokenBudgetLimiter] = None,
                 timeout: float = AI_EXTRACTION_TIMEOUT_SECONDS):
        self.store = store
        self.extractor_for = extractor_for or (
            lambda ctx: AiJobExtractor(self.store, ctx.settings, attempt_id=ctx.attempt.id, token_budget=token_budget)
        )
        self.timeout = timeout

    async def call(self, ctx: Context) -> Signal:
        if can_transition(ctx.attempt, 'start_extract'):
            ctx.lifecycle.transition(ctx.attempt, 'start_extract')

        extractor = self.extractor_for(ctx)

        async def extract(event):
            result = await asyncio.wait_for(
                extractor.extract(ctx.url, html_content=ctx.html_content,
                                  cleaned_html=ctx.cleaned_html, board_type=ctx.board_type),
                timeout=self.timeout,
            )
            confidence = result.get('confidence')
            event.set_output(
                success=confidence is not None and confidence >= ctx.confidence_threshold,
                confidence=confidence,
                provider=result.get('provider'),
                model=result.get('model'),
                tokens_used=result.get('tokens_used'),
                extracted_fields=ExtractionResult.from_dict(result).extracted_fields(),
                error=result.get('error'),
            )
            return result

        html_size = len(ctx.html_content.encode('utf-8')) if ctx.html_content else None
        cleaned_size = len(ctx.cleaned_html.encode('utf-8')) if ctx.cleaned_html else None
        try:
            result = await ctx.event_recorder.record(
                "ai_extraction", {'html_size': html_size, 'cleaned_html_size': cleaned_size}, extract,
            )
        except asyncio.TimeoutError:
            message = f"AI extraction timed out after {int(self.timeout)} seconds"
            logger.error(f"[ai_extract] {message} for {ctx.url}")
            ctx.lifecycle.fail(ctx, "ai_extraction", message)
            return self.stop_failure()
        except Exception as e:
            logger.error(f"[ai_extract] AI extraction failed for {ctx.url}: {type(e).__name__}: {e}")
            ctx.lifecycle.fail(ctx, "ai_extraction", str(e))
            return self.stop_failure()

        result = result or {}
        confidence = float(result.get('confidence') or 0.0)

        if confidence >= ctx.confidence_threshold:
            ctx.event_recorder.record_simple(
                "data_update", status="success", input={'source': 'ai'}, output={'confidence': confidence},
            )
            ctx.updater.update_final(ctx, ExtractionResult.from_dict(dict(result, extraction_method="ai")))
            ctx.event_recorder.record_completion({
                'method': 'ai', 'confidence': confidence,
                'provider': result.get('provider'), 'model': result.get('model'),
            })
            ctx.lifecycle.complete(
                ctx, extraction_method="ai", provider=result.get('provider'), confidence=confidence,
                model=result.get('model'), tokens_used=result.get('tokens_used'),
            )
            return self.stop_success()

        # Low confidence: keep whatever useful data came back
        has_useful_data = any(result.get(k) for k in ('title', 'company', 'description'))
        if has_useful_data:
            ctx.event_recorder.record_simple(
                "data_update", status="success", input={'source': 'ai', 'partial': True},
                output={'confidence': confidence},
            )
            ctx.updater.update_final(ctx, ExtractionResult.from_dict(dict(result, extraction_method="ai")))
            logger.info(f"[ai_extract] low_confidence_data_saved url={ctx.url} confidence={confidence}")

        reported = result.get('best_confidence') or confidence
        message = f"Low confidence: {reported}"
        ctx.event_recorder.record_failure(
            message, error_type="low_confidence",
            details={'confidence': reported, 'data_saved': has_useful_data},
        )
        ctx.lifecycle.fail(ctx, "ai_extraction", message)
        return self.stop_failure()
