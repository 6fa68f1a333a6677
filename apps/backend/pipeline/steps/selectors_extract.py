"""
Board-specific selector extraction.
"""
from pipeline.board_extractors import get_board_extractor
from pipeline.models import Context, ExtractionResult, Signal
from pipeline.steps.base import Step


class SelectorsExtract(Step):
    name = "selectors_extraction"

    async def call(self, ctx: Context) -> Signal:
        extractor = get_board_extractor(ctx.board_type)
        if extractor is None:
            return self.continue_()

        async def extract(event):
            result = extractor.extract(ctx.html_content)
            event.set_output(
                success=result['success'],
                confidence=result['confidence'],
                extracted_fields=result['extracted_fields'],
                missing_fields=result['missing_fields'],
                board_type=result['board_type'],
                extractor_kind=result['extractor_kind'],
                fetch_mode=ctx.fetch_mode,
            )
            return result

        result = await ctx.event_recorder.record("selectors_extraction", {'board_type': ctx.board_type}, extract)

        confidence = float(result.get('confidence') or 0.0)
        if not result['success'] or confidence < ctx.confidence_threshold:
            return self.continue_()

        provider = result.get('provider') or ctx.board_type
        data = dict(result.get('data') or {})
        data.update(extraction_method="html", provider=provider, confidence=confidence)

        ctx.updater.update_final(ctx, ExtractionResult.from_dict(data))
        ctx.event_recorder.record_simple(
            "data_update", status="success", input={'source': 'selectors'}, output={'confidence': confidence},
        )
        ctx.lifecycle.complete(ctx, extraction_method="html", provider=provider, confidence=confidence)
        ctx.event_recorder.record_completion({'method': 'html', 'confidence': confidence, 'provider': provider})
        return self.stop_success()
