"""
Board detection and the start of the fetch phase.
"""
import logging

from crawler.board_detector import JobBoardDetector
from pipeline.attempts import can_transition
from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)


class DetectJobBoard(Step):
    name = "detect_job_board"

    async def call(self, ctx: Context) -> Signal:
        detector = JobBoardDetector(ctx.url)
        ctx.board_type = detector.detect()
        ctx.company_slug = detector.company_slug()
        ctx.job_id = detector.job_id()

        ctx.event_recorder.record_simple(
            "job_board_detection",
            status="success",
            input={'url': ctx.url},
            output={
                'board_type': ctx.board_type,
                'company_slug': ctx.company_slug,
                'job_id': ctx.job_id,
                'api_supported': detector.api_supported(),
            },
        )
        logger.debug(f"[detect] {ctx.url} -> {ctx.board_type} slug={ctx.company_slug} job_id={ctx.job_id}")

        if can_transition(ctx.attempt, 'start_fetch'):
            ctx.lifecycle.transition(ctx.attempt, 'start_fetch')
        return self.continue_()
