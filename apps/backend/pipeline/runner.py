"""
Runs an ordered list of steps against one Context.
"""
import logging
from typing import List

from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)

NO_RESULT_MESSAGE = "Pipeline finished without a result"


class Runner:
    def __init__(self, steps: List[Step]):
        self.steps = list(steps)

    async def run(self, ctx: Context) -> bool:
        """
        Execute steps strictly in order until one stops the run.

        Returns:
            True on STOP_SUCCESS, False on STOP_FAILURE or when no step
            produced a result.

        Raises:
            Any exception a step raises, after the attempt is failed at
            "orchestration".
        """
        try:
            for step in self.steps:
                logger.debug(f"[runner] attempt={ctx.attempt.id} step={step.name}")
                signal = await step.call(ctx)
                if signal == Signal.STOP_SUCCESS:
                    logger.info(f"[runner] attempt={ctx.attempt.id} succeeded at {step.name}")
                    return True
                if signal == Signal.STOP_FAILURE:
                    logger.info(f"[runner] attempt={ctx.attempt.id} stopped with failure at {step.name}")
                    return False
        except Exception as e:
            logger.error(f"[runner] Orchestration failed for {ctx.url}: {type(e).__name__}: {e}", exc_info=True)
            ctx.event_recorder.record_failure(str(e), error_type=type(e).__name__)
            ctx.lifecycle.fail(ctx, "orchestration", str(e))
            raise

        logger.warning(f"[runner] attempt={ctx.attempt.id}: {NO_RESULT_MESSAGE}")
        ctx.lifecycle.fail(ctx, "orchestration", NO_RESULT_MESSAGE)
        return False
