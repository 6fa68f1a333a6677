"""
Attempt lifecycle: creation with dedup, the status state machine, and the
complete/fail helpers steps call to finish a run.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from pipeline.models import Attempt, AttemptStatus, Target

logger = logging.getLogger(__name__)

S = AttemptStatus

# transition name -> (allowed source statuses, target status)
TRANSITIONS: Dict[str, tuple] = {
    'start_fetch': ({S.PENDING, S.RETRYING}, S.FETCHING),
    'start_extract': ({S.FETCHING}, S.EXTRACTING),
    'mark_completed': ({S.EXTRACTING}, S.COMPLETED),
    'mark_failed': ({S.PENDING, S.FETCHING, S.EXTRACTING, S.RETRYING}, S.FAILED),
    'retry_attempt': ({S.FAILED}, S.RETRYING),
    'send_to_dlq': ({S.FAILED}, S.DEAD_LETTER),
    'mark_manual': ({S.FAILED, S.DEAD_LETTER}, S.MANUAL),
}


class InvalidTransitionError(Exception):
    """Raised when a transition is not allowed from the attempt's current status"""

    def __init__(self, attempt: Attempt, transition: str):
        self.attempt = attempt
        self.transition = transition
        super().__init__(
            f"Cannot {transition} attempt {attempt.id} from status '{attempt.status.value}'"
        )


def can_transition(attempt: Attempt, name: str) -> bool:
    if name not in TRANSITIONS:
        return False
    sources, _ = TRANSITIONS[name]
    return attempt.status in sources


def domain_for(url: str) -> str:
    try:
        return urlparse(url).hostname or "unknown"
    except ValueError:
        return "unknown"


class AttemptLifecycle:
    """Owns every status change of an attempt and persists it."""

    def __init__(self, store, settings, now: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.settings = settings
        self.now = now

    def transition(self, attempt: Attempt, name: str) -> Attempt:
        """
        Apply a named transition and persist the attempt.

        Raises:
            InvalidTransitionError: if the current status is not a valid source
        """
        if name not in TRANSITIONS:
            raise InvalidTransitionError(attempt, name)
        sources, target = TRANSITIONS[name]
        if attempt.status not in sources:
            raise InvalidTransitionError(attempt, name)
        previous = attempt.status
        attempt.status = target
        self.store.update_attempt(attempt)
        logger.debug(f"[attempts] {attempt.id}: {previous.value} -> {target.value} ({name})")
        return attempt

    def create_or_reuse(self, target: Target, force: bool = False) -> Optional[Attempt]:
        """
        Return the attempt a run should use.

        Returns:
            An in-progress attempt created inside the reuse window, None when the
            target was completed inside the skip window, or a new pending attempt.
        """
        if not force:
            now = self.now()
            reuse_since = now - timedelta(seconds=self.settings.attempt_reuse_window_seconds)
            skip_since = now - timedelta(seconds=self.settings.completed_skip_window_seconds)
            attempts = self.store.attempts_for_target(target.url, target.listing_id)

            for attempt in attempts:
                if attempt.status.in_progress and attempt.created_at >= reuse_since:
                    logger.info(f"[attempts] reusing_existing_attempt id={attempt.id} url={target.url}")
                    return attempt

            for attempt in attempts:
                if attempt.status == S.COMPLETED and attempt.created_at >= skip_since:
                    logger.info(f"[attempts] skipping_attempt_recently_completed id={attempt.id} url={target.url}")
                    return None

        attempt = self.store.create_attempt(Attempt(
            url=target.url,
            domain=domain_for(target.url),
            listing_id=target.listing_id,
        ))
        logger.info(f"[attempts] created attempt id={attempt.id} url={target.url} force={force}")
        return attempt

    def complete(self, ctx, extraction_method: str, provider: Optional[str], confidence: float,
                 model: Optional[str] = None, tokens_used: Optional[int] = None) -> bool:
        attempt = ctx.attempt
        if attempt.status.terminal:
            logger.warning(f"[attempts] Attempt {attempt.id} already {attempt.status.value}, not completing")
            return False

        if can_transition(attempt, 'start_fetch'):
            self.transition(attempt, 'start_fetch')
        if can_transition(attempt, 'start_extract'):
            self.transition(attempt, 'start_extract')

        attempt.extraction_method = extraction_method
        attempt.provider = provider
        attempt.confidence_score = confidence
        attempt.duration_seconds = ctx.elapsed_seconds()
        attempt.response_metadata = {'model': model, 'tokens_used': tokens_used}
        self.transition(attempt, 'mark_completed')

        logger.info(
            f"[attempts] extraction_completed id={attempt.id} method={extraction_method} "
            f"provider={provider} confidence={confidence}"
        )
        return True

    def fail(self, ctx, failed_step: str, error_message: Optional[str]) -> bool:
        attempt = ctx.attempt
        if attempt.status.terminal:
            logger.warning(f"[attempts] Attempt {attempt.id} already {attempt.status.value}, not failing at {failed_step}")
            return False

        attempt.failed_step = failed_step
        attempt.error_message = error_message
        attempt.duration_seconds = ctx.elapsed_seconds()
        self.transition(attempt, 'mark_failed')

        logger.warning(f"[attempts] extraction_failed id={attempt.id} step={failed_step} error={error_message}")
        return True
