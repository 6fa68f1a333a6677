"""
Retries, dead-lettering and operator actions for scraping attempts.

ScrapeJob is the unit an external scheduler runs; it never re-raises and
hands retries back to the scheduler through the injected enqueue callable.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from pipeline.attempts import AttemptLifecycle, InvalidTransitionError, can_transition
from pipeline.failure_classifier import FailureClassifier
from pipeline.models import Attempt, AttemptStatus, IN_PROGRESS_STATUSES, Target

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_RETRY_SCHEDULED = "retry_scheduled"
OUTCOME_DEAD_LETTER = "dead_letter"

# enqueue(target, attempt_id)
EnqueueFn = Callable[[Target, int], None]


def _result(success: bool, message: str, **extra) -> Dict:
    key = 'message' if success else 'error'
    return dict(extra, success=success, **{key: message})


def target_for(attempt: Attempt) -> Target:
    return Target(url=attempt.url, listing_id=attempt.listing_id)


class RetryService:
    """Re-runs a failed attempt starting from the step that failed."""

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator
        self.lifecycle = orchestrator.lifecycle

    def _prepare(self, attempt: Attempt) -> bool:
        if attempt.status == AttemptStatus.FAILED:
            self.lifecycle.transition(attempt, 'retry_attempt')
        return attempt.status == AttemptStatus.RETRYING

    async def retry_html_fetch(self, attempt: Attempt) -> Dict:
        if not self._prepare(attempt):
            return _result(False, "Attempt is not in a retryable state")
        success, _ = await self.orchestrator.execute(target_for(attempt), attempt=attempt, use_cache=False)
        if success:
            return _result(True, "HTML fetch retry succeeded")
        return _result(False, attempt.error_message or "HTML fetch retry failed")

    async def retry_extraction(self, attempt: Attempt) -> Dict:
        """Re-run extraction against the cached HTML."""
        if attempt.status not in (AttemptStatus.FAILED, AttemptStatus.RETRYING):
            return _result(False, "Attempt is not in a retryable state")
        if not self.orchestrator.html_fetcher.cached(attempt.url):
            return _result(False, "No cached HTML available for retry")
        self._prepare(attempt)
        success, _ = await self.orchestrator.execute(target_for(attempt), attempt=attempt, use_cache=True)
        if success:
            return _result(True, "Extraction retry succeeded")
        return _result(False, attempt.error_message or "Extraction failed: Low confidence")

    async def retry_full(self, attempt: Attempt) -> Dict:
        success, _ = await self.orchestrator.execute(target_for(attempt), force=True)
        if success:
            return _result(True, "Full retry succeeded")
        return _result(False, "Full retry failed")

    async def retry(self, attempt: Attempt) -> Dict:
        """Pick the retry strategy from the failed step."""
        if attempt.failed_step == 'html_fetch':
            return await self.retry_html_fetch(attempt)
        if attempt.failed_step in ('api_extraction', 'ai_extraction'):
            return await self.retry_extraction(attempt)
        return await self.retry_full(attempt)


class ScrapeJob:
    def __init__(self, orchestrator, enqueue: EnqueueFn, classifier: Optional[FailureClassifier] = None):
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.settings = orchestrator.settings
        self.lifecycle = orchestrator.lifecycle
        self.enqueue = enqueue
        self.classifier = classifier or FailureClassifier(self.store)
        self.retry_service = RetryService(orchestrator)

    async def perform(self, target: Target, attempt_id: Optional[int] = None) -> str:
        """
        Run one scrape, or one retry when attempt_id names a failed attempt.

        Returns:
            One of completed, skipped, retry_scheduled, dead_letter
        """
        if not target.url:
            return OUTCOME_SKIPPED

        if attempt_id is not None:
            attempt = self.store.get_attempt(attempt_id)
            if attempt and attempt.status in (AttemptStatus.FAILED, AttemptStatus.RETRYING):
                return await self._perform_retry(attempt)

        attempt = None
        try:
            success, attempt = await self.orchestrator.execute(target)
        except Exception as e:
            logger.error(f"[retry] Scrape of {target.url} raised {type(e).__name__}: {e}")
            success = False

        if success:
            if attempt is None:
                return OUTCOME_SKIPPED
            logger.info(f"[retry] job_scraping_succeeded url={target.url} attempt={attempt.id}")
            return OUTCOME_COMPLETED

        if attempt is None:
            attempts = self.store.attempts_for_target(target.url, target.listing_id)
            attempt = attempts[0] if attempts else None
        if attempt is None:
            logger.error(f"[retry] No attempt recorded for failed scrape of {target.url}")
            return OUTCOME_DEAD_LETTER
        return self.handle_failure(attempt)

    async def _perform_retry(self, attempt: Attempt) -> str:
        try:
            result = await self.retry_service.retry(attempt)
        except Exception as e:
            logger.error(f"[retry] Retry of attempt {attempt.id} raised {type(e).__name__}: {e}")
            result = _result(False, str(e))

        if result['success']:
            logger.info(f"[retry] job_scraping_retry_succeeded attempt={attempt.id} step={attempt.failed_step}")
            return OUTCOME_COMPLETED
        return self.handle_failure(self.store.get_attempt(attempt.id) or attempt)

    def handle_failure(self, attempt: Attempt) -> str:
        if attempt.status.in_progress and can_transition(attempt, 'mark_failed'):
            attempt.failed_step = attempt.failed_step or 'orchestration'
            self.lifecycle.transition(attempt, 'mark_failed')

        if not self.classifier.retryable(attempt) or attempt.retry_count >= self.settings.max_retries:
            send_to_dlq(attempt, self.lifecycle)
            return OUTCOME_DEAD_LETTER

        attempt.retry_count += 1
        retry(attempt, self.lifecycle, self.enqueue)
        logger.warning(
            f"[retry] job_scraping_retry_scheduled attempt={attempt.id} step={attempt.failed_step} "
            f"retry_count={attempt.retry_count}/{self.settings.max_retries}"
        )
        return OUTCOME_RETRY_SCHEDULED


class UnknownActionError(Exception):
    """Raised for an operator action name that is not in ATTEMPT_ACTIONS"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown attempt action: {name}")


def retry(attempt: Attempt, lifecycle: AttemptLifecycle, enqueue: Optional[EnqueueFn] = None) -> Attempt:
    lifecycle.transition(attempt, 'retry_attempt')
    if enqueue is not None:
        enqueue(target_for(attempt), attempt.id)
    return attempt


def send_to_dlq(attempt: Attempt, lifecycle: AttemptLifecycle, enqueue: Optional[EnqueueFn] = None) -> Attempt:
    lifecycle.transition(attempt, 'send_to_dlq')
    logger.error(
        f"[retry] job_scraping_sent_to_dlq attempt={attempt.id} url={attempt.url} "
        f"step={attempt.failed_step} retry_count={attempt.retry_count}"
    )
    return attempt


def mark_manual(attempt: Attempt, lifecycle: AttemptLifecycle, enqueue: Optional[EnqueueFn] = None) -> Attempt:
    lifecycle.transition(attempt, 'mark_manual')
    logger.info(f"[retry] Attempt {attempt.id} marked for manual review")
    return attempt


ATTEMPT_ACTIONS = {
    'retry': retry,
    'send_to_dlq': send_to_dlq,
    'mark_manual': mark_manual,
}


def run_action(name: str, attempt: Attempt, lifecycle: AttemptLifecycle,
               enqueue: Optional[EnqueueFn] = None) -> Attempt:
    """
    Apply an operator action by name.

    Raises:
        UnknownActionError: for names outside ATTEMPT_ACTIONS
        InvalidTransitionError: when the attempt's status does not allow it
    """
    handler = ATTEMPT_ACTIONS.get(name)
    if handler is None:
        raise UnknownActionError(name)
    return handler(attempt, lifecycle, enqueue)


def cleanup_stuck_attempts(store, settings, now: Callable[[], datetime] = datetime.utcnow) -> int:
    """
    Fail attempts that have sat in an in-progress status for too long.

    Returns:
        Number of attempts cleaned up
    """
    minutes = settings.stuck_attempt_minutes
    threshold = now() - timedelta(minutes=minutes)
    lifecycle = AttemptLifecycle(store, settings, now=now)
    stuck = sorted(
        (a for a in store.attempts_with_status(IN_PROGRESS_STATUSES) if a.updated_at < threshold),
        key=lambda a: a.updated_at,
    )
    if not stuck:
        return 0

    logger.info(f"[retry] cleanup_stuck_attempts_started count={len(stuck)}")
    cleaned = 0
    for attempt in stuck:
        events = store.events_for_attempt(attempt.id)
        stuck_step = events[-1].event_type if events else attempt.status.value
        stuck_since = attempt.updated_at

        for event in events:
            if event.status != 'started':
                continue
            event.status = 'failed'
            event.error_type = 'StuckTimeout'
            event.error_message = f"Step timed out after {minutes} minutes"
            store.update_event(event)

        attempt.failed_step = stuck_step
        attempt.error_message = (
            f"Attempt stuck at '{stuck_step}' for over {minutes} minutes - automatically cleaned up"
        )
        try:
            lifecycle.transition(attempt, 'mark_failed')
        except InvalidTransitionError as e:
            logger.error(f"[retry] Could not clean up attempt {attempt.id}: {e}")
            continue
        cleaned += 1
        logger.warning(
            f"[retry] stuck_attempt_cleaned attempt={attempt.id} step={stuck_step} "
            f"since={stuck_since.isoformat()}"
        )

    logger.info(f"[retry] cleanup_stuck_attempts_completed cleaned_count={cleaned}")
    return cleaned
