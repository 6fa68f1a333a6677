"""
Decides whether a failed attempt is worth retrying.
"""
import re
import logging

from pipeline.models import Attempt

logger = logging.getLogger(__name__)

LOW_CONFIDENCE = re.compile(r'low confidence', re.I)
PERMANENT_HTTP_STATUS = re.compile(r'\bHTTP\s+(403|404|410)\b', re.I)
RENDERED_SHELL_TEXT_LENGTH = 300


class FailureClassifier:
    """
    Terminal failures are the ones a retry cannot change: a model that is
    not confident about the page, a rendered page that is still an empty
    shell, or a server that refuses or no longer has the URL.
    """

    def __init__(self, store):
        self.store = store

    def retryable(self, attempt: Attempt) -> bool:
        try:
            return self._retryable(attempt)
        except Exception as e:
            logger.error(f"[failure_classifier] Could not classify attempt {attempt.id}: {e}")
            return True

    def _retryable(self, attempt: Attempt) -> bool:
        message = attempt.error_message or ''

        if attempt.failed_step == 'ai_extraction' and LOW_CONFIDENCE.search(message):
            logger.info(f"[failure_classifier] Attempt {attempt.id}: low confidence is terminal")
            return False

        if self._rendered_shell(attempt):
            logger.info(f"[failure_classifier] Attempt {attempt.id}: rendered page was an empty shell")
            return False

        if attempt.failed_step == 'html_fetch' and PERMANENT_HTTP_STATUS.search(message):
            logger.info(f"[failure_classifier] Attempt {attempt.id}: permanent HTTP status")
            return False

        return True

    def _rendered_shell(self, attempt: Attempt) -> bool:
        if attempt.id is None:
            return False
        events = self.store.events_for_attempt(attempt.id, event_type='rendered_html_fetch')
        if not events:
            return False
        output = events[-1].output or {}
        if output.get('rendered_shell'):
            return True
        text_length = output.get('cleaned_text_length')
        return text_length is not None and text_length < RENDERED_SHELL_TEXT_LENGTH
