"""
Step event recording. One event per pipeline step, with timing, truncated
input/output payloads and failure details.
"""
import time
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pipeline.models import Event

logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 10000
MAX_LIST_ITEMS = 100
TRUNCATION_MARKER = "... [TRUNCATED]"

# Result keys copied onto the event output
SAFE_RESULT_KEYS = [
    'success', 'error', 'confidence', 'html_size', 'http_status',
    'extracted_fields', 'provider', 'model', 'tokens_used',
    'title', 'company', 'location',
]


def truncate_value(value: Any) -> Any:
    if isinstance(value, str):
        if len(value) > MAX_STRING_LENGTH:
            return value[:MAX_STRING_LENGTH] + TRUNCATION_MARKER
        return value
    if isinstance(value, dict):
        return {k: truncate_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [truncate_value(v) for v in list(value)[:MAX_LIST_ITEMS]]
    return value


def truncate_payload(payload: Optional[Dict]) -> Dict:
    if not isinstance(payload, dict):
        return {}
    return {k: truncate_value(v) for k, v in payload.items()}


class EventRecorder:
    """Records step events for one attempt. Store errors are logged, never raised."""

    def __init__(self, store, attempt):
        self.store = store
        self.attempt = attempt
        self.current_step = 0

    def _persist_new(self, event: Event) -> Event:
        try:
            return self.store.add_event(event)
        except Exception as e:
            logger.error(f"[events] Failed to save {event.event_type} event for attempt {self.attempt.id}: {e}")
            return event

    def _persist_update(self, event: Event):
        if event.id is None:
            return
        try:
            self.store.update_event(event)
        except Exception as e:
            logger.error(f"[events] Failed to update {event.event_type} event for attempt {self.attempt.id}: {e}")

    async def record(self, event_type: str, input: Optional[Dict], fn: Callable[[Event], Awaitable[Any]],
                     step: Optional[int] = None) -> Any:
        """
        Run fn inside a recorded event.

        Args:
            event_type: Event name, e.g. "html_fetch"
            input: Input payload stored on the event
            fn: Coroutine function receiving the event; may call event.set_output()
            step: Explicit step order, auto-incremented when None

        Returns:
            Whatever fn returns. Exceptions are recorded and re-raised.
        """
        self.current_step = step if step is not None else self.current_step + 1
        event = self._persist_new(Event(
            attempt_id=self.attempt.id,
            event_type=event_type,
            step_order=self.current_step,
            status="started",
            input=truncate_payload(input),
        ))

        started = time.monotonic()
        try:
            result = await fn(event)
        except Exception as e:
            event.status = "failed"
            event.duration_ms = int((time.monotonic() - started) * 1000)
            event.error_type = type(e).__name__
            event.error_message = str(e)
            event.output = truncate_payload(event.output)
            self._persist_update(event)
            raise

        event.status = "success"
        event.duration_ms = int((time.monotonic() - started) * 1000)
        output = dict(event.output)
        if isinstance(result, dict):
            output.update({k: result[k] for k in SAFE_RESULT_KEYS if k in result})
        event.output = truncate_payload(output)
        self._persist_update(event)
        return result

    def record_simple(self, event_type: str, status: str, input: Optional[Dict] = None,
                      output: Optional[Dict] = None, error_message: Optional[str] = None,
                      error_type: Optional[str] = None) -> Event:
        self.current_step += 1
        return self._persist_new(Event(
            attempt_id=self.attempt.id,
            event_type=event_type,
            step_order=self.current_step,
            status=status,
            input=truncate_payload(input),
            output=truncate_payload(output),
            duration_ms=0,
            error_type=error_type,
            error_message=error_message,
        ))

    def record_skipped(self, event_type: str, reason: str, metadata: Optional[Dict] = None) -> Event:
        output = {'skipped_reason': reason}
        if metadata:
            output.update(metadata)
        return self.record_simple(event_type, status="skipped", output=output)

    def record_completion(self, summary: Optional[Dict] = None) -> Event:
        output = dict(summary or {}, total_steps=self.current_step)
        return self.record_simple("completion", status="success", output=output)

    def record_failure(self, message: str, error_type: Optional[str] = None,
                       details: Optional[Dict] = None) -> Event:
        output = dict(details or {}, total_steps=self.current_step)
        return self.record_simple(
            "failure", status="failed", output=output,
            error_message=message, error_type=error_type,
        )
