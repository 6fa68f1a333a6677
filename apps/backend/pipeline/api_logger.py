"""
Per-call logging of LLM API requests: timing, tokens, truncated payloads,
status and error classification.
"""
import time
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 50000
MAX_DISPLAY_LENGTH = 500
MAX_RAW_RESPONSE_LENGTH = 10000
MAX_PAYLOAD_DEPTH = 8
MAX_PAYLOAD_ITEMS = 200

JOB_FIELDS = [
    'title', 'company', 'job_role', 'description', 'requirements', 'responsibilities',
    'location', 'remote_type', 'salary_min', 'salary_max', 'salary_currency',
    'equity_info', 'benefits', 'perks',
]

DISPLAY_FIELDS = JOB_FIELDS + ['about_company', 'company_culture', 'notes']


def truncate_for_storage(content: Optional[str], max_length: int = MAX_PROMPT_LENGTH) -> Optional[str]:
    if content is None or len(content) <= max_length:
        return content
    return f"{content[:max_length]}\n\n[TRUNCATED - original length: {len(content)}]"


def truncate_for_display(content: Optional[str], max_length: int = MAX_DISPLAY_LENGTH) -> Optional[str]:
    if content is None or len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def sanitize_payload(value: Any, max_string_length: int = MAX_PROMPT_LENGTH, depth: int = 0) -> Any:
    """Make a nested payload JSON-safe with bounded size."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if depth >= MAX_PAYLOAD_DEPTH:
        return f"[TRUNCATED: max_depth={MAX_PAYLOAD_DEPTH}]"
    if isinstance(value, str):
        return truncate_for_storage(value, max_string_length)
    if isinstance(value, dict):
        return {str(k): sanitize_payload(v, max_string_length, depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(v, max_string_length, depth + 1) for v in list(value)[:MAX_PAYLOAD_ITEMS]]
    return truncate_for_storage(str(value), max_string_length)


def classify_error(error: Optional[str]) -> str:
    message = (error or '').lower()
    if 'rate' in message:
        return 'rate_limit'
    if 'timeout' in message or 'timed out' in message:
        return 'timeout'
    if 'json' in message or 'parse' in message:
        return 'parsing'
    if 'auth' in message or 'key' in message:
        return 'authentication'
    return 'unknown'


def determine_status(result: Dict) -> str:
    if result.get('rate_limit'):
        return 'rate_limited'
    if result.get('timeout'):
        return 'timeout'
    if result.get('error'):
        return 'error'
    return 'success'


def classify_exception_status(exc: Exception) -> str:
    message = str(exc).lower()
    if 'rate' in message and 'limit' in message:
        return 'rate_limited'
    if 'timeout' in message or isinstance(exc, TimeoutError):
        return 'timeout'
    return 'error'


def extracted_field_names(result: Dict) -> List[str]:
    return [f for f in JOB_FIELDS if result.get(f) not in (None, '', [], {})]


class ApiCallLogger:
    """Wraps one provider call and persists a log row for it."""

    def __init__(self, store, operation_type: str, provider: str, model: Optional[str],
                 attempt_id: Optional[int] = None, prompt_version: Optional[str] = None):
        self.store = store
        self.operation_type = operation_type
        self.provider = provider
        self.model = model
        self.attempt_id = attempt_id
        self.prompt_version = prompt_version
        self.log: Dict = {}

    async def record(self, prompt: Optional[str], content_size: Optional[int],
                     fn: Callable[["ApiCallLogger"], Awaitable[Dict]]) -> Dict:
        """
        Run fn and log the outcome.

        fn returns a dict that may carry content/token/confidence/error keys
        plus any extracted job fields. Exceptions from fn are logged and re-raised.

        Returns:
            fn's result with llm_api_log_id and latency_ms added
        """
        started = time.monotonic()
        self.log = {
            'attempt_id': self.attempt_id,
            'operation_type': self.operation_type,
            'provider': self.provider,
            'model': self.model,
            'prompt_version': self.prompt_version,
            'content_size': content_size,
            'request_payload': self._request_payload(prompt),
            'created_at': datetime.utcnow().isoformat(),
        }

        try:
            result = await fn(self)
        except Exception as e:
            self.log.update({
                'latency_ms': int((time.monotonic() - started) * 1000),
                'status': classify_exception_status(e),
                'error_type': type(e).__name__,
                'error_message': str(e),
                'response_payload': {'exception_class': type(e).__name__, 'exception_message': str(e)},
            })
            self._save()
            raise

        result = result or {}
        latency_ms = int((time.monotonic() - started) * 1000)
        self.log.update({
            'model': result.get('model') or self.model,
            'latency_ms': latency_ms,
            'input_tokens': result.get('input_tokens'),
            'output_tokens': result.get('output_tokens'),
            'confidence_score': result.get('confidence'),
            'request_payload': self._request_payload(prompt, result),
            'response_payload': self._response_payload(result),
            'extracted_fields': extracted_field_names(result),
            'status': determine_status(result),
        })
        if result.get('error'):
            self.log['error_message'] = result['error']
            self.log['error_type'] = result.get('error_type') or classify_error(result['error'])

        log_id = self._save()
        return dict(result, llm_api_log_id=log_id, latency_ms=latency_ms)

    def _save(self) -> Optional[int]:
        try:
            return self.store.add_api_log(self.log)
        except Exception as e:
            logger.error(f"[api_logger] Failed to save API log for {self.provider}: {e}")
            return None

    @staticmethod
    def _request_payload(prompt: Optional[str], result: Optional[Dict] = None) -> Dict:
        payload = {}
        if prompt:
            payload['prompt'] = truncate_for_storage(prompt)
        if result:
            if result.get('provider_request'):
                payload['provider_request'] = sanitize_payload(result['provider_request'])
            if result.get('provider_endpoint'):
                payload['provider_endpoint'] = result['provider_endpoint']
        return payload

    @staticmethod
    def _response_payload(result: Dict) -> Dict:
        payload = {}
        if result.get('provider_response'):
            payload['provider_response'] = sanitize_payload(result['provider_response'])
        if result.get('http_status'):
            payload['http_status'] = result['http_status']
        if result.get('provider_endpoint'):
            payload['provider_endpoint'] = result['provider_endpoint']

        for field in DISPLAY_FIELDS:
            value = result.get(field)
            if value in (None, '', [], {}):
                continue
            payload[field] = truncate_for_display(value) if isinstance(value, str) else value

        if result.get('confidence') is not None:
            payload['confidence'] = result['confidence']
        if result.get('raw_response'):
            payload['raw_response'] = truncate_for_storage(result['raw_response'], MAX_RAW_RESPONSE_LENGTH)
        if result.get('error'):
            payload['error'] = result['error']
        if result.get('custom_sections'):
            payload['custom_sections'] = result['custom_sections']
        return payload
