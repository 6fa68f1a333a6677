"""
Ordered multi-provider fallback with one API-call log per provider call.
"""
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.config import Settings
from core.token_budget import TokenBudgetLimiter
from pipeline.api_logger import ApiCallLogger
from pipeline.providers import BaseProvider, build_provider

logger = logging.getLogger(__name__)

# parse(response) -> (parsed, log_data, accept)
ParseFn = Callable[[Dict], Tuple[Any, Optional[Dict], bool]]


async def _call_hook(hook, *args):
    if hook is None:
        return None
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def standard_response_data(response: Dict) -> Dict:
    return {
        'model': response.get('model'),
        'input_tokens': response.get('input_tokens'),
        'output_tokens': response.get('output_tokens'),
        'raw_response': response.get('content'),
        'provider_request': response.get('provider_request'),
        'provider_response': response.get('provider_response'),
        'http_status': response.get('http_status'),
        'provider_endpoint': response.get('provider_endpoint'),
    }


class ProviderRunner:
    """Tries providers in order until one returns an accepted answer."""

    def __init__(
        self,
        store,
        settings: Settings,
        provider_for: Optional[Callable[[str], Optional[BaseProvider]]] = None,
        attempt_id: Optional[int] = None,
        operation_type: str = "job_extraction",
        prompt_version: Optional[str] = None,
        token_budget: Optional[TokenBudgetLimiter] = None,
    ):
        self.store = store
        self.settings = settings
        self.provider_for = provider_for or (lambda name: build_provider(name, settings, token_budget=token_budget))
        self.attempt_id = attempt_id
        self.operation_type = operation_type
        self.prompt_version = prompt_version

    async def run(
        self,
        providers: List[str],
        prompt: str,
        parse: ParseFn,
        system_message: Optional[str] = None,
        content_size: Optional[int] = None,
        on_rate_limit=None,
        on_error=None,
        on_exception=None,
    ) -> Dict:
        """
        Run providers in order.

        Args:
            providers: Ordered provider names
            prompt: Prompt text
            parse: Turns a provider response into (parsed, log_data, accept)
            system_message: Optional system prompt
            content_size: Size of the content being extracted, for logging
            on_rate_limit: hook(response, provider_name, api_logger), may be async
            on_error: hook(response, provider_name, api_logger), may be async
            on_exception: hook(exc, provider_name, api_logger), may be async

        Returns:
            {'success': True, 'provider', 'model', 'parsed', 'tokens_used',
             'llm_api_log_id', 'latency_ms'}
            or {'success': False, 'error': 'All providers failed'}
        """
        for name in providers:
            provider = self.provider_for(name)
            if provider is None or not provider.available():
                logger.debug(f"[provider_runner] Skipping unavailable provider {name}")
                continue

            api_logger = ApiCallLogger(
                self.store, self.operation_type, name, provider.model,
                attempt_id=self.attempt_id, prompt_version=self.prompt_version,
            )
            state = {'parsed': None, 'accept': True, 'model': provider.model, 'tokens_used': None}

            async def call(log, provider=provider, name=name, state=state):
                response = await provider.run(prompt, system_message=system_message)
                state['model'] = response.get('model') or state['model']
                state['tokens_used'] = (response.get('input_tokens') or 0) + (response.get('output_tokens') or 0)

                if response.get('rate_limit'):
                    await _call_hook(on_rate_limit, response, name, log)
                    return dict(standard_response_data(response), error='rate_limited',
                                error_type='rate_limit', rate_limit=True)

                if response.get('error'):
                    await _call_hook(on_error, response, name, log)
                    return dict(standard_response_data(response), error=response['error'],
                                error_type=response.get('error_type'))

                parsed, log_data, accept = parse(response)
                state['parsed'] = parsed
                state['accept'] = accept
                return dict(log_data or {}, **standard_response_data(response))

            try:
                result = await api_logger.record(prompt, content_size, call)
            except Exception as e:
                logger.error(f"[provider_runner] {name} raised {type(e).__name__}: {e}")
                await _call_hook(on_exception, e, name, api_logger)
                continue

            if result.get('rate_limit') or result.get('error'):
                logger.warning(f"[provider_runner] {name} failed: {result.get('error')}")
                continue
            if not state['accept']:
                logger.info(f"[provider_runner] {name} answer not accepted")
                continue

            logger.info(f"[provider_runner] Accepted answer from {name} ({state['model']})")
            return {
                'success': True,
                'provider': name,
                'model': state['model'],
                'parsed': state['parsed'],
                'tokens_used': state['tokens_used'],
                'llm_api_log_id': result.get('llm_api_log_id'),
                'latency_ms': result.get('latency_ms'),
            }

        return {'success': False, 'error': 'All providers failed'}
