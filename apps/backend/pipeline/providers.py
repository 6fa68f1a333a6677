"""
LLM providers. Each one sends a prompt over HTTP and returns a plain
response dict; building prompts and parsing answers is left to callers.
"""
import time
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

import httpx

from core.config import Settings
from core.token_budget import TokenBudgetLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
REQUEST_TIMEOUT_SECONDS = 110.0


def _retry_after(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get('retry-after')
    try:
        return int(float(raw)) if raw else None
    except ValueError:
        return None


class BaseProvider:
    """
    Response contract for run():
        success: {content, provider, model, input_tokens, output_tokens, latency_ms,
                  http_status, provider_request, provider_response, provider_endpoint}
        error:   {content: None, error, error_type, provider, model, latency_ms,
                  rate_limit (optional), retry_after (optional)}
    """

    name = "base"
    endpoint = ""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    @property
    def model(self) -> str:
        raise NotImplementedError

    @property
    def api_key(self) -> Optional[str]:
        return None

    def enabled(self) -> bool:
        return self.name in self.settings.ai_provider_chain

    def available(self) -> bool:
        return self.enabled() and bool(self.api_key)

    def build_request(self, prompt: str, system_message: Optional[str], json_format: bool) -> Dict:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        return {'Content-Type': 'application/json'}

    def parse_response(self, data: Dict) -> Dict:
        """Return {content, input_tokens, output_tokens} from a provider body."""
        raise NotImplementedError

    async def run(self, prompt: str, system_message: Optional[str] = None, json_format: bool = True) -> Dict:
        request_body = self.build_request(prompt, system_message, json_format)
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.post(self.endpoint, headers=self.headers(), json=request_body)
        except httpx.TimeoutException as e:
            return self.error_response(f"Request timed out: {e}", started, error_type="timeout")
        except httpx.HTTPError as e:
            return self.error_response(f"Request failed: {e}", started, error_type="connection")

        if response.status_code == 429:
            logger.warning(f"[providers] {self.name} rate limited (429)")
            return self.error_response(
                "Rate limited by provider", started, error_type="rate_limit",
                rate_limit=True, retry_after=_retry_after(response), http_status=429,
            )
        if response.status_code in (401, 403):
            return self.error_response(
                f"Authentication failed ({response.status_code})", started,
                error_type="authentication", http_status=response.status_code,
            )
        if response.status_code >= 400:
            return self.error_response(
                f"HTTP {response.status_code}: {response.text[:500]}", started,
                error_type="http_error", http_status=response.status_code,
            )

        try:
            data = response.json()
            parsed = self.parse_response(data)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            return self.error_response(
                f"Unexpected response format: {e}", started,
                error_type="parsing", http_status=response.status_code,
            )

        return {
            'content': parsed['content'],
            'provider': self.name,
            'model': self.model,
            'input_tokens': parsed.get('input_tokens'),
            'output_tokens': parsed.get('output_tokens'),
            'latency_ms': int((time.monotonic() - started) * 1000),
            'http_status': response.status_code,
            'provider_request': request_body,
            'provider_response': data,
            'provider_endpoint': self.endpoint,
        }

    def error_response(self, error: str, started: Optional[float] = None, error_type: Optional[str] = None,
                       rate_limit: bool = False, retry_after: Optional[int] = None,
                       http_status: Optional[int] = None) -> Dict:
        response = {
            'content': None,
            'error': error,
            'error_type': error_type,
            'provider': self.name,
            'model': self.model,
            'latency_ms': int((time.monotonic() - started) * 1000) if started else 0,
            'http_status': http_status,
        }
        if rate_limit:
            response['rate_limit'] = True
        if retry_after is not None:
            response['retry_after'] = retry_after
        return response


class OpenAIProvider(BaseProvider):
    name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"

    @property
    def model(self) -> str:
        return self.settings.openai_model

    @property
    def api_key(self) -> Optional[str]:
        return self.settings.openai_api_key

    def headers(self) -> Dict[str, str]:
        return {'Content-Type': 'application/json', 'Authorization': f"Bearer {self.api_key}"}

    def build_request(self, prompt: str, system_message: Optional[str], json_format: bool) -> Dict:
        messages = []
        if system_message:
            messages.append({'role': 'system', 'content': system_message})
        messages.append({'role': 'user', 'content': prompt})
        body = {'model': self.model, 'messages': messages, 'temperature': 0, 'max_tokens': DEFAULT_MAX_TOKENS}
        if json_format:
            body['response_format'] = {'type': 'json_object'}
        return body

    def parse_response(self, data: Dict) -> Dict:
        usage = data.get('usage') or {}
        return {
            'content': data['choices'][0]['message']['content'],
            'input_tokens': usage.get('prompt_tokens'),
            'output_tokens': usage.get('completion_tokens'),
        }


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    endpoint = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def __init__(self, settings: Settings, token_budget: Optional[TokenBudgetLimiter] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings, transport)
        self.token_budget = token_budget
        self.sleep = sleep

    @property
    def model(self) -> str:
        return self.settings.anthropic_model

    @property
    def api_key(self) -> Optional[str]:
        return self.settings.anthropic_api_key

    def headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'x-api-key': self.api_key or '',
            'anthropic-version': self.api_version,
        }

    def build_request(self, prompt: str, system_message: Optional[str], json_format: bool) -> Dict:
        body = {
            'model': self.model,
            'max_tokens': DEFAULT_MAX_TOKENS,
            'temperature': 0,
            'messages': [{'role': 'user', 'content': prompt}],
        }
        if system_message:
            body['system'] = system_message
        return body

    def parse_response(self, data: Dict) -> Dict:
        usage = data.get('usage') or {}
        text = "".join(block.get('text', '') for block in data['content'] if block.get('type') == 'text')
        return {
            'content': text,
            'input_tokens': usage.get('input_tokens'),
            'output_tokens': usage.get('output_tokens'),
        }

    async def run(self, prompt: str, system_message: Optional[str] = None, json_format: bool = True) -> Dict:
        if self.token_budget is not None and prompt:
            estimated = TokenBudgetLimiter.estimate_tokens(prompt + (system_message or ''))
            if not self.token_budget.can_send(estimated):
                wait = self.token_budget.wait_time(estimated)
                if 0 < wait <= self.settings.max_token_wait_seconds:
                    logger.warning(f"[providers] Anthropic token budget: waiting {wait}s")
                    await self.sleep(wait)
                else:
                    logger.warning(f"[providers] Anthropic token budget exceeded, wait {wait}s over cap")
                    return self.error_response(
                        "Request would exceed token rate limit", error_type="rate_limit",
                        rate_limit=True, retry_after=wait or None,
                    )

        response = await super().run(prompt, system_message, json_format)

        if self.token_budget is not None and not response.get('error'):
            used = (response.get('input_tokens') or 0) + (response.get('output_tokens') or 0)
            self.token_budget.record_used(used)
        return response


class OllamaProvider(BaseProvider):
    name = "ollama"

    @property
    def endpoint(self) -> str:
        return f"{self.settings.ollama_endpoint.rstrip('/')}/api/generate"

    @property
    def model(self) -> str:
        return self.settings.ollama_model

    def available(self) -> bool:
        return self.enabled() and self.settings.ollama_enabled

    def build_request(self, prompt: str, system_message: Optional[str], json_format: bool) -> Dict:
        body = {'model': self.model, 'prompt': prompt, 'stream': False, 'options': {'temperature': 0}}
        if system_message:
            body['system'] = system_message
        if json_format:
            body['format'] = 'json'
        return body

    def parse_response(self, data: Dict) -> Dict:
        return {
            'content': data['response'],
            'input_tokens': data.get('prompt_eval_count'),
            'output_tokens': data.get('eval_count'),
        }


PROVIDERS = {
    'openai': OpenAIProvider,
    'anthropic': AnthropicProvider,
    'ollama': OllamaProvider,
}


def build_provider(name: str, settings: Settings, token_budget: Optional[TokenBudgetLimiter] = None) -> Optional[BaseProvider]:
    """Instantiate a provider by name from the dispatch table."""
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        logger.warning(f"[providers] Unknown provider: {name}")
        return None
    if provider_cls is AnthropicProvider:
        return AnthropicProvider(settings, token_budget=token_budget)
    return provider_cls(settings)
