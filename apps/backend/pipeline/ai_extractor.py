"""
AI-powered job extraction over the configured provider chain.

Also hosts the best-effort Greenhouse post-processor that fills salary and
bullet lists after an accepted API result.
"""
import re
import json
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError, field_validator

from core.config import Settings
from core.token_budget import TokenBudgetLimiter
from crawler.cleaners import clean_html
from pipeline.prompts import (
    JOB_EXTRACTION_PROMPT_VERSION,
    JOB_EXTRACTION_SYSTEM_PROMPT,
    JOB_POSTPROCESS_PROMPT_VERSION,
    JOB_POSTPROCESS_SYSTEM_PROMPT,
    build_extraction_prompt,
    build_postprocess_prompt,
)
from pipeline.provider_runner import ProviderRunner
from pipeline.salary import SalaryRangeValidator

logger = logging.getLogger(__name__)

MAX_RATE_LIMIT_SLEEP_SECONDS = 60
LOW_CONFIDENCE_ERROR = "All providers failed or returned low confidence"
COMPENSATION_HINT = re.compile(r'compensation|salary|usd|eur|\$\s*\d', re.I)

TextField = Optional[Union[str, List[Any]]]


def _join_text(value):
    if isinstance(value, list):
        return "\n".join(str(v).strip() for v in value if str(v).strip()) or None
    if isinstance(value, dict):
        return json.dumps(value)
    return value


class ExtractedJob(BaseModel):
    """Shape of a provider's JSON answer."""
    title: Optional[str] = None
    company: Optional[str] = None
    company_domain: Optional[str] = None
    job_role: Optional[str] = None
    job_role_department: Optional[str] = None
    job_board: Optional[str] = None
    description: TextField = None
    requirements: TextField = None
    responsibilities: TextField = None
    location: Optional[str] = None
    remote_type: Optional[str] = None
    about_company: TextField = None
    company_culture: TextField = None
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    salary_currency: Optional[str] = None
    equity_info: TextField = None
    benefits: TextField = None
    perks: TextField = None
    custom_sections: Optional[Dict[str, Any]] = None
    confidence_score: float = 0.0
    notes: Optional[str] = None

    @field_validator(
        'description', 'requirements', 'responsibilities', 'about_company',
        'company_culture', 'equity_info', 'benefits', 'perks', mode='after',
    )
    @classmethod
    def _flatten_lists(cls, value):
        return _join_text(value)

    @field_validator(
        'title', 'company', 'company_domain', 'job_role', 'job_role_department', 'job_board',
        'location', 'remote_type', 'salary_currency', 'notes', mode='before',
    )
    @classmethod
    def _short_text(cls, value):
        # Models sometimes answer ["Berlin", "Remote"] or {"city": ...} for a single string
        if isinstance(value, dict):
            value = list(value.values())
        if isinstance(value, list):
            return ", ".join(str(v).strip() for v in value if v is not None and str(v).strip()) or None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator('salary_min', 'salary_max', 'confidence_score', mode='before')
    @classmethod
    def _lenient_numbers(cls, value, info):
        number = SalaryRangeValidator.coerce_number(value) if not isinstance(value, (list, dict)) else None
        if number is None and info.field_name == 'confidence_score':
            return 0.0
        return number


def strip_code_fences(text: str) -> str:
    text = text.strip()
    fenced = re.match(r'^```(?:json)?\s*(.*?)\s*```$', text, re.S)
    if fenced:
        return fenced.group(1)
    return text


def parse_json_object(text: Optional[str]) -> Dict:
    """
    Parse the first JSON object out of a model answer.

    Raises:
        ValueError: when no JSON object can be decoded
    """
    if not text or not text.strip():
        raise ValueError("Empty response")
    text = strip_code_fences(text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r'\{.*\}', text, re.S)
        if not match:
            raise ValueError("No JSON found in response")
        data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


class AiJobExtractor:
    """
    Extracts job data with the first provider whose answer clears the
    confidence threshold.
    """

    def __init__(
        self,
        store,
        settings: Settings,
        runner: Optional[ProviderRunner] = None,
        attempt_id: Optional[int] = None,
        token_budget: Optional[TokenBudgetLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.settings = settings
        self.runner = runner or ProviderRunner(
            store, settings, attempt_id=attempt_id, token_budget=token_budget,
            operation_type="job_extraction", prompt_version=JOB_EXTRACTION_PROMPT_VERSION,
        )
        self.sleep = sleep

    async def extract(
        self,
        url: str,
        html_content: Optional[str] = None,
        cleaned_html: Optional[str] = None,
        board_type: Optional[str] = None,
    ) -> Dict:
        """
        Extract structured job data.

        Args:
            url: Listing URL, included in the prompt
            html_content: Raw HTML, cleaned when no cleaned text is given
            cleaned_html: Pre-cleaned text
            board_type: Detected board, selects the cleaner

        Returns:
            Flat result dict with job fields, confidence, provider, model and
            tokens_used, or {'error', 'confidence': 0.0, 'best_confidence'}
        """
        content = cleaned_html or (clean_html(html_content, board_type) if html_content else "")
        if not content or not content.strip():
            return {'error': "No HTML content available", 'confidence': 0.0}

        prompt = build_extraction_prompt(url, content)
        threshold = self.settings.confidence_threshold
        best = {'confidence': 0.0, 'data': {}}

        def parse(response: Dict):
            try:
                job = ExtractedJob.model_validate(parse_json_object(response.get('content')))
            except (ValueError, ValidationError) as e:
                logger.warning(f"[ai_extractor] {response.get('provider')} returned unparseable JSON: {e}")
                return None, {'error': f"Invalid JSON: {e}", 'error_type': 'parsing', 'confidence': 0.0}, False

            data = job.model_dump(exclude={'confidence_score'})
            data['confidence'] = job.confidence_score
            if job.confidence_score >= best['confidence']:
                best['confidence'] = job.confidence_score
                best['data'] = data
            accept = job.confidence_score >= threshold
            if not accept:
                logger.info(
                    f"[ai_extractor] {response.get('provider')} low confidence "
                    f"{job.confidence_score} < {threshold}"
                )
            return data, data, accept

        async def on_rate_limit(response: Dict, provider_name: str, api_logger):
            retry_after = response.get('retry_after') or 0
            if retry_after > 0:
                wait = min(retry_after, MAX_RATE_LIMIT_SLEEP_SECONDS)
                logger.warning(f"[ai_extractor] {provider_name} rate limited, sleeping {wait}s")
                await self.sleep(wait)

        result = await self.runner.run(
            self.settings.ai_provider_chain,
            prompt,
            parse,
            system_message=JOB_EXTRACTION_SYSTEM_PROMPT,
            content_size=len(content.encode('utf-8')),
            on_rate_limit=on_rate_limit,
        )

        if not result.get('success'):
            logger.warning(f"[ai_extractor] {LOW_CONFIDENCE_ERROR} for {url}")
            partial = {k: v for k, v in best['data'].items() if k != 'confidence'}
            return dict(partial, error=LOW_CONFIDENCE_ERROR, confidence=0.0, best_confidence=best['confidence'])

        data = dict(result['parsed'])
        data.update({
            'provider': result['provider'],
            'model': result['model'],
            'tokens_used': result.get('tokens_used'),
            'llm_api_log_id': result.get('llm_api_log_id'),
            'latency_ms': result.get('latency_ms'),
        })
        logger.info(f"[ai_extractor] Extracted {url} with {result['provider']} (confidence {data['confidence']})")
        return data


def bullets_to_text(items) -> str:
    cleaned = [str(i).strip() for i in (items or []) if str(i).strip()]
    return "\n".join(f"- {i}" for i in cleaned)


def needs_postprocess(api_result: Dict) -> bool:
    """Only worth a model call when there are gaps it can fill."""
    description = api_result.get('description') or ''
    if not description:
        return False
    missing_salary = not api_result.get('salary_min') and not api_result.get('salary_max')
    missing_lists = not api_result.get('requirements') and not api_result.get('responsibilities')
    return missing_salary or missing_lists or bool(COMPENSATION_HINT.search(description))


class JobPostProcessor:
    """Best-effort fill of salary and bullet lists for API results."""

    def __init__(self, store, settings: Settings, runner: Optional[ProviderRunner] = None,
                 attempt_id: Optional[int] = None, token_budget: Optional[TokenBudgetLimiter] = None):
        self.settings = settings
        self.runner = runner or ProviderRunner(
            store, settings, attempt_id=attempt_id, token_budget=token_budget,
            operation_type="job_postprocess", prompt_version=JOB_POSTPROCESS_PROMPT_VERSION,
        )

    async def run(self, url: str, content: Optional[str]) -> Dict:
        if not content:
            return {'error': "No content", 'confidence': 0.0}

        def parse(response: Dict):
            try:
                data = parse_json_object(response.get('content'))
            except ValueError as e:
                return None, {'error': f"Invalid JSON: {e}", 'error_type': 'parsing', 'confidence': 0.0}, False
            try:
                confidence = float(data.get('confidence_score') or 0.0)
            except (TypeError, ValueError):
                confidence = 0.0
            parsed = {
                'compensation_text': data.get('compensation_text'),
                'salary_min': data.get('salary_min'),
                'salary_max': data.get('salary_max'),
                'salary_currency': data.get('salary_currency'),
                'responsibilities_bullets': list(data.get('responsibilities_bullets') or []),
                'requirements_bullets': list(data.get('requirements_bullets') or []),
                'benefits_bullets': list(data.get('benefits_bullets') or []),
                'perks_bullets': list(data.get('perks_bullets') or []),
                'confidence': confidence,
            }
            return parsed, {'confidence': confidence}, confidence > 0.0

        result = await self.runner.run(
            self.settings.ai_provider_chain,
            build_postprocess_prompt(url, content),
            parse,
            system_message=JOB_POSTPROCESS_SYSTEM_PROMPT,
            content_size=len(content.encode('utf-8')),
        )
        if not result.get('success'):
            return {'error': "No provider available", 'confidence': 0.0}
        return result['parsed']

    async def enrich(self, url: str, api_result: Dict) -> Dict:
        """
        Merge post-processed fields into an API result. Never raises; the
        original result is returned on any failure.
        """
        if not needs_postprocess(api_result):
            return api_result
        try:
            post = await self.run(url, api_result.get('description'))
        except Exception as e:
            logger.warning(f"[ai_extractor] Post-process skipped for {url}: {e}")
            return api_result
        if float(post.get('confidence') or 0.0) <= 0.0:
            return api_result

        custom_sections = dict(api_result.get('custom_sections') or {})
        if post.get('compensation_text'):
            custom_sections['compensation_text'] = post['compensation_text']

        merged = dict(api_result)
        merged.update({
            'salary_min': post.get('salary_min') or api_result.get('salary_min'),
            'salary_max': post.get('salary_max') or api_result.get('salary_max'),
            'salary_currency': post.get('salary_currency') or api_result.get('salary_currency'),
            'requirements': bullets_to_text(post.get('requirements_bullets')) or api_result.get('requirements'),
            'responsibilities': bullets_to_text(post.get('responsibilities_bullets')) or api_result.get('responsibilities'),
            'benefits': bullets_to_text(post.get('benefits_bullets')) or api_result.get('benefits'),
            'perks': bullets_to_text(post.get('perks_bullets')) or api_result.get('perks'),
            'custom_sections': custom_sections,
        })
        return merged
