"""
Tests for provider fallback, AI job extraction and post-processing.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from core.config import Settings
from pipeline.ai_extractor import (
    LOW_CONFIDENCE_ERROR,
    AiJobExtractor,
    ExtractedJob,
    JobPostProcessor,
    bullets_to_text,
    needs_postprocess,
    parse_json_object,
    strip_code_fences,
)
from pipeline.api_logger import classify_error, truncate_for_storage
from pipeline.provider_runner import ProviderRunner
from pipeline.providers import AnthropicProvider, OpenAIProvider, build_provider


def stub_provider(*responses, model="stub-model"):
    provider = MagicMock()
    provider.model = model
    provider.available.return_value = True
    provider.run = AsyncMock(side_effect=list(responses))
    return provider


def ok(content, input_tokens=100, output_tokens=50):
    return {'content': content, 'model': "stub-model", 'input_tokens': input_tokens, 'output_tokens': output_tokens}


def failed(error="HTTP 500: upstream error"):
    return {'content': None, 'error': error, 'error_type': 'http_error'}


def job_json(confidence, **fields):
    data = {'title': "Backend Engineer", 'company': "Acme", 'description': "Build APIs", 'confidence_score': confidence}
    data.update(fields)
    return json.dumps(data)


def accept_all(response):
    data = parse_json_object(response['content'])
    return data, {'confidence': data.get('confidence_score')}, True


class TestParsing:
    """Model answers into job data."""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_parse_json_with_surrounding_text(self):
        assert parse_json_object('Here you go: {"title": "X"} hope that helps') == {'title': "X"}

    @pytest.mark.parametrize("text", [None, "", "no json here", "[1, 2]"])
    def test_parse_json_failures(self, text):
        with pytest.raises(ValueError):
            parse_json_object(text)

    def test_extracted_job_flattens_lists(self):
        job = ExtractedJob.model_validate({
            'title': "Engineer",
            'requirements': ["Python", "", "SQL"],
            'salary_min': "120,000",
            'confidence_score': None,
        })

        assert job.requirements == "Python\nSQL"
        assert job.salary_min == 120000.0
        assert job.confidence_score == 0.0

    def test_list_location_is_joined(self):
        job = ExtractedJob.model_validate({
            'title': ["Senior Engineer"],
            'location': ["Berlin", "Remote"],
            'confidence_score': 0.95,
        })

        assert job.title == "Senior Engineer"
        assert job.location == "Berlin, Remote"
        assert job.confidence_score == 0.95

    def test_unparseable_numbers_do_not_reject_answer(self):
        job = ExtractedJob.model_validate({
            'title': "Engineer",
            'salary_min': "120k",
            'salary_max': "competitive",
            'confidence_score': "0.9",
        })

        assert job.salary_min == 120000.0
        assert job.salary_max is None
        assert job.confidence_score == 0.9

    def test_bullets_to_text(self):
        assert bullets_to_text(["Ship", " ", "Test"]) == "- Ship\n- Test"
        assert bullets_to_text(None) == ""


class TestProviderRunner:
    """Ordered fallback with one log row per provider call."""

    @pytest.mark.asyncio
    async def test_falls_through_to_third_provider(self, store):
        providers = {
            'openai': stub_provider(failed()),
            'anthropic': stub_provider(failed("Request timed out")),
            'ollama': stub_provider(ok(job_json(0.9))),
        }
        runner = ProviderRunner(store, Settings(), provider_for=providers.get, attempt_id=7)

        result = await runner.run(['openai', 'anthropic', 'ollama'], "prompt", accept_all)

        assert result['success'] is True
        assert result['provider'] == "ollama"
        assert result['tokens_used'] == 150
        assert result['parsed']['title'] == "Backend Engineer"
        assert [log['status'] for log in store.api_logs] == ['error', 'error', 'success']
        assert [log['provider'] for log in store.api_logs] == ['openai', 'anthropic', 'ollama']
        assert all(log['attempt_id'] == 7 for log in store.api_logs)
        assert result['llm_api_log_id'] == store.api_logs[-1]['id']

    @pytest.mark.asyncio
    async def test_skips_unavailable_providers(self, store):
        unavailable = stub_provider(ok("{}"))
        unavailable.available.return_value = False
        providers = {'openai': None, 'anthropic': unavailable}
        runner = ProviderRunner(store, Settings(), provider_for=providers.get)

        result = await runner.run(['openai', 'anthropic', 'missing'], "prompt", accept_all)

        assert result == {'success': False, 'error': "All providers failed"}
        assert store.api_logs == []
        unavailable.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_hook_and_exception(self, store):
        rate_limited = stub_provider({'content': None, 'error': "Rate limited", 'rate_limit': True, 'retry_after': 5})
        exploding = stub_provider()
        exploding.run = AsyncMock(side_effect=RuntimeError("socket closed"))
        on_rate_limit = AsyncMock()
        on_exception = MagicMock(return_value=None)
        runner = ProviderRunner(store, Settings(), provider_for={'a': rate_limited, 'b': exploding}.get)

        result = await runner.run(['a', 'b'], "prompt", accept_all,
                                  on_rate_limit=on_rate_limit, on_exception=on_exception)

        assert result['success'] is False
        on_rate_limit.assert_awaited_once()
        on_exception.assert_called_once()
        assert [log['status'] for log in store.api_logs] == ['rate_limited', 'error']
        assert store.api_logs[1]['error_type'] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_rejected_answer_moves_on(self, store):
        providers = {'a': stub_provider(ok("{}")), 'b': stub_provider(ok('{"ok": true}'))}
        calls = []

        def parse(response):
            calls.append(response['content'])
            return response['content'], {}, len(calls) > 1

        runner = ProviderRunner(store, Settings(), provider_for=providers.get)
        result = await runner.run(['a', 'b'], "prompt", parse)

        assert result['provider'] == "b"
        assert len(store.api_logs) == 2


class TestAiJobExtractor:
    """Confidence-gated extraction over the provider chain."""

    def make_extractor(self, store, providers, sleep=None):
        settings = Settings(ai_provider_chain=list(providers))
        runner = ProviderRunner(store, settings, provider_for=providers.get)
        return AiJobExtractor(store, settings, runner=runner, sleep=sleep or AsyncMock())

    @pytest.mark.asyncio
    async def test_accepts_first_confident_answer(self, store):
        extractor = self.make_extractor(store, {
            'openai': stub_provider(ok(job_json(0.4))),
            'anthropic': stub_provider(ok("```json\n" + job_json(0.85, requirements=["Go", "K8s"]) + "\n```")),
        })

        result = await extractor.extract("https://example.com/job", cleaned_html="Backend Engineer at Acme")

        assert result['confidence'] == 0.85
        assert result['provider'] == "anthropic"
        assert result['requirements'] == "Go\nK8s"
        assert 'error' not in result
        assert len(store.api_logs) == 2

    @pytest.mark.asyncio
    async def test_oddly_shaped_fields_still_accepted(self, store):
        answer = job_json(0.95, location=["Berlin", "Remote"], salary_min="120k", salary_max="n/a")
        extractor = self.make_extractor(store, {'openai': stub_provider(ok(answer))})

        result = await extractor.extract("https://example.com/job", cleaned_html="Backend Engineer at Acme")

        assert 'error' not in result
        assert result['confidence'] == 0.95
        assert result['location'] == "Berlin, Remote"
        assert result['salary_min'] == 120000.0
        assert result['salary_max'] is None
        assert store.api_logs[0]['status'] == "success"

    @pytest.mark.asyncio
    async def test_low_confidence_keeps_best_partial(self, store):
        extractor = self.make_extractor(store, {
            'openai': stub_provider(ok(job_json(0.5))),
            'anthropic': stub_provider(ok(job_json(0.3, title="Other"))),
        })

        result = await extractor.extract("https://example.com/job", cleaned_html="some text")

        assert result['error'] == LOW_CONFIDENCE_ERROR
        assert result['confidence'] == 0.0
        assert result['best_confidence'] == 0.5
        assert result['title'] == "Backend Engineer"

    @pytest.mark.asyncio
    async def test_invalid_json_is_logged_as_parsing_error(self, store):
        extractor = self.make_extractor(store, {'openai': stub_provider(ok("not json at all"))})

        result = await extractor.extract("https://example.com/job", cleaned_html="text")

        assert result['error'] == LOW_CONFIDENCE_ERROR
        assert store.api_logs[0]['status'] == "error"
        assert store.api_logs[0]['error_type'] == "parsing"

    @pytest.mark.asyncio
    async def test_no_content(self, store):
        extractor = self.make_extractor(store, {})
        result = await extractor.extract("https://example.com/job")

        assert result == {'error': "No HTML content available", 'confidence': 0.0}

    @pytest.mark.asyncio
    async def test_rate_limit_sleep_is_capped(self, store):
        sleep = AsyncMock()
        extractor = self.make_extractor(store, {
            'openai': stub_provider({'content': None, 'error': "Rate limited", 'rate_limit': True, 'retry_after': 300}),
            'anthropic': stub_provider(ok(job_json(0.9))),
        }, sleep=sleep)

        result = await extractor.extract("https://example.com/job", cleaned_html="text")

        sleep.assert_awaited_once_with(60)
        assert result['provider'] == "anthropic"


class TestJobPostProcessor:
    """Best-effort salary and bullet fill for API results."""

    API_RESULT = {
        'title': "Backend Engineer",
        'description': "Compensation: $140,000 - $160,000. You will design APIs.",
        'salary_currency': "USD",
        'custom_sections': {'departments': ["Engineering"]},
        'confidence': 1.0,
    }

    def test_needs_postprocess(self):
        assert needs_postprocess(self.API_RESULT)
        assert not needs_postprocess({'description': ""})
        assert not needs_postprocess({
            'description': "Plain text", 'salary_min': 1, 'requirements': "x",
        })

    @pytest.mark.asyncio
    async def test_enrich_merges_fields(self, store):
        answer = json.dumps({
            'compensation_text': "$140,000 - $160,000",
            'salary_min': 140000, 'salary_max': 160000, 'salary_currency': "USD",
            'responsibilities_bullets': ["Design APIs"],
            'requirements_bullets': [],
            'confidence_score': 0.8,
        })
        settings = Settings(ai_provider_chain=['openai'])
        runner = ProviderRunner(store, settings, provider_for={'openai': stub_provider(ok(answer))}.get)
        processor = JobPostProcessor(store, settings, runner=runner)

        merged = await processor.enrich("https://boards.greenhouse.io/acme/jobs/55", self.API_RESULT)

        assert merged['salary_min'] == 140000
        assert merged['responsibilities'] == "- Design APIs"
        assert merged['custom_sections']['compensation_text'] == "$140,000 - $160,000"
        assert merged['custom_sections']['departments'] == ["Engineering"]
        assert store.api_logs[0]['operation_type'] == "job_postprocess"

    @pytest.mark.asyncio
    async def test_enrich_never_raises(self, store):
        runner = MagicMock()
        runner.run = AsyncMock(side_effect=RuntimeError("boom"))
        processor = JobPostProcessor(store, Settings(), runner=runner)

        assert await processor.enrich("https://x", self.API_RESULT) is self.API_RESULT


class TestProviders:
    """HTTP providers against a mocked transport."""

    @pytest.mark.asyncio
    async def test_openai_success(self):
        def handler(request):
            body = json.loads(request.content)
            assert body['response_format'] == {'type': 'json_object'}
            return httpx.Response(200, json={
                'choices': [{'message': {'content': '{"title": "X"}'}}],
                'usage': {'prompt_tokens': 10, 'completion_tokens': 5},
            })

        provider = OpenAIProvider(Settings(openai_api_key="sk-test"), transport=httpx.MockTransport(handler))
        response = await provider.run("prompt", system_message="system")

        assert response['content'] == '{"title": "X"}'
        assert response['input_tokens'] == 10
        assert response['http_status'] == 200

    @pytest.mark.asyncio
    async def test_rate_limit_response(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(429, headers={'retry-after': '12'}))
        provider = OpenAIProvider(Settings(openai_api_key="sk-test"), transport=transport)

        response = await provider.run("prompt")
        assert response['rate_limit'] is True
        assert response['retry_after'] == 12

    @pytest.mark.asyncio
    async def test_anthropic_token_budget_refuses_long_wait(self, cache, clock):
        from core.token_budget import TokenBudgetLimiter

        budget = TokenBudgetLimiter(cache, limit=1000, window_seconds=60, clock=clock.time)
        budget.record_used(1000)
        settings = Settings(anthropic_api_key="key", max_token_wait_seconds=10)
        provider = AnthropicProvider(settings, token_budget=budget, sleep=AsyncMock())

        response = await provider.run("x" * 400)
        assert response['rate_limit'] is True
        assert response['error_type'] == "rate_limit"

    def test_availability(self):
        settings = Settings(ai_provider_chain=['openai', 'ollama'], openai_api_key=None)

        assert build_provider('openai', settings).available() is False
        assert build_provider('ollama', settings).available() is False
        assert build_provider('anthropic', settings).enabled() is False
        assert build_provider('nope', settings) is None


class TestApiLogger:
    def test_classify_error(self):
        assert classify_error("Rate limited by provider") == "rate_limit"
        assert classify_error("Request timed out") == "timeout"
        assert classify_error("Invalid JSON") == "parsing"
        assert classify_error("weird") == "unknown"

    def test_truncate_for_storage(self):
        text = truncate_for_storage("a" * 20, max_length=10)
        assert text.startswith("a" * 10)
        assert "original length: 20" in text
