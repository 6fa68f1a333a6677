"""
Tests for step event recording.
"""
from unittest.mock import MagicMock

import pytest

from pipeline.events import (
    MAX_LIST_ITEMS,
    MAX_STRING_LENGTH,
    TRUNCATION_MARKER,
    EventRecorder,
    truncate_payload,
)
from pipeline.models import Attempt


@pytest.fixture
def attempt(store):
    return store.create_attempt(Attempt(url="https://example.com/jobs/1", domain="example.com"))


@pytest.fixture
def recorder(store, attempt):
    return EventRecorder(store, attempt)


class TestRecord:
    """Events wrapped around step coroutines."""

    @pytest.mark.asyncio
    async def test_success_copies_safe_keys(self, store, attempt, recorder):
        async def step(event):
            event.set_output(board_type="greenhouse")
            return {'success': True, 'http_status': 200, 'html_content': "<html>big</html>"}

        result = await recorder.record("html_fetch", {'url': attempt.url}, step)

        event = store.events_for_attempt(attempt.id, "html_fetch")[0]
        assert result['success'] is True
        assert event.status == "success"
        assert event.step_order == 1
        assert event.input == {'url': attempt.url}
        assert event.output == {'board_type': "greenhouse", 'success': True, 'http_status': 200}
        assert event.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_reraised(self, store, attempt, recorder):
        async def step(event):
            event.set_output(partial=True)
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            await recorder.record("ai_extraction", {}, step)

        event = store.events_for_attempt(attempt.id)[0]
        assert event.status == "failed"
        assert event.error_type == "ValueError"
        assert event.error_message == "bad payload"
        assert event.output == {'partial': True}

    @pytest.mark.asyncio
    async def test_step_order_increments_and_can_be_set(self, store, attempt, recorder):
        async def step(event):
            return None

        await recorder.record("a", {}, step)
        await recorder.record("b", {}, step)
        await recorder.record("c", {}, step, step=10)

        assert [e.step_order for e in store.events_for_attempt(attempt.id)] == [1, 2, 10]
        assert recorder.current_step == 10

    @pytest.mark.asyncio
    async def test_store_errors_are_swallowed(self, attempt):
        broken = MagicMock()
        broken.add_event.side_effect = RuntimeError("db down")
        recorder = EventRecorder(broken, attempt)

        async def step(event):
            return {'success': True}

        assert await recorder.record("html_fetch", {}, step) == {'success': True}
        broken.update_event.assert_not_called()


class TestSimpleEvents:
    def test_record_skipped(self, store, attempt, recorder):
        recorder.record_skipped("permission_check", "politeness_disabled", {'url': attempt.url})

        event = store.events_for_attempt(attempt.id)[0]
        assert event.status == "skipped"
        assert event.output == {'skipped_reason': "politeness_disabled", 'url': attempt.url}

    def test_completion_and_failure_count_steps(self, store, attempt, recorder):
        recorder.record_simple("job_board_detection", "success")
        completion = recorder.record_completion({'extraction_method': "api"})
        failure = recorder.record_failure("boom", error_type="RuntimeError")

        assert completion.output == {'extraction_method': "api", 'total_steps': 2}
        assert failure.status == "failed"
        assert failure.error_type == "RuntimeError"
        assert failure.output['total_steps'] == 3


class TestTruncation:
    def test_long_strings(self):
        payload = truncate_payload({'html': "x" * (MAX_STRING_LENGTH + 50)})

        assert len(payload['html']) == MAX_STRING_LENGTH + len(TRUNCATION_MARKER)
        assert payload['html'].endswith(TRUNCATION_MARKER)

    def test_long_lists_and_nesting(self):
        payload = truncate_payload({'items': list(range(MAX_LIST_ITEMS + 20)), 'nested': {'s': "ok"}})

        assert len(payload['items']) == MAX_LIST_ITEMS
        assert payload['nested'] == {'s': "ok"}

    def test_non_dict(self):
        assert truncate_payload(None) == {}
        assert truncate_payload(["a"]) == {}
