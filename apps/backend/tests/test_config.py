"""
Tests for settings, capabilities, the cache and the command line.
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.cache import InMemoryCache
from core.config import Capabilities, Settings
from pipeline.attempts import AttemptLifecycle
from pipeline.models import Attempt, AttemptStatus

import main


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("JOBSCRAPE_CONFIDENCE_THRESHOLD", "JOBSCRAPE_AI_PROVIDERS", "DATABASE_URL",
                     "JOBSCRAPE_ENABLE_POLITENESS", "JOBSCRAPE_DOMAIN_RATE_LIMITS"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()

        assert settings.confidence_threshold == 0.7
        assert settings.attempt_reuse_window_seconds == 120
        assert settings.ai_provider_chain == ["openai", "anthropic", "ollama"]
        assert settings.politeness_enabled is True
        assert settings.db_url is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("JOBSCRAPE_CONFIDENCE_THRESHOLD", "0.8")
        monkeypatch.setenv("JOBSCRAPE_AI_PROVIDERS", "Anthropic, openai")
        monkeypatch.setenv("JOBSCRAPE_ENABLE_POLITENESS", "false")
        monkeypatch.setenv("JOBSCRAPE_DOMAIN_RATE_LIMITS", '{"Example.com": 12}')

        settings = Settings.from_env()

        assert settings.confidence_threshold == 0.8
        assert settings.ai_provider_chain == ["anthropic", "openai"]
        assert settings.politeness_enabled is False
        assert settings.domain_spacing("www.example.com") == 12.0

    def test_invalid_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("JOBSCRAPE_CONFIDENCE_THRESHOLD", "high")
        monkeypatch.setenv("JOBSCRAPE_DOMAIN_RATE_LIMITS", "[1, 2]")

        settings = Settings.from_env()

        assert settings.confidence_threshold == 0.7
        assert settings.domain_rate_limits == {}


class TestCapabilities:
    def test_no_keys_is_amber(self):
        status = Capabilities.get_status(Settings())

        assert status['status'] == "amber"
        assert status['providers'] == []
        assert status['components']['ai'] is False

    def test_available_providers_follow_chain_order(self):
        settings = Settings(
            ai_provider_chain=["anthropic", "ollama", "openai"],
            openai_api_key="sk-test",
            anthropic_api_key="ak-test",
            db_url="postgresql://localhost/jobs",
        )

        assert Capabilities.available_providers(settings) == ["anthropic", "openai"]
        assert Capabilities.get_status(settings)['status'] == "green"


class TestInMemoryCache:
    def test_ttl(self, clock):
        cache = InMemoryCache(clock=clock.time)
        cache.set("a", {'x': 1}, ttl=10)
        cache.set("b", "forever")

        clock.advance(11)

        assert cache.get("a") is None
        assert cache.get("b") == "forever"

    def test_non_positive_ttl_stores_nothing(self, cache):
        cache.set("a", "old")
        cache.set("a", "new", ttl=0)
        cache.set("b", "value", ttl=-5)

        assert cache.get("a") is None
        assert cache.get("b") is None

    def test_delete(self, cache):
        cache.set("a", 1)
        cache.delete("a")
        cache.delete("missing")

        assert cache.get("a") is None


class TestCommandLine:
    """main.py subcommands against a stubbed orchestrator."""

    def test_status(self, capsys):
        with patch.object(main.Settings, "from_env", return_value=Settings()):
            assert main.main(["status"]) == 0

        assert json.loads(capsys.readouterr().out)['status'] == "amber"

    def test_extract_reports_attempt(self, capsys):
        attempt = Attempt(url="https://example.com/jobs/1", domain="example.com", id=3,
                          status=AttemptStatus.COMPLETED)
        orchestrator = MagicMock()
        orchestrator.execute = AsyncMock(return_value=(True, attempt))

        with patch.object(main, "get_orchestrator", return_value=orchestrator):
            code = main.main(["extract", "https://example.com/jobs/1", "--listing-id", "9", "--force"])

        assert code == 0
        target = orchestrator.execute.await_args.args[0]
        assert target.listing_id == 9
        assert orchestrator.execute.await_args.kwargs == {'force': True}
        assert json.loads(capsys.readouterr().out)['status'] == "completed"

    def test_action_invalid_transition(self, store, settings, capsys):
        orchestrator = MagicMock()
        orchestrator.store = store
        orchestrator.lifecycle = AttemptLifecycle(store, settings)
        attempt = store.create_attempt(Attempt(url="https://example.com/jobs/1", domain="example.com"))

        with patch.object(main, "get_orchestrator", return_value=orchestrator):
            code = main.main(["action", "send_to_dlq", str(attempt.id)])

        assert code == 1
        assert "Cannot send_to_dlq" in capsys.readouterr().out

    def test_unknown_action_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            main.main(["action", "delete", "1"])

    def test_init_db_requires_database(self, capsys):
        with patch.object(main.Settings, "from_env", return_value=Settings()):
            assert main.main(["init-db"]) == 1
