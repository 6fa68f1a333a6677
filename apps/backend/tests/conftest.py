"""
Shared fixtures: a manual clock, in-memory cache and store, quiet settings
and a stubbed HTTP client.
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.cache import InMemoryCache
from core.config import Settings
from pipeline.store import InMemoryStore

START = datetime(2024, 1, 15, 12, 0, 0)


class ManualClock:
    """Wall clock for tests; advance() moves both the epoch and datetime views."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float):
        self.current += timedelta(seconds=seconds)


def http_response(status: int = 200, body: str = "", headers=None):
    data = body.encode('utf-8')
    return (status, headers or {'content-type': 'text/html'}, data, len(data))


def stub_http_client(*responses):
    """HTTPClient stand-in whose fetch() returns the given tuples in order."""
    client = MagicMock()
    if len(responses) == 1:
        client.fetch = AsyncMock(return_value=responses[0])
    else:
        client.fetch = AsyncMock(side_effect=list(responses))
    return client


JOB_PAGE_HTML = """
<html>
  <head><title>Senior Python Engineer - Acme</title></head>
  <body>
    <main>
      <h1 class="job-title">Senior Python Engineer</h1>
      <div class="company-name">Acme Corp</div>
      <div class="location">Berlin, DE</div>
      <div class="job-description">
        <p>We are looking for a senior engineer to build our data platform and
        the services around it. You will work closely with product and design,
        own services end to end and mentor other engineers on the team.</p>
        <p>Requirements: five years of Python, experience with PostgreSQL and
        asynchronous services, and a habit of writing tests for everything.</p>
      </div>
      <div class="salary">$120,000 - $150,000 per year</div>
    </main>
  </body>
</html>
"""


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def cache(clock):
    return InMemoryCache(clock=clock.time)


@pytest.fixture
def store(clock):
    return InMemoryStore(now=clock.now)


@pytest.fixture
def settings():
    return Settings(
        politeness_enabled=False,
        js_rendering_enabled=False,
        ai_provider_chain=["openai", "anthropic"],
    )
