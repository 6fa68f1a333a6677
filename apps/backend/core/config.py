"""
Runtime configuration for the scraping pipeline.

Everything tunable lives here and is read from the environment, so
thresholds, windows and provider ordering are never compiled into steps.
"""
import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_UA = "JobScrapeBot/1.0 (+https://jobscrape.dev/bot)"
DEFAULT_PROVIDER_CHAIN = ["openai", "anthropic", "ollama"]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[config] Invalid float for {name}: {raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


def _env_domain_table(name: str) -> Dict[str, float]:
    """Parse a JSON object of {domain: min_seconds_between_requests}."""
    raw = os.getenv(name)
    if not raw:
        return {}
    try:
        table = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"[config] Could not parse {name}: {e}")
        return {}
    if not isinstance(table, dict):
        logger.warning(f"[config] {name} must be a JSON object")
        return {}
    return {str(k).lower(): float(v) for k, v in table.items()}


@dataclass
class Settings:
    """Pipeline settings. Construct directly in tests, via from_env() at runtime."""

    confidence_threshold: float = 0.7
    attempt_reuse_window_seconds: int = 120
    completed_skip_window_seconds: int = 120
    max_retries: int = 3
    stuck_attempt_minutes: int = 10

    js_rendering_enabled: bool = True
    politeness_enabled: bool = True
    greenhouse_enabled: bool = True
    api_population_enabled: bool = True
    ai_postprocess_enabled: bool = False

    user_agent: str = DEFAULT_UA
    request_timeout: float = 30.0
    html_cache_ttl_seconds: int = 24 * 3600

    default_domain_spacing_seconds: float = 5.0
    domain_rate_limits: Dict[str, float] = field(default_factory=dict)

    anthropic_token_limit: int = 30000
    token_window_seconds: int = 60
    max_token_wait_seconds: float = 60.0

    ai_provider_chain: List[str] = field(default_factory=lambda: list(DEFAULT_PROVIDER_CHAIN))
    ai_timeout_seconds: float = 120.0
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-20250514"
    ollama_enabled: bool = False
    ollama_endpoint: str = "http://localhost:11434"
    ollama_model: str = "llama3"

    playwright_ws_endpoint: Optional[str] = None
    db_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            confidence_threshold=_env_float("JOBSCRAPE_CONFIDENCE_THRESHOLD", 0.7),
            attempt_reuse_window_seconds=_env_int("JOBSCRAPE_ATTEMPT_REUSE_WINDOW", 120),
            completed_skip_window_seconds=_env_int("JOBSCRAPE_COMPLETED_SKIP_WINDOW", 120),
            max_retries=_env_int("JOBSCRAPE_MAX_RETRIES", 3),
            stuck_attempt_minutes=_env_int("JOBSCRAPE_STUCK_ATTEMPT_MINUTES", 10),
            js_rendering_enabled=_env_bool("JOBSCRAPE_ENABLE_JS_RENDERING", "true"),
            politeness_enabled=_env_bool("JOBSCRAPE_ENABLE_POLITENESS", "true"),
            greenhouse_enabled=_env_bool("JOBSCRAPE_ENABLE_GREENHOUSE", "true"),
            api_population_enabled=_env_bool("JOBSCRAPE_ENABLE_API_POPULATION", "true"),
            ai_postprocess_enabled=_env_bool("JOBSCRAPE_ENABLE_AI_POSTPROCESS", "false"),
            user_agent=os.getenv("JOBSCRAPE_CRAWLER_UA", DEFAULT_UA),
            request_timeout=_env_float("JOBSCRAPE_REQUEST_TIMEOUT", 30.0),
            html_cache_ttl_seconds=_env_int("JOBSCRAPE_HTML_CACHE_TTL", 24 * 3600),
            default_domain_spacing_seconds=_env_float("JOBSCRAPE_DEFAULT_DOMAIN_SPACING", 5.0),
            domain_rate_limits=_env_domain_table("JOBSCRAPE_DOMAIN_RATE_LIMITS"),
            anthropic_token_limit=_env_int("ANTHROPIC_TOKEN_LIMIT_PER_MINUTE", 30000),
            ai_provider_chain=_env_list("JOBSCRAPE_AI_PROVIDERS", DEFAULT_PROVIDER_CHAIN),
            ai_timeout_seconds=_env_float("JOBSCRAPE_AI_TIMEOUT", 120.0),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            ollama_enabled=_env_bool("OLLAMA_ENABLED", "false"),
            ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3"),
            playwright_ws_endpoint=os.getenv("PLAYWRIGHT_WS_ENDPOINT") or None,
            db_url=os.getenv("DATABASE_URL") or None,
        )

    def domain_spacing(self, domain: str) -> float:
        """Minimum seconds between requests to a domain."""
        domain = (domain or "").lower()
        if domain in self.domain_rate_limits:
            return self.domain_rate_limits[domain]
        bare = domain[4:] if domain.startswith("www.") else domain
        return self.domain_rate_limits.get(bare, self.default_domain_spacing_seconds)


class Capabilities:
    @staticmethod
    def is_db_enabled(settings: Settings) -> bool:
        return bool(settings.db_url)

    @staticmethod
    def available_providers(settings: Settings) -> List[str]:
        available = []
        for name in settings.ai_provider_chain:
            if name == "openai" and settings.openai_api_key:
                available.append(name)
            elif name == "anthropic" and settings.anthropic_api_key:
                available.append(name)
            elif name == "ollama" and settings.ollama_enabled:
                available.append(name)
        return available

    @classmethod
    def get_status(cls, settings: Settings) -> dict:
        providers = cls.available_providers(settings)
        db = cls.is_db_enabled(settings)

        return {
            "status": "green" if db and providers else "amber",
            "components": {
                "db": db,
                "ai": bool(providers),
                "js_rendering": settings.js_rendering_enabled,
                "politeness": settings.politeness_enabled,
            },
            "providers": providers,
        }
