"""
Data model shared by the pipeline steps, stores and orchestrator.
"""
import time
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Target:
    """Immutable description of what to scrape."""
    url: str
    listing_id: Optional[Any] = None
    company: Optional[Dict] = None
    job_role: Optional[Dict] = None


class AttemptStatus(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    DEAD_LETTER = "dead_letter"
    MANUAL = "manual"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def in_progress(self) -> bool:
        return self in IN_PROGRESS_STATUSES


TERMINAL_STATUSES = frozenset({
    AttemptStatus.COMPLETED, AttemptStatus.FAILED, AttemptStatus.DEAD_LETTER, AttemptStatus.MANUAL,
})
IN_PROGRESS_STATUSES = frozenset({
    AttemptStatus.PENDING, AttemptStatus.FETCHING, AttemptStatus.EXTRACTING, AttemptStatus.RETRYING,
})


@dataclass
class Attempt:
    """One try at extracting data for a target."""
    url: str
    domain: str
    listing_id: Optional[Any] = None
    id: Optional[int] = None
    status: AttemptStatus = AttemptStatus.PENDING
    failed_step: Optional[str] = None
    error_message: Optional[str] = None
    extraction_method: Optional[str] = None
    provider: Optional[str] = None
    confidence_score: Optional[float] = None
    duration_seconds: Optional[float] = None
    response_metadata: Dict = field(default_factory=dict)
    retry_count: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['status'] = self.status.value
        data['created_at'] = self.created_at.isoformat()
        data['updated_at'] = self.updated_at.isoformat()
        return data


# Keys some extractors use for the same field
RESULT_ALIASES = {'company_name': 'company', 'job_role_title': 'job_role'}

RESULT_FIELDS = [
    'title', 'company', 'job_role', 'description', 'requirements', 'responsibilities',
    'location', 'remote_type', 'salary_min', 'salary_max', 'salary_currency',
    'equity_info', 'benefits', 'perks', 'about_company', 'company_culture',
]


@dataclass
class ExtractionResult:
    """Normalized field bag produced by the accepted extractor."""
    title: Optional[str] = None
    company: Optional[str] = None
    job_role: Optional[str] = None
    description: Optional[str] = None
    requirements: Optional[str] = None
    responsibilities: Optional[str] = None
    location: Optional[str] = None
    remote_type: Optional[str] = None
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    salary_currency: Optional[str] = None
    equity_info: Optional[str] = None
    benefits: Optional[str] = None
    perks: Optional[str] = None
    about_company: Optional[str] = None
    company_culture: Optional[str] = None
    custom_sections: Dict = field(default_factory=dict)
    confidence: float = 0.0
    extraction_method: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ExtractionResult":
        """Build from a loose result dict, ignoring unknown keys and list-valued text fields."""
        data = dict(data or {})
        for alias, name in RESULT_ALIASES.items():
            if data.get(name) in (None, "") and data.get(alias):
                data[name] = data[alias]
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                continue
            if isinstance(value, list) and key != 'custom_sections':
                value = "\n".join(str(v) for v in value if v)
            kwargs[key] = value
        kwargs['custom_sections'] = kwargs.get('custom_sections') or {}
        try:
            kwargs['confidence'] = float(kwargs.get('confidence') or 0.0)
        except (TypeError, ValueError):
            kwargs['confidence'] = 0.0
        return cls(**kwargs)

    def extracted_fields(self) -> List[str]:
        return [name for name in RESULT_FIELDS if getattr(self, name) not in (None, "")]


@dataclass
class Event:
    """Append-only record of one pipeline step."""
    attempt_id: Optional[int]
    event_type: str
    step_order: int
    status: str = "started"
    input: Dict = field(default_factory=dict)
    output: Dict = field(default_factory=dict)
    duration_ms: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def set_output(self, **values):
        """Attach output values from inside a recorded block."""
        self.output.update(values)


class Signal(Enum):
    CONTINUE = "continue"
    STOP_SUCCESS = "stop_success"
    STOP_FAILURE = "stop_failure"


@dataclass
class Context:
    """
    Execution-scoped state for one pipeline run. Never shared between runs.
    """
    target: Target
    attempt: Attempt
    event_recorder: Any
    settings: Any
    lifecycle: Any = None
    updater: Any = None
    board_type: Optional[str] = None
    company_slug: Optional[str] = None
    job_id: Optional[str] = None
    html_content: Optional[str] = None
    cleaned_html: Optional[str] = None
    fetch_mode: str = "static"
    from_cache: bool = False
    limited_extraction: bool = False
    use_cache: bool = True
    confidence_threshold: float = 0.7
    started_at: float = field(default_factory=time.monotonic)

    @property
    def url(self) -> str:
        return self.target.url

    def elapsed_seconds(self) -> float:
        return round(time.monotonic() - self.started_at, 3)
