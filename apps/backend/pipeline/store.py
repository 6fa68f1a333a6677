"""
Persistence for attempts, step events, API-call logs, listings, companies
and job roles.

InMemoryStore backs tests and dry runs; PostgresStore is the production
store and follows the psycopg2 connection-per-call pattern used elsewhere.
"""
import json
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from pipeline.models import Attempt, AttemptStatus, Event
from pipeline.updater import ListingSink

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS companies (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    website TEXT,
    created_at TIMESTAMP DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS job_roles (
    id SERIAL PRIMARY KEY,
    title TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS job_listings (
    id SERIAL PRIMARY KEY,
    url TEXT NOT NULL,
    title TEXT,
    company_id INTEGER REFERENCES companies(id),
    job_role_id INTEGER REFERENCES job_roles(id),
    description TEXT,
    requirements TEXT,
    responsibilities TEXT,
    location TEXT,
    remote_type TEXT DEFAULT 'on_site',
    salary_min NUMERIC,
    salary_max NUMERIC,
    salary_currency TEXT,
    equity_info TEXT,
    benefits TEXT,
    perks TEXT,
    about_company TEXT,
    company_culture TEXT,
    custom_sections JSONB DEFAULT '{}'::JSONB,
    scraped_data JSONB DEFAULT '{}'::JSONB,
    updated_at TIMESTAMP DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS scraping_attempts (
    id SERIAL PRIMARY KEY,
    listing_id INTEGER,
    url TEXT NOT NULL,
    domain TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    failed_step TEXT,
    error_message TEXT,
    extraction_method TEXT,
    provider TEXT,
    confidence_score NUMERIC,
    duration_seconds NUMERIC,
    response_metadata JSONB DEFAULT '{}'::JSONB,
    retry_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_scraping_attempts_url ON scraping_attempts(url, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_scraping_attempts_status ON scraping_attempts(status, updated_at);

CREATE TABLE IF NOT EXISTS scraping_events (
    id SERIAL PRIMARY KEY,
    attempt_id INTEGER REFERENCES scraping_attempts(id),
    event_type TEXT NOT NULL,
    step_order INTEGER NOT NULL,
    status TEXT NOT NULL,
    input JSONB DEFAULT '{}'::JSONB,
    output JSONB DEFAULT '{}'::JSONB,
    duration_ms INTEGER,
    error_type TEXT,
    error_message TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_scraping_events_attempt ON scraping_events(attempt_id, step_order);

CREATE TABLE IF NOT EXISTS llm_api_logs (
    id SERIAL PRIMARY KEY,
    attempt_id INTEGER,
    data JSONB NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT NOW()
);
"""

ATTEMPT_COLUMNS = [
    'listing_id', 'url', 'domain', 'status', 'failed_step', 'error_message',
    'extraction_method', 'provider', 'confidence_score', 'duration_seconds',
    'response_metadata', 'retry_count', 'created_at', 'updated_at',
]

LISTING_COLUMNS = {
    'url', 'title', 'company_id', 'job_role_id', 'description', 'requirements',
    'responsibilities', 'location', 'remote_type', 'salary_min', 'salary_max',
    'salary_currency', 'equity_info', 'benefits', 'perks', 'about_company', 'company_culture',
    'custom_sections', 'scraped_data',
}

JSON_LISTING_COLUMNS = {'custom_sections', 'scraped_data'}


def _target_matches(attempt: Attempt, url: str, listing_id) -> bool:
    if listing_id is not None:
        return attempt.listing_id == listing_id
    return attempt.url == url


class InMemoryStore(ListingSink):
    """Dict-backed store. The clock is injectable so tests control timestamps."""

    def __init__(self, now: Callable[[], datetime] = datetime.utcnow):
        self.now = now
        self.attempts: Dict[int, Attempt] = {}
        self.events: List[Event] = []
        self.api_logs: List[Dict] = []
        self.listings: Dict[int, Dict] = {}
        self.companies: List[Dict] = []
        self.job_roles: List[Dict] = []
        self._next_id = 1

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    # Attempts

    def create_attempt(self, attempt: Attempt) -> Attempt:
        attempt.id = self._new_id()
        attempt.created_at = attempt.updated_at = self.now()
        self.attempts[attempt.id] = attempt
        return attempt

    def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        return self.attempts.get(attempt_id)

    def update_attempt(self, attempt: Attempt):
        attempt.updated_at = self.now()
        self.attempts[attempt.id] = attempt

    def attempts_for_target(self, url: str, listing_id=None) -> List[Attempt]:
        """Attempts for a target, newest first."""
        matches = [a for a in self.attempts.values() if _target_matches(a, url, listing_id)]
        return sorted(matches, key=lambda a: (a.created_at, a.id), reverse=True)

    def attempts_with_status(self, statuses: Iterable[AttemptStatus]) -> List[Attempt]:
        wanted = set(statuses)
        return [a for a in self.attempts.values() if a.status in wanted]

    # Events

    def add_event(self, event: Event) -> Event:
        event.id = self._new_id()
        event.created_at = self.now()
        self.events.append(event)
        return event

    def update_event(self, event: Event):
        # Events are held by reference
        pass

    def events_for_attempt(self, attempt_id: int, event_type: Optional[str] = None) -> List[Event]:
        events = [e for e in self.events if e.attempt_id == attempt_id]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return sorted(events, key=lambda e: (e.step_order, e.id))

    # API call logs

    def add_api_log(self, data: Dict) -> int:
        log_id = self._new_id()
        self.api_logs.append(dict(data, id=log_id))
        return log_id

    # Listings

    def add_listing(self, listing: Dict) -> Dict:
        listing = dict(listing)
        listing.setdefault('id', self._new_id())
        listing.setdefault('custom_sections', {})
        listing.setdefault('scraped_data', {})
        self.listings[listing['id']] = listing
        return listing

    def get_listing(self, listing_id) -> Optional[Dict]:
        listing = self.listings.get(listing_id)
        return dict(listing) if listing else None

    def update_listing(self, listing_id, updates: Dict):
        if listing_id not in self.listings:
            logger.warning(f"[store] Listing {listing_id} not found")
            return
        self.listings[listing_id].update(updates)

    # Companies and roles

    def list_companies(self) -> List[Dict]:
        return list(self.companies)

    def create_company(self, name: str, website: Optional[str] = None) -> Dict:
        company = {'id': self._new_id(), 'name': name, 'website': website}
        self.companies.append(company)
        return company

    def get_company(self, company_id) -> Optional[Dict]:
        return next((c for c in self.companies if c['id'] == company_id), None)

    def find_or_create_job_role(self, title: str) -> Dict:
        for role in self.job_roles:
            if role['title'].lower() == title.lower():
                return role
        role = {'id': self._new_id(), 'title': title}
        self.job_roles.append(role)
        return role

    def get_job_role(self, role_id) -> Optional[Dict]:
        return next((r for r in self.job_roles if r['id'] == role_id), None)


class PostgresStore(ListingSink):
    """PostgreSQL store. Each call opens and closes its own connection."""

    def __init__(self, db_url: str):
        self.db_url = db_url

    def _get_db_conn(self):
        """Get database connection"""
        try:
            return psycopg2.connect(self.db_url, connect_timeout=5)
        except Exception as e:
            logger.error(f"[store] Failed to connect to database: {e}")
            raise

    def _execute(self, sql: str, params=(), fetch: str = None):
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                if fetch == 'one':
                    result = cur.fetchone()
                elif fetch == 'all':
                    result = cur.fetchall()
                else:
                    result = None
            conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_schema(self):
        self._execute(SCHEMA_SQL)
        logger.info("[store] Schema ensured")

    @staticmethod
    def _row_to_attempt(row: Dict) -> Attempt:
        return Attempt(
            id=row['id'],
            listing_id=row['listing_id'],
            url=row['url'],
            domain=row['domain'],
            status=AttemptStatus(row['status']),
            failed_step=row['failed_step'],
            error_message=row['error_message'],
            extraction_method=row['extraction_method'],
            provider=row['provider'],
            confidence_score=float(row['confidence_score']) if row['confidence_score'] is not None else None,
            duration_seconds=float(row['duration_seconds']) if row['duration_seconds'] is not None else None,
            response_metadata=row['response_metadata'] or {},
            retry_count=row['retry_count'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @staticmethod
    def _attempt_values(attempt: Attempt) -> List:
        values = []
        for column in ATTEMPT_COLUMNS:
            value = getattr(attempt, column)
            if column == 'status':
                value = attempt.status.value
            elif column == 'response_metadata':
                value = json.dumps(value or {})
            values.append(value)
        return values

    @staticmethod
    def _row_to_event(row: Dict) -> Event:
        return Event(
            id=row['id'],
            attempt_id=row['attempt_id'],
            event_type=row['event_type'],
            step_order=row['step_order'],
            status=row['status'],
            input=row['input'] or {},
            output=row['output'] or {},
            duration_ms=row['duration_ms'],
            error_type=row['error_type'],
            error_message=row['error_message'],
            created_at=row['created_at'],
        )

    # Attempts

    def create_attempt(self, attempt: Attempt) -> Attempt:
        attempt.created_at = attempt.updated_at = datetime.utcnow()
        placeholders = ", ".join(["%s"] * len(ATTEMPT_COLUMNS))
        row = self._execute(
            f"INSERT INTO scraping_attempts ({', '.join(ATTEMPT_COLUMNS)}) VALUES ({placeholders}) RETURNING id",
            self._attempt_values(attempt),
            fetch='one',
        )
        attempt.id = row['id']
        return attempt

    def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        row = self._execute("SELECT * FROM scraping_attempts WHERE id = %s", (attempt_id,), fetch='one')
        return self._row_to_attempt(row) if row else None

    def update_attempt(self, attempt: Attempt):
        attempt.updated_at = datetime.utcnow()
        assignments = ", ".join(f"{column} = %s" for column in ATTEMPT_COLUMNS)
        self._execute(
            f"UPDATE scraping_attempts SET {assignments} WHERE id = %s",
            self._attempt_values(attempt) + [attempt.id],
        )

    def attempts_for_target(self, url: str, listing_id=None) -> List[Attempt]:
        if listing_id is not None:
            rows = self._execute(
                "SELECT * FROM scraping_attempts WHERE listing_id = %s ORDER BY created_at DESC, id DESC",
                (listing_id,), fetch='all',
            )
        else:
            rows = self._execute(
                "SELECT * FROM scraping_attempts WHERE url = %s ORDER BY created_at DESC, id DESC",
                (url,), fetch='all',
            )
        return [self._row_to_attempt(r) for r in rows]

    def attempts_with_status(self, statuses: Iterable[AttemptStatus]) -> List[Attempt]:
        values = [s.value for s in statuses]
        rows = self._execute(
            "SELECT * FROM scraping_attempts WHERE status = ANY(%s) ORDER BY updated_at",
            (values,), fetch='all',
        )
        return [self._row_to_attempt(r) for r in rows]

    # Events

    def add_event(self, event: Event) -> Event:
        row = self._execute("""
            INSERT INTO scraping_events
                (attempt_id, event_type, step_order, status, input, output,
                 duration_ms, error_type, error_message)
            VALUES (%s, %s, %s, %s, %s::JSONB, %s::JSONB, %s, %s, %s)
            RETURNING id, created_at
        """, (
            event.attempt_id, event.event_type, event.step_order, event.status,
            json.dumps(event.input, default=str), json.dumps(event.output, default=str),
            event.duration_ms, event.error_type, event.error_message,
        ), fetch='one')
        event.id = row['id']
        event.created_at = row['created_at']
        return event

    def update_event(self, event: Event):
        self._execute("""
            UPDATE scraping_events
            SET status = %s, output = %s::JSONB, duration_ms = %s,
                error_type = %s, error_message = %s
            WHERE id = %s
        """, (
            event.status, json.dumps(event.output, default=str), event.duration_ms,
            event.error_type, event.error_message, event.id,
        ))

    def events_for_attempt(self, attempt_id: int, event_type: Optional[str] = None) -> List[Event]:
        if event_type:
            rows = self._execute(
                "SELECT * FROM scraping_events WHERE attempt_id = %s AND event_type = %s ORDER BY step_order, id",
                (attempt_id, event_type), fetch='all',
            )
        else:
            rows = self._execute(
                "SELECT * FROM scraping_events WHERE attempt_id = %s ORDER BY step_order, id",
                (attempt_id,), fetch='all',
            )
        return [self._row_to_event(r) for r in rows]

    # API call logs

    def add_api_log(self, data: Dict) -> int:
        row = self._execute(
            "INSERT INTO llm_api_logs (attempt_id, data) VALUES (%s, %s::JSONB) RETURNING id",
            (data.get('attempt_id'), json.dumps(data, default=str)),
            fetch='one',
        )
        return row['id']

    # Listings

    def get_listing(self, listing_id) -> Optional[Dict]:
        row = self._execute("SELECT * FROM job_listings WHERE id = %s", (listing_id,), fetch='one')
        return dict(row) if row else None

    def update_listing(self, listing_id, updates: Dict):
        columns = [c for c in updates if c in LISTING_COLUMNS]
        if not columns:
            return
        assignments = ", ".join(
            f"{c} = %s::JSONB" if c in JSON_LISTING_COLUMNS else f"{c} = %s" for c in columns
        )
        values = [
            json.dumps(updates[c], default=str) if c in JSON_LISTING_COLUMNS else updates[c]
            for c in columns
        ]
        self._execute(
            f"UPDATE job_listings SET {assignments}, updated_at = NOW() WHERE id = %s",
            values + [listing_id],
        )

    # Companies and roles

    def list_companies(self) -> List[Dict]:
        rows = self._execute("SELECT id, name, website FROM companies ORDER BY id", fetch='all')
        return [dict(r) for r in rows]

    def create_company(self, name: str, website: Optional[str] = None) -> Dict:
        row = self._execute(
            "INSERT INTO companies (name, website) VALUES (%s, %s) RETURNING id, name, website",
            (name, website), fetch='one',
        )
        return dict(row)

    def get_company(self, company_id) -> Optional[Dict]:
        row = self._execute("SELECT id, name, website FROM companies WHERE id = %s", (company_id,), fetch='one')
        return dict(row) if row else None

    def find_or_create_job_role(self, title: str) -> Dict:
        row = self._execute("""
            INSERT INTO job_roles (title) VALUES (%s)
            ON CONFLICT (title) DO UPDATE SET title = EXCLUDED.title
            RETURNING id, title
        """, (title,), fetch='one')
        return dict(row)

    def get_job_role(self, role_id) -> Optional[Dict]:
        row = self._execute("SELECT id, title FROM job_roles WHERE id = %s", (role_id,), fetch='one')
        return dict(row) if row else None
