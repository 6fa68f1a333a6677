"""
Job board / ATS detection from URL patterns only (no network).

Detection is advisory: steps downstream must tolerate a wrong guess.
"""
import re
import logging
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

# Checked in order; first match wins
BOARD_PATTERNS = [
    ("greenhouse", lambda host, url: "greenhouse.io" in host or "boards.greenhouse.io" in url or "gh_jid=" in url),
    ("lever", lambda host, url: "lever.co" in host),
    ("linkedin", lambda host, url: "linkedin.com" in host),
    ("indeed", lambda host, url: "indeed.com" in host),
    ("glassdoor", lambda host, url: "glassdoor.com" in host),
    ("workable", lambda host, url: "workable.com" in host),
    ("jobvite", lambda host, url: "jobvite.com" in host),
    ("icims", lambda host, url: "icims.com" in host),
    ("smartrecruiters", lambda host, url: "smartrecruiters.com" in host),
    ("bamboohr", lambda host, url: "bamboohr.com" in host),
    ("ashby", lambda host, url: "ashbyhq.com" in host),
]

API_SUPPORTED_BOARDS = {"greenhouse", "lever"}
LIMITED_BOARDS = {"linkedin", "indeed", "glassdoor"}

COMPANY_SLUG_PATTERNS = {
    "greenhouse": [r'(?:job-)?boards\.greenhouse\.io/(?:embed/job_app\?for=)?([^/?&#]+)'],
    "lever": [r'jobs\.lever\.co/([^/?#]+)'],
    "workable": [r'apply\.workable\.com/([^/?#]+)'],
    "ashby": [r'jobs\.ashbyhq\.com/([^/?#]+)'],
}

GENERIC_JOB_ID_PATTERNS = [
    r'/jobs?/(\d+)',
    r'/positions?/(\d+)',
    r'/careers?/(\d+)',
    r'/job/([^/?]+)',
    r'/position/([^/?]+)',
    r'job_id=([^&]+)',
    r'gh_jid=([^&]+)',
]


class JobBoardDetector:
    """Classifies a URL into a board type and pulls board-specific identifiers."""

    def __init__(self, url: str):
        self.url = url or ""
        try:
            self.host = (urlparse(self.url).hostname or "").lower()
        except ValueError:
            self.host = ""
        self._board_type: Optional[str] = None

    def detect(self) -> str:
        if self._board_type is None:
            self._board_type = UNKNOWN
            for board, matcher in BOARD_PATTERNS:
                if matcher(self.host, self.url):
                    self._board_type = board
                    break
            logger.debug(f"[board_detector] {self.url} -> {self._board_type}")
        return self._board_type

    def company_slug(self) -> Optional[str]:
        for pattern in COMPANY_SLUG_PATTERNS.get(self.detect(), []):
            match = re.search(pattern, self.url)
            if match and match.group(1) not in ("embed", "v1"):
                return match.group(1)
        return None

    def job_id(self) -> Optional[str]:
        board = self.detect()

        if board == "lever":
            parts = [p for p in urlparse(self.url).path.split('/') if p]
            return parts[1] if len(parts) >= 2 else None

        if board == "linkedin":
            match = re.search(r'/jobs/view/(\d+)', self.url) or re.search(r'currentJobId=(\d+)', self.url)
            return match.group(1) if match else None

        for pattern in GENERIC_JOB_ID_PATTERNS:
            match = re.search(pattern, self.url)
            if match:
                return match.group(1)
        return None

    def api_supported(self) -> bool:
        return self.detect() in API_SUPPORTED_BOARDS

    def limited(self) -> bool:
        return self.detect() in LIMITED_BOARDS

    def canonical_url(self) -> str:
        if self.detect() == "linkedin":
            job_id = self.job_id()
            if job_id:
                return f"https://www.linkedin.com/jobs/view/{job_id}"
        return self.url


def detect(url: str) -> dict:
    """Convenience wrapper returning all detection outputs at once."""
    detector = JobBoardDetector(url)
    return {
        'board_type': detector.detect(),
        'company_slug': detector.company_slug(),
        'job_id': detector.job_id(),
        'api_supported': detector.api_supported(),
    }
