#!/usr/bin/env python3
"""
GitHub REST client for release window statistics
Resolves revisions and lists commits / closed issues one page at a time
"""

import os
import re
import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional
from dataclasses import dataclass, field
import requests
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# ============================================================================
# CONFIGURATION
# ============================================================================

GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
PAGE_SIZE = 100  # GitHub maximum per_page
REQUEST_TIMEOUT = 30  # seconds
MAX_WORKERS = 5  # Concurrent fetchers per entity type
LOW_RATE_LIMIT = 100  # Warn below this many remaining requests

LAST_PAGE_RE = re.compile(r'[?&]page=(\d+)[^>]*>; rel="last"')

logger = logging.getLogger(__name__)

# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class Revision:
    """A resolved commit"""
    sha: str
    author_date: datetime

@dataclass(frozen=True)
class CommitItem:
    author_name: str
    author_date: datetime

@dataclass(frozen=True)
class IssueItem:
    closed_at: Optional[datetime]
    is_pull_request: bool

@dataclass
class Page:
    """One page of a listing plus the total page count reported with it"""
    number: int
    items: List = field(default_factory=list)
    total_pages: int = 0

# ============================================================================
# ERRORS
# ============================================================================

class GitHubAPIError(Exception):
    """Raised for transport failures, non-200 responses and unreadable bodies"""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            message = f"{self.status_code}: {message}"
        if self.url:
            message = f"{message} ({self.url})"
        return message

# ============================================================================
# HELPERS
# ============================================================================

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitHub ISO-8601 timestamp ('2024-01-01T00:00:00Z') into an aware datetime"""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))

def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def parse_last_page(link_header: Optional[str]) -> int:
    """Read the rel="last" page number from a Link header, 0 when there is none"""
    if not link_header:
        return 0
    match = LAST_PAGE_RE.search(link_header)
    if match:
        return int(match.group(1))
    return 0

# ============================================================================
# GITHUB API CLIENT
# ============================================================================

class GitHubClient:
    """GitHub REST client shared by all fetch workers"""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: str = GITHUB_API_URL,
        max_workers: int = MAX_WORKERS,
        session: Optional[requests.Session] = None,
    ):
        self.rest_base = api_url.rstrip("/")
        self.token = token.strip() if token and token.strip() else None
        self.lock = Lock()
        self.rate_limit = {"remaining": None, "reset_time": None, "requests": 0}

        if session is None:
            session = requests.Session()
            # Two pools (commits, issues) share this session
            adapter = requests.adapters.HTTPAdapter(
                pool_connections=max_workers,
                pool_maxsize=max_workers * 2,
                max_retries=0
            )
            session.mount('https://', adapter)
            session.mount('http://', adapter)
        self.session = session
        self.session.headers.update({
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "release-stats"
        })
        if self.token:
            self.session.headers["Authorization"] = f"Bearer {self.token}"
            logger.debug("Using authenticated GitHub requests")
        else:
            logger.debug("No GitHub token configured, using anonymous requests")

    def _update_rate_limit(self, response: requests.Response):
        """Record rate limit headers from a response"""
        with self.lock:
            self.rate_limit["requests"] += 1
            if 'X-RateLimit-Remaining' not in response.headers:
                return
            remaining = int(response.headers['X-RateLimit-Remaining'])
            self.rate_limit["remaining"] = remaining
            if 'X-RateLimit-Reset' in response.headers:
                self.rate_limit["reset_time"] = datetime.fromtimestamp(
                    int(response.headers['X-RateLimit-Reset']), tz=timezone.utc
                )

        if remaining < LOW_RATE_LIMIT:
            logger.warning(f"⚠️ Token running low: {remaining} requests remaining")

    def get_stats(self) -> Dict:
        """Get request and rate limit statistics"""
        with self.lock:
            reset_time = self.rate_limit["reset_time"]
            return {
                "total_requests": self.rate_limit["requests"],
                "remaining": self.rate_limit["remaining"],
                "reset_time": reset_time.strftime("%H:%M:%S") if reset_time else "N/A",
                "authenticated": self.token is not None,
            }

    def _make_request(self, url: str, params: Optional[Dict] = None) -> requests.Response:
        """Make a single GET request; any failure raises GitHubAPIError"""
        logger.debug(f"🌐 GET {url[:80]} {params or ''}")
        try:
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.Timeout as e:
            raise GitHubAPIError(f"Request timed out after {REQUEST_TIMEOUT}s", url=url) from e
        except requests.exceptions.RequestException as e:
            raise GitHubAPIError(f"Request failed: {str(e)[:100]}", url=url) from e

        logger.debug(f"✓ Response received: {response.status_code}")
        self._update_rate_limit(response)

        if response.status_code == 200:
            return response
        if response.status_code in (403, 429) and 'rate limit' in response.text.lower():
            raise GitHubAPIError("API rate limit exceeded", response.status_code, url)
        if response.status_code == 404:
            raise GitHubAPIError("Not found", response.status_code, url)
        raise GitHubAPIError(response.text[:200] or response.reason or "Unexpected response",
                             response.status_code, url)

    def _get_json(self, url: str, params: Optional[Dict] = None):
        response = self._make_request(url, params)
        try:
            return response, response.json()
        except ValueError as e:
            raise GitHubAPIError("Malformed JSON response", response.status_code, url) from e

    def get_revision(self, owner: str, repo: str, ref: str) -> Revision:
        """Resolve a tag, branch or sha to its commit and author date"""
        url = f"{self.rest_base}/repos/{owner}/{repo}/commits/{ref}"
        _, data = self._get_json(url)
        try:
            return Revision(
                sha=data["sha"],
                author_date=parse_timestamp(data["commit"]["author"]["date"])
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GitHubAPIError(f"Malformed commit payload for {ref}", 200, url) from e

    def list_commits(
        self,
        owner: str,
        repo: str,
        since: datetime,
        until: Optional[datetime] = None,
        sha: Optional[str] = None,
        page: int = 1,
        per_page: int = PAGE_SIZE,
    ) -> Page:
        """Get one page of commits authored after since (and before until)"""
        url = f"{self.rest_base}/repos/{owner}/{repo}/commits"
        params = {"since": format_timestamp(since), "per_page": per_page, "page": page}
        if until is not None:
            params["until"] = format_timestamp(until)
        if sha:
            params["sha"] = sha

        response, data = self._get_json(url, params)
        items = []
        for commit in data:
            author = (commit.get("commit") or {}).get("author") or {}
            items.append(CommitItem(
                author_name=author.get("name") or "Unknown",
                author_date=parse_timestamp(author.get("date"))
            ))
        return Page(number=page, items=items, total_pages=parse_last_page(response.headers.get("Link")))

    def list_closed_issues(
        self,
        owner: str,
        repo: str,
        since: datetime,
        page: int = 1,
        per_page: int = PAGE_SIZE,
    ) -> Page:
        """Get one page of closed issues and PRs updated after since"""
        url = f"{self.rest_base}/repos/{owner}/{repo}/issues"
        params = {
            "state": "closed",
            "since": format_timestamp(since),
            "per_page": per_page,
            "page": page,
        }

        response, data = self._get_json(url, params)
        items = [
            # The issues endpoint includes PRs, marked by a pull_request key
            IssueItem(
                closed_at=parse_timestamp(issue.get("closed_at")),
                is_pull_request="pull_request" in issue
            )
            for issue in data
        ]
        return Page(number=page, items=items, total_pages=parse_last_page(response.headers.get("Link")))

    def get_rate_limit(self) -> Dict:
        """Get the core REST rate limit for the current credentials"""
        _, data = self._get_json(f"{self.rest_base}/rate_limit")
        core = data.get("resources", {}).get("core", data.get("rate", {}))
        reset = core.get("reset")
        return {
            "limit": core.get("limit", 0),
            "remaining": core.get("remaining", 0),
            "used": core.get("used", 0),
            "reset_time": datetime.fromtimestamp(reset, tz=timezone.utc) if reset else None,
        }
