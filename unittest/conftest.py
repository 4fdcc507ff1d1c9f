"""
Shared fixtures: an in-memory stand-in for the GitHub client
"""

import os
import sys
import threading
import time
from datetime import datetime, timezone

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from github_client import CommitItem, GitHubAPIError, IssueItem, Page, Revision


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeGitHubClient:
    """Serves canned pages and records which pages were requested"""

    def __init__(self, revisions=None, commit_pages=None, issue_pages=None,
                 reported_commit_pages=None, reported_issue_pages=None, fail_on=None,
                 commit_delay=0.0):
        self.revisions = revisions or {}
        self.commit_pages = commit_pages or [[]]
        self.issue_pages = issue_pages or [[]]
        # GitHub omits the Link header on single-page listings, hence 0
        self.reported_commit_pages = (
            reported_commit_pages if reported_commit_pages is not None
            else (len(self.commit_pages) if len(self.commit_pages) > 1 else 0)
        )
        self.reported_issue_pages = (
            reported_issue_pages if reported_issue_pages is not None
            else (len(self.issue_pages) if len(self.issue_pages) > 1 else 0)
        )
        self.fail_on = fail_on or set()
        self.commit_delay = commit_delay
        self.lock = threading.Lock()
        self.calls = []

    def _record(self, kind, page):
        with self.lock:
            self.calls.append((kind, page))

    def get_revision(self, owner, repo, ref):
        self._record("revision", ref)
        if ref not in self.revisions:
            raise GitHubAPIError("Not found", 404, f"/repos/{owner}/{repo}/commits/{ref}")
        return Revision(sha=f"{ref}-sha", author_date=self.revisions[ref])

    def list_commits(self, owner, repo, since, until=None, sha=None, page=1, per_page=100):
        self._record("commits", page)
        if self.commit_delay:
            time.sleep(self.commit_delay)
        if ("commits", page) in self.fail_on:
            raise GitHubAPIError("Server Error", 502)
        items = self.commit_pages[page - 1] if page <= len(self.commit_pages) else []
        return Page(number=page, items=list(items), total_pages=self.reported_commit_pages)

    def list_closed_issues(self, owner, repo, since, page=1, per_page=100):
        self._record("issues", page)
        if ("issues", page) in self.fail_on:
            raise GitHubAPIError("Server Error", 502)
        items = self.issue_pages[page - 1] if page <= len(self.issue_pages) else []
        return Page(number=page, items=list(items), total_pages=self.reported_issue_pages)

    def get_stats(self):
        return {"total_requests": len(self.calls), "remaining": None, "reset_time": "N/A", "authenticated": False}

    def pages_requested(self, kind):
        with self.lock:
            return sorted(page for k, page in self.calls if k == kind)


def release_scenario() -> FakeGitHubClient:
    """150 commits over 2 pages by 12 authors, 40 closed issues/PRs on 1 page"""
    since = utc(2024, 1, 1)
    authors = [f"author-{n}" for n in range(12)]

    commits = [CommitItem(author_name=authors[n % 12], author_date=utc(2024, 1, 2)) for n in range(150)]
    issues = (
        [IssueItem(closed_at=utc(2024, 1, 5), is_pull_request=False) for _ in range(25)]
        + [IssueItem(closed_at=utc(2024, 1, 6), is_pull_request=True) for _ in range(10)]
        + [IssueItem(closed_at=utc(2023, 12, 20), is_pull_request=False) for _ in range(5)]
    )
    return FakeGitHubClient(
        revisions={"v1.0.0": since},
        commit_pages=[commits[:100], commits[100:]],
        issue_pages=[issues],
    )


@pytest.fixture
def fake_client():
    return release_scenario()


@pytest.fixture
def fixed_now():
    return lambda: utc(2024, 1, 11)
