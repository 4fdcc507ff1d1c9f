#!/usr/bin/env python3
"""
GitHub Release Window Statistics
Counts commits, contributors, closed issues and closed PRs between a base
revision and a head revision (or now), fetching every listing page with a
fixed pool of worker threads
"""

import os
import sys
import queue
import logging
import argparse
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, List, Optional
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
import traceback

from github_client import (
    MAX_WORKERS,
    CommitItem,
    GitHubAPIError,
    GitHubClient,
    IssueItem,
    Page,
)

# ============================================================================
# CONFIGURATION
# ============================================================================

LOG_DIR = "logs"
LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s] - %(message)s'

REPORT_TEMPLATE = (
    "Since the last release, the project has had {commits} commits by {contributors} contributors, "
    "resulting in {issues} closed issues and {prs} closed PRs, all of this in just over {days} days."
)

logger = logging.getLogger("releasestats")

# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class TimeWindow:
    """Release window; bounded is False when until is just 'now'"""
    since: datetime
    until: datetime
    bounded: bool = False

    @property
    def days(self) -> int:
        return (self.until - self.since).days

@dataclass(frozen=True)
class ReleaseStats:
    """Finalized statistics for one release window"""
    commit_count: int
    contributors: frozenset
    closed_issues: int
    closed_prs: int
    days: int

    @property
    def contributor_count(self) -> int:
        return len(self.contributors)

# ============================================================================
# ERRORS
# ============================================================================

class ReleaseStatsError(Exception):
    """Base class for fatal errors that abort a run"""

class ResolutionError(ReleaseStatsError):
    """A base or head reference could not be resolved to a commit"""

    def __init__(self, ref: str, reason: str):
        super().__init__(f"Could not resolve revision '{ref}': {reason}")
        self.ref = ref

class FetchError(ReleaseStatsError):
    """A listing page could not be fetched"""

    def __init__(self, entity: str, page: int, reason: str):
        super().__init__(f"Failed to fetch {entity} page {page}: {reason}")
        self.entity = entity
        self.page = page

# ============================================================================
# LOGGING SETUP
# ============================================================================

def setup_logging(verbose: bool = False, log_dir: str = LOG_DIR):
    """Setup logging configuration"""
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"release_stats_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    detailed_formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(detailed_formatter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    return log_file

# ============================================================================
# WINDOW RESOLUTION
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _resolve_date(client: GitHubClient, owner: str, repo: str, ref: str) -> datetime:
    try:
        revision = client.get_revision(owner, repo, ref)
    except GitHubAPIError as e:
        raise ResolutionError(ref, str(e)) from e
    if revision.author_date is None:
        raise ResolutionError(ref, "commit has no author date")
    logger.debug(f"  {ref} -> {revision.sha[:8]} ({revision.author_date.isoformat()})")
    return revision.author_date

def resolve_window(
    client: GitHubClient,
    owner: str,
    repo: str,
    base: str,
    head: Optional[str] = None,
    now: Callable[[], datetime] = _utcnow,
) -> TimeWindow:
    """Turn base/head references into the release TimeWindow"""
    since = _resolve_date(client, owner, repo, base)
    if head:
        window = TimeWindow(since=since, until=_resolve_date(client, owner, repo, head), bounded=True)
    else:
        window = TimeWindow(since=since, until=now(), bounded=False)

    logger.info(f"🗓️  Window: {window.since.isoformat()} → "
                f"{window.until.isoformat() if window.bounded else 'now'} ({window.days} days)")
    return window

# ============================================================================
# PAGE ENUMERATION
# ============================================================================

def count_pages(entity: str, probe: Callable[[], Page]) -> int:
    """Request page 1 to learn how many pages the listing has.

    The probe's items are thrown away; page 1 is fetched again by the pool
    like every other page. Single-page listings carry no Link header, so a
    reported count of 0 means one page.
    """
    try:
        page = probe()
    except Exception as e:
        raise FetchError(entity, 1, str(e)) from e
    return max(page.total_pages, 1)

def enumerate_pages(count: int) -> Iterator[int]:
    """Page numbers 1..count in request order"""
    return iter(range(1, count + 1))

# ============================================================================
# PAGE FETCHING
# ============================================================================

_END_OF_STREAM = object()

class PagePool:
    """Fixed pool of workers fetching listing pages into one item queue.

    Workers share a queue of page numbers, so each page is fetched by exactly
    one worker. A closer thread waits for every worker to return before it puts
    the end-of-stream marker on the item queue; drain() therefore only stops
    once all pages have been published.
    """

    def __init__(
        self,
        entity: str,
        fetch_page: Callable[[int], Page],
        workers: int = MAX_WORKERS,
        failed: Optional[threading.Event] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.entity = entity
        self.fetch_page = fetch_page
        self.workers = workers
        self.pages: "queue.Queue[int]" = queue.Queue()
        self.items: queue.Queue = queue.Queue()
        # Pools of one run share this event, so any failure stops all of them
        self.failed = failed if failed is not None else threading.Event()
        self.pages_fetched = 0
        self.total_pages = 0
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures = []

    def start(self, page_numbers: Iterable[int]) -> "PagePool":
        """Queue every page number and launch the workers"""
        for number in page_numbers:
            self.pages.put(number)
        self.total_pages = self.pages.qsize()

        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"{self.entity}-fetch")
        self._futures = [self._executor.submit(self._worker) for _ in range(self.workers)]
        threading.Thread(target=self._close_when_done, name=f"{self.entity}-closer", daemon=True).start()

        logger.debug(f"⚡ Started {self.workers} {self.entity} workers for {self.total_pages} pages")
        return self

    def _worker(self) -> int:
        fetched = 0
        while not self.failed.is_set():
            try:
                number = self.pages.get_nowait()
            except queue.Empty:
                break

            try:
                page = self.fetch_page(number)
            except Exception as e:
                self.failed.set()
                logger.error(f"❌ {self.entity} page {number} failed: {str(e)[:150]}")
                raise FetchError(self.entity, number, str(e)) from e

            for item in page.items:
                self.items.put(item)
            fetched += 1

            with self._lock:
                self.pages_fetched += 1
                done = self.pages_fetched
            logger.debug(f"  ✓ {self.entity} page {number}: {len(page.items)} items ({done}/{self.total_pages})")
        return fetched

    def cancel(self):
        """Stop workers from taking further pages"""
        self.failed.set()

    def _close_when_done(self):
        wait(self._futures)
        self._executor.shutdown(wait=True)
        self.items.put(_END_OF_STREAM)

    def drain(self) -> Iterator:
        """Yield items until every worker has finished, then surface any failure"""
        while True:
            item = self.items.get()
            if item is _END_OF_STREAM:
                break
            yield item

        for future in self._futures:
            error = future.exception()
            if error is not None:
                raise error
        logger.info(f"✓ Fetched {self.pages_fetched}/{self.total_pages} {self.entity} pages")

# ============================================================================
# AGGREGATION
# ============================================================================

class ReleaseStatsAggregator:
    """Folds commit and issue items into ReleaseStats"""

    def __init__(self, window: TimeWindow):
        self.window = window
        self.commit_count = 0
        self.contributors = set()
        self.closed_issues = 0
        self.closed_prs = 0

    def add_commit(self, commit: CommitItem):
        self.commit_count += 1
        self.contributors.add(commit.author_name)

    def in_window(self, closed_at: Optional[datetime]) -> bool:
        if closed_at is None or closed_at <= self.window.since:
            return False
        # Without an explicit head there is no upper bound
        if self.window.bounded and closed_at >= self.window.until:
            return False
        return True

    def add_issue(self, issue: IssueItem):
        if not self.in_window(issue.closed_at):
            return
        if issue.is_pull_request:
            self.closed_prs += 1
        else:
            self.closed_issues += 1

    def consume_commits(self, commits: Iterable[CommitItem]):
        for commit in commits:
            self.add_commit(commit)

    def consume_issues(self, issues: Iterable[IssueItem]):
        for issue in issues:
            self.add_issue(issue)

    def finalize(self) -> ReleaseStats:
        return ReleaseStats(
            commit_count=self.commit_count,
            contributors=frozenset(self.contributors),
            closed_issues=self.closed_issues,
            closed_prs=self.closed_prs,
            days=self.window.days,
        )

# ============================================================================
# PIPELINE
# ============================================================================

def collect_release_stats(
    client: GitHubClient,
    owner: str,
    repo: str,
    base: str,
    head: Optional[str] = None,
    workers: int = MAX_WORKERS,
    now: Callable[[], datetime] = _utcnow,
) -> ReleaseStats:
    """Resolve the window, fetch all commit and issue pages, and aggregate them"""
    logger.info(f"📂 Getting repository data for {owner}/{repo} ({base}..{head or 'default branch'})")
    window = resolve_window(client, owner, repo, base, head, now=now)
    until = window.until if window.bounded else None

    def fetch_commits(page: int) -> Page:
        return client.list_commits(owner, repo, window.since, until=until, sha=head, page=page)

    def fetch_issues(page: int) -> Page:
        return client.list_closed_issues(owner, repo, window.since, page=page)

    commit_pages = count_pages("commits", lambda: fetch_commits(1))
    issue_pages = count_pages("issues", lambda: fetch_issues(1))
    logger.info(f"📥 Fetching {commit_pages} commit pages and {issue_pages} issue pages "
                f"with {workers} workers each...")

    abort = threading.Event()
    commit_pool = PagePool("commits", fetch_commits, workers, failed=abort)
    issue_pool = PagePool("issues", fetch_issues, workers, failed=abort)
    commit_pool.start(enumerate_pages(commit_pages))
    issue_pool.start(enumerate_pages(issue_pages))

    aggregator = ReleaseStatsAggregator(window)
    try:
        aggregator.consume_commits(commit_pool.drain())
        aggregator.consume_issues(issue_pool.drain())
    finally:
        # No-op after a clean run; on any error or Ctrl-C workers stop taking pages
        abort.set()
    return aggregator.finalize()

def format_report(stats: ReleaseStats) -> str:
    return REPORT_TEMPLATE.format(
        commits=stats.commit_count,
        contributors=stats.contributor_count,
        issues=stats.closed_issues,
        prs=stats.closed_prs,
        days=stats.days,
    )

# ============================================================================
# CLI
# ============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Summarize commits, contributors, closed issues and PRs since a release."
    )
    parser.add_argument("owner", help="GitHub owner")
    parser.add_argument("repo", help="GitHub repository")
    parser.add_argument("base", help="Base tag/commit")
    parser.add_argument("head", nargs="?", default=None,
                        help="Head tag/commit (default: tip of the default branch)")
    parser.add_argument(
        "--token",
        default=os.getenv("GITHUB_TOKEN"),
        help="OAuth token (default: GITHUB_TOKEN environment variable)",
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=MAX_WORKERS,
        help=f"Concurrent page fetchers per listing (default: {MAX_WORKERS})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on the console")
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    return args

def main(argv: Optional[List[str]] = None, client: Optional[GitHubClient] = None) -> int:
    """Main execution function"""
    args = parse_args(argv)
    start_time = datetime.now()
    log_file = setup_logging(args.verbose)

    if client is None:
        client = GitHubClient(token=args.token, max_workers=args.workers)

    stats = collect_release_stats(client, args.owner, args.repo, args.base, args.head, workers=args.workers)

    api_stats = client.get_stats()
    logger.info(f"⏱️  Duration: {datetime.now() - start_time}")
    logger.info(f"🔑 Total API requests: {api_stats['total_requests']} "
                f"(remaining: {api_stats['remaining']}, resets at {api_stats['reset_time']})")
    logger.info(f"📝 Log file: {log_file}")

    print(format_report(stats))
    return 0

def run():
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.warning("⚠️ Interrupted by user")
        sys.exit(130)
    except ReleaseStatsError as e:
        logger.error(f"❌ Fatal error: {e}")
        logger.debug(traceback.format_exc())
        sys.exit(1)

if __name__ == "__main__":
    run()
