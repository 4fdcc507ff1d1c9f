#!/usr/bin/env python3
"""
Tests for folding commits and issues into release statistics
"""

from datetime import timedelta

import pytest

from conftest import utc
from github_client import CommitItem, IssueItem
from releasestats import ReleaseStatsAggregator, TimeWindow

SINCE = utc(2024, 1, 1)
UNTIL = utc(2024, 1, 11)


@pytest.fixture
def bounded():
    return ReleaseStatsAggregator(TimeWindow(since=SINCE, until=UNTIL, bounded=True))


@pytest.fixture
def unbounded():
    return ReleaseStatsAggregator(TimeWindow(since=SINCE, until=UNTIL, bounded=False))


class TestCommits:

    def test_duplicate_authors_count_once(self, bounded):
        names = ["Ada"] * 7 + ["Grace"] * 3 + ["Linus"]
        bounded.consume_commits(CommitItem(author_name=n, author_date=SINCE) for n in names)

        stats = bounded.finalize()

        assert stats.commit_count == 11
        assert stats.contributors == frozenset({"Ada", "Grace", "Linus"})
        assert stats.contributor_count == 3

    def test_names_are_case_sensitive(self, bounded):
        bounded.add_commit(CommitItem(author_name="ada", author_date=SINCE))
        bounded.add_commit(CommitItem(author_name="Ada", author_date=SINCE))

        assert bounded.finalize().contributor_count == 2


class TestIssueWindow:

    def test_open_interval_with_explicit_head(self, bounded):
        closed = [
            SINCE - timedelta(days=1),
            SINCE,
            SINCE + timedelta(days=3),
            UNTIL,
            UNTIL + timedelta(days=1),
        ]
        bounded.consume_issues(IssueItem(closed_at=t, is_pull_request=False) for t in closed)

        stats = bounded.finalize()

        assert stats.closed_issues == 1
        assert stats.closed_prs == 0

    def test_no_upper_bound_without_head(self, unbounded):
        closed = [SINCE, SINCE + timedelta(seconds=1), UNTIL, UNTIL + timedelta(days=30)]
        unbounded.consume_issues(IssueItem(closed_at=t, is_pull_request=False) for t in closed)

        assert unbounded.finalize().closed_issues == 3

    def test_missing_closed_at_not_counted(self, unbounded):
        unbounded.add_issue(IssueItem(closed_at=None, is_pull_request=True))

        stats = unbounded.finalize()
        assert stats.closed_issues == 0
        assert stats.closed_prs == 0

    def test_pull_requests_split_from_issues(self, bounded):
        in_window = SINCE + timedelta(days=2)
        bounded.consume_issues([
            IssueItem(closed_at=in_window, is_pull_request=True),
            IssueItem(closed_at=in_window, is_pull_request=True),
            IssueItem(closed_at=in_window, is_pull_request=False),
        ])

        stats = bounded.finalize()

        assert stats.closed_prs == 2
        assert stats.closed_issues == 1


class TestDays:

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(days=10), 10),
        (timedelta(days=10, hours=23, minutes=59), 10),
        (timedelta(hours=5), 0),
    ])
    def test_whole_days_floor(self, delta, expected):
        window = TimeWindow(since=SINCE, until=SINCE + delta)

        assert ReleaseStatsAggregator(window).finalize().days == expected

    def test_empty_release(self, unbounded):
        stats = unbounded.finalize()

        assert stats.commit_count == 0
        assert stats.contributor_count == 0
        assert stats.days == 10
