from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence

import pytest

from azure_sla.util.errors import QueryRejected, TransientFetchFailure
from azure_sla.util.pagination import PagedFetcher, PagePhase, PaginationCursor, QueryPage


class FakeGraph:
    """Synthetic paged source: offsets work up to any point, tokens encode the next offset."""

    def __init__(self, total: int, *, tokens: bool = True) -> None:
        self.rows = [{"id": f"r{i:05d}"} for i in range(total)]
        self.tokens = tokens
        self.calls: List[Dict[str, Any]] = []
        self.fail_on: Dict[int, int] = {}
        self.reject_on: Dict[int, str] = {}
        self.report_total = False
        self.count_result: Any = total

    def query(
        self,
        query: str,
        scopes: Sequence[str],
        page_size: int,
        *,
        skip: Optional[int] = None,
        skip_token: Optional[str] = None,
    ) -> QueryPage:
        self.calls.append({"skip": skip, "skip_token": skip_token, "first": page_size})
        start = int(skip_token.split("-")[1]) if skip_token else int(skip or 0)
        remaining = self.fail_on.get(start, 0)
        if remaining:
            self.fail_on[start] = remaining - 1
            raise TransientFetchFailure(f"throttled at {start}")
        if start in self.reject_on:
            raise QueryRejected(self.reject_on[start])
        end = start + page_size
        token = f"tok-{end}" if self.tokens and end < len(self.rows) else None
        return QueryPage(
            records=self.rows[start:end],
            next_token=token,
            total=len(self.rows) if self.report_total else None,
        )

    def count(self, query: str, scopes: Sequence[str]) -> int:
        if isinstance(self.count_result, Exception):
            raise self.count_result
        return self.count_result


def _fetcher(service: Any, **kwargs: Any) -> PagedFetcher:
    kwargs.setdefault("sleep", lambda _s: None)
    return PagedFetcher(service, **kwargs)


def test_ceiling_plus_one_page_uses_exactly_one_token_request() -> None:
    service = FakeGraph(6000)
    result = _fetcher(service, page_size=1000, offset_ceiling=5000).fetch("Resources", ["sub"])

    offset_calls = [c for c in service.calls if c["skip_token"] is None]
    token_calls = [c for c in service.calls if c["skip_token"] is not None]
    assert [c["skip"] for c in offset_calls] == [0, 1000, 2000, 3000, 4000]
    assert len(token_calls) == 1
    assert token_calls[0]["skip"] is None
    assert all(c["first"] == 1000 for c in service.calls)

    ids = [r["id"] for r in result.records]
    assert len(ids) == 6000
    assert len(set(ids)) == 6000
    assert ids == [r["id"] for r in service.rows]
    assert result.partial is False
    assert result.pages == 6


def test_short_page_ends_fetch() -> None:
    service = FakeGraph(2500)
    result = _fetcher(service, page_size=1000, offset_ceiling=5000).fetch("Resources", [])

    assert [c["skip"] for c in service.calls] == [0, 1000, 2000]
    assert len(result) == 2500
    assert result.partial is False


def test_ceiling_without_token_is_complete() -> None:
    service = FakeGraph(5000, tokens=False)
    result = _fetcher(service, page_size=1000, offset_ceiling=5000).fetch("Resources", [])

    assert len(service.calls) == 5
    assert len(result) == 5000
    assert result.partial is False


def test_transient_failure_is_retried() -> None:
    service = FakeGraph(1500)
    service.fail_on[1000] = 2
    result = _fetcher(service, page_size=1000, max_attempts=3).fetch("Resources", [])

    assert len(result) == 1500
    assert result.partial is False
    assert [c["skip"] for c in service.calls] == [0, 1000, 1000, 1000]


def test_exhausted_retries_return_partial_with_fetched_records() -> None:
    service = FakeGraph(3000)
    service.fail_on[1000] = 99
    result = _fetcher(service, page_size=1000, max_attempts=2).fetch("Resources", [])

    assert result.partial is True
    assert len(result.records) == 1000
    assert result.error is not None
    assert "TransientFetchFailure" in result.error
    assert len(service.calls) == 3


def test_query_rejected_is_not_retried() -> None:
    class Rejecting(FakeGraph):
        def query(self, query, scopes, page_size, *, skip=None, skip_token=None):  # type: ignore[override]
            self.calls.append({"skip": skip})
            raise QueryRejected("BadRequest: invalid query")

    service = Rejecting(10)
    with pytest.raises(QueryRejected):
        _fetcher(service, max_attempts=3).fetch("Resources |", [])
    assert len(service.calls) == 1


def test_rejection_after_first_page_keeps_fetched_records() -> None:
    service = FakeGraph(7000)
    service.reject_on[5000] = "BadRequest: skip token expired"
    result = _fetcher(service, page_size=1000, offset_ceiling=5000, max_attempts=3).fetch("Resources", [])

    assert len(result.records) == 5000
    assert result.pages == 5
    assert result.partial is True
    assert "QueryRejected" in (result.error or "")
    # rejection is not retried
    assert [c["skip_token"] for c in service.calls if c["skip_token"]] == ["tok-5000"]


def test_cancel_stops_before_next_request() -> None:
    service = FakeGraph(3000)
    cancel = threading.Event()
    cancel.set()
    result = _fetcher(service, page_size=1000, cancel=cancel).fetch("Resources", [])

    assert service.calls == []
    assert result.partial is True
    assert result.error == "cancelled"


def test_deadline_returns_partial() -> None:
    ticks = iter(range(0, 1000, 10))
    service = FakeGraph(5000)
    fetcher = _fetcher(service, page_size=1000, deadline_seconds=15, clock=lambda: next(ticks))
    result = fetcher.fetch("Resources", [])

    assert len(result.records) == 1000
    assert result.partial is True
    assert "deadline" in (result.error or "")


def test_preflight_count_is_informational() -> None:
    service = FakeGraph(1200)
    service.count_result = 9999
    result = _fetcher(service, page_size=1000).fetch("Resources", [], count_query="Resources | count")
    assert result.expected == 9999
    assert len(result) == 1200
    assert result.partial is False


def test_preflight_failure_is_ignored() -> None:
    service = FakeGraph(10)
    service.count_result = QueryRejected("count not allowed")
    result = _fetcher(service, page_size=1000).fetch("Resources", [], count_query="Resources | count")
    assert result.expected is None
    assert len(result) == 10


def test_cursor_switches_phase_once_at_ceiling() -> None:
    cursor = PaginationCursor()
    cursor = cursor.advance(1000, "t1", 2000)
    assert cursor.phase is PagePhase.OFFSET
    assert cursor.offset == 1000
    cursor = cursor.advance(1000, "t2", 2000)
    assert cursor.phase is PagePhase.TOKEN
    assert cursor.continuation_token == "t2"
    cursor = cursor.advance(10, None, 2000)
    assert cursor.phase is PagePhase.TOKEN


def test_invalid_page_settings_rejected() -> None:
    with pytest.raises(ValueError):
        PagedFetcher(FakeGraph(0), page_size=0)
    with pytest.raises(ValueError):
        PagedFetcher(FakeGraph(0), page_size=1000, offset_ceiling=500)


@pytest.mark.parametrize(
    "total, tokens_sent",
    [
        (8000, ["tok-5000", "tok-6000", "tok-7000"]),
        (8500, ["tok-5000", "tok-6000", "tok-7000", "tok-8000"]),
    ],
)
def test_token_phase_follows_each_token_until_none(total, tokens_sent) -> None:
    service = FakeGraph(total)
    result = _fetcher(service, page_size=1000, offset_ceiling=5000).fetch("Resources", [])

    token_calls = [c for c in service.calls if c["skip_token"] is not None]
    assert [c["skip_token"] for c in token_calls] == tokens_sent
    assert all(c["skip"] is None for c in token_calls)
    assert len(service.calls) == 5 + len(tokens_sent)

    ids = [r["id"] for r in result.records]
    assert ids == [r["id"] for r in service.rows]
    assert len(set(ids)) == total
    assert result.pages == len(service.calls)
    assert result.partial is False


def test_service_total_fills_expected_without_preflight() -> None:
    service = FakeGraph(1500)
    service.report_total = True
    result = _fetcher(service, page_size=1000).fetch("Resources", [])
    assert result.expected == 1500

    result = _fetcher(service, page_size=1000).fetch("Resources", [], count_query="Resources | count")
    assert result.expected == 1500
    service.count_result = 42
    result = _fetcher(service, page_size=1000).fetch("Resources", [], count_query="Resources | count")
    assert result.expected == 42
