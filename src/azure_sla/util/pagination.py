from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from ..logging import get_logger
from .errors import QueryError, QueryRejected, TransientFetchFailure, describe

LOG = get_logger(__name__)

DEFAULT_PAGE_SIZE = 1000
DEFAULT_OFFSET_CEILING = 5000
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0

Record = Dict[str, Any]


@dataclass(frozen=True)
class QueryPage:
    records: List[Record]
    next_token: Optional[str] = None
    total: Optional[int] = None


class QueryService(Protocol):
    def query(
        self,
        query: str,
        scopes: Sequence[str],
        page_size: int,
        *,
        skip: Optional[int] = None,
        skip_token: Optional[str] = None,
    ) -> QueryPage: ...

    def count(self, query: str, scopes: Sequence[str]) -> int: ...


class PagePhase(str, Enum):
    OFFSET = "offset"
    TOKEN = "token"


@dataclass(frozen=True)
class PaginationCursor:
    """
    Position in a paged result set. The phase moves OFFSET -> TOKEN once, when
    offset reaches the ceiling, and never moves back.
    """

    offset: int = 0
    continuation_token: Optional[str] = None
    phase: PagePhase = PagePhase.OFFSET

    def advance(self, returned: int, next_token: Optional[str], ceiling: int) -> "PaginationCursor":
        offset = self.offset + returned
        if self.phase is PagePhase.OFFSET and offset < ceiling:
            return replace(self, offset=offset, continuation_token=next_token)
        return PaginationCursor(offset=offset, continuation_token=next_token, phase=PagePhase.TOKEN)


@dataclass
class FetchResult:
    """
    Records drained for one query. `partial` is set when the fetch stopped
    before the service reported completion (retries exhausted, a later page
    rejected, deadline or cancellation); `records` still holds every page fetched up to that point.
    """

    records: List[Record] = field(default_factory=list)
    partial: bool = False
    pages: int = 0
    expected: Optional[int] = None
    error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.records)


class PagedFetcher:
    """
    Drain a query that the service caps at `page_size` rows per response and
    at `offset_ceiling` rows for skip-based paging. Past the ceiling the
    continuation token returned by the previous response is used instead.

    Callers must tolerate at most one missing or duplicated record near page
    boundaries: ordering across requests is assumed stable but not verified,
    and no de-duplication is done.
    """

    def __init__(
        self,
        service: QueryService,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        offset_ceiling: int = DEFAULT_OFFSET_CEILING,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        deadline_seconds: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        if offset_ceiling < page_size:
            raise ValueError("offset_ceiling must be >= page_size")
        self._service = service
        self.page_size = page_size
        self.offset_ceiling = offset_ceiling
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self._deadline_seconds = deadline_seconds
        self._cancel = cancel
        self._clock = clock
        self._sleep = sleep

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=self.backoff_seconds, max=max(self.backoff_seconds * 8, 1.0)),
            retry=retry_if_exception_type(TransientFetchFailure),
            before_sleep=before_sleep_log(LOG, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

    def _request(self, query: str, scopes: Sequence[str], cursor: PaginationCursor) -> QueryPage:
        if cursor.phase is PagePhase.OFFSET:
            return self.retrying()(self._service.query, query, scopes, self.page_size, skip=cursor.offset)
        return self.retrying()(
            self._service.query, query, scopes, self.page_size, skip_token=cursor.continuation_token
        )

    def _stop_reason(self, started: float) -> Optional[str]:
        if self._cancel is not None and self._cancel.is_set():
            return "cancelled"
        if self._deadline_seconds is not None and self._clock() - started >= self._deadline_seconds:
            return f"deadline of {self._deadline_seconds}s exceeded"
        return None

    def preflight_count(self, count_query: str, scopes: Sequence[str]) -> Optional[int]:
        """Expected volume for logging only; failures are logged and ignored."""
        try:
            return int(self._service.count(count_query, scopes))
        except (QueryError, ValueError, TypeError) as e:
            LOG.warning("Count pre-flight failed; continuing without it", extra={"error": describe(e)})
            return None

    def fetch(
        self,
        query: str,
        scopes: Sequence[str],
        *,
        count_query: Optional[str] = None,
        label: str = "query",
    ) -> FetchResult:
        """
        Return every record for `query`. TransientFetchFailure is retried with
        backoff; when retries run out the records fetched so far are returned
        with partial=True. QueryRejected is not retried: on the first page it
        propagates, on a later page the records already fetched are returned
        with partial=True.

        Without a pre-flight count, the first total reported by the service
        becomes `expected`.
        """
        result = FetchResult()
        if count_query:
            result.expected = self.preflight_count(count_query, scopes)
            LOG.info("Expected record count", extra={"query_label": label, "expected": result.expected})

        started = self._clock()
        cursor = PaginationCursor()
        while True:
            reason = self._stop_reason(started)
            if reason:
                result.partial = True
                result.error = reason
                LOG.warning("Fetch stopped early", extra={"query_label": label, "reason": reason})
                break
            try:
                page = self._request(query, scopes, cursor)
            except TransientFetchFailure as e:
                result.partial = True
                result.error = describe(e)
                LOG.warning(
                    "Retries exhausted; returning partial result",
                    extra={"query_label": label, "records": len(result.records), "offset": cursor.offset},
                )
                break
            except QueryRejected as e:
                if result.pages == 0:
                    raise
                result.partial = True
                result.error = describe(e)
                LOG.warning(
                    "Later page rejected; returning partial result",
                    extra={"query_label": label, "records": len(result.records), "page_phase": cursor.phase.value},
                )
                break
            result.pages += 1
            result.records.extend(page.records)
            if result.expected is None and page.total is not None:
                result.expected = page.total
            LOG.debug(
                "Fetched page",
                extra={
                    "query_label": label,
                    "page_phase": cursor.phase.value,
                    "offset": cursor.offset,
                    "returned": len(page.records),
                    "service_total": page.total,
                },
            )
            if len(page.records) < self.page_size:
                break
            cursor = cursor.advance(len(page.records), page.next_token, self.offset_ceiling)
            if cursor.phase is PagePhase.TOKEN and not cursor.continuation_token:
                # Past the ceiling only a token can reach further rows; none means the set is drained.
                break

        if result.expected is not None and result.expected != len(result.records) and not result.partial:
            LOG.info(
                "Fetched count differs from pre-flight count",
                extra={"query_label": label, "expected": result.expected, "fetched": len(result.records)},
            )
        return result
