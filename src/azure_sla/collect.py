from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .azure import queries
from .azure.activity_log import list_alerts
from .azure.graph import AzCli
from .classify import types_for
from .logging import get_logger
from .normalize.schema import (
    MATRIX_CATEGORIES,
    Alert,
    HealthEvent,
    Incident,
    MonthWindow,
    Resource,
    TargetRegion,
)
from .normalize.transform import health_events_from_records, incidents_from_records, resources_from_records
from .util.errors import QueryRejected, TransientFetchFailure, describe
from .util.pagination import FetchResult, PagedFetcher

LOG = get_logger(__name__)

SECTION_INVENTORY = "inventory"
SECTION_HEALTH = "health_events"
SECTION_INCIDENTS_RECENT = "incidents_recent"
SECTION_INCIDENTS_HISTORY = "incidents_history"
SECTION_ALERTS = "alerts"


@dataclass(frozen=True)
class RunWarning:
    section: str
    kind: str  # partial|rejected|skipped
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"section": self.section, "kind": self.kind, "message": self.message}


@dataclass
class SectionStats:
    records: int = 0
    pages: int = 0
    expected: Optional[int] = None
    partial: bool = False
    rejected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": self.records,
            "pages": self.pages,
            "expected": self.expected,
            "partial": self.partial,
            "rejected": self.rejected,
        }


@dataclass
class RunData:
    resources: List[Resource] = field(default_factory=list)
    health_events: List[HealthEvent] = field(default_factory=list)
    incidents_recent: List[Incident] = field(default_factory=list)
    incidents_history: List[Incident] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    warnings: List[RunWarning] = field(default_factory=list)
    stats: Dict[str, SectionStats] = field(default_factory=dict)


_Outcome = Tuple[str, List[Any], SectionStats, List[RunWarning]]


def _fetch_section(
    fetcher: PagedFetcher,
    section: str,
    query: str,
    scopes: Sequence[str],
    convert: Callable[[List[Dict[str, Any]]], List[Any]],
    *,
    preflight: bool = False,
) -> _Outcome:
    stats = SectionStats()
    warnings: List[RunWarning] = []
    try:
        result: FetchResult = fetcher.fetch(
            query,
            scopes,
            count_query=queries.count_query(query) if preflight else None,
            label=section,
        )
    except QueryRejected as e:
        stats.rejected = True
        warnings.append(RunWarning(section, "rejected", str(e)))
        LOG.warning("Query rejected; section built from empty input", extra={"section": section, "error": str(e)})
        return section, [], stats, warnings
    stats.records = len(result.records)
    stats.pages = result.pages
    stats.expected = result.expected
    stats.partial = result.partial
    if result.partial:
        warnings.append(
            RunWarning(section, "partial", f"{len(result.records)} records fetched before stop: {result.error}")
        )
    return section, convert(result.records), stats, warnings


def _fetch_alerts(
    fetcher: PagedFetcher,
    cli: AzCli,
    subscriptions: Sequence[str],
    window: MonthWindow,
) -> _Outcome:
    stats = SectionStats()
    warnings: List[RunWarning] = []
    alerts: List[Alert] = []
    if not subscriptions:
        warnings.append(RunWarning(SECTION_ALERTS, "skipped", "no subscriptions configured; activity log not queried"))
        return SECTION_ALERTS, alerts, stats, warnings
    for sub in subscriptions:
        try:
            got = fetcher.retrying()(list_alerts, cli, sub, window.start, window.end)
        except QueryRejected as e:
            stats.rejected = True
            warnings.append(RunWarning(SECTION_ALERTS, "rejected", str(e)))
            continue
        except TransientFetchFailure as e:
            stats.partial = True
            warnings.append(RunWarning(SECTION_ALERTS, "partial", f"{sub}: {describe(e)}"))
            continue
        stats.pages += 1
        alerts.extend(got)
    stats.records = len(alerts)
    return SECTION_ALERTS, alerts, stats, warnings


def collect_run_data(
    fetcher: PagedFetcher,
    cli: Optional[AzCli],
    regions: Sequence[TargetRegion],
    subscriptions: Sequence[str],
    windows: Sequence[MonthWindow],
    *,
    workers: int = 1,
    preflight: bool = True,
    cancel: Optional[threading.Event] = None,
) -> RunData:
    """
    Run every retrieval the matrix depends on and return typed records plus
    warnings for sections that were rejected or came back partial.

    Sections are independent; with workers > 1 they run on a thread pool and
    are merged in a fixed order, so the output does not depend on timing.
    """
    if not windows:
        raise ValueError("at least one month window is required")
    ordered = sorted(windows, key=lambda w: w.start)
    first, last = ordered[0], ordered[-1]
    codes = [r.code for r in regions]
    scopes = list(subscriptions)

    tasks: List[Callable[[], _Outcome]] = [
        lambda: _fetch_section(
            fetcher,
            SECTION_INVENTORY,
            queries.inventory_query(types_for(MATRIX_CATEGORIES), codes),
            scopes,
            resources_from_records,
            preflight=preflight,
        ),
        lambda: _fetch_section(
            fetcher,
            SECTION_HEALTH,
            queries.health_events_query(codes, first.start, last.end),
            scopes,
            health_events_from_records,
            preflight=preflight,
        ),
        lambda: _fetch_section(
            fetcher,
            SECTION_INCIDENTS_RECENT,
            queries.incidents_query(last.start, last.end),
            scopes,
            incidents_from_records,
        ),
        lambda: _fetch_section(
            fetcher,
            SECTION_INCIDENTS_HISTORY,
            queries.incidents_query(first.start, last.end),
            scopes,
            incidents_from_records,
        ),
    ]
    if cli is not None:
        tasks.append(lambda: _fetch_alerts(fetcher, cli, scopes, last))

    outcomes: List[_Outcome] = []
    if workers > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(tasks))) as executor:
            futures = [executor.submit(task) for task in tasks]
            try:
                outcomes = [fut.result() for fut in futures]
            except BaseException:
                if cancel is not None:
                    cancel.set()
                raise
    else:
        outcomes = [task() for task in tasks]

    data = RunData()
    targets = {
        SECTION_INVENTORY: data.resources,
        SECTION_HEALTH: data.health_events,
        SECTION_INCIDENTS_RECENT: data.incidents_recent,
        SECTION_INCIDENTS_HISTORY: data.incidents_history,
        SECTION_ALERTS: data.alerts,
    }
    for section, items, stats, warnings in outcomes:
        targets[section].extend(items)
        data.stats[section] = stats
        data.warnings.extend(warnings)
        LOG.log(
            logging.WARNING if warnings else logging.INFO,
            "Section collected",
            extra={"section": section, **stats.to_dict()},
        )
    return data
