from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Sequence

from ..logging import get_logger
from ..normalize.schema import Alert
from ..normalize.transform import alert_from_record
from .graph import AzCli

LOG = get_logger(__name__)

ALERT_LEVELS = ("Critical", "Error", "Warning")
DEFAULT_MAX_EVENTS = 5000


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def list_alerts(
    cli: AzCli,
    subscription: str,
    start: datetime,
    end: datetime,
    *,
    levels: Sequence[str] = ALERT_LEVELS,
    max_events: int = DEFAULT_MAX_EVENTS,
) -> List[Alert]:
    """
    Activity log entries for one subscription between start and end, keeping
    only the given levels. The CLI caps results at `max_events`; no paging.
    """
    args = [
        "monitor",
        "activity-log",
        "list",
        "--subscription",
        subscription,
        "--start-time",
        _iso(start),
        "--end-time",
        _iso(end),
        "--max-events",
        str(int(max_events)),
    ]
    payload = cli.run_json(args, context=f"Activity log query failed for {subscription}")
    wanted = {lvl.lower() for lvl in levels}
    alerts: List[Alert] = []
    for entry in payload or []:
        if not isinstance(entry, dict):
            continue
        alert = alert_from_record(entry, subscription=subscription)
        if alert is None:
            continue
        if wanted and alert.level.lower() not in wanted:
            continue
        alerts.append(alert)
    if len(payload or []) >= max_events:
        LOG.warning(
            "Activity log hit the max-events cap; older entries are missing",
            extra={"subscription": subscription, "max_events": max_events},
        )
    return alerts
