from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..classify import is_region_relevant
from ..logging import get_logger
from ..normalize.schema import (
    MATRIX_CATEGORIES,
    Alert,
    HealthEvent,
    Incident,
    IncidentRow,
    MonthWindow,
    Resource,
    ServiceCategory,
    SlaRow,
    TargetRegion,
    TimelineRow,
)
from ..normalize.transform import clean_summary
from .downtime import EVENT_DOWNTIME_MINUTES, compute_availability

LOG = get_logger(__name__)


def resource_counts(resources: Iterable[Resource]) -> Dict[Tuple[str, ServiceCategory], int]:
    counts: Dict[Tuple[str, ServiceCategory], int] = {}
    for res in resources:
        key = (res.region.lower(), res.category)
        counts[key] = counts.get(key, 0) + 1
    return counts


def build_sla_matrix(
    resources: Sequence[Resource],
    health_events: Sequence[HealthEvent],
    incidents: Sequence[Incident],
    regions: Sequence[TargetRegion],
    windows: Sequence[MonthWindow],
    *,
    categories: Sequence[ServiceCategory] = MATRIX_CATEGORIES,
    event_minutes: float = EVENT_DOWNTIME_MINUTES,
) -> List[SlaRow]:
    """
    One row per (region, category), regions in the given order and categories
    in enum order. Cells are keyed by month in ascending order; a pairing
    with no resources yields NOT_APPLICABLE in every month.
    """
    ordered_windows = sorted(windows, key=lambda w: w.start)
    counts = resource_counts(resources)
    rows: List[SlaRow] = []
    for region in regions:
        for category in categories:
            count = counts.get((region.code.lower(), category), 0)
            row = SlaRow(region=region.code, category=category, resource_count=count)
            for window in ordered_windows:
                row.cells[window.key] = compute_availability(
                    health_events,
                    incidents,
                    region.code,
                    category,
                    window,
                    count,
                    display_name=region.display_name,
                    event_minutes=event_minutes,
                )
            rows.append(row)
    LOG.debug("Built SLA matrix", extra={"rows": len(rows), "months": len(ordered_windows)})
    return rows


def incident_in_scope(incident: Incident, regions: Sequence[TargetRegion]) -> bool:
    """
    Incidents with no region labels are kept unconditionally; otherwise at
    least one label has to match a target region.
    """
    labels = incident.region_labels
    if not labels:
        return True
    return any(is_region_relevant(label, r.code, r.display_name) for label in labels for r in regions)


def overlaps(incident: Incident, start: datetime, end: datetime) -> bool:
    if incident.impact_start > end:
        return False
    return incident.impact_end is None or incident.impact_end >= start


def _join(values: Iterable[str]) -> str:
    out: List[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return ", ".join(out)


def _incident_row(incident: Incident) -> IncidentRow:
    return IncidentRow(
        kind="incident",
        id=incident.id,
        when=incident.impact_start,
        end=incident.impact_end,
        title=incident.title,
        status=incident.status,
        level=incident.level,
        services=_join(incident.service_labels),
        regions=_join(incident.region_labels),
        summary=clean_summary(incident.summary),
    )


def _alert_row(alert: Alert) -> IncidentRow:
    return IncidentRow(
        kind="alert",
        id=alert.correlation_id,
        when=alert.timestamp,
        end=None,
        title=alert.operation,
        status=alert.status,
        level=alert.level,
        services=alert.category,
        regions=alert.subscription,
        summary=clean_summary(alert.description),
    )


def build_incident_table(
    incidents: Sequence[Incident],
    alerts: Sequence[Alert],
    regions: Sequence[TargetRegion],
    window: MonthWindow,
) -> List[IncidentRow]:
    """
    Incidents and alerts of a single month as flat rows: in-scope incidents
    overlapping the window (newest impact first), then alerts inside the window
    (newest first).
    """
    selected = [i for i in incidents if overlaps(i, window.start, window.end) and incident_in_scope(i, regions)]
    selected.sort(key=lambda i: i.impact_start, reverse=True)
    rows = [_incident_row(i) for i in selected]
    recent_alerts = sorted(
        (a for a in alerts if window.contains(a.timestamp)),
        key=lambda a: a.timestamp,
        reverse=True,
    )
    rows.extend(_alert_row(a) for a in recent_alerts)
    return rows


def _window_for(when: datetime, windows: Sequence[MonthWindow]) -> Optional[MonthWindow]:
    for window in windows:
        if window.contains(when):
            return window
    return None


def build_timeline(
    incidents: Sequence[Incident],
    regions: Sequence[TargetRegion],
    windows: Sequence[MonthWindow],
) -> List[TimelineRow]:
    """
    In-scope incidents bucketed by the month of their impact start, newest
    month first and newest incident first within a month. Incidents starting
    outside every window are dropped.
    """
    rows: List[TimelineRow] = []
    for incident in incidents:
        if not incident_in_scope(incident, regions):
            continue
        window = _window_for(incident.impact_start, windows)
        if window is None:
            continue
        rows.append(
            TimelineRow(
                month_key=window.key,
                month_label=window.label,
                id=incident.id,
                impact_start=incident.impact_start,
                impact_end=incident.impact_end,
                event_type=incident.event_type,
                status=incident.status,
                level=incident.level,
                title=incident.title,
                services=_join(incident.service_labels),
                regions=_join(incident.region_labels),
                summary=clean_summary(incident.summary),
            )
        )
    rows.sort(key=lambda r: (r.month_key, r.impact_start), reverse=True)
    return rows
