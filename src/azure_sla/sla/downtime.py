from __future__ import annotations

from typing import Iterable, Optional

from ..classify import is_category_relevant, is_region_relevant
from ..normalize.schema import (
    NOT_APPLICABLE,
    AvailabilityState,
    CellValue,
    HealthEvent,
    Incident,
    MonthWindow,
    ServiceCategory,
)

# Point estimate charged per non-Available health observation.
EVENT_DOWNTIME_MINUTES = 30.0


def incident_matches(
    incident: Incident,
    region: str,
    category: ServiceCategory,
    display_name: Optional[str] = None,
) -> bool:
    """
    True when any impacted service label names the category or any impacted
    region label names the region. Only an incident matching neither is
    skipped, so a region-wide outage counts for every category there and a
    service-wide outage counts for every region.
    """
    if any(is_category_relevant(label, category) for label in incident.service_labels):
        return True
    return any(is_region_relevant(label, region, display_name or "") for label in incident.region_labels)


def incident_minutes_in_window(incident: Incident, window: MonthWindow) -> float:
    """
    Minutes of the incident that fall inside the window. An incident with no
    end is treated as lasting through the end of the window.
    """
    end = incident.impact_end if incident.impact_end is not None else window.end
    effective_start = max(incident.impact_start, window.start)
    effective_end = min(end, window.end)
    if effective_end <= effective_start:
        return 0.0
    return (effective_end - effective_start).total_seconds() / 60.0


def downtime_minutes(
    health_events: Iterable[HealthEvent],
    incidents: Iterable[Incident],
    region: str,
    category: ServiceCategory,
    window: MonthWindow,
    *,
    display_name: Optional[str] = None,
    event_minutes: float = EVENT_DOWNTIME_MINUTES,
) -> float:
    """
    Estimated downtime for one cell, clamped to the window length.

    Health observations are charged a flat `event_minutes` each; incident
    minutes are clipped to the window. The two sources are summed without
    overlap reconciliation, so an outage reported by both is counted twice
    (up to the clamp).
    """
    total = window.total_minutes
    region_code = (region or "").lower()
    downtime = 0.0
    for event in health_events:
        if event.region.lower() != region_code or event.category is not category:
            continue
        if event.state is AvailabilityState.AVAILABLE:
            continue
        if window.contains(event.occurred):
            downtime += event_minutes
    for incident in incidents:
        if not incident_matches(incident, region, category, display_name):
            continue
        downtime += incident_minutes_in_window(incident, window)
    return min(downtime, total)


def compute_availability(
    health_events: Iterable[HealthEvent],
    incidents: Iterable[Incident],
    region: str,
    category: ServiceCategory,
    window: MonthWindow,
    resource_count: int,
    *,
    display_name: Optional[str] = None,
    event_minutes: float = EVENT_DOWNTIME_MINUTES,
) -> CellValue:
    """
    Availability percentage for (region, category, month), rounded to 4
    decimals, or NOT_APPLICABLE when there are no resources to measure.
    """
    if resource_count == 0:
        return NOT_APPLICABLE
    total = window.total_minutes
    downtime = downtime_minutes(
        health_events,
        incidents,
        region,
        category,
        window,
        display_name=display_name,
        event_minutes=event_minutes,
    )
    return round((total - downtime) / total * 100, 4)
