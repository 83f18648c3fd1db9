from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence

INVENTORY_FIELDS = ("id", "type", "location", "resourceGroup", "subscriptionId")
HEALTH_FIELDS = ("resourceId", "resourceType", "location", "availabilityState", "occurredTime")
INCIDENT_FIELDS = (
    "trackingId",
    "eventType",
    "status",
    "title",
    "summary",
    "level",
    "impactStart",
    "impactEnd",
    "impact",
)


def kql_string(value: str) -> str:
    """Quote a value as a KQL string literal."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def kql_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    stamp = value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return f"datetime({stamp})"


def in_list(column: str, values: Iterable[str]) -> str:
    """Case-insensitive membership filter: `column in~ ('a', 'b')`."""
    items = ", ".join(kql_string(v) for v in values)
    return f"{column} in~ ({items})"


def time_range(column: str, start: datetime, end: datetime) -> str:
    return f"{column} between ({kql_datetime(start)} .. {kql_datetime(end)})"


def project(fields: Sequence[str]) -> str:
    return "project " + ", ".join(fields)


def inventory_query(resource_types: Sequence[str], regions: Sequence[str]) -> str:
    """Resources of the given types in the given regions, ordered by id for stable paging."""
    clauses = ["Resources"]
    if resource_types:
        clauses.append("where " + in_list("type", resource_types))
    if regions:
        clauses.append("where " + in_list("location", regions))
    clauses.append(project(INVENTORY_FIELDS))
    clauses.append("order by id asc")
    return " | ".join(clauses)


def count_query(query: str) -> str:
    """Turn a row query into its count-only pre-flight (drops projection and ordering)."""
    parts = [p.strip() for p in query.split(" | ")]
    kept = [p for p in parts if not p.startswith("project ") and not p.startswith("order by ")]
    return " | ".join(kept + ["count"])


def health_events_query(regions: Sequence[str], start: datetime, end: datetime) -> str:
    """Availability status observations recorded inside [start, end]."""
    clauses = [
        "HealthResources",
        "where type =~ 'microsoft.resourcehealth/availabilitystatuses'",
        "extend resourceId = tolower(tostring(properties.targetResourceId)), "
        "resourceType = tolower(tostring(properties.targetResourceType)), "
        "availabilityState = tostring(properties.availabilityState), "
        "occurredTime = todatetime(properties.occurredTime)",
        "where " + time_range("occurredTime", start, end),
    ]
    if regions:
        clauses.append("where " + in_list("location", regions))
    clauses.append(project(HEALTH_FIELDS))
    clauses.append("order by occurredTime asc")
    return " | ".join(clauses)


def incidents_query(start: datetime, end: datetime) -> str:
    """
    Service health events whose impact overlaps [start, end]. Region filtering
    happens client-side since impacted regions are free-text labels.
    """
    clauses = [
        "ServiceHealthResources",
        "where type =~ 'microsoft.resourcehealth/events'",
        "extend trackingId = tostring(properties.TrackingId), "
        "eventType = tostring(properties.EventType), "
        "status = tostring(properties.Status), "
        "title = tostring(properties.Title), "
        "summary = tostring(properties.Summary), "
        "level = tostring(properties.EventLevel), "
        "impactStart = todatetime(tostring(properties.ImpactStartTime)), "
        "impactEnd = todatetime(tostring(properties.ImpactMitigationTime)), "
        "impact = properties.Impact",
        f"where impactStart <= {kql_datetime(end)}",
        f"where isnull(impactEnd) or impactEnd >= {kql_datetime(start)}",
        project(INCIDENT_FIELDS),
        "order by impactStart desc",
    ]
    return " | ".join(clauses)
