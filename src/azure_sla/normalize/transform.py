from __future__ import annotations

import html
import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..classify import category_of
from ..util.time import coerce_utc
from .schema import (
    Alert,
    AvailabilityState,
    HealthEvent,
    ImpactedService,
    Incident,
    Resource,
)

SUMMARY_MAX_LEN = 500

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def _get(d: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def _text(d: Mapping[str, Any], *keys: str) -> str:
    val = _get(d, *keys)
    if isinstance(val, Mapping):
        # activity log fields come back as {"value": ..., "localizedValue": ...}
        val = val.get("localizedValue") or val.get("value")
    return str(val).strip() if val is not None else ""


def _time(d: Mapping[str, Any], *keys: str) -> Any:
    try:
        return coerce_utc(_get(d, *keys))
    except ValueError:
        return None


def strip_markup(text: str) -> str:
    """Drop HTML tags and entities and collapse whitespace."""
    without_tags = _TAG_RE.sub(" ", text or "")
    return _WS_RE.sub(" ", html.unescape(without_tags)).strip()


def truncate(text: str, max_len: int = SUMMARY_MAX_LEN) -> str:
    val = (text or "").strip()
    if len(val) <= max_len:
        return val
    return val[: max_len - 3] + "..."


def clean_summary(text: str, max_len: int = SUMMARY_MAX_LEN) -> str:
    return truncate(strip_markup(text), max_len)


def resource_from_record(record: Mapping[str, Any]) -> Resource:
    rtype = _text(record, "type", "resourceType")
    return Resource(
        id=_text(record, "id", "resourceId"),
        type=rtype,
        region=_text(record, "location", "region").lower(),
        category=category_of(rtype),
        resource_group=_text(record, "resourceGroup", "resource_group"),
        subscription_id=_text(record, "subscriptionId", "subscription_id"),
    )


def health_event_from_record(record: Mapping[str, Any]) -> Optional[HealthEvent]:
    """
    Build a HealthEvent from an availability status row. Rows without an
    occurred time cannot be placed in a month and are dropped (None).
    """
    occurred = _time(record, "occurredTime", "occurred_time")
    if occurred is None:
        return None
    return HealthEvent(
        region=_text(record, "location", "region").lower(),
        category=category_of(_text(record, "resourceType", "targetResourceType", "type")),
        state=AvailabilityState.parse(_text(record, "availabilityState", "availability_state")),
        occurred=occurred,
        resource_id=_text(record, "resourceId", "targetResourceId", "id"),
    )


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            return [raw]
    if isinstance(value, Mapping):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _impacted_services(value: Any) -> Tuple[ImpactedService, ...]:
    services: List[ImpactedService] = []
    for entry in _as_list(value):
        if not isinstance(entry, Mapping):
            services.append(ImpactedService(service=str(entry)))
            continue
        name = _text(entry, "ImpactedService", "impactedService", "serviceName")
        regions: List[str] = []
        for region in _as_list(_get(entry, "ImpactedRegions", "impactedRegions")):
            if isinstance(region, Mapping):
                label = _text(region, "ImpactedRegion", "impactedRegion", "regionName")
            else:
                label = str(region).strip()
            if label:
                regions.append(label)
        services.append(ImpactedService(service=name, regions=tuple(regions)))
    return tuple(services)


def incident_from_record(record: Mapping[str, Any]) -> Optional[Incident]:
    """
    Build an Incident from a service health event row; rows with no impact
    start are dropped (None). A missing or blank impact end means ongoing.
    """
    start = _time(record, "impactStart", "ImpactStartTime", "impactStartTime")
    if start is None:
        return None
    end = _time(record, "impactEnd", "ImpactMitigationTime", "impactMitigationTime")
    return Incident(
        id=_text(record, "trackingId", "TrackingId", "id", "name"),
        event_type=_text(record, "eventType", "EventType"),
        status=_text(record, "status", "Status"),
        title=_text(record, "title", "Title"),
        summary=_text(record, "summary", "Summary"),
        impact_start=start,
        impact_end=end,
        level=_text(record, "level", "EventLevel", "eventLevel"),
        impacted=_impacted_services(_get(record, "impact", "Impact")),
    )


def alert_from_record(record: Mapping[str, Any], subscription: str = "") -> Optional[Alert]:
    """Build an Alert from an activity log entry (az monitor activity-log list output)."""
    ts = _time(record, "eventTimestamp", "timestamp", "submissionTimestamp")
    if ts is None:
        return None
    return Alert(
        timestamp=ts,
        category=_text(record, "category"),
        level=_text(record, "level"),
        operation=_text(record, "operationName", "operation"),
        status=_text(record, "status"),
        description=_text(record, "description"),
        correlation_id=_text(record, "correlationId", "correlation_id"),
        subscription=subscription or _text(record, "subscriptionId"),
        resource_id=_text(record, "resourceId", "resource_id"),
    )


def _convert_all(records: Iterable[Mapping[str, Any]], convert: Any) -> List[Any]:
    out: List[Any] = []
    for rec in records:
        item = convert(rec)
        if item is not None:
            out.append(item)
    return out


def resources_from_records(records: Iterable[Mapping[str, Any]]) -> List[Resource]:
    return _convert_all(records, resource_from_record)


def health_events_from_records(records: Iterable[Mapping[str, Any]]) -> List[HealthEvent]:
    return _convert_all(records, health_event_from_record)


def incidents_from_records(records: Iterable[Mapping[str, Any]]) -> List[Incident]:
    return _convert_all(records, incident_from_record)


def stable_json_dumps(obj: Any) -> str:
    """
    Dump JSON with sort_keys=True and separators to ensure stable output.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def counts_by(items: Iterable[Any], attr: str) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for it in items:
        value = getattr(it, attr, "")
        key = str(getattr(value, "value", value) or "")
        out[key] = out.get(key, 0) + 1
    return dict(sorted(out.items(), key=lambda kv: (-kv[1], kv[0])))
