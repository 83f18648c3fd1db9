from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union


class ServiceCategory(str, Enum):
    COMPUTE = "Compute"
    SQL_DB = "SqlDb"
    WEB_APPS = "WebApps"
    STORAGE = "Storage"
    OTHER = "Other"


class AvailabilityState(str, Enum):
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"
    DEGRADED = "Degraded"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AvailabilityState":
        raw = str(value or "").strip().lower()
        for state in cls:
            if state.value.lower() == raw:
                return state
        return cls.UNKNOWN


# Categories reported in the matrix by default; Other is a catch-all bucket.
MATRIX_CATEGORIES: Tuple[ServiceCategory, ...] = (
    ServiceCategory.COMPUTE,
    ServiceCategory.SQL_DB,
    ServiceCategory.WEB_APPS,
    ServiceCategory.STORAGE,
)


class _NotApplicable:
    """Cell sentinel for a region/category pairing with no resources."""

    _instance: Optional["_NotApplicable"] = None

    def __new__(cls) -> "_NotApplicable":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_APPLICABLE"

    def __str__(self) -> str:
        return NOT_APPLICABLE_LABEL

    def __reduce__(self) -> str:
        return "NOT_APPLICABLE"


NOT_APPLICABLE_LABEL = "N/A"
NOT_APPLICABLE = _NotApplicable()

CellValue = Union[float, _NotApplicable]


def is_not_applicable(value: object) -> bool:
    return isinstance(value, _NotApplicable)


@dataclass(frozen=True)
class TargetRegion:
    code: str
    display_name: str


@dataclass(frozen=True)
class Resource:
    id: str
    type: str
    region: str
    category: ServiceCategory
    resource_group: str = ""
    subscription_id: str = ""


@dataclass(frozen=True)
class HealthEvent:
    region: str
    category: ServiceCategory
    state: AvailabilityState
    occurred: datetime
    resource_id: str = ""


@dataclass(frozen=True)
class ImpactedService:
    service: str
    regions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Incident:
    id: str
    event_type: str
    status: str
    title: str
    summary: str
    impact_start: datetime
    impact_end: Optional[datetime]
    level: str
    impacted: Tuple[ImpactedService, ...] = ()

    @property
    def region_labels(self) -> List[str]:
        labels: List[str] = []
        for svc in self.impacted:
            for label in svc.regions:
                if label not in labels:
                    labels.append(label)
        return labels

    @property
    def service_labels(self) -> List[str]:
        return [svc.service for svc in self.impacted]


@dataclass(frozen=True)
class Alert:
    timestamp: datetime
    category: str
    level: str
    operation: str
    status: str
    description: str
    correlation_id: str
    subscription: str
    resource_id: str


@dataclass(frozen=True)
class MonthWindow:
    start: datetime
    end: datetime

    @property
    def key(self) -> str:
        return self.start.strftime("%Y-%m")

    @property
    def label(self) -> str:
        return self.start.strftime("%b %Y")

    @property
    def total_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    def contains(self, when: datetime) -> bool:
        return self.start <= when <= self.end


@dataclass
class SlaRow:
    """
    One (region, category) row of the matrix. `cells` is keyed by month key
    (YYYY-MM) in ascending chronological order.
    """

    region: str
    category: ServiceCategory
    resource_count: int
    cells: Dict[str, CellValue] = field(default_factory=dict)

    @property
    def months(self) -> List[str]:
        return list(self.cells.keys())


@dataclass(frozen=True)
class IncidentRow:
    kind: str  # incident|alert
    id: str
    when: datetime
    end: Optional[datetime]
    title: str
    status: str
    level: str
    services: str
    regions: str
    summary: str


@dataclass(frozen=True)
class TimelineRow:
    month_key: str
    month_label: str
    id: str
    impact_start: datetime
    impact_end: Optional[datetime]
    event_type: str
    status: str
    level: str
    title: str
    services: str
    regions: str
    summary: str


@dataclass(frozen=True)
class OutputPaths:
    root: Path
    logs_dir: Path
    sla_csv: Path
    sla_jsonl: Path
    sla_parquet: Path
    incidents_csv: Path
    timeline_csv: Path
    run_summary_json: Path
    debug_log: Path


def resolve_output_paths(outdir: Path) -> OutputPaths:
    root = outdir
    logs_dir = root / "logs"
    return OutputPaths(
        root=root,
        logs_dir=logs_dir,
        sla_csv=root / "sla_matrix.csv",
        sla_jsonl=root / "sla_matrix.jsonl",
        sla_parquet=root / "sla_matrix.parquet",
        incidents_csv=root / "incidents.csv",
        timeline_csv=root / "timeline.csv",
        run_summary_json=root / "run_summary.json",
        debug_log=logs_dir / "debug.log",
    )


INCIDENT_CSV_FIELDS: List[str] = [
    "kind",
    "id",
    "when",
    "end",
    "title",
    "status",
    "level",
    "services",
    "regions",
    "summary",
]

TIMELINE_CSV_FIELDS: List[str] = [
    "month_key",
    "month_label",
    "id",
    "impact_start",
    "impact_end",
    "event_type",
    "status",
    "level",
    "title",
    "services",
    "regions",
    "summary",
]
