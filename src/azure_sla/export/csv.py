from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Sequence

from ..normalize.schema import (
    INCIDENT_CSV_FIELDS,
    TIMELINE_CSV_FIELDS,
    IncidentRow,
    ServiceCategory,
    SlaRow,
    TimelineRow,
)
from ..util.serialization import cell_from_json, format_cell

SLA_FIXED_FIELDS: List[str] = ["region", "category", "resource_count"]


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def sla_header(rows: Sequence[SlaRow]) -> List[str]:
    months: List[str] = rows[0].months if rows else []
    return SLA_FIXED_FIELDS + months


def write_sla_csv(rows: Sequence[SlaRow], path: Path) -> None:
    """
    Write the matrix with one column per month (ascending). Row order is kept
    as given; N/A marks pairings without resources.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    header = sla_header(rows)
    months = header[len(SLA_FIXED_FIELDS) :]
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            writer.writerow(
                [row.region, row.category.value, str(row.resource_count)]
                + [format_cell(row.cells[m]) for m in months]
            )


def read_sla_csv(path: Path) -> List[SlaRow]:
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if not header:
            return []
        months = header[len(SLA_FIXED_FIELDS) :]
        rows: List[SlaRow] = []
        for raw in reader:
            if not raw:
                continue
            row = SlaRow(region=raw[0], category=ServiceCategory(raw[1]), resource_count=int(raw[2]))
            for month, value in zip(months, raw[len(SLA_FIXED_FIELDS) :]):
                row.cells[month] = cell_from_json(value)
            rows.append(row)
    return rows


def _write_rows(path: Path, fields: Sequence[str], rows: Iterable[Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(fields)
        for row in rows:
            writer.writerow([_text(getattr(row, name)) for name in fields])


def write_incidents_csv(rows: Iterable[IncidentRow], path: Path) -> None:
    _write_rows(path, INCIDENT_CSV_FIELDS, rows)


def write_timeline_csv(rows: Iterable[TimelineRow], path: Path) -> None:
    _write_rows(path, TIMELINE_CSV_FIELDS, rows)
