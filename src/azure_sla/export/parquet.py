from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..logging import get_logger
from ..normalize.schema import NOT_APPLICABLE, ServiceCategory, SlaRow, is_not_applicable
from .csv import SLA_FIXED_FIELDS, sla_header

LOG = get_logger(__name__)


class ParquetNotAvailable(RuntimeError):
    pass


def _require_pyarrow():
    try:
        import pyarrow as pa  # type: ignore
        import pyarrow.parquet as pq  # type: ignore
    except ImportError as e:  # pragma: no cover
        raise ParquetNotAvailable(
            "pyarrow is required for Parquet export. Install with: pip install .[parquet]"
        ) from e
    return pa, pq


def write_sla_parquet(rows: Sequence[SlaRow], path: Path) -> None:
    """
    Write the matrix as a flat table: region, category, resource_count and one
    float64 column per month. N/A cells are stored as nulls.
    """
    pa, pq = _require_pyarrow()
    path.parent.mkdir(parents=True, exist_ok=True)
    months = sla_header(rows)[len(SLA_FIXED_FIELDS) :]
    schema = pa.schema(
        [
            pa.field("region", pa.string(), nullable=False),
            pa.field("category", pa.string(), nullable=False),
            pa.field("resource_count", pa.int64(), nullable=False),
        ]
        + [pa.field(m, pa.float64(), nullable=True) for m in months]
    )
    columns: Dict[str, List[Any]] = {name: [] for name in schema.names}
    for row in rows:
        columns["region"].append(row.region)
        columns["category"].append(row.category.value)
        columns["resource_count"].append(row.resource_count)
        for m in months:
            value = row.cells.get(m, NOT_APPLICABLE)
            columns[m].append(None if is_not_applicable(value) else float(value))
    table = pa.Table.from_pydict(columns, schema=schema)
    pq.write_table(table, path)
    LOG.debug("Wrote Parquet matrix", extra={"path": str(path), "rows": table.num_rows})


def read_sla_parquet(path: Path) -> List[SlaRow]:
    _, pq = _require_pyarrow()
    table = pq.read_table(path)
    months = table.column_names[len(SLA_FIXED_FIELDS) :]
    rows: List[SlaRow] = []
    for rec in table.to_pylist():
        row = SlaRow(
            region=rec["region"],
            category=ServiceCategory(rec["category"]),
            resource_count=int(rec["resource_count"]),
        )
        for m in months:
            value = rec.get(m)
            row.cells[m] = NOT_APPLICABLE if value is None else float(value)
        rows.append(row)
    return rows
