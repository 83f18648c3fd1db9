from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..normalize.schema import ServiceCategory, SlaRow
from ..normalize.transform import stable_json_dumps
from ..util.serialization import cell_from_json, cell_to_json


def sla_row_to_dict(row: SlaRow) -> Dict[str, Any]:
    # months stay a list of pairs so their order survives sort_keys
    return {
        "region": row.region,
        "category": row.category.value,
        "resource_count": row.resource_count,
        "months": [[month, cell_to_json(value)] for month, value in row.cells.items()],
    }


def sla_row_from_dict(data: Dict[str, Any]) -> SlaRow:
    row = SlaRow(
        region=str(data["region"]),
        category=ServiceCategory(data["category"]),
        resource_count=int(data["resource_count"]),
    )
    for month, value in data.get("months") or []:
        row.cells[str(month)] = cell_from_json(value)
    return row


def write_sla_jsonl(rows: Sequence[SlaRow], path: Path) -> None:
    """
    Write one JSON object per matrix row with stable key ordering. Line order
    is the matrix row order.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for row in rows:
            f.write(stable_json_dumps(sla_row_to_dict(row)))
            f.write("\n")


def read_sla_jsonl(path: Path) -> List[SlaRow]:
    rows: List[SlaRow] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            rows.append(sla_row_from_dict(json.loads(line)))
    return rows
