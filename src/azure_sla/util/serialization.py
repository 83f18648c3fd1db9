from __future__ import annotations

from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..normalize.schema import NOT_APPLICABLE, NOT_APPLICABLE_LABEL, CellValue, is_not_applicable


def cell_to_json(value: CellValue) -> Union[float, str]:
    if is_not_applicable(value):
        return NOT_APPLICABLE_LABEL
    return float(value)


def cell_from_json(value: Any) -> CellValue:
    """Inverse of cell_to_json; accepts numbers and numeric strings (CSV)."""
    if value is None:
        return NOT_APPLICABLE
    if isinstance(value, str):
        text = value.strip()
        if not text or text.upper() == NOT_APPLICABLE_LABEL:
            return NOT_APPLICABLE
        return float(text)
    if isinstance(value, bool):
        raise ValueError(f"Invalid SLA cell value: {value!r}")
    return float(value)


def format_cell(value: CellValue) -> str:
    """Text form used in CSV: 4 decimals or N/A."""
    if is_not_applicable(value):
        return NOT_APPLICABLE_LABEL
    return f"{float(value):.4f}"


def sanitize_for_json(value: Any) -> Any:
    """
    Convert datetimes, enums, dataclasses and the N/A sentinel to JSON-safe forms.
    """
    if is_not_applicable(value):
        return NOT_APPLICABLE_LABEL
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return sanitize_for_json(asdict(value))
    if isinstance(value, dict):
        return {str(k): sanitize_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_json(v) for v in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return value
