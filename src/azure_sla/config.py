from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .azure.regions import RegionSpec, resolve_regions
from .normalize.schema import TargetRegion
from .util.pagination import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_OFFSET_CEILING,
    DEFAULT_PAGE_SIZE,
)
from .util.time import parse_iso_utc

# --------
# Defaults
# --------
DEFAULT_MONTHS = 12
DEFAULT_EVENT_MINUTES = 30.0
DEFAULT_FETCH_WORKERS = 1
MAX_PAGE_SIZE = 1000
ALLOWED_CONFIG_KEYS = {
    "outdir",
    "subscriptions",
    "regions",
    "months",
    "page_size",
    "offset_ceiling",
    "max_attempts",
    "backoff_seconds",
    "event_minutes",
    "fetch_timeout_seconds",
    "fetch_workers",
    "count_preflight",
    "alerts",
    "parquet",
    "json_logs",
    "log_level",
    "now",
}
BOOL_CONFIG_KEYS = {"parquet", "json_logs", "count_preflight", "alerts"}
INT_CONFIG_KEYS = {"months", "page_size", "offset_ceiling", "max_attempts", "fetch_workers"}
FLOAT_CONFIG_KEYS = {"backoff_seconds", "event_minutes", "fetch_timeout_seconds"}
PATH_CONFIG_KEYS = {"outdir"}
STR_CONFIG_KEYS = {"log_level", "now"}
LIST_CONFIG_KEYS = {"subscriptions", "regions"}


@dataclass(frozen=True)
class RunConfig:
    # General
    outdir: Path
    parquet: bool = False
    json_logs: bool = False
    log_level: str = "INFO"

    # Scope
    subscriptions: List[str] = field(default_factory=list)
    regions: List[TargetRegion] = field(default_factory=list)
    months: int = DEFAULT_MONTHS
    now: Optional[datetime] = None

    # Retrieval
    page_size: int = DEFAULT_PAGE_SIZE
    offset_ceiling: int = DEFAULT_OFFSET_CEILING
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    fetch_timeout_seconds: Optional[float] = None
    fetch_workers: int = DEFAULT_FETCH_WORKERS
    count_preflight: bool = True
    alerts: bool = True

    # Aggregation
    event_minutes: float = DEFAULT_EVENT_MINUTES

    # Internal/derived
    collected_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )

    def reference_time(self) -> datetime:
        return self.now or datetime.now(timezone.utc)


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, ValueError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_bool(name: str) -> Optional[bool]:
    raw = _env_str(name)
    if raw is None:
        return None
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, kind: type) -> Optional[Union[int, float]]:
    raw = _env_str(name)
    if raw is None:
        return None
    try:
        return kind(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be an integer")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be a number")


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _coerce_list(key: str, value: Any) -> List[Any]:
    if isinstance(value, str):
        return _split_csv(value)
    if isinstance(value, list):
        out: List[Any] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                out.append(item.strip())
            elif key == "regions" and isinstance(item, dict):
                out.append(item)
            else:
                raise ValueError(f"Config field '{key}' has an invalid entry: {item!r}")
        return out
    if key == "regions" and isinstance(value, dict):
        # {code: display name} mapping
        return [{"code": str(k), "display_name": str(v or "")} for k, v in value.items()]
    raise ValueError(f"Config field '{key}' must be a list or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS or value is None:
            continue
        if key in LIST_CONFIG_KEYS:
            normalized[key] = _coerce_list(key, value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in FLOAT_CONFIG_KEYS:
            normalized[key] = _coerce_float(key, value)
        elif key in PATH_CONFIG_KEYS:
            if not isinstance(value, (str, Path)):
                raise ValueError(f"Config field '{key}' must be a string path")
            normalized[key] = value
        elif key in STR_CONFIG_KEYS:
            # YAML turns unquoted timestamps into datetimes
            normalized[key] = value.isoformat() if isinstance(value, datetime) else str(value)
    return normalized


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(a)
    merged.update(b)
    return merged


def _timestamp_dir(base: Optional[Union[str, Path]]) -> Path:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    if base:
        return Path(base) / ts
    return Path("out") / ts


def _validate(cfg: RunConfig) -> None:
    if cfg.months < 1:
        raise ValueError("months must be >= 1")
    if not 1 <= cfg.page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
    if cfg.offset_ceiling < cfg.page_size:
        raise ValueError("offset_ceiling must be >= page_size")
    if cfg.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if cfg.fetch_workers < 1:
        raise ValueError("fetch_workers must be >= 1")
    if cfg.event_minutes < 0:
        raise ValueError("event_minutes must be >= 0")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="az-sla", description="Azure availability SLA matrix")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")

    p_run = subparsers.add_parser("run", help="Fetch records and build the SLA matrix")
    add_common(p_run)
    p_run.add_argument("--outdir", type=Path, default=None, help="Output base directory (out/TS)")
    p_run.add_argument("--subscriptions", default=None, help="Comma-separated subscription ids")
    p_run.add_argument(
        "--regions",
        default=None,
        help="Comma-separated region codes, optionally code=Display Name",
    )
    p_run.add_argument("--months", type=int, default=None, help=f"Trailing months (default {DEFAULT_MONTHS})")
    p_run.add_argument("--now", default=None, help="Reference instant (ISO-8601, default: current time)")
    p_run.add_argument("--page-size", type=int, default=None, help=f"Rows per request (max {MAX_PAGE_SIZE})")
    p_run.add_argument("--offset-ceiling", type=int, default=None, help="Last offset usable with --skip")
    p_run.add_argument("--max-attempts", type=int, default=None, help="Attempts per page request")
    p_run.add_argument("--backoff-seconds", type=float, default=None, help="Initial retry backoff")
    p_run.add_argument("--fetch-timeout", dest="fetch_timeout_seconds", type=float, default=None, help="Per-query deadline in seconds")
    p_run.add_argument("--fetch-workers", type=int, default=None, help="Run independent queries in parallel")
    p_run.add_argument("--event-minutes", type=float, default=None, help="Downtime charged per health event")
    p_run.add_argument(
        "--count-preflight",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Issue a count query before paging (informational)",
    )
    p_run.add_argument(
        "--alerts",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Include activity log alerts in the incident table",
    )
    p_run.add_argument(
        "--parquet",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also write the matrix as Parquet (pyarrow)",
    )

    p_val = subparsers.add_parser("validate-auth", help="Check that an az CLI session is available")
    add_common(p_val)

    p_cat = subparsers.add_parser("list-categories", help="Print the resource type to category table")
    add_common(p_cat)
    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[List[str]] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is run|validate-auth|list-categories
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command

    base: Dict[str, Any] = {
        "outdir": None,
        "subscriptions": [],
        "regions": [],
        "months": DEFAULT_MONTHS,
        "page_size": DEFAULT_PAGE_SIZE,
        "offset_ceiling": DEFAULT_OFFSET_CEILING,
        "max_attempts": DEFAULT_MAX_ATTEMPTS,
        "backoff_seconds": DEFAULT_BACKOFF_SECONDS,
        "event_minutes": DEFAULT_EVENT_MINUTES,
        "fetch_timeout_seconds": None,
        "fetch_workers": DEFAULT_FETCH_WORKERS,
        "count_preflight": True,
        "alerts": True,
        "parquet": False,
        "json_logs": False,
        "log_level": "INFO",
        "now": None,
    }

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": _env_str("AZ_SLA_OUTDIR"),
            "subscriptions": _env_str("AZ_SLA_SUBSCRIPTIONS"),
            "regions": _env_str("AZ_SLA_REGIONS"),
            "months": _env_number("AZ_SLA_MONTHS", int),
            "page_size": _env_number("AZ_SLA_PAGE_SIZE", int),
            "offset_ceiling": _env_number("AZ_SLA_OFFSET_CEILING", int),
            "max_attempts": _env_number("AZ_SLA_MAX_ATTEMPTS", int),
            "backoff_seconds": _env_number("AZ_SLA_BACKOFF_SECONDS", float),
            "event_minutes": _env_number("AZ_SLA_EVENT_MINUTES", float),
            "fetch_timeout_seconds": _env_number("AZ_SLA_FETCH_TIMEOUT", float),
            "fetch_workers": _env_number("AZ_SLA_FETCH_WORKERS", int),
            "count_preflight": _env_bool("AZ_SLA_COUNT_PREFLIGHT"),
            "alerts": _env_bool("AZ_SLA_ALERTS"),
            "parquet": _env_bool("AZ_SLA_PARQUET"),
            "json_logs": _env_bool("AZ_SLA_JSON_LOGS"),
            "log_level": _env_str("AZ_SLA_LOG_LEVEL"),
            "now": _env_str("AZ_SLA_NOW"),
        }
    )

    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": getattr(ns, "outdir", None),
            "subscriptions": getattr(ns, "subscriptions", None),
            "regions": getattr(ns, "regions", None),
            "months": getattr(ns, "months", None),
            "page_size": getattr(ns, "page_size", None),
            "offset_ceiling": getattr(ns, "offset_ceiling", None),
            "max_attempts": getattr(ns, "max_attempts", None),
            "backoff_seconds": getattr(ns, "backoff_seconds", None),
            "event_minutes": getattr(ns, "event_minutes", None),
            "fetch_timeout_seconds": getattr(ns, "fetch_timeout_seconds", None),
            "fetch_workers": getattr(ns, "fetch_workers", None),
            "count_preflight": getattr(ns, "count_preflight", None),
            "alerts": getattr(ns, "alerts", None),
            "parquet": getattr(ns, "parquet", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
            "now": getattr(ns, "now", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    outdir_raw = merged.get("outdir")
    outdir = _timestamp_dir(outdir_raw) if command == "run" else Path(outdir_raw) if outdir_raw else Path.cwd()

    subs_raw = merged.get("subscriptions") or []
    subscriptions = _split_csv(subs_raw) if isinstance(subs_raw, str) else [str(s) for s in subs_raw]
    regions_raw: Any = merged.get("regions") or []
    region_specs: List[RegionSpec] = _split_csv(regions_raw) if isinstance(regions_raw, str) else list(regions_raw)

    now_raw = merged.get("now")
    now = parse_iso_utc(str(now_raw)) if now_raw else None
    timeout = merged.get("fetch_timeout_seconds")

    cfg = RunConfig(
        outdir=outdir,
        parquet=bool(merged["parquet"]),
        json_logs=bool(merged["json_logs"]),
        log_level=str(merged.get("log_level") or "INFO").upper(),
        subscriptions=subscriptions,
        regions=resolve_regions(region_specs),
        months=int(merged["months"]),
        now=now,
        page_size=int(merged["page_size"]),
        offset_ceiling=int(merged["offset_ceiling"]),
        max_attempts=int(merged["max_attempts"]),
        backoff_seconds=float(merged["backoff_seconds"]),
        fetch_timeout_seconds=float(timeout) if timeout else None,
        fetch_workers=int(merged["fetch_workers"]),
        count_preflight=bool(merged["count_preflight"]),
        alerts=bool(merged["alerts"]),
        event_minutes=float(merged["event_minutes"]),
    )
    _validate(cfg)
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "outdir": str(cfg.outdir),
        "parquet": cfg.parquet,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "subscriptions": list(cfg.subscriptions),
        "regions": [{"code": r.code, "display_name": r.display_name} for r in cfg.regions],
        "months": cfg.months,
        "now": cfg.now.isoformat() if cfg.now else None,
        "page_size": cfg.page_size,
        "offset_ceiling": cfg.offset_ceiling,
        "max_attempts": cfg.max_attempts,
        "backoff_seconds": cfg.backoff_seconds,
        "fetch_timeout_seconds": cfg.fetch_timeout_seconds,
        "fetch_workers": cfg.fetch_workers,
        "count_preflight": cfg.count_preflight,
        "alerts": cfg.alerts,
        "event_minutes": cfg.event_minutes,
        "collected_at": cfg.collected_at,
    }
