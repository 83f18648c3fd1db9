from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .azure.graph import AzCli, AzGraphQueryService
from .classify import RESOURCE_TYPE_CATEGORIES
from .collect import RunData, RunWarning, collect_run_data
from .config import RunConfig, dump_config, load_run_config
from .logging import LogConfig, StepTimers, add_run_log_file, get_logger, log_event, remove_run_log_file, setup_logging
from .normalize.schema import IncidentRow, MonthWindow, SlaRow, TimelineRow, resolve_output_paths
from .normalize.transform import counts_by
from .sla.matrix import build_incident_table, build_sla_matrix, build_timeline
from .util.errors import AuthResolutionError, ConfigError, ExportError, QueryError, as_exit_code
from .util.pagination import PagedFetcher
from .util.serialization import format_cell, sanitize_for_json
from .util.time import month_windows, utc_now_iso

LOG = get_logger(__name__)

OUT_SCHEMA_VERSION = "1"


@dataclass
class RunOutputs:
    windows: List[MonthWindow]
    matrix: List[SlaRow]
    incidents: List[IncidentRow]
    timeline: List[TimelineRow]
    data: RunData
    warnings: List[RunWarning] = field(default_factory=list)


def make_fetcher(cfg: RunConfig, service: Any, cancel: Optional[threading.Event] = None) -> PagedFetcher:
    return PagedFetcher(
        service,
        page_size=cfg.page_size,
        offset_ceiling=cfg.offset_ceiling,
        max_attempts=cfg.max_attempts,
        backoff_seconds=cfg.backoff_seconds,
        deadline_seconds=cfg.fetch_timeout_seconds,
        cancel=cancel,
    )


def build_outputs(
    cfg: RunConfig,
    fetcher: PagedFetcher,
    cli: Optional[AzCli],
    *,
    cancel: Optional[threading.Event] = None,
    timers: Optional[StepTimers] = None,
) -> RunOutputs:
    """
    Retrieve every section, then build the matrix, incident table and timeline.
    Retrieval finishes before any cell is computed.
    """
    if not cfg.regions:
        raise ConfigError("At least one target region is required (--regions or config 'regions')")
    windows = month_windows(cfg.reference_time(), cfg.months)

    log_event(LOG, logging.INFO, "Retrieval started", step="collect", phase="start", timers=timers,
              regions=[r.code for r in cfg.regions], months=len(windows))
    data = collect_run_data(
        fetcher,
        cli if cfg.alerts else None,
        cfg.regions,
        cfg.subscriptions,
        windows,
        workers=cfg.fetch_workers,
        preflight=cfg.count_preflight,
        cancel=cancel,
    )
    log_event(LOG, logging.WARNING if data.warnings else logging.INFO, "Retrieval complete", step="collect",
              phase="warning" if data.warnings else "complete", timers=timers,
              resources=len(data.resources), warnings=len(data.warnings))

    log_event(LOG, logging.INFO, "Aggregation started", step="aggregate", phase="start", timers=timers)
    matrix = build_sla_matrix(
        data.resources,
        data.health_events,
        data.incidents_history,
        cfg.regions,
        windows,
        event_minutes=cfg.event_minutes,
    )
    incidents = build_incident_table(data.incidents_recent, data.alerts, cfg.regions, windows[-1])
    timeline = build_timeline(data.incidents_history, cfg.regions, windows)
    log_event(LOG, logging.INFO, "Aggregation complete", step="aggregate", phase="complete", timers=timers,
              rows=len(matrix), incidents=len(incidents), timeline=len(timeline))
    return RunOutputs(
        windows=windows,
        matrix=matrix,
        incidents=incidents,
        timeline=timeline,
        data=data,
        warnings=list(data.warnings),
    )


def write_outputs(outputs: RunOutputs, cfg: RunConfig) -> Dict[str, str]:
    from .export.csv import write_incidents_csv, write_sla_csv, write_timeline_csv
    from .export.jsonl import write_sla_jsonl

    paths = resolve_output_paths(cfg.outdir)
    written: Dict[str, str] = {}
    try:
        write_sla_csv(outputs.matrix, paths.sla_csv)
        write_sla_jsonl(outputs.matrix, paths.sla_jsonl)
        write_incidents_csv(outputs.incidents, paths.incidents_csv)
        write_timeline_csv(outputs.timeline, paths.timeline_csv)
    except OSError as e:
        raise ExportError(f"Failed to write outputs to {cfg.outdir}: {e}") from e
    written.update(
        sla_csv=str(paths.sla_csv),
        sla_jsonl=str(paths.sla_jsonl),
        incidents_csv=str(paths.incidents_csv),
        timeline_csv=str(paths.timeline_csv),
    )
    if cfg.parquet:
        from .export.parquet import ParquetNotAvailable, write_sla_parquet

        try:
            write_sla_parquet(outputs.matrix, paths.sla_parquet)
            written["sla_parquet"] = str(paths.sla_parquet)
        except ParquetNotAvailable as e:
            outputs.warnings.append(RunWarning("export", "skipped", str(e)))
            LOG.warning("Parquet export skipped", extra={"error": str(e)})
    return written


def _write_run_summary(outputs: RunOutputs, cfg: RunConfig, written: Dict[str, str], started_at: str) -> Path:
    paths = resolve_output_paths(cfg.outdir)
    summary = {
        "schema_version": OUT_SCHEMA_VERSION,
        "started_at": started_at,
        "finished_at": utc_now_iso(),
        "config": dump_config(cfg),
        "months": [w.key for w in outputs.windows],
        "counts": {
            "resources": len(outputs.data.resources),
            "resources_by_category": counts_by(outputs.data.resources, "category"),
            "health_events": len(outputs.data.health_events),
            "incidents_recent": len(outputs.data.incidents_recent),
            "incidents_history": len(outputs.data.incidents_history),
            "alerts": len(outputs.data.alerts),
            "matrix_rows": len(outputs.matrix),
            "incident_rows": len(outputs.incidents),
            "timeline_rows": len(outputs.timeline),
        },
        "sections": {name: stats.to_dict() for name, stats in outputs.data.stats.items()},
        "warnings": [w.to_dict() for w in outputs.warnings],
        "outputs": written,
    }
    paths.run_summary_json.write_text(
        json.dumps(sanitize_for_json(summary), indent=2, sort_keys=True) + "\n", encoding="utf-8"
    )
    return paths.run_summary_json


def render_summary(outputs: RunOutputs, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Availability (%)")
    table.add_column("Region")
    table.add_column("Category")
    table.add_column("Resources", justify="right")
    for w in outputs.windows:
        table.add_column(w.label, justify="right")
    for row in outputs.matrix:
        table.add_row(
            row.region,
            row.category.value,
            str(row.resource_count),
            *[format_cell(row.cells[w.key]) for w in outputs.windows],
        )
    console.print(table)
    if outputs.warnings:
        console.print("[bold yellow]Some sections may be incomplete:[/bold yellow]")
        for w in outputs.warnings:
            console.print(f"  - {w.section} ({w.kind}): {w.message}")


def cmd_run(cfg: RunConfig) -> int:
    cfg.outdir.mkdir(parents=True, exist_ok=True)
    paths = resolve_output_paths(cfg.outdir)
    add_run_log_file(paths.debug_log)
    started_at = utc_now_iso()
    timers = StepTimers()
    cancel = threading.Event()

    log_event(LOG, logging.INFO, "Starting SLA run", step="run", phase="start", timers=timers,
              outdir=str(cfg.outdir))
    try:
        cli = AzCli()
        fetcher = make_fetcher(cfg, AzGraphQueryService(cli), cancel)
        outputs = build_outputs(cfg, fetcher, cli, cancel=cancel, timers=timers)
        written = write_outputs(outputs, cfg)
        summary_path = _write_run_summary(outputs, cfg, written, started_at)
        render_summary(outputs)
        log_event(LOG, logging.INFO, "SLA run complete", step="run", phase="complete", timers=timers,
                  summary=str(summary_path), warnings=len(outputs.warnings))
        return 0
    except KeyboardInterrupt:
        cancel.set()
        raise
    finally:
        remove_run_log_file(paths.debug_log)


def cmd_validate_auth(cfg: RunConfig) -> int:
    cli = AzCli()
    if not cli.available():
        raise ConfigError("az CLI not found on PATH")
    try:
        account = AzGraphQueryService(cli).current_account()
    except QueryError as e:
        raise AuthResolutionError(str(e)) from e
    LOG.info("Authentication validated", extra={"subscription": account.get("id"), "tenant": account.get("tenantId")})
    print(f"OK: az session active; subscription {account.get('name') or ''} ({account.get('id') or 'unknown'})")
    return 0


def cmd_list_categories(cfg: RunConfig, console: Optional[Console] = None) -> int:
    console = console or Console()
    table = Table(title="Resource type categories")
    table.add_column("Resource type")
    table.add_column("Match")
    table.add_column("Category")
    for rtype, category in RESOURCE_TYPE_CATEGORIES:
        table.add_row(rtype, "prefix" if rtype.endswith("/") else "exact", category.value)
    console.print(table)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    try:
        command, cfg = load_run_config(argv=list(argv) if argv is not None else None)
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            code = cmd_run(cfg)
        elif command == "validate-auth":
            code = cmd_validate_auth(cfg)
        elif command == "list-categories":
            code = cmd_list_categories(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
