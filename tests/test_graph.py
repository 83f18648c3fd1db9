from __future__ import annotations

import json
import subprocess
from datetime import datetime, timezone
from typing import Any, List

import pytest

from azure_sla.azure.activity_log import list_alerts
from azure_sla.azure.graph import AzCli, AzGraphQueryService
from azure_sla.azure.queries import count_query, health_events_query, incidents_query, inventory_query, kql_string
from azure_sla.util.errors import AuthResolutionError, ConfigError, QueryRejected, TransientFetchFailure

UTC = timezone.utc


class FakeRunner:
    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.commands: List[List[str]] = []

    def __call__(self, cmd, capture_output=False, text=False, timeout=None):
        self.commands.append(list(cmd))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        code, stdout, stderr = result
        return subprocess.CompletedProcess(cmd, code, stdout=stdout, stderr=stderr)


def _ok(payload: Any):
    return (0, json.dumps(payload), "")


def test_graph_query_builds_offset_and_token_arguments() -> None:
    runner = FakeRunner(
        _ok({"data": [{"id": "a"}], "skip_token": "tok", "total_records": 9}),
        _ok({"data": [{"id": "b"}]}),
        _ok({"data": [{"id": "c"}]}),
    )
    service = AzGraphQueryService(AzCli(runner=runner))

    first = service.query("Resources", ["sub-1", "sub-2"], 1000, skip=0)
    second = service.query("Resources", ["sub-1"], 1000, skip=1000)
    third = service.query("Resources", [], 1000, skip_token="tok")

    assert first.records == [{"id": "a"}]
    assert first.next_token == "tok"
    assert first.total == 9
    assert second.next_token is None
    assert third.records == [{"id": "c"}]

    assert runner.commands[0] == [
        "az", "graph", "query", "-q", "Resources", "--first", "1000",
        "--subscriptions", "sub-1", "sub-2", "-o", "json",
    ]
    assert "--skip" in runner.commands[1] and "1000" in runner.commands[1]
    assert "--skip-token" in runner.commands[2]
    assert "--skip" not in runner.commands[2]
    assert "--subscriptions" not in runner.commands[2]


def test_graph_query_reads_column_row_payload() -> None:
    payload = {"data": {"columns": [{"name": "id"}, {"name": "type"}], "rows": [["a", "t1"], ["b", "t2"]]}}
    service = AzGraphQueryService(AzCli(runner=FakeRunner(_ok(payload))))
    page = service.query("Resources", [], 10)
    assert page.records == [{"id": "a", "type": "t1"}, {"id": "b", "type": "t2"}]


def test_graph_count_reads_count_column() -> None:
    service = AzGraphQueryService(AzCli(runner=FakeRunner(_ok({"data": [{"Count": 42}]}))))
    assert service.count("Resources | count", []) == 42


@pytest.mark.parametrize(
    "stderr, expected",
    [
        ("ERROR: (TooManyRequests) Please retry later", TransientFetchFailure),
        ("ERROR: Service Unavailable (503)", TransientFetchFailure),
        ("ERROR: (BadRequest) Query is invalid", QueryRejected),
        ("ERROR: Please run 'az login' to setup account.", AuthResolutionError),
    ],
)
def test_az_errors_are_classified(stderr, expected) -> None:
    cli = AzCli(runner=FakeRunner((1, "", stderr)))
    with pytest.raises(expected):
        cli.run_json(["graph", "query", "-q", "x"], context="query failed")


def test_missing_az_and_timeouts() -> None:
    cli = AzCli(runner=FakeRunner(FileNotFoundError("az")))
    with pytest.raises(ConfigError):
        cli.run_json(["account", "show"], context="ctx")

    cli = AzCli(runner=FakeRunner(subprocess.TimeoutExpired(cmd="az", timeout=1)))
    with pytest.raises(TransientFetchFailure):
        cli.run_json(["account", "show"], context="ctx")


def test_unparseable_output_is_transient() -> None:
    cli = AzCli(runner=FakeRunner((0, "{not json", "")))
    with pytest.raises(TransientFetchFailure):
        cli.run_json(["account", "show"], context="ctx")


def test_list_alerts_filters_levels() -> None:
    entries = [
        {"eventTimestamp": "2024-06-02T00:00:00Z", "level": "Error", "operationName": {"localizedValue": "Op1"}},
        {"eventTimestamp": "2024-06-03T00:00:00Z", "level": "Informational", "operationName": "Op2"},
        {"eventTimestamp": "2024-06-04T00:00:00Z", "level": "Critical", "operationName": "Op3"},
        {"level": "Error"},
    ]
    runner = FakeRunner(_ok(entries))
    alerts = list_alerts(
        AzCli(runner=runner),
        "sub-1",
        datetime(2024, 6, 1, tzinfo=UTC),
        datetime(2024, 6, 30, 23, 59, 59, tzinfo=UTC),
    )
    assert [a.operation for a in alerts] == ["Op1", "Op3"]
    assert all(a.subscription == "sub-1" for a in alerts)
    cmd = runner.commands[0]
    assert cmd[:4] == ["az", "monitor", "activity-log", "list"]
    assert "2024-06-01T00:00:00Z" in cmd


def test_queries_express_type_region_time_and_projection() -> None:
    q = inventory_query(["microsoft.web/sites"], ["eastus", "westeurope"])
    assert "type in~ ('microsoft.web/sites')" in q
    assert "location in~ ('eastus', 'westeurope')" in q
    assert "project id, type, location" in q
    assert count_query(q).endswith("| count")
    assert "project" not in count_query(q)

    start = datetime(2024, 6, 1, tzinfo=UTC)
    end = datetime(2024, 6, 30, tzinfo=UTC)
    h = health_events_query(["eastus"], start, end)
    assert "between (datetime(2024-06-01T00:00:00.000000Z) .. datetime(2024-06-30T00:00:00.000000Z))" in h
    i = incidents_query(start, end)
    assert "ServiceHealthResources" in i
    assert "order by impactStart desc" in i
    assert kql_string("it's") == "'it\\'s'"
