from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from azure_sla.config import DEFAULT_MONTHS, RunConfig, dump_config, load_run_config
from azure_sla.normalize.schema import TargetRegion


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in ("AZ_SLA_REGIONS", "AZ_SLA_MONTHS", "AZ_SLA_SUBSCRIPTIONS", "AZ_SLA_PAGE_SIZE", "AZ_SLA_NOW"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_for_run(monkeypatch) -> None:
    command, cfg = load_run_config(argv=["run"])
    assert command == "run"
    assert isinstance(cfg, RunConfig)
    assert cfg.months == DEFAULT_MONTHS
    assert cfg.page_size == 1000
    assert cfg.offset_ceiling == 5000
    assert cfg.max_attempts == 3
    assert cfg.regions == []
    assert cfg.now is None
    # run outputs land in a timestamped folder
    assert cfg.outdir.parent == Path("out")
    assert cfg.outdir.name.endswith("Z")


def test_regions_resolve_display_names() -> None:
    _, cfg = load_run_config(argv=["run", "--regions", "EastUS, westeurope,mycloud=My Cloud,eastus"])
    assert cfg.regions == [
        TargetRegion("eastus", "East US"),
        TargetRegion("westeurope", "West Europe"),
        TargetRegion("mycloud", "My Cloud"),
    ]


def test_env_overrides_config_file(monkeypatch, tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("months: 6\nregions: [eastus]\n", encoding="utf-8")
    monkeypatch.setenv("AZ_SLA_MONTHS", "3")

    _, cfg = load_run_config(argv=["run", "--config", str(cfg_path)])
    assert cfg.months == 3
    assert [r.code for r in cfg.regions] == ["eastus"]


def test_cli_overrides_env_and_config(monkeypatch, tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("months: 6\nparquet: true\n", encoding="utf-8")
    monkeypatch.setenv("AZ_SLA_MONTHS", "3")

    _, cfg = load_run_config(argv=["run", "--config", str(cfg_path), "--months", "2", "--no-parquet"])
    assert cfg.months == 2
    assert cfg.parquet is False


def test_config_file_region_mapping_and_subscriptions(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "subscriptions: sub-a, sub-b\n"
        "regions:\n"
        "  eastus: East US\n"
        "  contoso: Contoso Edge\n"
        "now: 2024-06-10T12:00:00Z\n",
        encoding="utf-8",
    )
    _, cfg = load_run_config(argv=["run", "--config", str(cfg_path)])
    assert cfg.subscriptions == ["sub-a", "sub-b"]
    assert cfg.regions[1] == TargetRegion("contoso", "Contoso Edge")
    assert cfg.now == datetime(2024, 6, 10, 12, tzinfo=timezone.utc)
    assert cfg.reference_time() == cfg.now


def test_json_config_file(tmp_path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"regions": [{"code": "uksouth"}], "event_minutes": 15}', encoding="utf-8")
    _, cfg = load_run_config(argv=["run", "--config", str(cfg_path)])
    assert cfg.regions == [TargetRegion("uksouth", "UK South")]
    assert cfg.event_minutes == 15.0


def test_unknown_config_keys_warn(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("months: 4\nbogus: 1\n", encoding="utf-8")
    with pytest.warns(UserWarning):
        _, cfg = load_run_config(argv=["run", "--config", str(cfg_path)])
    assert cfg.months == 4


def test_invalid_config_values_raise(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("months: many\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_run_config(argv=["run", "--config", str(cfg_path)])


@pytest.mark.parametrize(
    "argv",
    [
        ["run", "--months", "0"],
        ["run", "--page-size", "1001"],
        ["run", "--page-size", "1000", "--offset-ceiling", "10"],
    ],
)
def test_out_of_range_settings_rejected(argv) -> None:
    with pytest.raises(ValueError):
        load_run_config(argv=argv)


def test_missing_config_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_run_config(argv=["run", "--config", str(tmp_path / "missing.yaml")])


def test_other_commands_parse() -> None:
    command, cfg = load_run_config(argv=["list-categories"])
    assert command == "list-categories"
    command, _ = load_run_config(argv=["validate-auth", "--log-level", "debug"])
    assert command == "validate-auth"


def test_dump_config_is_plain_data() -> None:
    _, cfg = load_run_config(argv=["run", "--regions", "eastus", "--now", "2024-01-15T00:00:00Z"])
    dumped = dump_config(cfg)
    assert dumped["regions"] == [{"code": "eastus", "display_name": "East US"}]
    assert dumped["now"] == "2024-01-15T00:00:00+00:00"


def test_repo_example_config_loads() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    _, cfg = load_run_config(argv=["run", "--config", str(repo_root / "config" / "example.yaml")])
    assert [r.code for r in cfg.regions] == ["eastus", "westeurope", "contosoedge"]
    assert cfg.fetch_workers == 4
    assert cfg.fetch_timeout_seconds == 900.0
