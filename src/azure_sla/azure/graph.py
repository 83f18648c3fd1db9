from __future__ import annotations

import json
import shutil
import subprocess
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..logging import get_logger
from ..util.errors import (
    AuthResolutionError,
    ConfigError,
    TransientFetchFailure,
    classify_az_error,
    is_auth_failure,
)
from ..util.pagination import QueryPage

LOG = get_logger(__name__)

DEFAULT_AZ_TIMEOUT = 120.0

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class AzCli:
    """
    Thin wrapper around the az CLI. Reuses whatever session `az login` left
    behind; no credentials are handled here.
    """

    def __init__(
        self,
        executable: str = "az",
        *,
        timeout: float = DEFAULT_AZ_TIMEOUT,
        runner: Optional[Runner] = None,
    ) -> None:
        self.executable = executable
        self.timeout = timeout
        self._runner: Runner = runner or subprocess.run

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def run_json(self, args: Sequence[str], *, context: str) -> Any:
        """
        Run `az <args> -o json` and return the parsed output.
        Raises QueryRejected/TransientFetchFailure (classified from stderr),
        AuthResolutionError when the session is missing, ConfigError when az is absent.
        """
        cmd = [self.executable, *args, "-o", "json"]
        LOG.debug("Running az command", extra={"az_args": " ".join(args[:3]), "context": context})
        try:
            result = self._runner(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise ConfigError(f"az CLI not found ({self.executable}); install it and run 'az login'") from e
        except subprocess.TimeoutExpired as e:
            raise TransientFetchFailure(f"{context}: az timed out after {self.timeout}s") from e
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if is_auth_failure(stderr):
                raise AuthResolutionError(f"{context}: {stderr.splitlines()[0] if stderr else 'not logged in'}")
            raise classify_az_error(stderr, context)
        stdout = (result.stdout or "").strip()
        if not stdout:
            return None
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise TransientFetchFailure(f"{context}: unparseable az output ({e})") from e


def _records(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            # older extension versions return {"columns": [...], "rows": [...]}
            cols = [c.get("name") for c in data.get("columns", []) if isinstance(c, dict)]
            return [dict(zip(cols, row)) for row in data.get("rows", [])]
        return [r for r in data or [] if isinstance(r, dict)]
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    return []


class AzGraphQueryService:
    """
    Azure Resource Graph through `az graph query`. A single response holds at
    most `page_size` rows (the service caps --first at 1000).
    """

    def __init__(self, cli: Optional[AzCli] = None) -> None:
        self._cli = cli or AzCli()

    def query(
        self,
        query: str,
        scopes: Sequence[str],
        page_size: int,
        *,
        skip: Optional[int] = None,
        skip_token: Optional[str] = None,
    ) -> QueryPage:
        args: List[str] = ["graph", "query", "-q", query, "--first", str(int(page_size))]
        if skip_token:
            args += ["--skip-token", skip_token]
        elif skip:
            args += ["--skip", str(int(skip))]
        if scopes:
            args += ["--subscriptions", *scopes]
        payload = self._cli.run_json(args, context="Resource Graph query failed")
        token = None
        total = None
        if isinstance(payload, dict):
            token = payload.get("skip_token") or payload.get("skipToken") or payload.get("$skipToken")
            raw_total = payload.get("total_records", payload.get("totalRecords"))
            total = int(raw_total) if isinstance(raw_total, (int, float)) else None
        return QueryPage(records=_records(payload), next_token=token or None, total=total)

    def count(self, query: str, scopes: Sequence[str]) -> int:
        page = self.query(query, scopes, 1)
        if not page.records:
            return 0
        row = page.records[0]
        for key in ("Count", "count_", "count"):
            if key in row:
                return int(row[key])
        raise ValueError(f"Count query returned no count column: {sorted(row)}")

    def current_account(self) -> Dict[str, Any]:
        payload = self._cli.run_json(["account", "show"], context="az account show failed")
        return payload if isinstance(payload, dict) else {}

    @property
    def cli(self) -> AzCli:
        return self._cli
