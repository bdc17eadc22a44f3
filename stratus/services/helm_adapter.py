from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from stratus.config import get_settings
from stratus.proc import PROCESS_GRACE_SEC, AdapterCommandError, CommandRunner, run_command, subprocess_runner
from stratus.services.constants import (
    RELEASE_STATUS_FAILED,
    RELEASE_STATUS_PROVISIONING,
    RELEASE_STATUS_RUNNING,
    RELEASE_STATUS_UNKNOWN,
)
from stratus.services.naming import release_name_for_chart

logger = logging.getLogger(__name__)

_HELM_STATUS_MAP = {
    "deployed": RELEASE_STATUS_RUNNING,
    "failed": RELEASE_STATUS_FAILED,
    "pending-install": RELEASE_STATUS_PROVISIONING,
    "pending-upgrade": RELEASE_STATUS_PROVISIONING,
    "pending-rollback": RELEASE_STATUS_PROVISIONING,
}


class ChartProvisioner(Protocol):
    def install(self, chart: str, namespace: str, values: dict[str, Any]) -> str: ...

    def upgrade(self, release_name: str, chart: str, namespace: str, values: dict[str, Any]) -> None: ...

    def uninstall(self, release_name: str, namespace: str) -> None: ...

    def status(self, release_name: str, namespace: str) -> str: ...


def _escape_set_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,")


def format_set_string(values: dict[str, Any]) -> str:
    """Serialize flat values as helm's ``key=value,key2=value2`` --set-string argument."""
    return ",".join(f"{key}={_escape_set_value(str(values[key]))}" for key in sorted(values))


class HelmChartProvisioner:
    """Chart lifecycle operations through the helm CLI."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        helm_bin: str | None = None,
        timeout: int | None = None,
    ) -> None:
        settings = get_settings()
        self._helm = helm_bin or settings.helm_bin
        self._timeout = timeout or settings.helm_timeout_sec
        self._runner = runner or subprocess_runner(timeout=self._timeout + PROCESS_GRACE_SEC)

    def _with_values(self, cmd: list[str], values: dict[str, Any]) -> list[str]:
        if values:
            cmd.extend(["--set-string", format_set_string(values)])
        return cmd

    def install(self, chart: str, namespace: str, values: dict[str, Any]) -> str:
        release_name = release_name_for_chart(chart)
        logger.info(
            "Installing chart %s as release '%s' in namespace '%s' (%s values)",
            chart,
            release_name,
            namespace,
            len(values),
        )
        # upgrade --install keeps re-running an install against the same release harmless
        cmd = [
            self._helm,
            "upgrade",
            "--install",
            release_name,
            chart,
            "--namespace",
            namespace,
            "--create-namespace",
            "--wait",
            "--timeout",
            f"{self._timeout}s",
        ]
        run_command(
            self._with_values(cmd, values),
            runner=self._runner,
            error_message=f"Failed to install chart {chart}",
        )
        logger.info("Installed release '%s' in namespace '%s'", release_name, namespace)
        return release_name

    def upgrade(self, release_name: str, chart: str, namespace: str, values: dict[str, Any]) -> None:
        logger.info("Upgrading release '%s' to chart %s in namespace '%s'", release_name, chart, namespace)
        cmd = [
            self._helm,
            "upgrade",
            release_name,
            chart,
            "--namespace",
            namespace,
            "--wait",
            "--timeout",
            f"{self._timeout}s",
        ]
        run_command(
            self._with_values(cmd, values),
            runner=self._runner,
            error_message=f"Failed to upgrade release {release_name}",
        )

    def uninstall(self, release_name: str, namespace: str) -> None:
        logger.info("Uninstalling release '%s' from namespace '%s'", release_name, namespace)
        cmd = [
            self._helm,
            "uninstall",
            release_name,
            "--namespace",
            namespace,
            "--wait",
            "--timeout",
            f"{self._timeout}s",
        ]
        try:
            run_command(cmd, runner=self._runner, error_message=f"Failed to uninstall release {release_name}")
        except AdapterCommandError as exc:
            if exc.result.mentions_not_found():
                logger.debug("Release already absent: release='%s' namespace='%s'", release_name, namespace)
                return
            raise

    def status(self, release_name: str, namespace: str) -> str:
        try:
            result = run_command(
                [self._helm, "status", release_name, "--namespace", namespace, "--output", "json"],
                runner=self._runner,
                error_message=f"Failed to fetch release status for {release_name}",
            )
        except AdapterCommandError as exc:
            if exc.result.mentions_not_found():
                return RELEASE_STATUS_UNKNOWN
            raise

        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("Unparseable helm status output for release '%s'", release_name)
            return RELEASE_STATUS_UNKNOWN

        info = payload.get("info", {}) if isinstance(payload, dict) else {}
        status = info.get("status") if isinstance(info, dict) else None
        return _HELM_STATUS_MAP.get(status, RELEASE_STATUS_UNKNOWN)
