from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Iterator, Protocol

from stratus.config import get_settings
from stratus.proc import AdapterCommandError, CommandRunner, run_command

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def apply_secret(self, namespace: str, name: str, data: dict[str, str]) -> None: ...

    def delete_secret(self, namespace: str, name: str) -> None: ...


def secret_manifest(namespace: str, name: str, data: dict[str, str]) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {"name": name, "namespace": namespace},
        "stringData": dict(data),
    }


class KubeSecretStore:
    """Namespace and secret objects through the kubectl CLI."""

    def __init__(self, *, runner: CommandRunner | None = None, kubectl_bin: str | None = None) -> None:
        self._runner = runner
        self._kubectl = kubectl_bin or get_settings().kubectl_bin

    def namespace_exists(self, name: str) -> bool:
        try:
            run_command(
                [self._kubectl, "get", "namespace", name, "-o", "name"],
                runner=self._runner,
                error_message=f"Failed to check namespace {name}",
            )
            return True
        except AdapterCommandError as exc:
            if exc.result.mentions_not_found():
                return False
            raise

    def ensure_namespace(self, name: str) -> bool:
        """Create the namespace when missing; returns whether it was created."""
        if self.namespace_exists(name):
            return False
        run_command(
            [self._kubectl, "create", "namespace", name],
            runner=self._runner,
            error_message=f"Failed to create namespace {name}",
        )
        logger.info("Created namespace: %s", name)
        return True

    def apply_secret(self, namespace: str, name: str, data: dict[str, str]) -> None:
        logger.info("Applying secret '%s' with %s keys in namespace '%s'", name, len(data), namespace)
        self.ensure_namespace(namespace)
        # The manifest goes through a file so secret values never appear on a command line.
        with _manifest_file(secret_manifest(namespace, name, data)) as manifest_path:
            run_command(
                [self._kubectl, "apply", "--namespace", namespace, "-f", str(manifest_path)],
                runner=self._runner,
                error_message=f"Failed to apply secret {name}",
            )

    def delete_secret(self, namespace: str, name: str) -> None:
        logger.info("Deleting secret '%s' from namespace '%s'", name, namespace)
        run_command(
            [self._kubectl, "delete", "secret", name, "--namespace", namespace, "--ignore-not-found=true"],
            runner=self._runner,
            error_message=f"Failed to delete secret {name}",
        )


@contextmanager
def _manifest_file(manifest: dict[str, Any]) -> Iterator[Path]:
    # NamedTemporaryFile creates the file readable by the owner only.
    tmp = NamedTemporaryFile(mode="w", encoding="utf-8", suffix=".json", delete=False)
    path = Path(tmp.name)
    try:
        with tmp:
            json.dump(manifest, tmp)
        logger.debug("Wrote temporary manifest file: %s", path)
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.debug("Removed temporary manifest file: %s", path)
