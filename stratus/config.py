from __future__ import annotations

from dataclasses import dataclass
import logging
import os

logger = logging.getLogger(__name__)

_DEFAULT_DATABASE_URL = "sqlite:///./stratus.db"
_DEFAULT_HELM_TIMEOUT_SEC = 300
_DEFAULT_PROVISION_WORKERS = 4


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str
    helm_bin: str
    kubectl_bin: str
    helm_timeout_sec: int
    provision_workers: int

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            database_url=os.getenv("DATABASE_URL", _DEFAULT_DATABASE_URL),
            helm_bin=os.getenv("STRATUS_HELM_BIN", "helm"),
            kubectl_bin=os.getenv("STRATUS_KUBECTL_BIN", "kubectl"),
            helm_timeout_sec=_int_from_env("STRATUS_HELM_TIMEOUT_SEC", _DEFAULT_HELM_TIMEOUT_SEC),
            provision_workers=_int_from_env("STRATUS_PROVISION_WORKERS", _DEFAULT_PROVISION_WORKERS),
        )


def get_settings() -> Settings:
    """Read settings from the environment on every call so tests can monkeypatch it."""
    return Settings.from_env()
