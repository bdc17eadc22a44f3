from __future__ import annotations

import re

SERVICE_NAME_RE = re.compile(r"^[a-z0-9-]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_HYPHEN_RUN_RE = re.compile(r"-+")

MAX_DNS_LABEL_LEN = 63
SECRET_OBJECT_SUFFIX = "-secrets"


def slugify_token(value: str) -> str:
    lowered = value.lower()
    replaced = _NON_ALNUM_RE.sub("-", lowered)
    collapsed = _HYPHEN_RUN_RE.sub("-", replaced)
    return collapsed.strip("-")


def is_valid_service_name(name: str) -> bool:
    # Looser than a DNS label: leading/trailing hyphens are accepted.
    return 0 < len(name) <= MAX_DNS_LABEL_LEN and bool(SERVICE_NAME_RE.fullmatch(name))


def namespace_for_application(application_name: str) -> str:
    namespace = slugify_token(application_name)[:MAX_DNS_LABEL_LEN].strip("-")
    if not namespace:
        raise ValueError(f"cannot derive a namespace from application name {application_name!r}")
    return namespace


def release_name_for_chart(chart: str) -> str:
    """Release name is the last path segment of the chart ref: ``bitnami/postgresql`` -> ``postgresql``."""
    return chart.rstrip("/").rsplit("/", 1)[-1]


def secret_object_name(service_name: str) -> str:
    return f"{service_name}{SECRET_OBJECT_SUFFIX}"
