"""Parsing of infra config documents.

An infra config document declares the auxiliary services an application needs::

    services:
      db:
        chart: bitnami/postgresql
        env:
          POSTGRES_USER: shop
          POSTGRES_PASSWORD: SECRET::webshop-postgres-password
    app:
      env:
        DATABASE_URL: "postgres://shop:{{ services.db.env.POSTGRES_PASSWORD }}@db:5432/webshop"

Any value containing ``SECRET::<name>`` refers to secret material supplied out of band.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate
import yaml

from stratus.services.errors import ConfigParseException, ConfigValidationException
from stratus.services.naming import is_valid_service_name

logger = logging.getLogger(__name__)

SECRET_PREFIX = "SECRET::"
SECRET_MARKER_RE = re.compile(r"SECRET::([a-zA-Z0-9_-]+)")

_SCALAR = {"type": ["string", "number", "integer", "boolean", "null"]}
_ENV = {"type": ["object", "null"], "additionalProperties": _SCALAR}
DOCUMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "services": {
            "type": ["object", "null"],
            "additionalProperties": {
                "type": ["object", "null"],
                "properties": {"chart": _SCALAR, "env": _ENV},
            },
        },
        "app": {
            "type": ["object", "null"],
            "properties": {"env": _ENV},
        },
    },
}


@dataclass
class ServiceDefinition:
    chart: str = ""
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class AppDefinition:
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class ConfigDocument:
    services: dict[str, ServiceDefinition] | None = None
    app: AppDefinition = field(default_factory=AppDefinition)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.services is not None:
            out["services"] = {
                name: {"chart": definition.chart, "env": dict(definition.env)}
                for name, definition in self.services.items()
            }
        out["app"] = {"env": dict(self.app.env)}
        return out


@dataclass(frozen=True)
class SecretReference:
    name: str
    key: str


@dataclass(frozen=True)
class ConfigValue:
    value: str
    is_secret: bool = False
    secret_name: str | None = None


@dataclass
class ServiceConfigData:
    service_name: str
    chart: str
    namespace: str
    configs: dict[str, ConfigValue] = field(default_factory=dict)


class _DocumentLoader(yaml.SafeLoader):
    """Safe loader that leaves timestamp-looking scalars as plain strings."""


_DocumentLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _scalar_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _env_from_raw(raw: dict | None) -> dict[str, str]:
    if not raw:
        return {}
    return {str(key): _scalar_to_str(value) for key, value in raw.items()}


def parse(document_text: str) -> ConfigDocument:
    """Parse an infra config document.

    Empty text is accepted and yields an empty document; ``validate`` rejects it later
    because the services section is missing.
    """
    try:
        raw = yaml.load(document_text, Loader=_DocumentLoader)
    except yaml.YAMLError as exc:
        raise ConfigParseException(f"failed to parse YAML: {exc}") from exc

    if raw is None:
        return ConfigDocument()

    try:
        jsonschema_validate(instance=raw, schema=DOCUMENT_SCHEMA)
    except ValidationError as exc:
        location = ".".join(str(part) for part in exc.absolute_path) or "<document>"
        raise ConfigParseException(f"unexpected structure at {location}: {exc.message}") from exc

    services: dict[str, ServiceDefinition] | None = None
    raw_services = raw.get("services")
    if raw_services is not None:
        services = {}
        for name, definition in raw_services.items():
            definition = definition or {}
            services[str(name)] = ServiceDefinition(
                chart=_scalar_to_str(definition.get("chart")),
                env=_env_from_raw(definition.get("env")),
            )

    raw_app = raw.get("app") or {}
    return ConfigDocument(services=services, app=AppDefinition(env=_env_from_raw(raw_app.get("env"))))


def dump(document: ConfigDocument) -> str:
    return yaml.safe_dump(document.to_dict(), sort_keys=True)


def validate(document: ConfigDocument) -> None:
    if document.services is None:
        raise ConfigValidationException("services section is required")

    for name, definition in document.services.items():
        if not definition.chart:
            raise ConfigValidationException(f"chart is required for service {name}")
        if not is_valid_service_name(name):
            raise ConfigValidationException(f"invalid service name: {name}")


def extract_secret_names(value: str) -> list[str]:
    return SECRET_MARKER_RE.findall(value)


def substitute_secrets(value: str, secret_values: dict[str, str]) -> str:
    """Replace every marker whose name is in ``secret_values``; unknown markers stay verbatim."""

    def _replace(match: re.Match[str]) -> str:
        return secret_values.get(match.group(1), match.group(0))

    return SECRET_MARKER_RE.sub(_replace, value)


def extract_secret_references(document: ConfigDocument) -> list[SecretReference]:
    references: list[SecretReference] = []
    for service_name, definition in (document.services or {}).items():
        for key, value in definition.env.items():
            references.extend(
                SecretReference(name=name, key=f"{service_name}.{key}") for name in extract_secret_names(value)
            )
    for key, value in document.app.env.items():
        references.extend(SecretReference(name=name, key=f"app.{key}") for name in extract_secret_names(value))
    return references


def _config_value(raw_value: str) -> ConfigValue:
    # Only a value that starts with a marker is a secret. A marker embedded in other text
    # is reported by extract_secret_references but stored as-is.
    if not raw_value.startswith(SECRET_PREFIX):
        return ConfigValue(value=raw_value)
    match = SECRET_MARKER_RE.match(raw_value)
    if match is None:
        return ConfigValue(value=raw_value)
    return ConfigValue(value="", is_secret=True, secret_name=match.group(1))


def generate_service_configs(document: ConfigDocument, namespace: str) -> list[ServiceConfigData]:
    service_configs: list[ServiceConfigData] = []
    for service_name, definition in (document.services or {}).items():
        service_configs.append(
            ServiceConfigData(
                service_name=service_name,
                chart=definition.chart,
                namespace=namespace,
                configs={key: _config_value(value) for key, value in definition.env.items()},
            )
        )
    logger.debug("Generated configs for %s services in namespace %s", len(service_configs), namespace)
    return service_configs
