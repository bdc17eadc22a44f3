"""Expansion of app-level env templates against already-resolved service env values.

App values are Jinja templates evaluated in a sandbox. The context exposes
``services.<service>.env.<key>``; a path that does not exist renders as an empty
string rather than failing.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import re
from typing import Any, Callable
from urllib.parse import quote_plus

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from stratus.services import config_parser
from stratus.services.config_parser import ConfigDocument
from stratus.services.errors import TemplateRenderException

logger = logging.getLogger(__name__)

_WORD_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[^a-zA-Z0-9]+")


def _words(value: Any) -> list[str]:
    return [word for word in _WORD_BOUNDARY_RE.split(str(value)) if word]


def _b64enc(value: Any) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def _b64dec(value: Any) -> str:
    return base64.b64decode(str(value).encode("ascii"), validate=True).decode("utf-8")


def _sha256sum(value: Any) -> str:
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()


def _quote(value: Any) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _squote(value: Any) -> str:
    return "'" + str(value) + "'"


def _trim_prefix(value: Any, prefix: Any) -> str:
    text, prefix = str(value), str(prefix)
    return text[len(prefix):] if text.startswith(prefix) else text


def _trim_suffix(value: Any, suffix: Any) -> str:
    text, suffix = str(value), str(suffix)
    return text[: -len(suffix)] if suffix and text.endswith(suffix) else text


def _snakecase(value: Any) -> str:
    return "_".join(word.lower() for word in _words(value))


def _kebabcase(value: Any) -> str:
    return "-".join(word.lower() for word in _words(value))


def _camelcase(value: Any) -> str:
    return "".join(word[:1].upper() + word[1:].lower() for word in _words(value))


def _urlquery(value: Any) -> str:
    return quote_plus(str(value))


HELPERS: dict[str, Callable[..., Any]] = {
    "b64enc": _b64enc,
    "b64dec": _b64dec,
    "sha256sum": _sha256sum,
    "quote": _quote,
    "squote": _squote,
    "trimPrefix": _trim_prefix,
    "trimSuffix": _trim_suffix,
    "snakecase": _snakecase,
    "kebabcase": _kebabcase,
    "camelcase": _camelcase,
    "urlquery": _urlquery,
}


def _build_environment() -> SandboxedEnvironment:
    env = SandboxedEnvironment(undefined=ChainableUndefined, autoescape=False, keep_trailing_newline=True)
    env.filters.update(HELPERS)
    env.globals.update(HELPERS)
    # Expose the common built-in filters as functions too, e.g. {{ upper(services.db.env.USER) }}.
    for name in ("upper", "lower", "title", "capitalize", "trim", "replace", "default", "length"):
        env.globals.setdefault(name, env.filters[name])
    return env


_environment = _build_environment()


def render(template_text: str, context: dict[str, Any]) -> str:
    try:
        template = _environment.from_string(template_text)
        return template.render(context)
    except TemplateError as exc:
        raise TemplateRenderException(f"failed to render template: {exc}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise TemplateRenderException(f"failed to evaluate template: {exc}") from exc


def resolve_service_env(
    document: ConfigDocument,
    secret_values: dict[str, str],
    persisted: dict[str, dict[str, str]] | None = None,
) -> dict[str, dict[str, str]]:
    """Resolve each service's env by substituting secret markers.

    ``persisted`` holds values already stored for services (keyed by service name, then env
    key); they fill in secret values that ``secret_values`` does not supply.
    """
    persisted = persisted or {}
    resolved: dict[str, dict[str, str]] = {}
    for service_name, definition in (document.services or {}).items():
        stored = persisted.get(service_name, {})
        env: dict[str, str] = {}
        for key, raw_value in definition.env.items():
            value = config_parser.substitute_secrets(raw_value, secret_values)
            if config_parser.extract_secret_names(value) and stored.get(key):
                value = stored[key]
            env[key] = value
        resolved[service_name] = env
    return resolved


def resolve_app_templates(document: ConfigDocument, service_env: dict[str, dict[str, str]]) -> dict[str, str]:
    """Render every app env value; service env values must already have their secrets substituted."""
    context = {"services": {name: {"env": dict(env)} for name, env in service_env.items()}}
    resolved: dict[str, str] = {}
    for key, template_text in document.app.env.items():
        try:
            resolved[key] = render(template_text, context)
        except TemplateRenderException as exc:
            raise TemplateRenderException(f"failed to process template for app.{key}: {exc}") from exc
    logger.debug("Resolved %s app env templates against %s services", len(resolved), len(service_env))
    return resolved
