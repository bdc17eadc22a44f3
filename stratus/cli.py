from __future__ import annotations

import json
import logging
from pathlib import Path
import uuid

import typer
import uvicorn
import yaml
from fastapi.encoders import jsonable_encoder

from stratus import db
from stratus.db import init_db, session_scope
from stratus.logging_config import configure_logging
from stratus.models import ApplicationCreate, OrganizationMemberCreate, ServiceORM, ServiceSummary
from stratus.provisioner import ServiceProvisioner
from stratus.services import config_parser, directory as directory_service
from stratus.services.constants import SERVICE_STATUS_FAILED
from stratus.services.errors import NotFoundException, StratusException
from stratus.services.infrastructure import InfrastructureService, build_executor

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="Stratus CLI", pretty_exceptions_show_locals=False)


def _build_provisioner() -> ServiceProvisioner:
    return ServiceProvisioner()


def _build_infrastructure() -> InfrastructureService:
    return InfrastructureService(
        session_factory=db.session_factory,
        provisioner=_build_provisioner(),
        executor=build_executor(serialize=db.is_sqlite),
    )


def _read_text(path: Path, option_name: str) -> str:
    try:
        return path.read_text()
    except OSError as exc:
        raise ValueError(f"Unable to read {option_name}: {exc}") from exc


def _parse_secrets_file(secrets_file: Path | None) -> dict[str, str]:
    if secrets_file is None:
        return {}
    content = _read_text(secrets_file, "--secrets-file")
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in --secrets-file: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("--secrets-file must contain a JSON object")
    return {str(key): str(value) for key, value in parsed.items()}


def _load_inputs(config_file: Path, secrets_file: Path | None) -> tuple[str, dict[str, str]]:
    try:
        return _read_text(config_file, "CONFIG_FILE"), _parse_secrets_file(secrets_file)
    except ValueError as e:
        logger.warning("Invalid CLI input: %s", e)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _exit_for_domain_error(exc: StratusException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


@app.command("register-application")
def register_application(
    name: str,
    org_id: uuid.UUID = typer.Option(..., "--org-id"),
) -> None:
    with session_scope() as session:
        try:
            application = directory_service.register_application(
                session, ApplicationCreate(org_id=org_id, name=name)
            )
        except StratusException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity(application)


@app.command("grant-role")
def grant_role(
    *,
    org_id: uuid.UUID = typer.Option(..., "--org-id"),
    user_id: uuid.UUID = typer.Option(..., "--user-id"),
    role: str = typer.Option(..., "--role", help="One of owner, admin, member."),
) -> None:
    with session_scope() as session:
        try:
            member = directory_service.grant_role(
                session, org_id=org_id, payload=OrganizationMemberCreate(user_id=user_id, role=role)
            )
        except StratusException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity(member)


@app.command("validate-config")
def validate_config(config_file: Path) -> None:
    """Parse and validate an infra config document without touching the database."""
    document_text, _ = _load_inputs(config_file, None)
    try:
        document = config_parser.parse(document_text)
        config_parser.validate(document)
    except StratusException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(
        {
            "services": sorted(document.services or {}),
            "secret_references": [
                {"name": ref.name, "key": ref.key} for ref in config_parser.extract_secret_references(document)
            ],
        }
    )


@app.command("provision")
def provision(
    application_id: uuid.UUID,
    config_file: Path,
    *,
    caller: uuid.UUID = typer.Option(..., "--caller", help="User id the request is made on behalf of."),
    secrets_file: Path | None = typer.Option(
        None,
        "--secrets-file",
        help="Path to a JSON object mapping secret names to values.",
    ),
) -> None:
    """Provision the services in CONFIG_FILE and wait for the background tasks to finish."""
    document_text, secrets = _load_inputs(config_file, secrets_file)
    infrastructure = _build_infrastructure()
    with session_scope() as session:
        try:
            response = infrastructure.provision_services(
                session,
                caller_id=caller,
                application_id=application_id,
                document_text=document_text,
                secrets=secrets,
            )
        except StratusException as e:
            infrastructure.shutdown()
            _exit_for_domain_error(e)

        infrastructure.shutdown(wait=True)
        session.expire_all()
        response.services = [
            ServiceSummary.model_validate(session.get(ServiceORM, summary.id)) for summary in response.services
        ]
        _echo_yaml_entity(response)

    if any(summary.status == SERVICE_STATUS_FAILED for summary in response.services):
        typer.echo("Error: Provisioning failed for one or more services", err=True)
        raise typer.Exit(code=1)


@app.command("list-services")
def list_services(
    application_id: uuid.UUID,
    caller: uuid.UUID = typer.Option(..., "--caller"),
) -> None:
    infrastructure = _build_infrastructure()
    with session_scope() as session:
        try:
            services = infrastructure.get_services_by_application(
                session, caller_id=caller, application_id=application_id
            )
        except StratusException as e:
            _exit_for_domain_error(e)
        finally:
            infrastructure.shutdown(wait=False)
        _echo_yaml_entity(services)


@app.command("reveal-config")
def reveal_config(
    config_id: uuid.UUID,
    caller: uuid.UUID = typer.Option(..., "--caller"),
) -> None:
    infrastructure = _build_infrastructure()
    with session_scope() as session:
        try:
            revealed = infrastructure.get_service_config(session, caller_id=caller, config_id=config_id)
        except StratusException as e:
            _exit_for_domain_error(e)
        finally:
            infrastructure.shutdown(wait=False)
        _echo_yaml_entity(revealed)


@app.command("unprovision")
def unprovision(
    service_id: uuid.UUID,
    caller: uuid.UUID = typer.Option(..., "--caller"),
) -> None:
    """Tear a service down and wait for the background task to finish."""
    infrastructure = _build_infrastructure()
    with session_scope() as session:
        try:
            summary = infrastructure.unprovision_service(session, caller_id=caller, service_id=service_id)
        except StratusException as e:
            infrastructure.shutdown()
            _exit_for_domain_error(e)

        infrastructure.shutdown(wait=True)
        session.expire_all()
        remaining = session.get(ServiceORM, service_id)
        if remaining is not None:
            summary = ServiceSummary.model_validate(remaining)
        _echo_yaml_entity({"service": summary, "deleted": remaining is None})

    if remaining is not None and remaining.status == SERVICE_STATUS_FAILED:
        typer.echo(f"Error: Unprovisioning failed for service {service_id}", err=True)
        raise typer.Exit(code=1)


@app.command("render-app-env")
def render_app_env(
    application_id: uuid.UUID,
    config_file: Path,
    *,
    caller: uuid.UUID = typer.Option(..., "--caller"),
    secrets_file: Path | None = typer.Option(None, "--secrets-file"),
) -> None:
    document_text, secrets = _load_inputs(config_file, secrets_file)
    infrastructure = _build_infrastructure()
    with session_scope() as session:
        try:
            env = infrastructure.resolve_app_environment(
                session,
                caller_id=caller,
                application_id=application_id,
                document_text=document_text,
                secrets=secrets,
            )
        except StratusException as e:
            _exit_for_domain_error(e)
        finally:
            infrastructure.shutdown(wait=False)
        _echo_yaml_entity(env)


@app.command("release-status")
def release_status(service_id: uuid.UUID) -> None:
    """Ask the cluster for the live state of a service's chart release."""
    with session_scope() as session:
        service = session.get(ServiceORM, service_id)
        if service is None:
            _exit_for_domain_error(NotFoundException("Service not found"))
        try:
            status = _build_provisioner().release_status(service)
        except StratusException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity({"service_id": service.id, "name": service.name, "release_status": status})


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8001, "--port"),
) -> None:
    init_db(db.engine)
    uvicorn.run("stratus.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
