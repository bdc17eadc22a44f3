from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
import logging
from typing import Callable
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from stratus.config import get_settings
from stratus.models import (
    ApplicationORM,
    ProvisionResponse,
    ServiceConfigORM,
    ServiceConfigRead,
    ServiceConfigReveal,
    ServiceDetail,
    ServiceORM,
    ServiceSummary,
)
from stratus.provisioner import ServiceProvisioner
from stratus.services import config_parser, template_resolver
from stratus.services.config_parser import ServiceConfigData
from stratus.services.constants import (
    MANAGE_ROLES,
    SECRET_MASK,
    SERVICE_STATUS_FAILED,
    SERVICE_STATUS_PENDING,
    SERVICE_STATUS_PROVISIONING,
    SERVICE_STATUS_RUNNING,
    SERVICE_STATUS_STOPPED,
    SERVICE_STATUSES,
)
from stratus.services.directory import Directory, SqlDirectory
from stratus.services.errors import (
    ConfigValidationException,
    NotFoundException,
    PermissionDeniedException,
    PersistenceException,
)
from stratus.services.naming import namespace_for_application

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def build_executor(*, serialize: bool = False) -> Executor:
    """Worker pool for background tasks; ``serialize`` forces one worker (SQLite allows a single writer)."""
    workers = 1 if serialize else get_settings().provision_workers
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="provision")


def _summary(service: ServiceORM) -> ServiceSummary:
    return ServiceSummary.model_validate(service)


def _masked(config: ServiceConfigORM) -> ServiceConfigRead:
    read = ServiceConfigRead.model_validate(config)
    if read.is_secret:
        read.value = SECRET_MASK
    return read


def _set_status(session: Session, service: ServiceORM, status: str) -> None:
    if status not in SERVICE_STATUSES:
        raise ValueError(f"unknown service status {status!r}")
    logger.debug("Service id=%s status %s -> %s", service.id, service.status, status)
    service.status = status
    service.updated_at = datetime.utcnow()
    session.add(service)
    session.commit()


def _create_service_records(
    session: Session,
    *,
    application_id: uuid.UUID,
    data: ServiceConfigData,
    secrets: dict[str, str],
) -> ServiceORM:
    """Persist a pending service and one config row per env key."""
    service = ServiceORM(
        application_id=application_id,
        name=data.service_name,
        chart=data.chart,
        namespace=data.namespace,
        status=SERVICE_STATUS_PENDING,
    )
    session.add(service)
    session.flush()
    for key, config_value in data.configs.items():
        value = config_value.value
        if config_value.is_secret:
            value = secrets.get(config_value.secret_name or "", "")
        session.add(ServiceConfigORM(service_id=service.id, key=key, value=value, is_secret=config_value.is_secret))
    session.commit()
    session.refresh(service)
    return service


class InfrastructureService:
    """Turns infra config documents into provisioned services.

    Status is moved to ``provisioning``/``stopped`` synchronously; the background task owns
    the transition to the terminal state. Callers observe progress by reading the service rows.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        provisioner: ServiceProvisioner | None = None,
        directory: Directory | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provisioner = provisioner or ServiceProvisioner()
        self._directory = directory or SqlDirectory()
        self._executor = executor or build_executor()

    def _get_application(self, session: Session, application_id: uuid.UUID) -> ApplicationORM:
        if not (application := self._directory.get_application(session, application_id)):
            raise NotFoundException("Application not found")
        return application

    def _require_role(
        self,
        session: Session,
        *,
        caller_id: uuid.UUID,
        application: ApplicationORM,
        roles: tuple[str, ...] | None,
        action: str,
    ) -> str:
        role = self._directory.get_user_role(session, user_id=caller_id, org_id=application.org_id)
        if role is None:
            raise PermissionDeniedException("User does not have access to this application's organization")
        if roles is not None and role not in roles:
            raise PermissionDeniedException(f"Insufficient permissions to {action}")
        return role

    def _get_service(self, session: Session, service_id: uuid.UUID) -> ServiceORM:
        if not (service := session.get(ServiceORM, service_id)):
            raise NotFoundException("Service not found")
        return service

    def provision_services(
        self,
        session: Session,
        *,
        caller_id: uuid.UUID,
        application_id: uuid.UUID,
        document_text: str,
        secrets: dict[str, str] | None = None,
    ) -> ProvisionResponse:
        application = self._get_application(session, application_id)
        self._require_role(
            session, caller_id=caller_id, application=application, roles=MANAGE_ROLES, action="provision services"
        )
        secrets = secrets or {}

        document = config_parser.parse(document_text)
        config_parser.validate(document)

        references = config_parser.extract_secret_references(document)
        unresolved = sorted({ref.name for ref in references if ref.name not in secrets})
        if unresolved:
            logger.warning(
                "Provisioning application_id=%s with %s unresolved secret references: %s",
                application_id,
                len(unresolved),
                ", ".join(unresolved),
            )

        try:
            namespace = namespace_for_application(application.name)
        except ValueError as exc:
            raise ConfigValidationException(str(exc)) from exc
        service_configs = config_parser.generate_service_configs(document, namespace)

        created: list[ServiceSummary] = []
        for data in service_configs:
            existing = session.exec(
                select(ServiceORM).where(
                    ServiceORM.application_id == application_id,
                    ServiceORM.name == data.service_name,
                )
            ).one_or_none()
            if existing is not None:
                logger.warning("Service '%s' already exists, skipping", data.service_name)
                continue

            try:
                service = _create_service_records(
                    session, application_id=application_id, data=data, secrets=secrets
                )
            except IntegrityError:
                # Another request created the same service name concurrently.
                session.rollback()
                logger.warning("Service '%s' was created concurrently, skipping", data.service_name)
                continue
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Failed to create service '%s' in database: %s", data.service_name, exc)
                raise PersistenceException(f"Failed to create service {data.service_name}") from exc

            try:
                _set_status(session, service, SERVICE_STATUS_PROVISIONING)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Failed to move service id=%s to provisioning: %s", service.id, exc)
                raise PersistenceException(f"Failed to update status of service {data.service_name}") from exc

            created.append(_summary(service))
            self._executor.submit(self._provision_in_background, service.id)
            logger.info("Scheduled provisioning for service id=%s name=%s", service.id, service.name)

        return ProvisionResponse(services=created, message=f"Provisioning initiated for {len(created)} services")

    def unprovision_service(self, session: Session, *, caller_id: uuid.UUID, service_id: uuid.UUID) -> ServiceSummary:
        service = self._get_service(session, service_id)
        application = self._get_application(session, service.application_id)
        self._require_role(
            session, caller_id=caller_id, application=application, roles=MANAGE_ROLES, action="unprovision service"
        )
        try:
            _set_status(session, service, SERVICE_STATUS_STOPPED)
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceException("Failed to update service status") from exc
        self._executor.submit(self._unprovision_in_background, service.id)
        logger.info("Scheduled unprovisioning for service id=%s name=%s", service.id, service.name)
        return _summary(service)

    def get_services_by_application(
        self, session: Session, *, caller_id: uuid.UUID, application_id: uuid.UUID
    ) -> list[ServiceDetail]:
        application = self._get_application(session, application_id)
        self._require_role(session, caller_id=caller_id, application=application, roles=None, action="list services")
        services = session.exec(
            select(ServiceORM).where(ServiceORM.application_id == application_id).order_by(ServiceORM.name)
        ).all()
        return [
            ServiceDetail(
                **_summary(service).model_dump(),
                application_id=service.application_id,
                configs=[_masked(config) for config in sorted(service.configs, key=lambda c: c.key)],
            )
            for service in services
        ]

    def get_service_config(self, session: Session, *, caller_id: uuid.UUID, config_id: uuid.UUID) -> ServiceConfigReveal:
        """Return one config with its stored value, secrets included."""
        if not (config := session.get(ServiceConfigORM, config_id)):
            raise NotFoundException("Service configuration not found")
        service = self._get_service(session, config.service_id)
        application = self._get_application(session, service.application_id)
        self._require_role(
            session,
            caller_id=caller_id,
            application=application,
            roles=MANAGE_ROLES,
            action="reveal service configuration",
        )
        return ServiceConfigReveal(config=ServiceConfigRead.model_validate(config))

    def resolve_app_environment(
        self,
        session: Session,
        *,
        caller_id: uuid.UUID,
        application_id: uuid.UUID,
        document_text: str,
        secrets: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Resolve the app env of a document against its services' resolved values.

        Secret values come from ``secrets`` first and otherwise from the stored config rows
        of services already provisioned under the application.
        """
        application = self._get_application(session, application_id)
        self._require_role(
            session, caller_id=caller_id, application=application, roles=MANAGE_ROLES, action="resolve app environment"
        )
        secrets = secrets or {}
        document = config_parser.parse(document_text)
        config_parser.validate(document)

        persisted: dict[str, dict[str, str]] = {}
        for service in session.exec(select(ServiceORM).where(ServiceORM.application_id == application_id)).all():
            persisted[service.name] = {config.key: config.value for config in service.configs if config.is_secret}

        service_env = template_resolver.resolve_service_env(document, secrets, persisted)
        app_env = template_resolver.resolve_app_templates(document, service_env)
        return {key: config_parser.substitute_secrets(value, secrets) for key, value in app_env.items()}

    def _provision_in_background(self, service_id: uuid.UUID) -> None:
        with self._session_factory() as session:
            service = session.get(ServiceORM, service_id)
            if service is None:
                logger.warning("Service id=%s disappeared before provisioning started", service_id)
                return
            logger.info("Starting background provisioning for service id=%s name=%s", service.id, service.name)
            try:
                self._provisioner.provision(service, list(service.configs))
            except Exception:
                logger.exception("Failed to provision service id=%s name=%s", service.id, service.name)
                self._record_terminal_status(session, service, SERVICE_STATUS_FAILED)
                return
            self._record_terminal_status(session, service, SERVICE_STATUS_RUNNING)
            logger.info("Service id=%s name=%s is running", service.id, service.name)

    def _unprovision_in_background(self, service_id: uuid.UUID) -> None:
        with self._session_factory() as session:
            service = session.get(ServiceORM, service_id)
            if service is None:
                logger.warning("Service id=%s disappeared before unprovisioning started", service_id)
                return
            logger.info("Starting background unprovisioning for service id=%s name=%s", service.id, service.name)
            try:
                self._provisioner.unprovision(service)
            except Exception:
                logger.exception("Failed to unprovision service id=%s name=%s", service.id, service.name)
                self._record_terminal_status(session, service, SERVICE_STATUS_FAILED)
                return
            try:
                session.delete(service)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception("Failed to delete service id=%s from database", service_id)
                return
            logger.info("Service id=%s unprovisioned and deleted", service_id)

    @staticmethod
    def _record_terminal_status(session: Session, service: ServiceORM, status: str) -> None:
        try:
            _set_status(session, service, status)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to record status %s for service id=%s", status, service.id)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
