from __future__ import annotations

from functools import lru_cache
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from stratus.api.utils import get_caller_id
from stratus import db
from stratus.db import get_session
from stratus.models import (
    AppEnvResponse,
    ProvisionRequest,
    ProvisionResponse,
    ServiceConfigReveal,
    ServiceDetail,
    ServiceSummary,
)
from stratus.services.infrastructure import InfrastructureService, build_executor

router = APIRouter(tags=["infrastructure"])


@lru_cache(maxsize=1)
def get_infrastructure_service() -> InfrastructureService:
    return InfrastructureService(
        session_factory=db.session_factory,
        executor=build_executor(serialize=db.is_sqlite),
    )


@router.post(
    "/applications/{application_id}/infra/provision",
    response_model=ProvisionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def provision_services(
    application_id: uuid.UUID,
    payload: ProvisionRequest,
    caller_id: uuid.UUID = Depends(get_caller_id),
    session: Session = Depends(get_session),
    infrastructure: InfrastructureService = Depends(get_infrastructure_service),
) -> ProvisionResponse:
    return infrastructure.provision_services(
        session,
        caller_id=caller_id,
        application_id=application_id,
        document_text=payload.infra_config,
        secrets=payload.secrets,
    )


@router.get("/applications/{application_id}/infra/services", response_model=list[ServiceDetail])
def list_services(
    application_id: uuid.UUID,
    caller_id: uuid.UUID = Depends(get_caller_id),
    session: Session = Depends(get_session),
    infrastructure: InfrastructureService = Depends(get_infrastructure_service),
) -> list[ServiceDetail]:
    return infrastructure.get_services_by_application(session, caller_id=caller_id, application_id=application_id)


@router.post("/applications/{application_id}/infra/app-env", response_model=AppEnvResponse)
def resolve_app_env(
    application_id: uuid.UUID,
    payload: ProvisionRequest,
    caller_id: uuid.UUID = Depends(get_caller_id),
    session: Session = Depends(get_session),
    infrastructure: InfrastructureService = Depends(get_infrastructure_service),
) -> AppEnvResponse:
    env = infrastructure.resolve_app_environment(
        session,
        caller_id=caller_id,
        application_id=application_id,
        document_text=payload.infra_config,
        secrets=payload.secrets,
    )
    return AppEnvResponse(env=env)


@router.get("/services/configs/{config_id}", response_model=ServiceConfigReveal)
def reveal_service_config(
    config_id: uuid.UUID,
    caller_id: uuid.UUID = Depends(get_caller_id),
    session: Session = Depends(get_session),
    infrastructure: InfrastructureService = Depends(get_infrastructure_service),
) -> ServiceConfigReveal:
    return infrastructure.get_service_config(session, caller_id=caller_id, config_id=config_id)


@router.delete("/services/{service_id}", response_model=ServiceSummary, status_code=status.HTTP_202_ACCEPTED)
def unprovision_service(
    service_id: uuid.UUID,
    caller_id: uuid.UUID = Depends(get_caller_id),
    session: Session = Depends(get_session),
    infrastructure: InfrastructureService = Depends(get_infrastructure_service),
) -> ServiceSummary:
    return infrastructure.unprovision_service(session, caller_id=caller_id, service_id=service_id)
