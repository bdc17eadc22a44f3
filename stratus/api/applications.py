from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from stratus.db import get_session
from stratus.models import ApplicationCreate, ApplicationRead, OrganizationMemberCreate, OrganizationMemberRead
from stratus.services import directory as directory_service

router = APIRouter(tags=["applications"])


@router.post("/applications", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED)
def register_application(payload: ApplicationCreate, session: Session = Depends(get_session)) -> ApplicationRead:
    return directory_service.register_application(session, payload)


@router.post(
    "/organizations/{org_id}/members",
    response_model=OrganizationMemberRead,
    status_code=status.HTTP_201_CREATED,
)
def grant_role(
    org_id: uuid.UUID, payload: OrganizationMemberCreate, session: Session = Depends(get_session)
) -> OrganizationMemberRead:
    return directory_service.grant_role(session, org_id=org_id, payload=payload)
