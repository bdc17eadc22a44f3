"""Applications and organization roles, as seen by the provisioning pipeline.

The platform owns these records elsewhere; the pipeline only needs to look an application
up by id and to know which role a user holds in its organization.
"""
from __future__ import annotations

import logging
from typing import Protocol
import uuid

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from stratus.models import (
    ApplicationCreate,
    ApplicationORM,
    ApplicationRead,
    OrganizationMemberCreate,
    OrganizationMemberORM,
    OrganizationMemberRead,
)
from stratus.services.constants import ROLES
from stratus.services.errors import IntegrityException
from stratus.services.naming import slugify_token

logger = logging.getLogger(__name__)


class Directory(Protocol):
    def get_application(self, session: Session, application_id: uuid.UUID) -> ApplicationORM | None: ...

    def get_user_role(self, session: Session, *, user_id: uuid.UUID, org_id: uuid.UUID) -> str | None: ...


class SqlDirectory:
    def get_application(self, session: Session, application_id: uuid.UUID) -> ApplicationORM | None:
        return session.get(ApplicationORM, application_id)

    def get_user_role(self, session: Session, *, user_id: uuid.UUID, org_id: uuid.UUID) -> str | None:
        member = session.exec(
            select(OrganizationMemberORM).where(
                OrganizationMemberORM.org_id == org_id,
                OrganizationMemberORM.user_id == user_id,
            )
        ).one_or_none()
        return member.role if member else None


def register_application(session: Session, payload: ApplicationCreate) -> ApplicationRead:
    if not slugify_token(payload.name):
        raise IntegrityException(f"Application name {payload.name!r} contains no letters or digits")
    application = ApplicationORM.model_validate(payload)
    session.add(application)
    session.commit()
    session.refresh(application)
    logger.info("Registered application id=%s org_id=%s name=%s", application.id, application.org_id, application.name)
    return ApplicationRead.model_validate(application)


def grant_role(session: Session, *, org_id: uuid.UUID, payload: OrganizationMemberCreate) -> OrganizationMemberRead:
    if payload.role not in ROLES:
        raise IntegrityException(f"Unknown role {payload.role!r}; expected one of {', '.join(ROLES)}")
    member = OrganizationMemberORM(org_id=org_id, user_id=payload.user_id, role=payload.role)
    session.add(member)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise IntegrityException("User already holds a role in this organization") from exc
    session.refresh(member)
    logger.info("Granted role %s to user_id=%s in org_id=%s", member.role, member.user_id, org_id)
    return OrganizationMemberRead.model_validate(member)
