from datetime import datetime
from typing import Optional
import uuid

from sqlmodel import Field, SQLModel, Relationship
from sqlalchemy import Column, Text, UniqueConstraint

from stratus.services.constants import SERVICE_STATUS_PENDING


class ApplicationBase(SQLModel):
    org_id: uuid.UUID
    name: str


class ApplicationORM(ApplicationBase, table=True):
    __tablename__ = "application"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    org_id: uuid.UUID = Field(index=True)
    name: str = Field(nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    services: list["ServiceORM"] = Relationship(
        back_populates="application",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class ApplicationCreate(ApplicationBase):
    pass


class ApplicationRead(ApplicationBase):
    id: uuid.UUID
    created_at: datetime


class OrganizationMemberBase(SQLModel):
    user_id: uuid.UUID
    role: str


class OrganizationMemberORM(OrganizationMemberBase, table=True):
    __tablename__ = "organization_member"
    __table_args__ = (UniqueConstraint("org_id", "user_id", name="uq_member_org_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    org_id: uuid.UUID = Field(index=True)
    user_id: uuid.UUID = Field(index=True)
    role: str = Field(nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class OrganizationMemberCreate(OrganizationMemberBase):
    pass


class OrganizationMemberRead(OrganizationMemberBase):
    org_id: uuid.UUID
    created_at: datetime


class ServiceBase(SQLModel):
    name: str
    chart: str
    namespace: str


class ServiceORM(ServiceBase, table=True):
    __tablename__ = "service"
    __table_args__ = (UniqueConstraint("application_id", "name", name="uq_service_name_in_app"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    application_id: uuid.UUID = Field(foreign_key="application.id", index=True)
    name: str = Field(nullable=False, index=True)
    chart: str = Field(nullable=False)
    namespace: str = Field(nullable=False)
    status: str = Field(default=SERVICE_STATUS_PENDING, nullable=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    application: ApplicationORM = Relationship(back_populates="services")
    configs: list["ServiceConfigORM"] = Relationship(
        back_populates="service",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class ServiceConfigORM(SQLModel, table=True):
    __tablename__ = "service_config"
    __table_args__ = (UniqueConstraint("service_id", "key", name="uq_config_key_in_service"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    service_id: uuid.UUID = Field(foreign_key="service.id", index=True)
    key: str = Field(nullable=False, index=True)
    # Secret rows hold the literal secret value; encryption at rest is handled outside this service.
    value: str = Field(default="", sa_column=Column(Text(), nullable=False))
    is_secret: bool = Field(default=False, nullable=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    service: ServiceORM = Relationship(back_populates="configs")


class ServiceSummary(ServiceBase):
    id: uuid.UUID
    status: str
    created_at: datetime
    updated_at: datetime


class ServiceConfigRead(SQLModel):
    id: uuid.UUID
    key: str
    value: str
    is_secret: bool


class ServiceDetail(ServiceSummary):
    application_id: uuid.UUID
    configs: list[ServiceConfigRead] = Field(default_factory=list)


class ServiceConfigReveal(SQLModel):
    config: ServiceConfigRead


class ProvisionRequest(SQLModel):
    infra_config: str = Field(min_length=1)
    # Values for SECRET::<name> markers, keyed by marker name.
    secrets: dict[str, str] = Field(default_factory=dict)


class ProvisionResponse(SQLModel):
    services: list[ServiceSummary]
    message: str


class AppEnvResponse(SQLModel):
    env: dict[str, str]
