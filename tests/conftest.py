import importlib
from types import SimpleNamespace
import uuid

import pytest
from starlette.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session
from typer.testing import CliRunner

from stratus.api.infrastructure import get_infrastructure_service
from stratus.db import get_session, init_db
from stratus.main import app
from stratus.models import ApplicationCreate, OrganizationMemberCreate
from stratus.provisioner import ServiceProvisioner
from stratus.services import directory as directory_service
from stratus.services.infrastructure import InfrastructureService
from tests.provisioner_utils import DeferredExecutor, FakeChartProvisioner, FakeSecretStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def db_session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def executor():
    return DeferredExecutor()


@pytest.fixture
def fake_charts():
    return FakeChartProvisioner()


@pytest.fixture
def fake_secrets():
    return FakeSecretStore()


@pytest.fixture
def infrastructure(engine, fake_charts, fake_secrets, executor):
    return InfrastructureService(
        session_factory=lambda: Session(engine),
        provisioner=ServiceProvisioner(charts=fake_charts, secrets=fake_secrets),
        executor=executor,
    )


def seed_application(session, *, name: str = "Web Shop") -> SimpleNamespace:
    """Register an application plus one user per role (and one outsider) in its organization."""
    org_id = uuid.uuid4()
    application = directory_service.register_application(session, ApplicationCreate(org_id=org_id, name=name))
    users = SimpleNamespace(owner=uuid.uuid4(), admin=uuid.uuid4(), member=uuid.uuid4(), outsider=uuid.uuid4())
    for role in ("owner", "admin", "member"):
        directory_service.grant_role(
            session, org_id=org_id, payload=OrganizationMemberCreate(user_id=getattr(users, role), role=role)
        )
    return SimpleNamespace(application=application, org_id=org_id, users=users)


@pytest.fixture
def seeded(db_session):
    return seed_application(db_session)


@pytest.fixture
def client(engine, infrastructure):
    # A session per request, as in production, so reads see what background tasks wrote.
    def override_get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_db
    app.dependency_overrides[get_infrastructure_service] = lambda: infrastructure

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture()
def cli_runner(tmp_path, monkeypatch):
    # The CLI opens its own sessions, so it gets a file-backed database per test.
    db_path = tmp_path / "test_cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")

    import stratus.db as db

    importlib.reload(db)
    init_db(db.engine)

    import stratus.cli as cli

    importlib.reload(cli)

    return CliRunner(), cli.app


@pytest.fixture
def cli_cluster(cli_runner, monkeypatch):
    """Point the CLI at fake chart and secret backends."""
    import stratus.cli as cli

    charts = FakeChartProvisioner()
    secrets = FakeSecretStore()
    monkeypatch.setattr(cli, "_build_provisioner", lambda: ServiceProvisioner(charts=charts, secrets=secrets))
    return SimpleNamespace(charts=charts, secrets=secrets)
