from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, select

from stratus.db import _build_engine, init_db
from stratus.models import ServiceORM
from stratus.provisioner import ServiceProvisioner
from stratus.services.infrastructure import InfrastructureService
from tests.conftest import seed_application
from tests.provisioner_utils import FakeChartProvisioner, FakeSecretStore


def test_memory_database_keeps_a_single_connection():
    assert isinstance(_build_engine("sqlite://").pool, StaticPool)
    assert isinstance(_build_engine("sqlite:///:memory:").pool, StaticPool)


def test_file_database_gets_a_connection_per_session(tmp_path):
    engine = _build_engine(f"sqlite:///{tmp_path / 'stratus.db'}")
    assert not isinstance(engine.pool, StaticPool)
    engine.dispose()


def test_worker_pool_provisions_every_service_on_file_database(tmp_path):
    engine = _build_engine(f"sqlite:///{tmp_path / 'stratus.db'}")
    init_db(engine)
    charts = FakeChartProvisioner()
    executor = ThreadPoolExecutor(max_workers=1)
    infrastructure = InfrastructureService(
        session_factory=lambda: Session(engine),
        provisioner=ServiceProvisioner(charts=charts, secrets=FakeSecretStore()),
        executor=executor,
    )
    document = "services:\n" + "".join(
        f"  svc-{index}:\n    chart: bitnami/redis\n    env:\n      INDEX: '{index}'\n" for index in range(30)
    )

    with Session(engine) as session:
        seeded = seed_application(session)
        response = infrastructure.provision_services(
            session,
            caller_id=seeded.users.owner,
            application_id=seeded.application.id,
            document_text=document,
            secrets={},
        )
    executor.shutdown(wait=True)

    assert len(response.services) == 30
    with Session(engine) as session:
        services = session.exec(select(ServiceORM).where(ServiceORM.application_id == seeded.application.id)).all()
    assert len(services) == 30
    assert {service.status for service in services} == {"running"}
    assert charts.names().count("install") == 30
    engine.dispose()
