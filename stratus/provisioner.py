from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable

from stratus.models import ServiceConfigORM, ServiceORM
from stratus.proc import AdapterCommandError
from stratus.services.errors import ProvisioningException
from stratus.services.helm_adapter import ChartProvisioner, HelmChartProvisioner
from stratus.services.kube_adapter import KubeSecretStore, SecretStore
from stratus.services.naming import release_name_for_chart, secret_object_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionedConfig:
    values: dict[str, str]
    secrets: dict[str, str]


def partition_configs(configs: Iterable[ServiceConfigORM]) -> PartitionedConfig:
    values: dict[str, str] = {}
    secrets: dict[str, str] = {}
    for config in configs:
        if config.is_secret:
            secrets[config.key] = config.value
        else:
            values[config.key] = config.value
    return PartitionedConfig(values=values, secrets=secrets)


class ServiceProvisioner:
    """Provision and tear down one service: its secret object plus its chart release.

    Steps are not transactional. A secret created before a failed chart install is left in
    place; a later provision of the same service overwrites it.
    """

    def __init__(self, *, charts: ChartProvisioner | None = None, secrets: SecretStore | None = None) -> None:
        self.charts = charts or HelmChartProvisioner()
        self.secrets = secrets or KubeSecretStore()

    def provision(self, service: ServiceORM, configs: Iterable[ServiceConfigORM]) -> None:
        logger.info(
            "Provisioning service '%s' (chart=%s namespace=%s)",
            service.name,
            service.chart,
            service.namespace,
        )
        partitioned = partition_configs(configs)

        if partitioned.secrets:
            secret_name = secret_object_name(service.name)
            try:
                self.secrets.apply_secret(service.namespace, secret_name, partitioned.secrets)
            except AdapterCommandError as exc:
                raise ProvisioningException(f"failed to create secrets for service {service.name}: {exc}") from exc

        try:
            self.charts.install(service.chart, service.namespace, partitioned.values)
        except AdapterCommandError as exc:
            raise ProvisioningException(f"failed to install chart for service {service.name}: {exc}") from exc

        logger.info("Provisioned service '%s' in namespace '%s'", service.name, service.namespace)

    def unprovision(self, service: ServiceORM) -> None:
        release_name = release_name_for_chart(service.chart)
        logger.info(
            "Unprovisioning service '%s' (release=%s namespace=%s)",
            service.name,
            release_name,
            service.namespace,
        )
        try:
            self.charts.uninstall(release_name, service.namespace)
        except AdapterCommandError as exc:
            raise ProvisioningException(f"failed to uninstall chart for service {service.name}: {exc}") from exc

        secret_name = secret_object_name(service.name)
        try:
            self.secrets.delete_secret(service.namespace, secret_name)
        except AdapterCommandError as exc:
            logger.warning("Failed to delete secret '%s' for service '%s': %s", secret_name, service.name, exc)

        logger.info("Unprovisioned service '%s' from namespace '%s'", service.name, service.namespace)

    def release_status(self, service: ServiceORM) -> str:
        try:
            return self.charts.status(release_name_for_chart(service.chart), service.namespace)
        except AdapterCommandError as exc:
            raise ProvisioningException(f"failed to read release status for service {service.name}: {exc}") from exc
