from __future__ import annotations

import json
from pathlib import Path
from typing import Any
import uuid

import yaml

from tests.provisioner_utils import command_error

WEBSHOP = """
services:
  db:
    chart: bitnami/postgresql
    env:
      POSTGRES_USER: shop
      POSTGRES_PASSWORD: SECRET::webshop-postgres-password
  cache:
    chart: bitnami/redis
app:
  env:
    DATABASE_URL: "postgres://shop:{{ services.db.env.POSTGRES_PASSWORD }}@db:5432/webshop"
"""


def _parse_yaml_stdout(result) -> Any:
    return yaml.safe_load(result.stdout)


def _write(tmp_path: Path, name: str, content: str) -> str:
    path = tmp_path / name
    path.write_text(content)
    return str(path)


def _seed(runner, app) -> tuple[str, str, str]:
    org_id = str(uuid.uuid4())
    result = runner.invoke(app, ["register-application", "Web Shop", "--org-id", org_id])
    assert result.exit_code == 0, result.output
    application = _parse_yaml_stdout(result)
    assert application["name"] == "Web Shop"

    owner, member = str(uuid.uuid4()), str(uuid.uuid4())
    for user_id, role in ((owner, "owner"), (member, "member")):
        result = runner.invoke(app, ["grant-role", "--org-id", org_id, "--user-id", user_id, "--role", role])
        assert result.exit_code == 0, result.output
        assert _parse_yaml_stdout(result)["role"] == role
    return application["id"], owner, member


def test_cli_grant_role_twice_fails(cli_runner):
    runner, app = cli_runner
    org_id, user_id = str(uuid.uuid4()), str(uuid.uuid4())

    first = runner.invoke(app, ["grant-role", "--org-id", org_id, "--user-id", user_id, "--role", "owner"])
    assert first.exit_code == 0

    second = runner.invoke(app, ["grant-role", "--org-id", org_id, "--user-id", user_id, "--role", "admin"])
    assert second.exit_code == 1
    assert "already holds a role" in second.output


def test_cli_provision_flow(cli_runner, cli_cluster, tmp_path):
    runner, app = cli_runner
    application_id, owner, member = _seed(runner, app)
    config_file = _write(tmp_path, "infra.yaml", WEBSHOP)
    secrets_file = _write(tmp_path, "secrets.json", json.dumps({"webshop-postgres-password": "secret123"}))

    result = runner.invoke(
        app, ["provision", application_id, config_file, "--caller", owner, "--secrets-file", secrets_file]
    )
    assert result.exit_code == 0, result.output
    provisioned = _parse_yaml_stdout(result)
    assert provisioned["message"] == "Provisioning initiated for 2 services"
    assert {service["name"]: service["status"] for service in provisioned["services"]} == {
        "db": "running",
        "cache": "running",
    }
    assert cli_cluster.secrets.secrets == {("web-shop", "db-secrets"): {"POSTGRES_PASSWORD": "secret123"}}

    result = runner.invoke(app, ["list-services", application_id, "--caller", member])
    assert result.exit_code == 0, result.output
    services = {service["name"]: service for service in _parse_yaml_stdout(result)}
    password = next(config for config in services["db"]["configs"] if config["key"] == "POSTGRES_PASSWORD")
    assert password["value"] == "***MASKED***"

    result = runner.invoke(app, ["reveal-config", password["id"], "--caller", owner])
    assert result.exit_code == 0, result.output
    assert _parse_yaml_stdout(result)["config"]["value"] == "secret123"

    result = runner.invoke(app, ["reveal-config", password["id"], "--caller", member])
    assert result.exit_code == 1
    assert "Insufficient permissions" in result.output

    result = runner.invoke(app, ["render-app-env", application_id, config_file, "--caller", owner])
    assert result.exit_code == 0, result.output
    assert _parse_yaml_stdout(result) == {"DATABASE_URL": "postgres://shop:secret123@db:5432/webshop"}

    result = runner.invoke(app, ["release-status", services["db"]["id"]])
    assert result.exit_code == 0, result.output
    assert _parse_yaml_stdout(result)["release_status"] == "running"

    result = runner.invoke(app, ["unprovision", services["db"]["id"], "--caller", owner])
    assert result.exit_code == 0, result.output
    unprovisioned = _parse_yaml_stdout(result)
    assert unprovisioned["deleted"] is True
    assert unprovisioned["service"]["status"] == "stopped"
    assert ("web-shop", "db-secrets") in cli_cluster.secrets.deleted

    result = runner.invoke(app, ["list-services", application_id, "--caller", owner])
    assert [service["name"] for service in _parse_yaml_stdout(result)] == ["cache"]


def test_cli_provision_reports_failed_services(cli_runner, cli_cluster, tmp_path):
    runner, app = cli_runner
    application_id, owner, _ = _seed(runner, app)
    cli_cluster.charts.raise_on_install = command_error("UPGRADE FAILED")

    result = runner.invoke(
        app, ["provision", application_id, _write(tmp_path, "infra.yaml", WEBSHOP), "--caller", owner]
    )

    assert result.exit_code == 1
    assert "Provisioning failed for one or more services" in result.output


def test_cli_unprovision_failure_keeps_service(cli_runner, cli_cluster, tmp_path):
    runner, app = cli_runner
    application_id, owner, _ = _seed(runner, app)
    result = runner.invoke(
        app, ["provision", application_id, _write(tmp_path, "infra.yaml", WEBSHOP), "--caller", owner]
    )
    services = {service["name"]: service for service in _parse_yaml_stdout(result)["services"]}
    cli_cluster.charts.raise_on_uninstall = command_error("Kubernetes cluster unreachable")

    result = runner.invoke(app, ["unprovision", services["cache"]["id"], "--caller", owner])

    assert result.exit_code == 1
    assert "Unprovisioning failed" in result.output
    listed = runner.invoke(app, ["list-services", application_id, "--caller", owner])
    statuses = {service["name"]: service["status"] for service in _parse_yaml_stdout(listed)}
    assert statuses["cache"] == "failed"


def test_cli_provision_rejects_member(cli_runner, cli_cluster, tmp_path):
    runner, app = cli_runner
    application_id, _, member = _seed(runner, app)

    result = runner.invoke(
        app, ["provision", application_id, _write(tmp_path, "infra.yaml", WEBSHOP), "--caller", member]
    )

    assert result.exit_code == 1
    assert "Insufficient permissions to provision services" in result.output
    assert cli_cluster.charts.calls == []


def test_cli_provision_rejects_bad_secrets_file(cli_runner, cli_cluster, tmp_path):
    runner, app = cli_runner
    application_id, owner, _ = _seed(runner, app)

    result = runner.invoke(
        app,
        [
            "provision",
            application_id,
            _write(tmp_path, "infra.yaml", WEBSHOP),
            "--caller",
            owner,
            "--secrets-file",
            _write(tmp_path, "secrets.json", "[1, 2]"),
        ],
    )

    assert result.exit_code == 1
    assert "--secrets-file must contain a JSON object" in result.output


def test_cli_validate_config(cli_runner, tmp_path):
    runner, app = cli_runner

    result = runner.invoke(app, ["validate-config", _write(tmp_path, "infra.yaml", WEBSHOP)])
    assert result.exit_code == 0, result.output
    assert _parse_yaml_stdout(result) == {
        "services": ["cache", "db"],
        "secret_references": [{"name": "webshop-postgres-password", "key": "db.POSTGRES_PASSWORD"}],
    }

    result = runner.invoke(app, ["validate-config", _write(tmp_path, "bad.yaml", "services:\n  db: {}\n")])
    assert result.exit_code == 1
    assert "chart is required for service db" in result.output


def test_cli_release_status_unknown_service(cli_runner, cli_cluster):
    runner, app = cli_runner

    result = runner.invoke(app, ["release-status", str(uuid.uuid4())])

    assert result.exit_code == 1
    assert "Service not found" in result.output


def test_cli_register_application_rejects_name_without_letters(cli_runner):
    runner, app = cli_runner

    result = runner.invoke(app, ["register-application", "!!!", "--org-id", str(uuid.uuid4())])

    assert result.exit_code == 1
    assert "contains no letters or digits" in result.output
