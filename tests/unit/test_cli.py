"""Unit tests for the pipeline-mgr CLI."""

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from conftest import REFERENCE_MANIFESTS
from typer.testing import CliRunner

from pipeline_manager.cli import app
from pipeline_manager.executor import CommandResult

runner = CliRunner()

# Keep CI variables of the machine running the tests out of the config
CLEAN_ENV = {
    name: None
    for name in (
        "BUILD_NUMBER",
        "IMAGE_TAG",
        "REGISTRY",
        "GIT_BRANCH",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "KUBECONFIG",
        "REGISTRY_USERNAME",
        "REGISTRY_PASSWORD",
        "SONAR_TOKEN",
    )
}


@pytest.fixture
def project(tmp_path, sample_config_data, monkeypatch):
    """A project directory with pipeline.yml and the reference manifests."""
    monkeypatch.chdir(tmp_path)
    shutil.copytree(REFERENCE_MANIFESTS, tmp_path / "k8s")
    (tmp_path / "pipeline.yml").write_text(yaml.safe_dump(sample_config_data))
    return tmp_path


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.stdout


def test_run_help():
    result = runner.invoke(app, ["run", "--help"])

    assert result.exit_code == 0
    assert "--dry-run" in result.stdout
    assert "--only" in result.stdout


def test_init_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app, ["init-config", "--app-name", "shop", "--repo", "https://example.com/shop.git"]
    )

    assert result.exit_code == 0
    assert (tmp_path / "pipeline.yml").exists()

    again = runner.invoke(
        app, ["init-config", "--app-name", "shop", "--repo", "https://example.com/shop.git"]
    )
    assert again.exit_code == 1
    assert "already exists" in again.stdout


def test_missing_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["run"], env=CLEAN_ENV)

    assert result.exit_code == 1
    assert "Pipeline configuration not found" in result.stdout


def test_config_get_and_set(project):
    set_result = runner.invoke(app, ["config-set", "rollout_timeout", "600", "--type", "int"])
    assert set_result.exit_code == 0

    get_result = runner.invoke(app, ["config-get", "rollout_timeout"])
    assert get_result.exit_code == 0
    assert "600" in get_result.stdout


def test_config_set_rejects_credentials(project):
    result = runner.invoke(app, ["config-set", "registry_password", "hunter2"])

    assert result.exit_code == 1
    assert "credential" in result.stdout


def test_show_config_applies_environment(project):
    result = runner.invoke(app, ["show-config"], env={**CLEAN_ENV, "BUILD_NUMBER": "77"})

    assert result.exit_code == 0
    assert "registry.example.com/app/backend:77" in result.stdout


def test_invalid_environment_value_is_a_configuration_error(project):
    result = runner.invoke(app, ["show-config"], env={**CLEAN_ENV, "IMAGE_TAG": "feature/login"})

    assert result.exit_code == 1
    assert "Configuration Error" in result.stdout
    assert "Invalid value from environment" in result.stdout


def test_run_with_invalid_region_fails_before_any_stage(project):
    with patch("pipeline_manager.executor.CommandRunner.run") as mock_run:
        result = runner.invoke(app, ["run"], env={**CLEAN_ENV, "AWS_REGION": "moon"})

    assert result.exit_code == 1
    assert "Invalid value from environment" in result.stdout
    mock_run.assert_not_called()


def test_stages_redacts_secrets(project):
    env = {**CLEAN_ENV, "REGISTRY_USERNAME": "ci", "REGISTRY_PASSWORD": "hunter2"}

    result = runner.invoke(app, ["stages"], env=env)

    assert result.exit_code == 0
    assert "static-analysis" in result.stdout
    assert "--password-stdin" in result.stdout
    assert "hunter2" not in result.stdout


def test_validate_manifests(project):
    result = runner.invoke(app, ["validate-manifests", "--dir", "k8s"])

    assert result.exit_code == 0
    assert "Manifest set is valid" in result.stdout


def test_validate_manifests_reports_problems(project):
    (project / "k8s" / "ingress.yaml").unlink()

    result = runner.invoke(app, ["validate-manifests", "--dir", "k8s"])

    assert result.exit_code == 1
    assert "Missing Ingress definition" in result.stdout


def test_render_manifests(project):
    result = runner.invoke(app, ["render-manifests", "--output", "out.yaml"], env=CLEAN_ENV)

    assert result.exit_code == 0
    documents = list(yaml.safe_load_all(Path("out.yaml").read_text()))
    images = [
        d["spec"]["template"]["spec"]["containers"][0]["image"]
        for d in documents
        if d["kind"] == "Deployment"
    ]
    assert sorted(images) == [
        "registry.example.com/app/backend:42",
        "registry.example.com/app/frontend:42",
    ]


def test_run_dry_run(project):
    with patch("pipeline_manager.executor.CommandRunner.run") as mock_run:
        result = runner.invoke(app, ["run", "--dry-run"], env=CLEAN_ENV)

    assert result.exit_code == 0
    mock_run.assert_not_called()
    assert "succeeded" in result.stdout
    # The deploy stage names the rendered manifests, but a dry run writes nothing
    assert ".pipeline/manifests.yaml" in result.stdout
    assert not (project / ".pipeline").exists()


def test_run_success(project):
    with patch("pipeline_manager.executor.CommandRunner.run") as mock_run:
        mock_run.side_effect = lambda argv, **kwargs: CommandResult(argv=argv, returncode=0)
        result = runner.invoke(app, ["run", "--only", "deploy,verify"], env=CLEAN_ENV)

    assert result.exit_code == 0
    commands = [call[0][0] for call in mock_run.call_args_list]
    assert commands[0][0] == "kubectl"
    assert "apply" in commands[0]
    assert any("rollout" in c for c in commands)
    assert (project / ".pipeline" / "manifests.yaml").exists()


def test_run_failure_exits_non_zero(project):
    def fake_run(argv, **kwargs):
        returncode = 1 if argv[:2] == ["docker", "build"] else 0
        return CommandResult(argv=argv, returncode=returncode, stderr="build failed")

    with patch("pipeline_manager.executor.CommandRunner.run", side_effect=fake_run) as mock_run:
        result = runner.invoke(app, ["run"], env=CLEAN_ENV)

    assert result.exit_code == 1
    assert "failed at stage build-images" in result.stdout
    assert not any(c[0][0][0] == "kubectl" for c in mock_run.call_args_list)


def test_run_unknown_stage(project):
    result = runner.invoke(app, ["run", "--only", "package"], env=CLEAN_ENV)

    assert result.exit_code == 1
    assert "Unknown stage" in result.stdout


def test_run_rejects_invalid_manifests(project):
    (project / "k8s" / "frontend-service.yaml").unlink()

    result = runner.invoke(app, ["run", "--dry-run"], env=CLEAN_ENV)

    assert result.exit_code == 1
    assert "Missing Service for component 'frontend'" in result.stdout


def test_infra_invalid_action(project):
    result = runner.invoke(app, ["infra", "refresh"])

    assert result.exit_code == 1
    assert "Invalid action" in result.stdout


def test_infra_missing_directory(project):
    result = runner.invoke(app, ["infra", "init"], env=CLEAN_ENV)

    assert result.exit_code == 1
    assert "Terraform directory not found" in result.stdout


def test_provision_missing_playbook(project):
    result = runner.invoke(app, ["provision", "--playbook", "nonexistent.yml"])

    assert result.exit_code == 1
    assert "Playbook not found" in result.stdout


def test_status_without_kubeconfig(project):
    result = runner.invoke(
        app, ["status"], env={**CLEAN_ENV, "KUBECONFIG": str(project / "missing-config")}
    )

    assert result.exit_code == 1
    assert "Kubeconfig not found" in result.stdout
