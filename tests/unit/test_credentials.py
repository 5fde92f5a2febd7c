"""Unit tests for environment-sourced credentials."""

import pytest

from pipeline_manager.credentials import REDACTED, Credentials, scan_for_literal_secrets
from pipeline_manager.exceptions import CredentialError


def test_from_environment_reads_known_variables():
    credentials = Credentials.from_environment(
        {
            "REGISTRY_USERNAME": "ci",
            "REGISTRY_PASSWORD": "hunter2",
            "AWS_ACCESS_KEY_ID": "AKIAEXAMPLE",
            "AWS_SECRET_ACCESS_KEY": "",
            "UNRELATED": "x",
        }
    )

    assert credentials.get("registry_username") == "ci"
    assert credentials.get("registry_password") == "hunter2"
    assert credentials.get("aws_access_key_id") == "AKIAEXAMPLE"
    # Empty values count as missing
    assert credentials.get("aws_secret_access_key") is None
    assert credentials.get("sonar_token") is None


def test_secrets_are_not_in_repr():
    credentials = Credentials.from_environment({"REGISTRY_PASSWORD": "hunter2"})

    assert "hunter2" not in repr(credentials)
    assert "hunter2" not in str(credentials)


def test_require_lists_every_missing_variable():
    credentials = Credentials.from_environment({"REGISTRY_USERNAME": "ci"})

    with pytest.raises(CredentialError) as exc_info:
        credentials.require("registry_username", "registry_password", "sonar_token")

    assert "REGISTRY_PASSWORD" in exc_info.value.message
    assert "SONAR_TOKEN" in exc_info.value.message
    assert "REGISTRY_USERNAME" not in exc_info.value.message


def test_require_passes_when_present():
    Credentials.from_environment({"SONAR_TOKEN": "t"}).require("sonar_token")


def test_redact_replaces_only_secret_values():
    credentials = Credentials.from_environment(
        {"REGISTRY_USERNAME": "ci", "REGISTRY_PASSWORD": "pw", "SONAR_TOKEN": "pw-long"}
    )

    text = credentials.redact("docker login -u ci -p pw; sonar pw-long")

    assert text == f"docker login -u ci -p {REDACTED}; sonar {REDACTED}"


def test_scan_for_literal_secrets():
    data = {
        "app_name": "shop",
        "registry_password": "hunter2",
        "aws": {"secret_access_key": "abc", "region": "us-east-1"},
        "images": [{"name": "backend", "token": ""}],
        "sonar_token": None,
    }

    assert scan_for_literal_secrets(data) == ["registry_password", "aws.secret_access_key"]
