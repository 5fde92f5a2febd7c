"""Pytest configuration and shared fixtures."""

import shutil
from pathlib import Path

import pytest
from hypothesis import Verbosity, settings

from pipeline_manager.executor import CommandResult

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")

REFERENCE_MANIFESTS = Path(__file__).parent.parent / "k8s"


class FakeRunner:
    """CommandRunner stand-in that records calls and fails on request."""

    def __init__(self, fail_on=None, returncode=1, stderr="boom"):
        self.calls = []
        self.fail_on = fail_on
        self.returncode = returncode
        self.stderr = stderr

    def run(self, argv, env=None, cwd=None, timeout=None, stdin=None):
        self.calls.append({"argv": list(argv), "env": env, "cwd": cwd, "stdin": stdin})
        if self.fail_on is not None and self.fail_on(argv):
            return CommandResult(argv=list(argv), returncode=self.returncode, stderr=self.stderr)
        return CommandResult(argv=list(argv), returncode=0, stdout="ok\n")


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def sample_config_data():
    """Sample pipeline configuration data."""
    return {
        "app_name": "shop",
        "git_repo_url": "https://github.com/example/shop.git",
        "git_branch": "main",
        "registry": "registry.example.com",
        "image_tag": "42",
        "images": [
            {"name": "backend", "repository": "app/backend"},
            {"name": "frontend", "repository": "app/frontend"},
        ],
        "aws_region": "eu-west-1",
        "namespace": "shop",
        "manifests_dir": "k8s",
    }


@pytest.fixture
def manifest_dir(tmp_path):
    """A copy of the reference manifest set."""
    target = tmp_path / "k8s"
    shutil.copytree(REFERENCE_MANIFESTS, target)
    return target
