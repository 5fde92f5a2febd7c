"""Pipeline configuration file management.

This module reads and updates pipeline.yml in place using ruamel.yaml, so
comments and key order written by hand survive a ``config-set``.
"""

import shutil
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from pipeline_manager.exceptions import ConfigurationError
from pipeline_manager.logging_config import get_logger
from pipeline_manager.models.pipeline import PipelineConfig

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "pipeline.yml"

STARTER_CONFIG = """\
# Pipeline configuration for pipeline-mgr.
# Credentials are read from the environment (REGISTRY_USERNAME,
# REGISTRY_PASSWORD, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, SONAR_TOKEN)
# and must not be written here.
app_name: {app_name}
git_repo_url: {git_repo_url}
git_branch: main
registry: ""
image_tag: latest
images:
  - name: backend
    repository: {app_name}/backend
  - name: frontend
    repository: {app_name}/frontend
aws_region: us-east-1
# eks_cluster_name: my-cluster
kubeconfig: ~/.kube/config
namespace: default
manifests_dir: k8s
workspace: workspace
rollout_timeout: 300
terraform_dir: terraform
"""


class ConfigFileManager:
    """Reads and updates keys of a pipeline configuration file."""

    def __init__(self, config_path: str | Path = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=4, offset=2)

    def create(self, app_name: str, git_repo_url: str, force: bool = False) -> None:
        """Write a starter configuration file.

        Raises:
            ConfigurationError: If the file exists and force is not set
        """
        if self.config_path.exists() and not force:
            raise ConfigurationError(
                f"Configuration file already exists: {self.config_path}",
                "Use --force to overwrite it",
            )
        text = STARTER_CONFIG.format(app_name=app_name, git_repo_url=git_repo_url)
        # Validate before writing anything
        PipelineConfig(**self.yaml.load(text))
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(text)
        logger.info(f"Wrote starter configuration: {self.config_path}")

    def read(self) -> CommentedMap:
        """Read the configuration file.

        Raises:
            ConfigurationError: If the file is missing, empty or not valid YAML
        """
        logger.debug(f"Reading configuration file: {self.config_path}")

        if not self.config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}",
                "Create one with: pipeline-mgr init-config",
            )

        try:
            with open(self.config_path) as f:
                data = self.yaml.load(f)
        except Exception as e:
            logger.error(f"Failed to read configuration file: {e}")
            raise ConfigurationError(
                f"Failed to read configuration file: {e}",
                f"Check the YAML syntax of {self.config_path.absolute()}",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {self.config_path} must be a mapping")
        return data

    def write(self, data: CommentedMap) -> None:
        """Write the configuration, keeping a backup of the previous file."""
        if self.config_path.exists():
            backup_path = self.config_path.with_suffix(".yml.backup")
            logger.debug(f"Creating backup at: {backup_path}")
            shutil.copy2(self.config_path, backup_path)

        try:
            with open(self.config_path, "w") as f:
                self.yaml.dump(data, f)
        except OSError as e:
            raise ConfigurationError(
                f"Failed to write configuration file: {e}",
                "Check disk space and file system permissions",
            )
        logger.info(f"Successfully wrote configuration file: {self.config_path}")

    def get(self, key: str):
        """Return the value at a dotted key.

        Raises:
            ConfigurationError: If the key does not exist
        """
        value = self.read()
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                raise ConfigurationError(f"Key '{key}' not found in {self.config_path}")
        return value

    def set(self, key: str, value) -> None:
        """Set the value at a dotted key, creating intermediate mappings.

        The result must still be a valid pipeline configuration.

        Raises:
            ConfigurationError: If a parent is not a mapping or the result is invalid
        """
        import pydantic

        from pipeline_manager.credentials import scan_for_literal_secrets

        data = self.read()
        parts = key.split(".")
        current = data
        for part in parts[:-1]:
            if part not in current:
                current[part] = CommentedMap()
            elif not isinstance(current[part], dict):
                raise ConfigurationError(f"Cannot set nested key: '{part}' is not a mapping")
            current = current[part]
        current[parts[-1]] = value

        if scan_for_literal_secrets(data):
            raise ConfigurationError(
                f"Refusing to store a credential in {self.config_path}",
                "Export it as an environment variable instead",
            )
        try:
            PipelineConfig(**data)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Setting '{key}' makes the configuration invalid", str(e))

        self.write(data)
