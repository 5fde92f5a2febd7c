"""Data models for pipeline configuration, stages and run results."""

import os
import re
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

DNS_LABEL_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
AWS_REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d$")
IMAGE_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


class ImageSpec(BaseModel):
    """A container image built and pushed by the pipeline."""

    name: str
    repository: str
    context: str | None = None
    dockerfile: str = "Dockerfile"

    @field_validator("name", "repository")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate name and repository are not empty."""
        if not v:
            raise ValueError("must not be empty")
        return v

    @property
    def build_context(self) -> str:
        """Docker build context directory, defaulting to the image name."""
        return self.context or self.name

    def reference(self, registry: str, tag: str) -> str:
        """Full image reference, e.g. registry.example.com/myorg/backend:42."""
        if registry:
            return f"{registry.rstrip('/')}/{self.repository}:{tag}"
        return f"{self.repository}:{tag}"


def default_images() -> list[ImageSpec]:
    return [
        ImageSpec(name="backend", repository="app/backend"),
        ImageSpec(name="frontend", repository="app/frontend"),
    ]


class PipelineConfig(BaseModel):
    """Pipeline configuration."""

    app_name: str
    git_repo_url: str
    git_branch: str = "main"
    registry: str = ""
    image_tag: str = "latest"
    images: list[ImageSpec] = Field(default_factory=default_images)
    aws_region: str = "us-east-1"
    eks_cluster_name: str | None = None
    kubeconfig: str = "~/.kube/config"
    namespace: str = "default"
    manifests_dir: str = "k8s"
    workspace: str = "workspace"
    sonar_project_key: str | None = None
    sonar_host_url: str | None = None
    rollout_timeout: int = 300
    terraform_dir: str = "terraform"

    @field_validator("app_name")
    @classmethod
    def validate_app_name(cls, v: str) -> str:
        """Validate app_name is a DNS-1123 label."""
        if not v:
            raise ValueError("app_name cannot be empty")
        if len(v) > 63 or not DNS_LABEL_PATTERN.match(v):
            raise ValueError(
                f"app_name '{v}' must be a lowercase DNS label "
                "(alphanumerics and hyphens, at most 63 characters)"
            )
        return v

    @field_validator("git_repo_url")
    @classmethod
    def validate_git_repo_url(cls, v: str) -> str:
        """Validate git_repo_url is not empty."""
        if not v:
            raise ValueError("git_repo_url cannot be empty")
        return v

    @field_validator("aws_region")
    @classmethod
    def validate_aws_region(cls, v: str) -> str:
        """Validate aws_region looks like an AWS region code."""
        if not AWS_REGION_PATTERN.match(v):
            raise ValueError(f"aws_region '{v}' is not a valid region (e.g., us-east-1)")
        return v

    @field_validator("image_tag")
    @classmethod
    def validate_image_tag(cls, v: str) -> str:
        """Validate image_tag follows the Docker tag grammar."""
        if not IMAGE_TAG_PATTERN.match(v):
            raise ValueError(
                f"image_tag '{v}' must be 1-128 characters of letters, digits, '_', '.' "
                "or '-', and cannot start with '.' or '-'"
            )
        return v

    @field_validator("rollout_timeout")
    @classmethod
    def validate_rollout_timeout(cls, v: int) -> int:
        """Validate rollout_timeout is positive."""
        if v <= 0:
            raise ValueError("rollout_timeout must be greater than 0")
        return v

    @model_validator(mode="after")
    def validate_unique_images(self) -> "PipelineConfig":
        """Validate image names are unique."""
        names = [image.name for image in self.images]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate image names: {', '.join(duplicates)}")
        return self

    @property
    def kubeconfig_path(self) -> Path:
        return Path(self.kubeconfig).expanduser()

    @property
    def effective_sonar_project_key(self) -> str:
        return self.sonar_project_key or self.app_name

    def image_references(self) -> dict[str, str]:
        """Map image name to its full reference for this build."""
        return {
            image.name: image.reference(self.registry, self.image_tag) for image in self.images
        }

    def with_environment(self, env: Mapping[str, str] | None = None) -> "PipelineConfig":
        """Return a copy with overrides from environment variables.

        IMAGE_TAG wins over BUILD_NUMBER, and AWS_REGION over AWS_DEFAULT_REGION.

        Raises:
            ConfigurationError: If an environment value fails validation
        """
        import pydantic

        from pipeline_manager.exceptions import ConfigurationError

        env = os.environ if env is None else env
        overrides = {}

        region = env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION")
        if region:
            overrides["aws_region"] = region
        if env.get("KUBECONFIG"):
            overrides["kubeconfig"] = env["KUBECONFIG"]
        tag = env.get("IMAGE_TAG") or env.get("BUILD_NUMBER")
        if tag:
            overrides["image_tag"] = tag
        if env.get("REGISTRY"):
            overrides["registry"] = env["REGISTRY"]
        if env.get("GIT_BRANCH"):
            overrides["git_branch"] = env["GIT_BRANCH"]

        if not overrides:
            return self

        # Re-validate so environment values get the same checks as the file
        try:
            return type(self)(**{**self.model_dump(), **overrides})
        except pydantic.ValidationError as e:
            raise ConfigurationError(
                "Invalid value from environment",
                f"Overrides: {', '.join(sorted(overrides))}\n{e}",
            )

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(exclude_none=True), f, default_flow_style=False, sort_keys=False
            )

    @classmethod
    def load(cls, path: str | Path) -> "PipelineConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing, malformed, invalid, or
                contains literal credentials
        """
        import pydantic
        import yaml

        from pipeline_manager.credentials import scan_for_literal_secrets
        from pipeline_manager.exceptions import ConfigurationError

        path = Path(path)
        if not path.exists():
            raise ConfigurationError(
                f"Pipeline configuration not found: {path}",
                "Create one with: pipeline-mgr init-config",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}", str(e))

        if not isinstance(data, dict):
            raise ConfigurationError(f"Pipeline configuration {path} must be a mapping")

        offending = scan_for_literal_secrets(data)
        if offending:
            raise ConfigurationError(
                f"Pipeline configuration {path} contains literal credentials: "
                f"{', '.join(offending)}",
                "Remove them from the file and export them as environment variables "
                "(REGISTRY_USERNAME, REGISTRY_PASSWORD, AWS_ACCESS_KEY_ID, "
                "AWS_SECRET_ACCESS_KEY, SONAR_TOKEN).",
            )

        try:
            return cls(**data)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid pipeline configuration in {path}", str(e))


class StageStatus(str, Enum):
    """Lifecycle of a stage within a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class Stage(BaseModel):
    """A named, ordered sequence of external commands."""

    name: str
    description: str = ""
    commands: list[list[str]]
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    # Command index -> data fed on stdin (e.g. a registry password)
    stdin: dict[int, SecretStr] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate stage name is not empty."""
        if not v or not v.strip():
            raise ValueError("stage name cannot be empty")
        return v

    @field_validator("commands")
    @classmethod
    def validate_commands(cls, v: list[list[str]]) -> list[list[str]]:
        """Validate there is at least one command and none is empty."""
        if not v:
            raise ValueError("stage must have at least one command")
        for i, argv in enumerate(v):
            if not argv:
                raise ValueError(f"command {i} is empty")
        return v

    def stdin_for(self, index: int) -> str | None:
        value = self.stdin.get(index)
        return value.get_secret_value() if value is not None else None


class StageResult(BaseModel):
    """Outcome of a single stage."""

    stage: str
    status: StageStatus = StageStatus.PENDING
    returncode: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    output: str = ""
    error: str | None = None

    @property
    def duration(self) -> float | None:
        """Elapsed seconds, or None if the stage never ran."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class PipelineRun(BaseModel):
    """Results of one pipeline execution."""

    pipeline: str
    results: list[StageResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(r.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED) for r in self.results)

    @property
    def failed_stage(self) -> StageResult | None:
        return next((r for r in self.results if r.status == StageStatus.FAILED), None)
