"""Stage definitions for the build-and-deploy pipeline.

The default pipeline is the reference flow: clone the repository, run static
analysis, build the container images, push them, apply the Kubernetes
manifests and wait for the rollout. Each stage is a fixed list of external
commands built from the pipeline configuration.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml

from pipeline_manager.credentials import Credentials
from pipeline_manager.exceptions import ConfigurationError, ValidationError
from pipeline_manager.logging_config import get_logger
from pipeline_manager.manifests import ManifestSet
from pipeline_manager.models.pipeline import PipelineConfig, Stage

logger = get_logger(__name__)

DEFAULT_STAGE_NAMES = (
    "clone",
    "static-analysis",
    "build-images",
    "push-images",
    "deploy",
    "verify",
)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def clone_stage(config: PipelineConfig) -> Stage:
    return Stage(
        name="clone",
        description=f"Clone {config.git_repo_url} ({config.git_branch})",
        commands=[
            [
                "git",
                "clone",
                "--branch",
                config.git_branch,
                "--depth",
                "1",
                config.git_repo_url,
                config.workspace,
            ]
        ],
    )


def static_analysis_stage(config: PipelineConfig, credentials: Credentials) -> Stage:
    command = [
        "sonar-scanner",
        f"-Dsonar.projectKey={config.effective_sonar_project_key}",
        "-Dsonar.sources=.",
    ]
    if config.sonar_host_url:
        command.append(f"-Dsonar.host.url={config.sonar_host_url}")

    env = {}
    token = credentials.get("sonar_token")
    if token:
        env["SONAR_TOKEN"] = token

    return Stage(
        name="static-analysis",
        description="Run SonarQube static analysis",
        commands=[command],
        env=env,
        cwd=config.workspace,
    )


def build_images_stage(config: PipelineConfig) -> Stage:
    references = config.image_references()
    commands = []
    for image in config.images:
        dockerfile = f"{image.build_context}/{image.dockerfile}"
        commands.append(
            ["docker", "build", "-t", references[image.name], "-f", dockerfile, image.build_context]
        )
    return Stage(
        name="build-images",
        description=f"Build {len(config.images)} container image(s)",
        commands=commands,
        cwd=config.workspace,
    )


def push_images_stage(config: PipelineConfig, credentials: Credentials) -> Stage:
    commands = []
    stdin = {}

    username = credentials.get("registry_username")
    password = credentials.get("registry_password")
    if username and password:
        login = ["docker", "login", "--username", username, "--password-stdin"]
        if config.registry:
            login.append(config.registry)
        commands.append(login)
        stdin[0] = password
    else:
        logger.warning(
            "REGISTRY_USERNAME/REGISTRY_PASSWORD not set, "
            "push-images relies on an existing docker login"
        )

    references = config.image_references()
    for image in config.images:
        commands.append(["docker", "push", references[image.name]])

    return Stage(
        name="push-images",
        description=f"Push images tagged {config.image_tag}",
        commands=commands,
        stdin=stdin,
    )


def deploy_stage(config: PipelineConfig, apply_path: str | None = None) -> Stage:
    kubeconfig = str(config.kubeconfig_path)
    commands = []
    if config.eks_cluster_name:
        commands.append(
            [
                "aws",
                "eks",
                "update-kubeconfig",
                "--region",
                config.aws_region,
                "--name",
                config.eks_cluster_name,
                "--kubeconfig",
                kubeconfig,
            ]
        )
    commands.append(
        [
            "kubectl",
            "--kubeconfig",
            kubeconfig,
            "apply",
            "-n",
            config.namespace,
            "-f",
            apply_path or config.manifests_dir,
        ]
    )
    return Stage(
        name="deploy",
        description=f"Apply manifests to namespace {config.namespace}",
        commands=commands,
        env={"AWS_REGION": config.aws_region},
    )


def verify_stage(config: PipelineConfig, manifests: ManifestSet | None = None) -> Stage:
    kubeconfig = str(config.kubeconfig_path)
    commands = []
    for deployment in manifests.deployments() if manifests else []:
        commands.append(
            [
                "kubectl",
                "--kubeconfig",
                kubeconfig,
                "rollout",
                "status",
                f"deployment/{deployment.name}",
                "-n",
                deployment.namespace or config.namespace,
                f"--timeout={config.rollout_timeout}s",
            ]
        )
    commands.append(["kubectl", "--kubeconfig", kubeconfig, "get", "pods", "-n", config.namespace])
    return Stage(
        name="verify",
        description="Wait for deployments to roll out",
        commands=commands,
    )


def build_default_stages(
    config: PipelineConfig,
    credentials: Credentials,
    manifests: ManifestSet | None = None,
    apply_path: str | None = None,
) -> list[Stage]:
    """Build the reference pipeline stages in execution order.

    Args:
        config: Effective pipeline configuration
        credentials: Credentials read from the environment
        manifests: Manifest set used to find Deployments to verify
        apply_path: File or directory for kubectl apply, defaults to manifests_dir

    Returns:
        The six stages, in order
    """
    stages = [
        clone_stage(config),
        static_analysis_stage(config, credentials),
        build_images_stage(config),
        push_images_stage(config, credentials),
        deploy_stage(config, apply_path),
        verify_stage(config, manifests),
    ]
    logger.debug(f"Built default stages: {[s.name for s in stages]}")
    return stages


def select_stages(
    stages: list[Stage], only: list[str] | None = None, skip: list[str] | None = None
) -> list[Stage]:
    """Filter stages by name, keeping their order.

    Raises:
        ValidationError: If a name does not match any stage
    """
    known = [s.name for s in stages]
    unknown = [n for n in (only or []) + (skip or []) if n not in known]
    if unknown:
        raise ValidationError(
            f"Unknown stage(s): {', '.join(unknown)}",
            f"Available stages: {', '.join(known)}",
        )

    selected = stages
    if only:
        selected = [s for s in selected if s.name in only]
    if skip:
        selected = [s for s in selected if s.name not in skip]
    return selected


def expand_placeholders(value: str, env: Mapping[str, str]) -> str:
    """Expand ${VAR} placeholders from env.

    Raises:
        ConfigurationError: If a referenced variable is not set
    """

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in env:
            raise ConfigurationError(
                f"Environment variable '{name}' referenced in pipeline file is not set"
            )
        return env[name]

    return PLACEHOLDER_PATTERN.sub(replace, value)


def load_pipeline_file(path: str | Path, env: Mapping[str, str] | None = None) -> list[Stage]:
    """Load a custom stage list from a YAML pipeline file.

    The file has a top-level ``stages`` list; each entry has ``name``,
    ``commands`` (a list of argv lists) and optional ``description``,
    ``env`` and ``cwd``.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    import pydantic

    env = os.environ if env is None else env
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Pipeline file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}", str(e))

    if not isinstance(data, dict) or not isinstance(data.get("stages"), list):
        raise ConfigurationError(f"Pipeline file {path} must have a 'stages' list")

    stages = []
    for i, entry in enumerate(data["stages"]):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Stage {i} in {path} must be a mapping")
        entry = dict(entry)
        commands = entry.get("commands") or []
        if not all(isinstance(c, list) for c in commands):
            raise ConfigurationError(
                f"Stage {i} in {path}: commands must be lists of arguments",
                "Example: commands: [[kubectl, get, pods]]",
            )
        entry["commands"] = [[expand_placeholders(str(a), env) for a in c] for c in commands]
        stage_env = entry.get("env") or {}
        if not isinstance(stage_env, dict):
            raise ConfigurationError(
                f"Stage {i} in {path}: env must be a mapping",
                "Example: env: {APP_URL: https://shop.example.com}",
            )
        entry["env"] = {str(k): expand_placeholders(str(v), env) for k, v in stage_env.items()}
        try:
            stages.append(Stage(**entry))
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid stage {i} in {path}", str(e))

    names = [s.name for s in stages]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate stage names in {path}: {', '.join(duplicates)}")

    logger.info(f"Loaded {len(stages)} stages from {path}")
    return stages
