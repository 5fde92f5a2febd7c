"""Main CLI entry point for pipeline management."""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pipeline_manager.config_file import DEFAULT_CONFIG_PATH
from pipeline_manager.exceptions import PipelineManagerError
from pipeline_manager.logging_config import get_logger, install_redaction, setup_logging

app = typer.Typer(
    name="pipeline-mgr",
    help="CI/CD pipeline orchestration for container builds and Kubernetes deployments",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

RENDERED_MANIFESTS_PATH = Path(".pipeline") / "manifests.yaml"

STATUS_STYLES = {
    "succeeded": "[green]✓ succeeded[/green]",
    "failed": "[red]✗ failed[/red]",
    "skipped": "[yellow]skipped[/yellow]",
    "pending": "pending",
    "running": "running",
}


def _fail(error: PipelineManagerError, label: str = "Error") -> None:
    console.print(f"[red]{label}:[/red] {error.message}")
    if error.details:
        console.print(error.details, markup=False)
    raise typer.Exit(code=1)


def _split_names(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [n.strip() for n in value.split(",") if n.strip()]


def _load_config(config_path: str):
    from pipeline_manager.models.pipeline import PipelineConfig

    return PipelineConfig.load(config_path).with_environment()


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from pipeline_manager import __version__

    typer.echo(f"pipeline-mgr version {__version__}")


@app.command()
def init_config(
    app_name: str = typer.Option(..., "--app-name", "-a", help="Application name (DNS label)"),
    git_repo_url: str = typer.Option(..., "--repo", "-r", help="Git repository to build"),
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a starter pipeline configuration file."""
    import pydantic

    from pipeline_manager.config_file import ConfigFileManager

    try:
        ConfigFileManager(config_path).create(app_name, git_repo_url, force=force)
    except pydantic.ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid value: {e}", markup=False)
        raise typer.Exit(code=1)
    except PipelineManagerError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Wrote {config_path}")


@app.command()
def show_config(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
) -> None:
    """
    Show the effective pipeline configuration.

    Environment variables (AWS_REGION, KUBECONFIG, IMAGE_TAG, BUILD_NUMBER,
    REGISTRY, GIT_BRANCH) override values from the file.
    """
    from rich.json import JSON

    try:
        config = _load_config(config_path)
    except PipelineManagerError as e:
        _fail(e, "Configuration Error")

    console.print(JSON.from_data(config.model_dump(mode="json")))

    table = Table(title="Images")
    table.add_column("Name", style="cyan")
    table.add_column("Reference", style="magenta")
    for name, reference in config.image_references().items():
        table.add_row(name, reference)
    console.print(table)


@app.command()
def config_get(
    key: str = typer.Argument(..., help="Configuration key (supports dot notation)"),
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
) -> None:
    """Retrieve a value from the pipeline configuration file."""
    from pipeline_manager.config_file import ConfigFileManager

    try:
        value = ConfigFileManager(config_path).get(key)
    except PipelineManagerError as e:
        _fail(e, "Configuration Error")

    console.print(f"[cyan]{key}[/cyan]:")
    if isinstance(value, (dict, list)):
        from rich.json import JSON

        console.print(JSON.from_data(json.loads(json.dumps(value, default=str))))
    else:
        console.print(f"  {value}", markup=False)


@app.command()
def config_set(
    key: str = typer.Argument(..., help="Configuration key (supports dot notation)"),
    value: str = typer.Argument(..., help="Configuration value to set"),
    value_type: str = typer.Option(
        "string", "--type", "-t", help="Value type: string, int, bool, or json"
    ),
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
) -> None:
    """
    Set a value in the pipeline configuration file.

    Examples:
        config-set image_tag 1.4.2
        config-set rollout_timeout 600 --type int
        config-set eks_cluster_name prod-cluster
    """
    from pipeline_manager.config_file import ConfigFileManager

    parsed_value = value
    try:
        if value_type == "int":
            parsed_value = int(value)
        elif value_type == "bool":
            if value.lower() in ["true", "1", "yes", "on"]:
                parsed_value = True
            elif value.lower() in ["false", "0", "no", "off"]:
                parsed_value = False
            else:
                console.print(f"[red]Error:[/red] Invalid boolean value: '{value}'")
                raise typer.Exit(code=1)
        elif value_type == "json":
            parsed_value = json.loads(value)
        elif value_type != "string":
            console.print(
                f"[red]Error:[/red] Invalid type '{value_type}'. "
                "Must be one of: string, int, bool, json"
            )
            raise typer.Exit(code=1)
    except (ValueError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] Failed to parse value as {value_type}: {e}")
        raise typer.Exit(code=1)

    try:
        ConfigFileManager(config_path).set(key, parsed_value)
    except PipelineManagerError as e:
        _fail(e, "Configuration Error")

    console.print(f"[green]✓[/green] Successfully set '{key}' = {parsed_value}")


def _build_stages(
    config, credentials, pipeline_file: str | None, render: bool, dry_run: bool = False
):
    """Assemble the stage list and render manifests for the deploy stage.

    In a dry run the deploy stage still names the rendered file, but nothing
    is written.
    """
    from pipeline_manager.manifests import ManifestSet, dump_documents
    from pipeline_manager.stages import build_default_stages, load_pipeline_file

    if pipeline_file:
        return load_pipeline_file(pipeline_file)

    manifests = None
    apply_path = None
    if Path(config.manifests_dir).is_dir():
        manifests = ManifestSet.load(config.manifests_dir)
    else:
        logger.warning(
            f"Manifest directory {config.manifests_dir} not found, rollout checks disabled"
        )

    if manifests is not None:
        manifests.check([image.name for image in config.images])
        if render:
            apply_path = str(RENDERED_MANIFESTS_PATH)
            if dry_run:
                logger.info(f"[dry-run] Would render manifests to {apply_path}")
            else:
                documents = manifests.set_image_tags(
                    config.images, config.registry, config.image_tag
                )
                RENDERED_MANIFESTS_PATH.parent.mkdir(parents=True, exist_ok=True)
                RENDERED_MANIFESTS_PATH.write_text(dump_documents(documents))
                logger.info(f"Rendered manifests for tag {config.image_tag} to {apply_path}")

    return build_default_stages(config, credentials, manifests=manifests, apply_path=apply_path)


@app.command()
def stages(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
    pipeline_file: str | None = typer.Option(
        None, "--pipeline-file", "-f", help="Custom stage definitions (YAML)"
    ),
) -> None:
    """List the pipeline stages and the commands each one runs."""
    from pipeline_manager.credentials import Credentials
    from pipeline_manager.executor import PipelineExecutor

    try:
        config = _load_config(config_path)
        credentials = Credentials.from_environment()
        install_redaction(credentials.redact)
        stage_list = _build_stages(config, credentials, pipeline_file, render=False)
    except PipelineManagerError as e:
        _fail(e)

    formatter = PipelineExecutor(redact=credentials.redact)
    for index, stage in enumerate(stage_list, start=1):
        console.print(f"\n[bold cyan]{index}. {stage.name}[/bold cyan] {stage.description}")
        for argv in stage.commands:
            console.print(f"   $ {formatter.format_command(argv)}", markup=False)


@app.command()
def run(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
    pipeline_file: str | None = typer.Option(
        None, "--pipeline-file", "-f", help="Custom stage definitions (YAML)"
    ),
    only: str | None = typer.Option(
        None, "--only", help="Only run these stages (comma-separated)"
    ),
    skip: str | None = typer.Option(None, "--skip", help="Skip these stages (comma-separated)"),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Print the commands without running them"
    ),
    render: bool = typer.Option(
        True,
        "--render/--no-render",
        help="Point manifest images at the tag being built before applying",
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-command timeout in seconds"
    ),
) -> None:
    """
    Run the build-and-deploy pipeline.

    Stages run in order: clone, static-analysis, build-images, push-images,
    deploy, verify. The first failing command aborts the pipeline.

    Examples:
        # Full pipeline
        pipeline-mgr run

        # Only redeploy the current tag
        IMAGE_TAG=42 pipeline-mgr run --only deploy,verify

        # Show what would run
        pipeline-mgr run --dry-run
    """
    from pipeline_manager.credentials import Credentials
    from pipeline_manager.executor import PipelineExecutor
    from pipeline_manager.notify import ConsoleNotifier
    from pipeline_manager.stages import select_stages

    try:
        config = _load_config(config_path)
        credentials = Credentials.from_environment()
        install_redaction(credentials.redact)
        stage_list = _build_stages(
            config, credentials, pipeline_file, render=render, dry_run=dry_run
        )
        stage_list = select_stages(stage_list, only=_split_names(only), skip=_split_names(skip))
    except PipelineManagerError as e:
        _fail(e)

    console.print(f"\n[bold cyan]Pipeline {config.app_name}[/bold cyan]")
    console.print(f"Branch: {config.git_branch}")
    console.print(f"Image tag: {config.image_tag}")
    if dry_run:
        console.print("[yellow]Mode: dry-run[/yellow]")

    executor = PipelineExecutor(
        notifier=ConsoleNotifier(console),
        dry_run=dry_run,
        redact=credentials.redact,
        console=console,
        command_timeout=timeout,
    )

    try:
        result = executor.run(config.app_name, stage_list)
    except KeyboardInterrupt:
        console.print("\n[yellow]Pipeline interrupted by user[/yellow]")
        raise typer.Exit(code=130)

    summary = Table(title="Stage Summary")
    summary.add_column("Stage", style="cyan")
    summary.add_column("Status")
    summary.add_column("Duration", justify="right")
    for stage_result in result.results:
        duration = stage_result.duration
        summary.add_row(
            stage_result.stage,
            STATUS_STYLES[stage_result.status.value],
            f"{duration:.1f}s" if duration is not None else "-",
        )
    console.print(summary)

    if not result.succeeded:
        raise typer.Exit(code=1)


@app.command()
def validate_manifests(
    manifests_dir: str = typer.Option("k8s", "--dir", "-d", help="Manifest directory"),
    components: str = typer.Option(
        "backend,frontend", "--components", help="Components that need a Deployment and Service"
    ),
) -> None:
    """Validate the Kubernetes manifest set before it is applied."""
    from pipeline_manager.manifests import ManifestSet

    try:
        manifests = ManifestSet.load(manifests_dir)
    except PipelineManagerError as e:
        _fail(e, "Manifest Error")

    table = Table(title=f"Manifests in {manifests_dir}")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Namespace")
    table.add_column("File")
    for obj in manifests:
        table.add_row(obj.kind, obj.name, obj.namespace or "-", Path(obj.source).name)
    console.print(table)

    problems = manifests.validate(_split_names(components) or [])
    if problems:
        console.print(f"\n[red]✗ {len(problems)} problem(s) found[/red]")
        for problem in problems:
            console.print(f"  - {problem}", markup=False)
        raise typer.Exit(code=1)

    console.print("\n[green]✓ Manifest set is valid[/green]")


@app.command()
def render_manifests(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
    output: str | None = typer.Option(None, "--output", "-o", help="Write to file instead"),
) -> None:
    """Print the manifests with images pointing at the configured tag."""
    from pipeline_manager.manifests import ManifestSet, dump_documents

    try:
        config = _load_config(config_path)
        manifests = ManifestSet.load(config.manifests_dir)
    except PipelineManagerError as e:
        _fail(e)

    text = dump_documents(
        manifests.set_image_tags(config.images, config.registry, config.image_tag)
    )
    if output:
        Path(output).write_text(text)
        console.print(f"[green]✓[/green] Wrote {output}")
    else:
        typer.echo(text)


@app.command()
def infra(
    action: str = typer.Argument(..., help="Terraform action: init, plan, apply, destroy, output"),
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
    terraform_dir: str | None = typer.Option(
        None, "--dir", "-d", help="Terraform directory (overrides terraform_dir)"
    ),
    var_file: str | None = typer.Option(None, "--var-file", help="Terraform .tfvars file"),
    plan_file: str | None = typer.Option(
        None, "--plan-file", help="Save the plan to (plan) or apply it from (apply) this file"
    ),
    auto_approve: bool = typer.Option(
        False, "--auto-approve", "-y", help="Skip interactive approval for apply/destroy"
    ),
) -> None:
    """
    Provision infrastructure with Terraform.

    Examples:
        pipeline-mgr infra init
        pipeline-mgr infra plan --plan-file tfplan
        pipeline-mgr infra apply --plan-file tfplan
    """
    from pipeline_manager.terraform import TerraformRunner

    actions = ["init", "plan", "apply", "destroy", "output"]
    if action not in actions:
        console.print(
            f"[red]Error:[/red] Invalid action '{action}'. Must be one of: {', '.join(actions)}"
        )
        raise typer.Exit(code=1)

    try:
        if terraform_dir is None:
            terraform_dir = _load_config(config_path).terraform_dir
        terraform = TerraformRunner(terraform_dir)

        if action == "output":
            outputs = terraform.output()
            table = Table(title="Terraform Outputs")
            table.add_column("Name", style="cyan")
            table.add_column("Value", style="magenta")
            for name, value in sorted(outputs.items()):
                table.add_row(name, json.dumps(value) if not isinstance(value, str) else value)
            console.print(table)
            return

        if action == "init":
            result = terraform.init()
        elif action == "plan":
            result = terraform.plan(var_file=var_file, out=plan_file)
        elif action == "apply":
            result = terraform.apply(plan_file=plan_file, auto_approve=auto_approve)
        else:
            result = terraform.destroy(auto_approve=auto_approve)
    except PipelineManagerError as e:
        _fail(e, "Terraform Error")

    console.print(result.stdout, markup=False)
    console.print(f"\n[green]✓ terraform {action} completed successfully[/green]")


@app.command()
def provision(
    playbook: str = typer.Option(
        "site.yml", "--playbook", "-p", help="Playbook to execute from ansible/playbooks"
    ),
    inventory_path: str = typer.Option(
        "ansible/inventory/hosts.yml", "--inventory", "-i", help="Path to Ansible inventory file"
    ),
    private_data_dir: str = typer.Option(
        "ansible", "--ansible-dir", help="ansible-runner private data directory"
    ),
    check: bool = typer.Option(
        False, "--check", "-c", help="Run in check mode (dry-run, no changes made)"
    ),
    tags: str | None = typer.Option(
        None,
        "--tags",
        "-t",
        help="Only run plays and tasks tagged with these values (comma-separated)",
    ),
    skip_tags: str | None = typer.Option(
        None, "--skip-tags", help="Skip plays and tasks tagged with these values (comma-separated)"
    ),
    limit: str | None = typer.Option(
        None, "--limit", "-l", help="Limit execution to specific hosts or groups"
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (can be used multiple times: -v, -vv, -vvv)",
    ),
    extra_vars: str | None = typer.Option(
        None, "--extra-vars", "-e", help="Extra variables as JSON string or key=value pairs"
    ),
) -> None:
    """
    Execute an Ansible playbook to configure build agents or hosts.

    Examples:
        # Configure every host
        pipeline-mgr provision

        # Dry-run a single playbook
        pipeline-mgr provision --playbook jenkins.yml --check
    """
    from pipeline_manager.provisioning import PlaybookRunner, parse_extra_vars

    extravars = parse_extra_vars(extra_vars)

    console.print("\n[bold cyan]Ansible Playbook Execution[/bold cyan]")
    console.print(f"Playbook: {playbook}")
    console.print(f"Inventory: {inventory_path}")
    if check:
        console.print("[yellow]Mode: Check (dry-run)[/yellow]")
    if tags:
        console.print(f"Tags: {tags}")
    if limit:
        console.print(f"Limit: {limit}")
    console.print()

    try:
        result = PlaybookRunner(private_data_dir, inventory_path).run(
            playbook,
            check=check,
            tags=tags,
            skip_tags=skip_tags,
            limit=limit,
            extravars=extravars,
            verbosity=verbose,
        )
    except PipelineManagerError as e:
        _fail(e)
    except KeyboardInterrupt:
        console.print("\n[yellow]Playbook execution interrupted by user[/yellow]")
        raise typer.Exit(code=130)

    console.print("\n[bold cyan]Execution Summary[/bold cyan]")
    console.print(f"Status: {result.status}")
    console.print(f"Return Code: {result.rc}")

    if result.stats:
        stats_table = Table()
        stats_table.add_column("Host", style="cyan")
        stats_table.add_column("OK", style="green")
        stats_table.add_column("Changed", style="yellow")
        stats_table.add_column("Unreachable", style="red")
        stats_table.add_column("Failed", style="red")
        stats_table.add_column("Skipped", style="blue")
        for host, stats in result.stats.items():
            stats_table.add_row(
                host,
                str(stats.get("ok", 0)),
                str(stats.get("changed", 0)),
                str(stats.get("unreachable", 0)),
                str(stats.get("failures", 0)),
                str(stats.get("skipped", 0)),
            )
        console.print(stats_table)

    if not result.ok:
        console.print("\n[red]✗ Playbook execution failed[/red]")
        raise typer.Exit(code=result.rc)
    console.print("\n[green]✓ Playbook execution completed successfully[/green]")


@app.command()
def status(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to pipeline configuration file"
    ),
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Namespace (overrides the configured one)"
    ),
) -> None:
    """Show deployment rollout status from the cluster."""
    from pipeline_manager.status import fetch_deployment_statuses, load_kube_client

    try:
        config = _load_config(config_path)
        apps_api = load_kube_client(config.kubeconfig)
        statuses = fetch_deployment_statuses(apps_api, namespace or config.namespace)
    except PipelineManagerError as e:
        _fail(e)

    if not statuses:
        console.print("[yellow]No deployments found[/yellow]")
        return

    table = Table(title=f"Deployments ({namespace or config.namespace})")
    table.add_column("Name", style="cyan")
    table.add_column("Ready", style="magenta")
    table.add_column("Up-to-date")
    table.add_column("Available")
    table.add_column("Health")
    for item in statuses:
        health = "[green]✓ Healthy[/green]" if item.healthy else "[red]✗ Degraded[/red]"
        table.add_row(item.name, item.pod_count, str(item.updated), str(item.available), health)
    console.print(table)

    if not all(item.healthy for item in statuses):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
