"""Terraform invocation for infrastructure provisioning."""

import json
from pathlib import Path

from pipeline_manager.exceptions import StageError, TerraformError
from pipeline_manager.executor import CommandResult, CommandRunner
from pipeline_manager.logging_config import get_logger

logger = get_logger(__name__)


class TerraformRunner:
    """Runs terraform commands against one module directory."""

    def __init__(self, working_dir: str | Path, runner: CommandRunner | None = None):
        """Initialize the runner.

        Args:
            working_dir: Terraform root module directory
            runner: Command runner, a CommandRunner by default
        """
        self.working_dir = Path(working_dir)
        self.runner = runner or CommandRunner()

    def _command(self, subcommand: str, *args: str, no_input: bool = True) -> list[str]:
        argv = ["terraform", f"-chdir={self.working_dir}", subcommand]
        if no_input:
            argv.append("-input=false")
        argv.append("-no-color")
        argv.extend(args)
        return argv

    def _run(self, argv: list[str]) -> CommandResult:
        if not self.working_dir.is_dir():
            raise TerraformError(
                f"Terraform directory not found: {self.working_dir}",
                f"Expected location: {self.working_dir.absolute()}",
            )

        logger.info(f"Running: {' '.join(argv)}")
        try:
            result = self.runner.run(argv)
        except StageError as e:
            raise TerraformError(e.message, e.details)

        if not result.ok:
            logger.error(f"terraform {argv[2]} failed with return code {result.returncode}")
            raise TerraformError(
                f"terraform {argv[2]} failed with return code {result.returncode}",
                result.stderr.strip() or result.stdout.strip(),
            )
        return result

    def init(self) -> CommandResult:
        return self._run(self._command("init"))

    def plan(
        self,
        var_file: str | None = None,
        variables: dict[str, str] | None = None,
        out: str | None = None,
    ) -> CommandResult:
        """Run terraform plan.

        Args:
            var_file: Optional .tfvars file
            variables: Extra -var values
            out: Optional path to save the plan to
        """
        args = []
        if var_file:
            args.append(f"-var-file={var_file}")
        for key, value in (variables or {}).items():
            args.append(f"-var={key}={value}")
        if out:
            args.append(f"-out={out}")
        return self._run(self._command("plan", *args))

    def apply(self, plan_file: str | None = None, auto_approve: bool = False) -> CommandResult:
        args = []
        if auto_approve:
            args.append("-auto-approve")
        if plan_file:
            args.append(plan_file)
        return self._run(self._command("apply", *args))

    def destroy(self, auto_approve: bool = False) -> CommandResult:
        args = ["-auto-approve"] if auto_approve else []
        return self._run(self._command("destroy", *args))

    def output(self) -> dict:
        """Return terraform outputs as a name -> value mapping."""
        result = self._run(self._command("output", "-json", no_input=False))
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise TerraformError(
                "Failed to parse terraform output",
                f"terraform output -json returned invalid JSON: {e}",
            )
        return {name: entry.get("value") for name, entry in data.items()}
