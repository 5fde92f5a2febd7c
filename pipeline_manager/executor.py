"""Sequential execution of pipeline stages.

Stages run one after another and the commands inside a stage run in order.
The first command that exits non-zero fails its stage and aborts the
pipeline; every stage after it is marked skipped. A single notification is
sent when the pipeline finishes, whatever the outcome.
"""

import os
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from rich.console import Console

from pipeline_manager.exceptions import StageError
from pipeline_manager.logging_config import get_logger
from pipeline_manager.models.pipeline import PipelineRun, Stage, StageResult, StageStatus
from pipeline_manager.notify import LogNotifier, Notifier

logger = get_logger(__name__)

OUTPUT_TAIL_CHARS = 4000

INSTALL_HINTS = {
    "git": "Install git from https://git-scm.com/downloads",
    "docker": "Install Docker from https://docs.docker.com/get-docker/",
    "kubectl": "Install kubectl from https://kubernetes.io/docs/tasks/tools/",
    "aws": "Install the AWS CLI from https://aws.amazon.com/cli/",
    "sonar-scanner": "Install SonarScanner from https://docs.sonarsource.com/sonarqube/latest/analyzing-source-code/scanners/sonarscanner/",
    "terraform": "Install Terraform from https://developer.hashicorp.com/terraform/install",
}


@dataclass
class CommandResult:
    """Result of one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands with captured output."""

    def run(
        self,
        argv: list[str],
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
        stdin: str | None = None,
    ) -> CommandResult:
        """Run a command and return its result.

        A non-zero exit status is returned, not raised.

        Raises:
            StageError: If the command cannot be started or times out
        """
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=env,
                cwd=cwd,
                timeout=timeout,
                input=stdin,
            )
        except FileNotFoundError as e:
            if cwd and not os.path.isdir(cwd):
                raise StageError(
                    f"Working directory not found: {cwd}",
                    "Run the clone stage first or check the workspace setting",
                )
            logger.error(f"Executable not found: {argv[0]}")
            raise StageError(
                f"'{argv[0]}' is not installed or not in PATH",
                INSTALL_HINTS.get(argv[0], str(e)),
            )
        except OSError as e:
            logger.error(f"Cannot run {argv[0]}: {e}")
            raise StageError(
                f"Cannot run '{argv[0]}': {e}",
                "Check that the file is executable and the working directory is a directory",
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {timeout} seconds: {argv[0]}")
            raise StageError(
                f"Command timed out after {timeout} seconds",
                f"The '{argv[0]}' command did not finish in time",
            )

        logger.debug(f"{argv[0]} exited with return code {completed.returncode}")
        return CommandResult(
            argv=list(argv),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _identity(text: str) -> str:
    return text


class PipelineExecutor:
    """Runs stages strictly in order, aborting on the first failure."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        notifier: Notifier | None = None,
        dry_run: bool = False,
        redact: Callable[[str], str] | None = None,
        console: Console | None = None,
        command_timeout: float | None = None,
    ):
        """Initialize the executor.

        Args:
            runner: Command runner, a CommandRunner by default
            notifier: Receives the final outcome, a LogNotifier by default
            dry_run: Log commands instead of running them
            redact: Applied to every command line before it is logged or printed
            console: Optional console for progress output
            command_timeout: Per-command timeout in seconds
        """
        self.runner = runner or CommandRunner()
        self.notifier = notifier or LogNotifier()
        self.dry_run = dry_run
        self.redact = redact or _identity
        self.console = console
        self.command_timeout = command_timeout

    def _print(self, message: str, markup: bool = True) -> None:
        if self.console is not None:
            self.console.print(message, markup=markup)

    def format_command(self, argv: list[str]) -> str:
        return self.redact(shlex.join(argv))

    def run(self, pipeline_name: str, stages: list[Stage]) -> PipelineRun:
        """Execute the stages and notify the outcome.

        Returns:
            PipelineRun with one result per stage, in order
        """
        run = PipelineRun(
            pipeline=pipeline_name, results=[StageResult(stage=s.name) for s in stages]
        )
        logger.info(f"Starting pipeline {pipeline_name} with {len(stages)} stages")

        try:
            for stage, result in zip(stages, run.results):
                if not self._run_stage(stage, result):
                    break
        except KeyboardInterrupt:
            current = next((r for r in run.results if r.status == StageStatus.RUNNING), None)
            if current is not None:
                current.status = StageStatus.FAILED
                current.error = "Interrupted by user"
                current.finished_at = datetime.now()
            self._skip_pending(run)
            self.notifier.pipeline_failed(run)
            raise

        self._skip_pending(run)
        if run.succeeded:
            self.notifier.pipeline_succeeded(run)
        else:
            self.notifier.pipeline_failed(run)
        return run

    def _skip_pending(self, run: PipelineRun) -> None:
        for result in run.results:
            if result.status == StageStatus.PENDING:
                result.status = StageStatus.SKIPPED

    def _run_stage(self, stage: Stage, result: StageResult) -> bool:
        """Run one stage, filling in result. Returns False if it failed."""
        result.status = StageStatus.RUNNING
        result.started_at = datetime.now()
        logger.info(f"Stage {stage.name} started")
        self._print(f"\n[bold cyan]Stage: {stage.name}[/bold cyan]")

        env = {**os.environ, **stage.env}
        output = []

        for index, argv in enumerate(stage.commands):
            line = self.format_command(argv)
            self._print(f"$ {line}", markup=False)

            if self.dry_run:
                logger.info(f"[dry-run] {line}")
                continue

            logger.debug(f"Running: {line}")
            try:
                command = self.runner.run(
                    argv,
                    env=env,
                    cwd=stage.cwd,
                    timeout=self.command_timeout,
                    stdin=stage.stdin_for(index),
                )
            except StageError as e:
                return self._fail(result, e.format_message(), None, output)

            output.append(command.stdout)
            output.append(command.stderr)
            result.returncode = command.returncode

            if not command.ok:
                stderr = self.redact(command.stderr.strip())
                error = f"Command '{line}' exited with status {command.returncode}"
                if stderr:
                    error = f"{error}\n{stderr[-OUTPUT_TAIL_CHARS:]}"
                return self._fail(result, error, command.returncode, output)

        result.status = StageStatus.SUCCEEDED
        result.finished_at = datetime.now()
        result.output = self._tail(output)
        logger.info(f"Stage {stage.name} succeeded in {result.duration:.1f}s")
        self._print(f"[green]✓ {stage.name}[/green]")
        return True

    def _fail(
        self, result: StageResult, error: str, returncode: int | None, output: list[str]
    ) -> bool:
        result.status = StageStatus.FAILED
        result.returncode = returncode
        result.error = error
        result.finished_at = datetime.now()
        result.output = self._tail(output)
        logger.error(f"Stage {result.stage} failed: {error}")
        self._print(f"[red]✗ {result.stage}[/red]")
        return False

    def _tail(self, output: list[str]) -> str:
        return self.redact("".join(output))[-OUTPUT_TAIL_CHARS:]
