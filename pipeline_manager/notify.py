"""Post-pipeline notifications."""

from typing import Protocol

from rich.console import Console

from pipeline_manager.logging_config import get_logger
from pipeline_manager.models.pipeline import PipelineRun

logger = get_logger(__name__)


class Notifier(Protocol):
    """Receives the outcome of a finished pipeline."""

    def pipeline_succeeded(self, run: PipelineRun) -> None: ...

    def pipeline_failed(self, run: PipelineRun) -> None: ...


def failure_message(run: PipelineRun) -> str:
    failed = run.failed_stage
    if failed is None:
        return f"Pipeline {run.pipeline} failed"
    return f"Pipeline {run.pipeline} failed at stage {failed.stage}"


class LogNotifier:
    """Notifier that only writes to the log."""

    def pipeline_succeeded(self, run: PipelineRun) -> None:
        logger.info(f"Pipeline {run.pipeline} succeeded")

    def pipeline_failed(self, run: PipelineRun) -> None:
        logger.error(failure_message(run))


class ConsoleNotifier(LogNotifier):
    """Notifier that prints the outcome to the console."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def pipeline_succeeded(self, run: PipelineRun) -> None:
        super().pipeline_succeeded(run)
        self.console.print(f"\n[green]✓ Pipeline {run.pipeline} succeeded[/green]")

    def pipeline_failed(self, run: PipelineRun) -> None:
        super().pipeline_failed(run)
        self.console.print(f"\n[red]✗ {failure_message(run)}[/red]")
        failed = run.failed_stage
        if failed is not None and failed.error:
            self.console.print(failed.error, style="red", markup=False)
