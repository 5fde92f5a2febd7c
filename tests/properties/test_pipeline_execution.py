"""Property-based tests for abort-on-first-failure execution."""

from unittest.mock import Mock

from conftest import FakeRunner
from hypothesis import given
from hypothesis import strategies as st

from pipeline_manager.executor import PipelineExecutor
from pipeline_manager.models.pipeline import Stage, StageStatus


@st.composite
def stage_lists(draw):
    """Generate 1-8 stages, each with 1-4 uniquely numbered commands."""
    num_stages = draw(st.integers(min_value=1, max_value=8))
    stages = []
    counter = 0
    for i in range(num_stages):
        num_commands = draw(st.integers(min_value=1, max_value=4))
        commands = []
        for _ in range(num_commands):
            commands.append(["step", str(counter)])
            counter += 1
        stages.append(Stage(name=f"stage-{i}", commands=commands))
    return stages, counter


@given(data=st.data())
def test_first_failure_aborts_everything_after_it(data):
    """
    For any stage list and any failing command, stages before the failure
    succeed, the stage containing it fails, every later stage is skipped,
    and no command after the failing one runs.
    """
    stages, total = data.draw(stage_lists())
    failing = data.draw(st.integers(min_value=0, max_value=total - 1))
    runner = FakeRunner(fail_on=lambda argv: argv[1] == str(failing))
    notifier = Mock()

    run = PipelineExecutor(runner=runner, notifier=notifier).run("p", stages)

    failed_index = next(
        i for i, s in enumerate(stages) if any(c[1] == str(failing) for c in s.commands)
    )
    statuses = [r.status for r in run.results]
    assert statuses[:failed_index] == [StageStatus.SUCCEEDED] * failed_index
    assert statuses[failed_index] == StageStatus.FAILED
    assert statuses[failed_index + 1 :] == [StageStatus.SKIPPED] * (len(stages) - failed_index - 1)

    executed = [int(c["argv"][1]) for c in runner.calls]
    assert executed == list(range(failing + 1))

    assert not run.succeeded
    assert run.failed_stage.stage == f"stage-{failed_index}"
    notifier.pipeline_failed.assert_called_once()
    notifier.pipeline_succeeded.assert_not_called()


@given(stage_data=stage_lists())
def test_successful_pipeline_runs_every_command_in_order(stage_data):
    stages, total = stage_data
    runner = FakeRunner()
    notifier = Mock()

    run = PipelineExecutor(runner=runner, notifier=notifier).run("p", stages)

    assert run.succeeded
    assert [int(c["argv"][1]) for c in runner.calls] == list(range(total))
    assert len(run.results) == len(stages)
    notifier.pipeline_succeeded.assert_called_once()
