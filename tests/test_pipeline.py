import pytest
from rich.console import Console

from hardenpipe.errors import ToolError
from hardenpipe.pipeline import PipelineExecutor, Step


class DummyLogger:
    def __init__(self):
        self.errors = []

    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, message, *args, **_kwargs):
        self.errors.append(message % args)

    def exception(self, message, *args, **_kwargs):
        self.errors.append(message % args)


class RecordingRunLog:
    def __init__(self):
        self.events = []

    def step_started(self, phase, name):
        self.events.append(("started", name))

    def step_finished(self, name, status, error_kind=None, error=None):
        self.events.append((status, name))

    def step_skipped(self, phase, name):
        self.events.append(("skipped", name))


def make_steps(calls, failing=None, error=None):
    def action(name):
        def run():
            calls.append(name)
            if name == failing:
                raise error
        return run

    names = [
        ("pre_build", "resolve_credentials"),
        ("pre_build", "authenticate_registries"),
        ("build", "harden_image"),
        ("build", "patch_build_definition"),
        ("build", "publish_image"),
        ("post_build", "authenticate_cluster"),
        ("post_build", "deploy_manifests"),
    ]
    return [Step(phase, name, action(name)) for phase, name in names]


def make_executor(steps, run_log=None, redactor=None, logger=None):
    return PipelineExecutor(
        steps, logger or DummyLogger(), Console(record=True), run_log=run_log, redactor=redactor
    )


def test_all_steps_run_in_order():
    calls = []

    result = make_executor(make_steps(calls)).run("run-1")

    assert result.succeeded
    assert result.exit_code == 0
    assert calls == [
        "resolve_credentials",
        "authenticate_registries",
        "harden_image",
        "patch_build_definition",
        "publish_image",
        "authenticate_cluster",
        "deploy_manifests",
    ]


def test_hardening_failure_stops_before_build_and_deploy():
    calls = []
    run_log = RecordingRunLog()
    error = ToolError("embedding rejected", kind="EmbeddingRejected")

    result = make_executor(make_steps(calls, failing="harden_image", error=error), run_log=run_log).run("run-1")

    assert calls == ["resolve_credentials", "authenticate_registries", "harden_image"]
    assert result.status == "failed"
    assert result.failed_phase == "build"
    assert result.failed_step == "harden_image"
    assert result.error_kind == "EmbeddingRejected"
    assert result.exit_code == 4
    assert [outcome.status for outcome in result.outcomes] == [
        "success",
        "success",
        "failed",
        "skipped",
        "skipped",
        "skipped",
        "skipped",
    ]
    assert ("skipped", "deploy_manifests") in run_log.events


def test_unexpected_exception_is_recorded_as_failure():
    calls = []
    logger = DummyLogger()
    steps = make_steps(calls, failing="publish_image", error=KeyError("boom"))

    result = make_executor(steps, logger=logger).run("run-1")

    assert result.error_category == "UnexpectedError"
    assert result.error_kind == "KeyError"
    assert result.exit_code == 1
    assert "authenticate_cluster" not in calls


def test_failure_messages_are_redacted():
    calls = []
    logger = DummyLogger()
    error = ToolError("login failed for s3cret", kind="EmbeddingRejected", output="echo s3cret")
    steps = make_steps(calls, failing="harden_image", error=error)

    result = make_executor(steps, redactor=lambda text: text.replace("s3cret", "***"), logger=logger).run("run-1")

    assert result.error == "login failed for ***"
    assert all("s3cret" not in message for message in logger.errors)


def test_cancel_between_steps_aborts_run():
    calls = []
    holder = {}

    def cancel_after_registries():
        calls.append("authenticate_registries")
        holder["executor"].cancel()

    steps = make_steps(calls)
    steps[1] = Step("pre_build", "authenticate_registries", cancel_after_registries)
    executor = make_executor(steps)
    holder["executor"] = executor

    result = executor.run("run-1")

    assert calls == ["resolve_credentials", "authenticate_registries"]
    assert result.status == "aborted"
    assert result.failed_step == "harden_image"
    assert result.exit_code == 130
    assert result.outcome("harden_image").status == "skipped"


def test_keyboard_interrupt_aborts_run():
    calls = []
    steps = make_steps(calls, failing="publish_image", error=KeyboardInterrupt())

    result = make_executor(steps).run("run-1")

    assert result.status == "aborted"
    assert result.outcome("publish_image").status == "aborted"
    assert result.outcome("deploy_manifests").status == "skipped"


def test_steps_must_follow_phase_order():
    noop = lambda: None  # noqa: E731

    with pytest.raises(ValueError, match="phase order"):
        make_executor([Step("build", "harden_image", noop), Step("pre_build", "resolve_credentials", noop)])

    with pytest.raises(ValueError, match="Unknown phase"):
        make_executor([Step("install", "harden_image", noop)])


@pytest.mark.parametrize(
    "message",
    [
        "error: unable to decode [/tmp/hardenpipe/manifests/00-deployment.yml]",
        "error validating data: [apiversion not set, kind not set]",
    ],
)
def test_bracketed_tool_output_is_printed_verbatim(message):
    calls = []
    run_log = RecordingRunLog()
    console = Console(record=True, width=200)
    error = ToolError(message, kind="EmbeddingRejected")
    executor = PipelineExecutor(
        make_steps(calls, failing="harden_image", error=error), DummyLogger(), console, run_log=run_log
    )

    result = executor.run("run-1")

    assert result.status == "failed"
    assert result.exit_code == 4
    assert result.error == message
    assert ("failed", "harden_image") in run_log.events
    assert message in console.export_text()
