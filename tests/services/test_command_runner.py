import sys

import pytest

from hardenpipe.errors import CommandError
from hardenpipe.services.command_runner import CommandRunner


class DummyLogger:
    def __init__(self):
        self.messages = []

    def debug(self, message, *args, **_kwargs):
        self.messages.append(message % args)

    def warning(self, message, *args, **_kwargs):
        self.messages.append(message % args)


def test_command_runner_raises_with_stderr():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(CommandError, match="boom") as error:
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"],
            check=True,
            capture_output=True,
        )

    assert error.value.returncode == 3
    assert "boom" in error.value.output


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(CommandError, match="timed out") as error:
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )

    assert error.value.timed_out is True


def test_command_runner_reports_missing_command():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(CommandError, match="Required command not found") as error:
        runner.run(["hardenpipe-command-that-does-not-exist"])

    assert error.value.not_found is True


def test_command_runner_redacts_logs_and_errors():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger, redactor=lambda text: text.replace("s3cret", "***"))

    with pytest.raises(CommandError) as error:
        runner.run(
            [sys.executable, "-c", "import sys; print(sys.argv[1]); sys.exit(2)", "s3cret"],
            check=True,
            capture_output=True,
        )

    assert "s3cret" not in str(error.value)
    assert "s3cret" not in error.value.output
    assert all("s3cret" not in message for message in logger.messages)


def test_command_runner_passes_input_and_environment():
    runner = CommandRunner(logger=DummyLogger(), base_env={"HARDENPIPE_BASE": "base"})

    result = runner.run(
        [
            sys.executable,
            "-c",
            "import os, sys; print(os.environ['HARDENPIPE_BASE'], os.environ['HARDENPIPE_CALL'], sys.stdin.read())",
        ],
        input_text="from-stdin",
        env={"HARDENPIPE_CALL": "call"},
    )

    assert result.stdout.strip() == "base call from-stdin"


def test_command_runner_can_keep_output_out_of_logs():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger)

    result = runner.run([sys.executable, "-c", "print('token-value')"], log_output=False)

    assert result.stdout.strip() == "token-value"
    assert all("token-value" not in message for message in logger.messages)
