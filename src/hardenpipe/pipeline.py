"""Phase/step executor for HardenPipe runs."""

import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from rich.markup import escape

from hardenpipe.constants import PHASES
from hardenpipe.errors import PipelineError
from hardenpipe.models import RunResult, StepOutcome, utc_now


@dataclass(frozen=True)
class Step:
    phase: str
    name: str
    action: Callable[[], Any]


class PipelineExecutor:
    """Runs steps strictly in order and stops at the first failure.

    Steps signal failure by raising ``PipelineError``; the executor turns
    that into a failed ``StepOutcome`` and records every later step as
    skipped. Nothing is retried. ``cancel`` takes effect between steps;
    a step already running is allowed to finish.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        logger,
        console,
        run_log=None,
        redactor: Optional[Callable[[str], str]] = None,
    ):
        self._check_order(steps)
        self.steps = list(steps)
        self.logger = logger
        self.console = console
        self.run_log = run_log
        self.redactor = redactor or (lambda text: text)
        self._cancelled = threading.Event()

    @staticmethod
    def _check_order(steps: Sequence[Step]):
        last = 0
        names = set()
        for step in steps:
            if step.phase not in PHASES:
                raise ValueError(f"Unknown phase `{step.phase}` for step `{step.name}`.")
            position = PHASES.index(step.phase)
            if position < last:
                raise ValueError(f"Step `{step.name}` in phase `{step.phase}` is out of phase order.")
            if step.name in names:
                raise ValueError(f"Duplicate step name `{step.name}`.")
            names.add(step.name)
            last = position

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, run_id: str) -> RunResult:
        result = RunResult(run_id=run_id, status="running")

        for index, step in enumerate(self.steps):
            if self.cancelled:
                self.logger.warning("Run cancelled before step %s.", step.name)
                result.status = "aborted"
                result.failed_phase = step.phase
                result.failed_step = step.name
                self._skip(result, self.steps[index:])
                return result

            outcome = self._execute(step)
            result.outcomes.append(outcome)

            if outcome.status == "success":
                continue

            result.status = "aborted" if outcome.status == "aborted" else "failed"
            result.failed_phase = step.phase
            result.failed_step = step.name
            result.error_category = outcome.error_category
            result.error_kind = outcome.error_kind
            result.error = outcome.error
            self._skip(result, self.steps[index + 1 :])
            return result

        result.status = "success"
        return result

    def _execute(self, step: Step) -> StepOutcome:
        outcome = StepOutcome(phase=step.phase, step=step.name, status="running", started_at=utc_now())
        self.logger.info("[%s] %s started", step.phase, step.name)
        if self.run_log:
            self.run_log.step_started(step.phase, step.name)

        try:
            step.action()
        except KeyboardInterrupt:
            outcome.status = "aborted"
            outcome.error_kind = "Cancelled"
            outcome.error = "Operation cancelled by user."
            self.console.print("[bold red]Operation cancelled by user.[/bold red]")
            self.logger.info("Operation cancelled by user during %s", step.name)
        except PipelineError as exc:
            self._fail(outcome, exc.category, exc.kind, str(exc), exc.output)
        except Exception as exc:
            self.logger.exception("Unexpected error in step %s", step.name)
            self._fail(outcome, "UnexpectedError", type(exc).__name__, str(exc), "")
        else:
            outcome.status = "success"
            self.logger.info("[%s] %s succeeded", step.phase, step.name)

        outcome.finished_at = utc_now()
        if self.run_log:
            self.run_log.step_finished(step.name, outcome.status, outcome.error_kind, outcome.error)
        return outcome

    def _fail(self, outcome: StepOutcome, category: str, kind: str, message: str, output: str):
        outcome.status = "failed"
        outcome.error_category = category
        outcome.error_kind = kind
        outcome.error = self.redactor(message)
        self.console.print(f"[bold red]Error ({category}:{kind}):[/bold red] {escape(outcome.error)}")
        self.logger.error("[%s] %s failed [%s:%s]: %s", outcome.phase, outcome.step, category, kind, outcome.error)
        if output:
            self.logger.error("Tool output:\n%s", self.redactor(output))

    def _skip(self, result: RunResult, remaining: List[Step]):
        for step in remaining:
            result.outcomes.append(StepOutcome(phase=step.phase, step=step.name, status="skipped"))
            if self.run_log:
                self.run_log.step_skipped(step.phase, step.name)
            self.logger.debug("[%s] %s skipped", step.phase, step.name)
