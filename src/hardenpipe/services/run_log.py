"""Run log generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class RunLogService:
    """Collects step outcomes and writes the run log JSON.

    Only names, statuses, error kinds and redacted messages are recorded;
    credential values never reach this file.
    """

    def __init__(self, log_file: Optional[str], logger):
        self.log_file = log_file
        self.logger = logger
        self.record: Dict[str, Any] = {
            "run_id": None,
            "status": "pending",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "steps": [],
            "artifacts": {},
            "produced": [],
            "failure": None,
        }

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.record.update(run_id=run_id, status="running", started_at=self._now(), metadata=metadata)
        self.write()

    def step_started(self, phase: str, step_name: str):
        self.record["steps"].append(self._step_entry(phase, step_name, "running", self._now()))
        self.write()

    def step_finished(
        self,
        step_name: str,
        status: str,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ):
        running = [
            step for step in self.record["steps"] if step["name"] == step_name and step["status"] == "running"
        ]
        if running:
            entry = running[-1]
            finished_at = self._now()
            entry.update(
                status=status,
                finished_at=finished_at,
                duration_seconds=self._elapsed(entry["started_at"], finished_at),
                error_kind=error_kind,
                error=error,
            )
        self.write()

    def step_skipped(self, phase: str, step_name: str):
        self.record["steps"].append(self._step_entry(phase, step_name, "skipped"))
        self.write()

    def add_artifact(self, key: str, value: str):
        self.record["artifacts"][key] = value
        self.write()

    def finalize(
        self,
        status: str,
        failure: Optional[Dict[str, Any]] = None,
        produced: Optional[List[str]] = None,
    ):
        finished_at = self._now()
        self.record.update(status=status, finished_at=finished_at, failure=failure, produced=list(produced or []))
        if self.record["started_at"]:
            self.record["duration_seconds"] = self._elapsed(self.record["started_at"], finished_at)
        self.write()

    def write(self):
        """Replaces the log file atomically; a failed write is only reported."""
        if not self.log_file:
            return

        directory = os.path.dirname(self.log_file) or "."
        temp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".run-log-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.record, handle, indent=2, sort_keys=True)
                handle.write("\n")
            os.replace(temp_path, self.log_file)
        except OSError as exc:
            self.logger.warning("Could not write run log '%s': %s", self.log_file, exc)
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)

    @staticmethod
    def _step_entry(phase: str, step_name: str, status: str, started_at: Optional[str] = None) -> Dict[str, Any]:
        return {
            "phase": phase,
            "name": step_name,
            "status": status,
            "started_at": started_at,
            "finished_at": None,
            "duration_seconds": None,
            "error_kind": None,
            "error": None,
        }

    @staticmethod
    def _elapsed(started_at: str, finished_at: str) -> float:
        return (datetime.fromisoformat(finished_at) - datetime.fromisoformat(started_at)).total_seconds()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
