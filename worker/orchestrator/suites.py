from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from testbench_common.log import logger
from testbench_common.utils import utc_now_iso

from .dispatcher import ExecutionDispatcher
from .schemas import ExecutionConfig, Suite, SuiteRunResult


class SuiteRunner:
    """Runs one stored suite and records the outcome on it.

    ``run(suite_id, silent, inputs)`` is the call shape both pipeline executors use. Pipelines
    always run silently; interactive runs may hand uploaded website suites off to a visual
    runner and report PENDING.
    """

    def __init__(self, store, dispatcher: ExecutionDispatcher, config: ExecutionConfig | None = None,
                 notifier=None, handoff: Optional[Callable[[Suite], None]] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config or dispatcher.config
        self.notifier = notifier
        self.handoff = handoff

    def run(self, suite_id: str, silent: bool = False, inputs: Dict[str, Any] | None = None) -> SuiteRunResult:
        try:
            suite = Suite.model_validate(self.store.get_suite(suite_id))
        except KeyError:
            return SuiteRunResult(status="FAILURE", log="Suite not found")

        if suite.language == "website" and suite.website_method == "upload" and not silent and self.handoff:
            self.handoff(suite)
            return SuiteRunResult(status="PENDING", log="Opened in Visual Runner")

        started = time.monotonic()
        lines = [
            "=== PIPELINE EXECUTION LOG ===",
            f"Suite: {suite.name}",
            f"Language: {suite.language}",
            f"Mode: {self.config.mode}",
            f"Started: {utc_now_iso()}",
            "--- PIPELINE STARTED ---",
            "",
        ]
        artifacts: Dict[str, Any] = {}

        if self.config.mode == "real":
            lines.append(f"[EXECUTION] Running {suite.language} code...")
            result = self.dispatcher.run_suite(suite, inputs or {})
            lines += ["[OUTPUT]", result.output or ""]
            if result.error:
                lines += ["[STDERR]", result.error]
            for warning in result.warnings:
                lines.append(f"[WARNING] {warning}")
            status = "SUCCESS" if result.status == "SUCCESS" else "FAILURE"
            artifacts = result.artifacts
        else:
            lines.append("[CODE] Displaying code (simulation mode)...")
            if suite.code:
                lines += [f" {line}" for line in suite.code.split("\n")]
            else:
                lines.append(" (no code defined)")
            lines.append("[RESULT] Simulated execution completed.")
            status = "SUCCESS"

        duration = time.monotonic() - started
        lines += [
            "",
            f"[STATUS] {status}: {'All tests passed.' if status == 'SUCCESS' else 'Execution encountered errors.'}",
            "--- PIPELINE END ---",
            f"Duration: {duration:.2f}s. Final Status: {status}",
        ]
        log = "\n".join(lines)

        self._record(suite_id, status, log)
        if not silent:
            self._notify(suite, status, duration)
        return SuiteRunResult(status=status, log=log, duration=round(duration, 2), artifacts=artifacts)

    def _record(self, suite_id: str, status: str, log: str):
        try:
            self.store.update_suite(suite_id, {
                "lastRunStatus": status,
                "lastRunTime": utc_now_iso(),
                "lastRunLog": log,
            })
        except Exception as e:
            logger.error(f"failed to update run status of suite {suite_id}: {e}")

    def _notify(self, suite: Suite, status: str, duration: float):
        if self.notifier is None:
            return
        payload = {
            "suiteId": suite.id,
            "suiteName": suite.name,
            "status": "PASSED" if status == "SUCCESS" else "FAILED",
            "executionTime": int(duration * 1000),
            "timestamp": utc_now_iso(),
            "errorMessage": None if status == "SUCCESS" else "Test failed",
        }
        try:
            self.notifier.send(payload)
        except Exception as e:
            logger.error(f"failed to send notification for suite {suite.id}: {e}")
