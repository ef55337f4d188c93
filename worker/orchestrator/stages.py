from __future__ import annotations

import time
from typing import Any, Dict, List

from testbench_common.log import logger

from .errors import ConfigurationError, EmptyStageError, JobExecutionError
from .graph import Step, run_chain
from .schemas import ActionReport, RunResult, Stage, StageReport, SuiteRunResult
from .state import ArtifactContext, FlowState


def validate_stages(stages: List[Stage]) -> None:
    """Reject the whole definition before any stage runs."""
    if not stages:
        raise ConfigurationError("Pipeline must have at least one stage")
    for i, stage in enumerate(stages):
        if not stage.actions:
            raise EmptyStageError(stage.name or f"Stage {i + 1}")


def _outcome(raw) -> SuiteRunResult:
    if isinstance(raw, SuiteRunResult):
        return raw
    if isinstance(raw, dict):
        raw = dict(raw)
        if raw.get("status") not in ("SUCCESS", "PENDING"):
            raw["status"] = "FAILURE"
        return SuiteRunResult.model_validate(raw)
    raise TypeError(f"suite runner returned {type(raw).__name__}, expected SuiteRunResult")


class StagePipelineExecutor:
    """Runs stages in order; actions inside a stage run one after another.

    A stage fails when any of its actions fails, but the remaining actions still run before
    the stage's onSuccess/onFailure policy is applied.
    """

    def execute(self, stages, suite_runner, context: ArtifactContext | None = None) -> RunResult:
        stages = [s if isinstance(s, Stage) else Stage.model_validate(s) for s in stages]
        validate_stages(stages)

        context = context if context is not None else ArtifactContext()
        run_suite = getattr(suite_runner, "run", suite_runner)
        reports: List[StageReport] = []
        started = time.monotonic()

        def make_step(index: int, stage: Stage) -> Step:
            def step(state: FlowState) -> Dict[str, Any]:
                label = f"Stage {index + 1}: {stage.name}"
                log = [f">>> Executing {label}"]
                report = StageReport(stage_id=stage.id, name=stage.name)
                reports.append(report)

                for action in stage.actions:
                    job = action.suite_name or action.suite_id
                    try:
                        outcome = _outcome(run_suite(action.suite_id, True, context.snapshot()))
                    except Exception as e:
                        err = JobExecutionError(f"{label} / {job}", e)
                        logger.opt(exception=e).error(f"suite {action.suite_id} raised: {e}")
                        report.actions.append(ActionReport(
                            action_id=action.id, suite_id=action.suite_id, suite_name=action.suite_name,
                            status="ERROR", log=str(e),
                        ))
                        report.success = False
                        report.outcome = "FAILED"
                        log.append(f"  - {job}: ERROR: {e}")
                        log.append(f"CRITICAL: {label} aborted by an execution error. Stopping pipeline.")
                        return {"status": "FAILURE", "halted": True, "error": str(err), "log": log}

                    context.merge(outcome.artifacts, action.id or action.suite_id)
                    report.actions.append(ActionReport(
                        action_id=action.id, suite_id=action.suite_id, suite_name=action.suite_name,
                        status=outcome.status, log=outcome.log,
                    ))
                    if outcome.status == "SUCCESS":
                        log.append(f"  - {job}: PASS")
                    elif outcome.status == "PENDING":
                        log.append(f"  - {job}: handed off to visual runner")
                    else:
                        log.append(f"  - {job}: FAIL")
                        if outcome.log:
                            log.append(f"      {outcome.log[:200]}...")
                        report.success = False

                if report.success:
                    report.outcome = "COMPLETED"
                    if stage.on_success == "stop":
                        log.append(f"INFO: {label} [Success -> Stop] triggered. Stopping pipeline.")
                        return {"halted": True, "log": log}
                    return {"log": log}

                report.outcome = "FAILED"
                if stage.on_failure == "stop":
                    log.append(f"CRITICAL: {label} failed. [Failure -> Stop] triggered. Aborting pipeline.")
                    return {"status": "FAILURE", "halted": True, "log": log}
                log.append(f"WARNING: {label} failed. [Failure -> Next] triggered. Continuing...")
                return {"status": "WARNING", "log": log}

            return step

        final = run_chain([(f"stage_{i}", make_step(i, stage)) for i, stage in enumerate(stages)])
        status = final["status"]
        logger.info(f"linear pipeline finished: {status} after {len(reports)}/{len(stages)} stages")
        return RunResult(
            status=status,
            duration=int((time.monotonic() - started) * 1000),
            stages=reports,
            artifacts=context.snapshot(),
            log=final.get("log", []) + [f"Pipeline Execution Finished. Final Status: {status}"],
            error=final.get("error"),
        )
