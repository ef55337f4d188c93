from __future__ import annotations


class OrchestrationError(Exception):
    """Base class for errors raised by the pipeline engine."""


class ConfigurationError(OrchestrationError):
    """Pipeline definition rejected before anything runs."""


class GraphCycleError(ConfigurationError):
    def __init__(self, unresolved: list[str]):
        self.unresolved = unresolved
        super().__init__(
            "Cycle detected in pipeline! Graph must be Acyclic (DAG). "
            f"Unresolved nodes: {', '.join(unresolved)}"
        )


class EmptyStageError(ConfigurationError):
    def __init__(self, stage_name: str):
        self.stage_name = stage_name
        super().__init__(f'Stage "{stage_name}" has no scripts. Add scripts or remove the stage.')


class JobExecutionError(OrchestrationError):
    """A job executor raised instead of returning a result; always fatal to the run."""

    def __init__(self, job: str, cause: BaseException):
        self.job = job
        self.cause = cause
        super().__init__(f"{job}: {cause}")


class BackendUnavailable(OrchestrationError):
    """Backend cannot be reached or is not configured (credentials, URL, runtime binary)."""


class InputFileRejected(OrchestrationError):
    """A suite input file would land outside its sandbox or replace a runner file."""
