from __future__ import annotations

import subprocess
from typing import Any, Dict, Optional

import requests

from testbench_common.log import logger

from .backends import LANGUAGE_BACKENDS, BackendKind, default_backends
from .errors import BackendUnavailable, InputFileRejected
from .schemas import ExecutionConfig, JobResult, Suite

ERROR_INDICATORS = ("error", "exception", "failed", "failure")
ANOMALY_WARNING = "Error indicators detected in output despite successful execution."


def has_error_indicators(output: Optional[str], error: Optional[str]) -> bool:
    out = (output or "").lower()
    err = (error or "").lower()
    return any(word in out or word in err for word in ERROR_INDICATORS)


class ExecutionDispatcher:
    """Routes a suite to the backend for its language and normalizes the result.

    Backends are not trusted as the only signal: a run the backend reports as successful is
    downgraded to FAILURE when its output or error text mentions an error indicator.
    """

    def __init__(self, config: ExecutionConfig | None = None, backends: Dict[BackendKind, Any] | None = None,
                 substitute=None):
        self.config = config or ExecutionConfig()
        self.backends = backends if backends is not None else default_backends(self.config)
        self.substitute = substitute

    def backend_for(self, language: str) -> Optional[BackendKind]:
        return LANGUAGE_BACKENDS.get((language or "").lower())

    def _substituted(self, text: str) -> str:
        if self.substitute is None:
            return text
        fn = getattr(self.substitute, "substitute", self.substitute)
        return fn(text)

    def run_suite(self, suite, context_inputs: Dict[str, Any] | None = None) -> JobResult:
        if not isinstance(suite, Suite):
            suite = Suite.model_validate(suite)
        kind = self.backend_for(suite.language)
        if kind is None:
            return JobResult(status="FAILURE", output="", error=f"Unsupported language: {suite.language}")
        backend = self.backends.get(kind)
        if backend is None:
            return JobResult(status="FAILURE", output="", error=f"No backend configured for {kind.value}")

        code = self._substituted(suite.code)
        try:
            raw = backend.run(suite, code, dict(context_inputs or {}))
        except BackendUnavailable as e:
            logger.warning(f"{kind.value} unavailable for suite {suite.id or suite.name}: {e}")
            return JobResult(status="FAILURE", output="", error=str(e))
        except InputFileRejected as e:
            logger.warning(f"suite {suite.id or suite.name} rejected: {e}")
            return JobResult(status="FAILURE", output="", error=str(e))
        except subprocess.TimeoutExpired as e:
            return JobResult(status="FAILURE", output="", error=f"{kind.value} timed out after {e.timeout}s")
        except (requests.RequestException, OSError) as e:
            return JobResult(status="FAILURE", output="", error=f"{kind.value} failed: {e}")

        result = JobResult(
            status="SUCCESS" if raw.get("success") else "FAILURE",
            output=raw.get("output") or "",
            error=raw.get("error") or None,
            artifacts=raw.get("artifacts") or {},
        )
        if result.status == "SUCCESS" and has_error_indicators(result.output, result.error):
            result.status = "FAILURE"
            result.warnings.append(ANOMALY_WARNING)
            logger.warning(f"suite {suite.id or suite.name}: backend reported success but output has error indicators")
        return result
