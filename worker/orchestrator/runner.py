from __future__ import annotations

from testbench_common.log import logger
from testbench_common.utils import utc_now_iso

from .dispatcher import ExecutionDispatcher
from .errors import ConfigurationError
from .graph import GraphExecutor
from .nodes import PipelineNodeExecutor
from .schemas import ExecutionConfig, PipelineRecord, RunResult
from .stages import StagePipelineExecutor
from .state import ArtifactContext
from .suites import SuiteRunner


class PipelineRunner:
    """Runs a stored pipeline with the executor matching its type and records the outcome.

    Configuration errors are raised before anything runs or is written. Every run that starts
    ends with the pipeline record updated (lastRun, lastStatus), whatever the outcome.
    """

    def __init__(self, store=None, suite_runner=None, node_executor=None,
                 graph_executor: GraphExecutor | None = None,
                 stage_executor: StagePipelineExecutor | None = None):
        self.store = store
        self.suite_runner = suite_runner
        self.node_executor = node_executor
        self.graph_executor = graph_executor or GraphExecutor()
        self.stage_executor = stage_executor or StagePipelineExecutor()

    def run(self, pipeline) -> RunResult:
        if not isinstance(pipeline, PipelineRecord):
            pipeline = PipelineRecord.model_validate(pipeline)
        context = ArtifactContext()
        logger.info(f"running {pipeline.type} pipeline {pipeline.name or pipeline.id}")
        try:
            if pipeline.type == "graph":
                if self.node_executor is None:
                    raise ConfigurationError("graph pipelines need a node executor")
                result = self.graph_executor.execute(pipeline, self.node_executor, context)
            else:
                if self.suite_runner is None:
                    raise ConfigurationError("linear pipelines need a suite runner")
                result = self.stage_executor.execute(pipeline.stages, self.suite_runner, context)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.opt(exception=e).error(f"pipeline {pipeline.id} engine error: {e}")
            result = RunResult(
                status="ERROR",
                artifacts=context.snapshot(),
                log=[f"CRITICAL ENGINE ERROR: {e}"],
                error=str(e),
            )
        self._record(pipeline, result.status)
        return result

    def _record(self, pipeline: PipelineRecord, status: str):
        pipeline.last_run = utc_now_iso()
        pipeline.last_status = status
        if self.store is None:
            return
        try:
            self.store.save_pipeline(pipeline.model_dump(by_alias=True))
        except Exception as e:
            logger.error(f"failed to save run status of pipeline {pipeline.id}: {e}")


def build_runner(store, config: ExecutionConfig | None = None, notifier=None, substitute=None,
                 visibility: str = "global") -> PipelineRunner:
    dispatcher = ExecutionDispatcher(config=config, substitute=substitute)
    suite_runner = SuiteRunner(store, dispatcher, notifier=notifier)
    return PipelineRunner(
        store=store,
        suite_runner=suite_runner,
        node_executor=PipelineNodeExecutor(suite_runner),
        graph_executor=GraphExecutor(visibility=visibility),
    )
