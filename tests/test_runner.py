import pytest

from orchestrator.errors import EmptyStageError, GraphCycleError
from orchestrator.runner import PipelineRunner, build_runner
from orchestrator.schemas import ExecutionConfig

from conftest import FakeSuiteRunner, MemoryStore, RecordingNodeExecutor, make_graph, make_stage


def linear(pipeline_id="p1", stages=None):
    return {"id": pipeline_id, "name": "Nightly", "stages": stages or [make_stage("one", ["s1"])]}


class ExplodingStageExecutor:
    def execute(self, stages, suite_runner, context):
        context.merge({"half": "done"}, "x")
        raise RuntimeError("engine bug")


class TestPipelineRunner:
    def test_linear_run_recorded(self):
        store = MemoryStore()
        runner = PipelineRunner(store=store, suite_runner=FakeSuiteRunner())

        result = runner.run(linear())

        assert result.status == "SUCCESS"
        saved = store.pipelines["p1"]
        assert saved["lastStatus"] == "SUCCESS"
        assert saved["lastRun"]
        assert saved["stages"][0]["actions"][0]["suiteId"] == "s1"

    def test_missing_type_means_linear(self):
        suite_runner = FakeSuiteRunner()
        PipelineRunner(suite_runner=suite_runner).run(dict(linear(), type=None))
        assert suite_runner.ran == ["s1"]

    def test_graph_run_recorded(self):
        store = MemoryStore()
        executor = RecordingNodeExecutor(results={"b": {"status": "FAILURE"}})
        pipeline = dict(make_graph(["a", "b"], [("a", "b")]), id="g1")

        result = PipelineRunner(store=store, node_executor=executor).run(pipeline)

        assert result.status == "FAILURE"
        assert store.pipelines["g1"]["lastStatus"] == "FAILURE"

    def test_warning_recorded(self):
        store = MemoryStore()
        stages = [make_stage("one", ["bad"], on_failure="next"), make_stage("two", ["s2"])]
        runner = PipelineRunner(store=store, suite_runner=FakeSuiteRunner(outcomes={"bad": "FAILURE"}))

        assert runner.run(linear(stages=stages)).status == "WARNING"
        assert store.pipelines["p1"]["lastStatus"] == "WARNING"

    def test_configuration_errors_raise_without_record(self):
        store = MemoryStore()
        runner = PipelineRunner(store=store, suite_runner=FakeSuiteRunner(), node_executor=RecordingNodeExecutor())

        with pytest.raises(EmptyStageError):
            runner.run(linear(stages=[{"name": "empty", "actions": []}]))
        with pytest.raises(GraphCycleError):
            runner.run(dict(make_graph(["a", "b"], [("a", "b"), ("b", "a")]), id="g1"))

        assert store.pipelines == {}

    def test_engine_error_becomes_error_result(self):
        store = MemoryStore()
        runner = PipelineRunner(store=store, suite_runner=FakeSuiteRunner(), stage_executor=ExplodingStageExecutor())

        result = runner.run(linear())

        assert result.status == "ERROR"
        assert result.log == ["CRITICAL ENGINE ERROR: engine bug"]
        assert result.artifacts == {"half": "done"}
        assert store.pipelines["p1"]["lastStatus"] == "ERROR"

    def test_store_failure_tolerated(self):
        store = MemoryStore()
        store.fail_writes = True
        runner = PipelineRunner(store=store, suite_runner=FakeSuiteRunner())

        assert runner.run(linear()).status == "SUCCESS"

    def test_each_run_starts_with_empty_context(self):
        suite_runner = FakeSuiteRunner(outcomes={"s1": {"status": "SUCCESS", "artifacts": {"k": 1}}})
        runner = PipelineRunner(suite_runner=suite_runner)

        runner.run(linear())
        runner.run(linear())

        assert suite_runner.calls[0][2] == {}
        assert suite_runner.calls[1][2] == {}


def test_build_runner_simulated_end_to_end():
    store = MemoryStore(suites=[
        {"id": "s1", "name": "Smoke", "language": "python", "code": "print(1)"},
        {"id": "s2", "name": "Regression", "language": "java", "code": "class A {}"},
    ])
    runner = build_runner(store, config=ExecutionConfig(mode="simulated"), visibility="edges")
    pipeline = {
        "id": "p9",
        "type": "graph",
        "nodes": [
            {"id": "n1", "type": "suite-run", "data": {"suiteId": "s1"}},
            {"id": "n2", "type": "test-suite", "data": {"suiteId": "s2"}},
        ],
        "edges": [{"source": "n1", "target": "n2"}],
    }

    result = runner.run(pipeline)

    assert result.status == "SUCCESS"
    assert result.order == ["n1", "n2"]
    assert runner.graph_executor.visibility == "edges"
    assert store.suites["s2"]["lastRunStatus"] == "SUCCESS"
    assert store.pipelines["p9"]["lastStatus"] == "SUCCESS"
