"""Pytest configuration and fixtures."""
import pytest

from orchestrator.schemas import JobResult, SuiteRunResult


class FakeSuiteRunner:
    """Suite runner returning canned outcomes and recording every call."""

    def __init__(self, outcomes=None, raises=None):
        self.outcomes = outcomes or {}
        self.raises = raises or {}
        self.calls = []

    def run(self, suite_id, silent=False, inputs=None):
        self.calls.append((suite_id, silent, dict(inputs or {})))
        if suite_id in self.raises:
            raise self.raises[suite_id]
        outcome = self.outcomes.get(suite_id, "SUCCESS")
        if isinstance(outcome, str):
            return SuiteRunResult(status=outcome, log=f"{suite_id} {outcome.lower()}")
        return SuiteRunResult.model_validate(outcome)

    @property
    def ran(self):
        return [call[0] for call in self.calls]


class RecordingNodeExecutor:
    """Node executor returning canned JobResults keyed by node id."""

    def __init__(self, results=None, raises=None):
        self.results = results or {}
        self.raises = raises or {}
        self.calls = []

    def execute(self, node, inputs, context):
        self.calls.append((node.id, dict(inputs)))
        if node.id in self.raises:
            raise self.raises[node.id]
        result = self.results.get(node.id, {"status": "SUCCESS"})
        return JobResult.coerce(result)

    @property
    def ran(self):
        return [call[0] for call in self.calls]

    def inputs_of(self, node_id):
        for ran_id, inputs in self.calls:
            if ran_id == node_id:
                return inputs
        raise KeyError(node_id)


class MemoryStore:
    """In-memory persistence store with switchable failure."""

    def __init__(self, suites=None, pipelines=None):
        self.suites = {s["id"]: dict(s) for s in (suites or [])}
        self.pipelines = {p["id"]: dict(p) for p in (pipelines or [])}
        self.fail_writes = False
        self.suite_updates = []

    def get_suite(self, suite_id):
        if suite_id not in self.suites:
            raise KeyError(suite_id)
        return dict(self.suites[suite_id])

    def save_suite(self, suite):
        self._check()
        self.suites[suite["id"]] = dict(suite)
        return suite["id"]

    def update_suite(self, suite_id, fields):
        self._check()
        self.suite_updates.append((suite_id, fields))
        self.suites[suite_id].update(fields)

    def get_pipeline(self, pipeline_id):
        return dict(self.pipelines[pipeline_id])

    def save_pipeline(self, pipeline):
        self._check()
        self.pipelines[pipeline["id"]] = dict(pipeline)
        return pipeline["id"]

    def _check(self):
        if self.fail_writes:
            raise OSError("database is locked")


@pytest.fixture
def suite_runner():
    return FakeSuiteRunner()


@pytest.fixture
def node_executor():
    return RecordingNodeExecutor()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "testbench.db")


def make_stage(name, suites, on_success="next", on_failure="stop"):
    return {
        "id": f"stage_{name}",
        "name": name,
        "onSuccess": on_success,
        "onFailure": on_failure,
        "actions": [{"id": f"a_{s}", "suiteId": s, "suiteName": s.upper()} for s in suites],
    }


def make_graph(node_ids, edges, **node_overrides):
    nodes = []
    for node_id in node_ids:
        node = {"id": node_id, "type": "suite-run", "data": {"name": node_id, "suiteId": node_id}}
        node.update(node_overrides.get(node_id, {}))
        nodes.append(node)
    return {
        "type": "graph",
        "nodes": nodes,
        "edges": [{"id": f"{s}-{t}", "source": s, "target": t} for s, t in edges],
    }
