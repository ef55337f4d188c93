"""Tests for DAG pipeline execution."""
import pytest

from orchestrator.errors import ConfigurationError, GraphCycleError
from orchestrator.graph import GraphExecutor, topological_sort
from orchestrator.schemas import Edge, JobResult, Node, PipelineDefinition
from orchestrator.state import ArtifactContext

from conftest import RecordingNodeExecutor, make_graph


def _nodes(*ids):
    return [Node(id=i) for i in ids]


def _edges(*pairs):
    return [Edge(source=s, target=t) for s, t in pairs]


class TestTopologicalSort:
    def test_every_edge_source_precedes_target(self):
        nodes = _nodes("build", "lint", "unit", "deploy")
        edges = _edges(("build", "unit"), ("lint", "unit"), ("unit", "deploy"), ("build", "deploy"))

        order = [n.id for n in topological_sort(nodes, edges)]

        assert sorted(order) == ["build", "deploy", "lint", "unit"]
        for edge in edges:
            assert order.index(edge.source) < order.index(edge.target)

    def test_independent_nodes_keep_declaration_order(self):
        order = [n.id for n in topological_sort(_nodes("c", "a", "b"), [])]
        assert order == ["c", "a", "b"]

    def test_cycle_lists_unresolved_nodes(self):
        nodes = _nodes("start", "a", "b")
        edges = _edges(("start", "a"), ("a", "b"), ("b", "a"))

        with pytest.raises(GraphCycleError) as exc:
            topological_sort(nodes, edges)

        assert exc.value.unresolved == ["a", "b"]
        assert "Cycle detected" in str(exc.value)

    def test_duplicate_node_id_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate node id"):
            topological_sort(_nodes("a", "a"), [])

    def test_edge_to_unknown_node_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown node ghost"):
            topological_sort(_nodes("a"), _edges(("a", "ghost")))


class TestGraphExecutor:
    def test_cycle_runs_nothing(self):
        executor = RecordingNodeExecutor()
        pipeline = make_graph(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])

        with pytest.raises(GraphCycleError):
            GraphExecutor().execute(pipeline, executor)

        assert executor.calls == []

    def test_empty_graph_succeeds(self):
        result = GraphExecutor().execute({"nodes": [], "edges": []}, RecordingNodeExecutor())
        assert result.status == "SUCCESS"
        assert result.results == {}

    def test_artifacts_visible_to_every_later_node(self):
        executor = RecordingNodeExecutor(results={
            "a": {"status": "SUCCESS", "artifacts": {"token": "t-1"}},
            "b": {"status": "SUCCESS", "artifacts": {"build": "b-7"}},
        })
        # d has no edge from a but still runs after it
        pipeline = make_graph(["a", "b", "c", "d"], [("a", "b"), ("b", "c"), ("a", "d")])

        result = GraphExecutor().execute(pipeline, executor)

        assert result.status == "SUCCESS"
        assert executor.inputs_of("a") == {}
        assert executor.inputs_of("c") == {"token": "t-1", "build": "b-7"}
        assert executor.inputs_of("d")["token"] == "t-1"
        assert result.artifacts == {"token": "t-1", "build": "b-7"}

    def test_unconnected_node_sees_artifacts_of_earlier_nodes(self):
        executor = RecordingNodeExecutor(results={"a": {"status": "SUCCESS", "artifacts": {"k": 1}}})
        result = GraphExecutor().execute(make_graph(["a", "b"], []), executor)

        assert result.order == ["a", "b"]
        assert executor.inputs_of("b") == {"k": 1}

    def test_edge_visibility_scopes_inputs_to_direct_upstream(self):
        executor = RecordingNodeExecutor(results={
            "a": {"status": "SUCCESS", "artifacts": {"from_a": True}},
            "b": {"status": "SUCCESS", "artifacts": {"from_b": True}},
        })
        pipeline = make_graph(["a", "b", "c"], [("a", "b"), ("b", "c")])

        result = GraphExecutor(visibility="edges").execute(pipeline, executor)

        assert executor.inputs_of("b") == {"from_a": True}
        assert executor.inputs_of("c") == {"from_b": True}
        assert result.artifacts == {"from_a": True, "from_b": True}

    def test_unknown_visibility_rejected(self):
        with pytest.raises(ValueError):
            GraphExecutor(visibility="nearby")

    def test_failure_stops_by_default(self):
        executor = RecordingNodeExecutor(results={"a": {"status": "FAILURE", "message": "boom"}})
        pipeline = make_graph(["a", "b"], [("a", "b")])

        result = GraphExecutor().execute(pipeline, executor)

        assert result.status == "FAILURE"
        assert executor.ran == ["a"]
        assert "b" not in result.results
        assert any("FAIL: a: boom" in line for line in result.log)

    def test_failure_with_next_continues(self):
        executor = RecordingNodeExecutor(results={"a": {"status": "FAILURE"}})
        pipeline = make_graph(["a", "b"], [("a", "b")], a={"onFailure": "next"})

        result = GraphExecutor().execute(pipeline, executor)

        assert executor.ran == ["a", "b"]
        assert result.status == "FAILURE"
        assert result.results["b"].status == "SUCCESS"

    def test_returned_error_counts_as_failure(self):
        executor = RecordingNodeExecutor(results={"a": {"status": "ERROR", "error": "bad input"}})
        result = GraphExecutor().execute(make_graph(["a", "b"], [("a", "b")]), executor)

        assert result.status == "FAILURE"
        assert executor.ran == ["a"]

    def test_exception_aborts_even_with_next(self):
        executor = RecordingNodeExecutor(raises={"a": RuntimeError("disk full")})
        pipeline = make_graph(["a", "b"], [("a", "b")], a={"onFailure": "next"})

        result = GraphExecutor().execute(pipeline, executor)

        assert result.status == "FAILURE"
        assert executor.ran == ["a"]
        assert result.results["a"].status == "ERROR"
        assert result.results["a"].error == "disk full"
        assert "disk full" in result.error

    def test_pending_is_not_a_failure(self):
        executor = RecordingNodeExecutor(results={"a": {"status": "PENDING"}})
        result = GraphExecutor().execute(make_graph(["a", "b"], [("a", "b")]), executor)

        assert result.status == "SUCCESS"
        assert executor.ran == ["a", "b"]

    def test_failed_node_artifacts_still_published(self):
        executor = RecordingNodeExecutor(results={
            "scan": {"status": "FAILURE", "artifacts": {"securityResults": {"summary": {"critical": 2}}}},
        })
        pipeline = make_graph(["scan", "gate"], [("scan", "gate")], scan={"onFailure": "next"})

        GraphExecutor().execute(pipeline, executor)

        assert executor.inputs_of("gate")["securityResults"]["summary"]["critical"] == 2

    def test_later_writer_overwrites_key(self):
        executor = RecordingNodeExecutor(results={
            "a": {"status": "SUCCESS", "artifacts": {"v": 1}},
            "b": {"status": "SUCCESS", "artifacts": {"v": 2}},
        })
        context = ArtifactContext()

        GraphExecutor().execute(make_graph(["a", "b"], [("a", "b")]), executor, context)

        assert context.get("v") == 2
        assert context.producers["v"] == "b"

    def test_plain_callable_executor(self):
        seen = []

        def run(node, inputs, context):
            seen.append(node.id)
            return JobResult(status="SUCCESS")

        result = GraphExecutor().execute(make_graph(["a", "b"], [("a", "b")]), run)

        assert result.status == "SUCCESS"
        assert seen == ["a", "b"]

    def test_same_definition_gives_same_aggregate(self):
        pipeline = PipelineDefinition.model_validate(
            make_graph(["a", "b", "c"], [("a", "b"), ("a", "c")], b={"onFailure": "next"})
        )
        outcomes = {"b": {"status": "FAILURE"}, "c": {"status": "SUCCESS", "artifacts": {"x": 1}}}

        first = GraphExecutor().execute(pipeline, RecordingNodeExecutor(results=outcomes))
        second = GraphExecutor().execute(pipeline, RecordingNodeExecutor(results=outcomes))

        assert first.status == second.status == "FAILURE"
        assert first.order == second.order
        assert {k: v.status for k, v in first.results.items()} == {k: v.status for k, v in second.results.items()}
        assert first.artifacts == second.artifacts

    def test_legacy_node_types_resolve(self):
        pipeline = PipelineDefinition.model_validate({
            "type": "graph",
            "nodes": [
                {"id": "r", "data": {"type": "git-repo"}},
                {"id": "s", "type": "security_scan"},
                {"id": "t", "type": "test-suite", "onFailure": None},
            ],
        })
        assert [n.type for n in pipeline.nodes] == ["repo-clone", "security-scan", "suite-run"]
        assert pipeline.nodes[2].on_failure == "stop"

    def test_final_log_line_reports_status(self):
        result = GraphExecutor().execute(make_graph(["a"], []), RecordingNodeExecutor())
        assert result.log[-1] == "Graph Execution Finished. Status: SUCCESS"
