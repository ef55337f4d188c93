from __future__ import annotations

import time
from collections import deque
from typing import Any, Callable, Dict, List, Sequence, Tuple

from langgraph.graph import END, StateGraph

from testbench_common.log import logger

from .errors import ConfigurationError, GraphCycleError, JobExecutionError
from .schemas import Edge, JobResult, Node, PipelineDefinition, RunResult
from .state import ArtifactContext, FlowState

VISIBILITY_MODES = ("global", "edges")

Step = Callable[[FlowState], Dict[str, Any]]


def _route(state: FlowState) -> str:
    return "halt" if state.get("halted") else "continue"


def build_chain(steps: Sequence[Tuple[str, Step]]):
    """Compile steps into a strictly sequential LangGraph chain.

    After every step a conditional edge either moves on to the next step or ends the run
    when the step set ``halted``.
    """
    g = StateGraph(FlowState)
    names = [name for name, _ in steps]
    for name, fn in steps:
        g.add_node(name, fn)
    g.set_entry_point(names[0])
    for i, name in enumerate(names):
        if i + 1 < len(names):
            g.add_conditional_edges(name, _route, {"continue": names[i + 1], "halt": END})
        else:
            g.add_edge(name, END)
    return g.compile()


def run_chain(steps: Sequence[Tuple[str, Step]], status: str = "SUCCESS") -> FlowState:
    chain = build_chain(steps)
    initial: FlowState = {"status": status, "halted": False, "log": []}
    return chain.invoke(initial, config={"recursion_limit": len(steps) + 5})


def topological_sort(nodes: List[Node], edges: List[Edge]) -> List[Node]:
    by_id: Dict[str, Node] = {}
    for node in nodes:
        if node.id in by_id:
            raise ConfigurationError(f"Duplicate node id: {node.id}")
        by_id[node.id] = node

    in_degree = {node.id: 0 for node in nodes}
    adj: Dict[str, List[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        for end in (edge.source, edge.target):
            if end not in by_id:
                raise ConfigurationError(f"Edge {edge.id or edge.source + '->' + edge.target} references unknown node {end}")
        in_degree[edge.target] += 1
        adj[edge.source].append(edge.target)

    queue = deque(node_id for node_id, count in in_degree.items() if count == 0)
    ordered: List[Node] = []
    while queue:
        u = queue.popleft()
        ordered.append(by_id[u])
        for v in adj[u]:
            in_degree[v] -= 1
            if in_degree[v] == 0:
                queue.append(v)

    if len(ordered) != len(nodes):
        done = {n.id for n in ordered}
        raise GraphCycleError([n.id for n in nodes if n.id not in done])
    return ordered


class GraphExecutor:
    """Runs a DAG pipeline one node at a time in topological order.

    Every node sees all artifacts produced so far (``visibility="global"``). With
    ``visibility="edges"`` a node only sees what its direct upstream nodes produced.
    """

    def __init__(self, visibility: str = "global"):
        if visibility not in VISIBILITY_MODES:
            raise ValueError(f"visibility must be one of {VISIBILITY_MODES}, got {visibility!r}")
        self.visibility = visibility

    def execute(self, pipeline, node_executor, context: ArtifactContext | None = None) -> RunResult:
        if not isinstance(pipeline, PipelineDefinition):
            pipeline = PipelineDefinition.model_validate(dict(pipeline, type="graph"))
        ordered = topological_sort(pipeline.nodes, pipeline.edges)

        context = context if context is not None else ArtifactContext()
        run_node = getattr(node_executor, "execute", node_executor)
        started = time.monotonic()

        if not ordered:
            return RunResult(status="SUCCESS", artifacts=context.snapshot(), log=["Graph has no nodes."])

        logger.info(f"graph execution order: {[n.name for n in ordered]}")
        position = {node.id: i for i, node in enumerate(ordered)}
        upstream: Dict[str, List[str]] = {node.id: [] for node in ordered}
        for edge in pipeline.edges:
            upstream[edge.target].append(edge.source)
        results: Dict[str, JobResult] = {}
        produced: Dict[str, Dict[str, Any]] = {}

        def inputs_for(node: Node) -> Dict[str, Any]:
            if self.visibility == "global":
                return context.snapshot()
            scoped: Dict[str, Any] = {}
            for src in sorted(upstream[node.id], key=position.__getitem__):
                scoped.update(produced.get(src, {}))
            return scoped

        def make_step(node: Node) -> Step:
            def step(state: FlowState) -> Dict[str, Any]:
                log = [f"Running Node: {node.name}..."]
                try:
                    result = JobResult.coerce(run_node(node, inputs_for(node), context))
                except Exception as e:
                    err = JobExecutionError(f"node {node.name}", e)
                    logger.opt(exception=e).error(f"graph node {node.id} raised: {e}")
                    results[node.id] = JobResult(status="ERROR", error=str(e), message=str(err))
                    log.append(f"  ERROR: {node.name}: {e}. Execution errors always stop the run.")
                    return {"status": "FAILURE", "halted": True, "error": str(err), "log": log}

                results[node.id] = result
                produced[node.id] = dict(result.artifacts)
                context.merge(result.artifacts, node.id)

                update: Dict[str, Any] = {"log": log}
                if result.failed:
                    update["status"] = "FAILURE"
                    log.append(f"  FAIL: {node.name}: {result.message or result.error or 'Unknown error'}")
                    if node.on_failure == "stop":
                        log.append(f"  Node {node.name} [Failure -> Stop]. Aborting pipeline.")
                        update["halted"] = True
                elif result.status == "PENDING":
                    log.append(f"  HANDED OFF: {node.name}")
                else:
                    log.append(f"  PASS: {node.name}")
                return update

            return step

        final = run_chain([(f"job_{i}", make_step(node)) for i, node in enumerate(ordered)])
        log = final.get("log", []) + [f"Graph Execution Finished. Status: {final['status']}"]
        return RunResult(
            status=final["status"],
            duration=int((time.monotonic() - started) * 1000),
            results=results,
            order=[node.id for node in ordered],
            artifacts=context.snapshot(),
            log=log,
            error=final.get("error"),
        )
