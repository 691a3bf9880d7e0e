"""
kg_build worker: clear and rebuild the knowledge graph, then score coverage.

Expected node and edge types come from the job's extras
(`expectedNodeTypes`, `expectedEdgeTypes`); an empty list counts as full
coverage. Score = mean of node-type coverage, edge-type coverage and
min(edges per node, 1). Success needs score >= 0.7 and no build errors.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ingestra.engine import BaseWorker
from ingestra.schemas import ActionMetrics, ETLError, JobType, PARAction, PARPerception, PARReflection
from ingestra.schemas import par
from ingestra.stack_clients import GraphStats

logger = logging.getLogger(__name__)


SUCCESS_SCORE = 0.7
LOW_CONNECTIVITY = 0.3


@dataclass
class GraphExpectations:
    current_stats: Optional[GraphStats]
    expected_node_types: list[str] = field(default_factory=list)
    expected_edge_types: list[str] = field(default_factory=list)


def coverage(expected: list[str], actual: list[str]) -> tuple[float, list[str]]:
    missing = [t for t in expected if t not in actual]
    if not expected:
        return 1.0, missing
    return (len(expected) - len(missing)) / len(expected), missing


class KgBuildWorker(BaseWorker[GraphExpectations, None]):
    job_type = JobType.KG_BUILD

    @property
    def graph(self):
        if self.context.knowledge_graph is None:
            raise ValueError("kg_build requires a knowledge graph client; set knowledge_graph in config.yaml")
        return self.context.knowledge_graph

    def perceive(self) -> PARPerception[GraphExpectations, None]:
        graph = self.graph
        try:
            current = graph.get_stats()
        except Exception as e:
            # A graph that was never built has no stats yet
            logger.debug(f"No current graph stats: {e}")
            current = None

        extras = self.definition.extras
        data = GraphExpectations(
            current_stats=current,
            expected_node_types=list(extras.get("expectedNodeTypes", [])),
            expected_edge_types=list(extras.get("expectedEdgeTypes", [])),
        )
        return PARPerception(
            data=data,
            context={"rebuildRequired": current is None or current.total_nodes == 0},
        )

    def act(self, perception: PARPerception[GraphExpectations, None]) -> PARAction:
        started = time.monotonic()
        graph = self.graph
        errors: list[ETLError] = []

        try:
            graph.clear()
            stats = graph.build()
        except Exception as e:
            logger.warning(f"Knowledge graph build failed: {e}")
            errors.append(ETLError(par.KG_BUILD_ERROR, str(e) or e.__class__.__name__))
            try:
                stats = graph.get_stats()
            except Exception:
                stats = GraphStats()

        return PARAction(
            result={"stats": stats},
            metrics=ActionMetrics(
                records_processed=stats.total_nodes + stats.total_edges,
                records_failed=len(errors),
                duration_ms=int((time.monotonic() - started) * 1000),
            ),
            errors=errors,
        )

    def reflect(self, action: PARAction, perception: PARPerception[GraphExpectations, None]) -> PARReflection[None]:
        stats: Optional[GraphStats] = (action.result or {}).get("stats")
        can_retry = perception.iteration < self.max_iterations - 1

        if stats is None:
            return PARReflection(
                success=False,
                retry=can_retry,
                confidence=0.0,
                improvements=["Failed to get graph statistics"],
            )

        improvements = []
        node_coverage, missing_nodes = coverage(perception.data.expected_node_types, list(stats.nodes_by_type))
        if missing_nodes:
            improvements.append(f"Missing node types: {', '.join(missing_nodes)}")

        edge_coverage, missing_edges = coverage(perception.data.expected_edge_types, list(stats.edges_by_type))
        if missing_edges:
            improvements.append(f"Missing edge types: {', '.join(missing_edges)}")

        connectivity = stats.connectivity_ratio
        if connectivity < LOW_CONNECTIVITY:
            improvements.append(f"Low connectivity ratio: {connectivity:.2f} edges per node")

        score = (node_coverage + edge_coverage + min(connectivity, 1.0)) / 3
        success = score >= SUCCESS_SCORE and not action.errors

        if success:
            lesson = (
                f"Successfully built KG with {stats.total_nodes} nodes, {stats.total_edges} edges, "
                f"{len(stats.edges_by_type)} relationship types"
            )
        else:
            lesson = f"KG build incomplete: {'; '.join(improvements) or 'build errors'}"

        return PARReflection(
            success=success,
            retry=not success and can_retry,
            confidence=score,
            improvements=improvements,
            lesson=lesson,
        )
