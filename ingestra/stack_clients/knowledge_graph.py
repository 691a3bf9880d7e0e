"""Knowledge-graph build boundary.

The graph construction algorithm lives outside ingestra; the kg_build worker
only clears, builds and reads statistics through this protocol.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class GraphStats:
    total_nodes: int = 0
    total_edges: int = 0
    nodes_by_type: dict[str, int] = field(default_factory=dict)
    edges_by_type: dict[str, int] = field(default_factory=dict)
    avg_connections: float = 0.0

    @property
    def connectivity_ratio(self) -> float:
        return self.total_edges / max(self.total_nodes, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "totalEdges": self.total_edges,
            "nodesByType": dict(self.nodes_by_type),
            "edgesByType": dict(self.edges_by_type),
            "avgConnections": self.avg_connections,
        }


@runtime_checkable
class KnowledgeGraph(Protocol):
    def clear(self) -> None:
        ...

    def build(self) -> GraphStats:
        ...

    def get_stats(self) -> GraphStats:
        ...
