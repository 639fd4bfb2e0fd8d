#!/usr/bin/env python3
# CUI // SP-CTI
"""Artifact dependency graph and change-impact analysis.

An edge (A -> B) means "A depends on B", so a change to B affects A.
Nodes and edges are append-only: adding a node id twice, or an edge whose
endpoints are unknown, raises ValueError.

Impact of changing node X:
  direct      sources of edges that target X (excluding X itself)
  transitive  BFS over "depends on me" edges starting from the direct set,
              excluding X and every direct node
  risk        total affected <= 2 low, 3-5 medium, 6-10 high, > 10 critical
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List

from patterngate.engineering.models import DependencyEdge, DependencyGraph, DependencyNode
from patterngate.engineering.phases import EdgeRelation, NodeType

RISK_THRESHOLDS = ((10, "critical"), (5, "high"), (2, "medium"))


@dataclass
class ImpactAnalysis:
    node_id: str
    direct: List[str] = field(default_factory=list)
    transitive: List[str] = field(default_factory=list)
    risk_level: str = "low"
    recommendations: List[str] = field(default_factory=list)

    @property
    def total_affected(self) -> int:
        return len(self.direct) + len(self.transitive)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "directly_affected": list(self.direct),
            "transitively_affected": list(self.transitive),
            "total_affected": self.total_affected,
            "risk_level": self.risk_level,
            "recommendations": list(self.recommendations),
        }


def add_node(graph: DependencyGraph, node_id: str, node_type, name: str,
             path: str = "", now: str = "") -> DependencyNode:
    if graph.node(node_id) is not None:
        raise ValueError(f"Node '{node_id}' already exists")
    node = DependencyNode(
        id=node_id, type=NodeType(node_type), name=name, path=path,
        created_at=now, modified_at=now,
    )
    graph.nodes.append(node)
    return node


def add_edge(graph: DependencyGraph, source_id: str, target_id: str,
             relation="import", now: str = "") -> DependencyEdge:
    for node_id in (source_id, target_id):
        if graph.node(node_id) is None:
            raise ValueError(f"Unknown node '{node_id}'")
    edge = DependencyEdge(
        source_id=source_id, target_id=target_id,
        relation=EdgeRelation(relation), created_at=now,
    )
    graph.edges.append(edge)
    return edge


def _dependents(graph: DependencyGraph) -> Dict[str, List[str]]:
    """target id -> ids of nodes depending on it, in edge order."""
    index: Dict[str, List[str]] = {}
    for edge in graph.edges:
        index.setdefault(edge.target_id, []).append(edge.source_id)
    return index


def risk_for(total_affected: int) -> str:
    for threshold, level in RISK_THRESHOLDS:
        if total_affected > threshold:
            return level
    return "low"


def analyze_impact(graph: DependencyGraph, node_id: str) -> ImpactAnalysis:
    """Compute which nodes a change to ``node_id`` affects. Unknown ids raise ValueError."""
    origin = graph.node(node_id)
    if origin is None:
        raise ValueError(f"Unknown node '{node_id}'")

    dependents = _dependents(graph)
    direct: List[str] = []
    for source in dependents.get(node_id, []):
        if source != node_id and source not in direct:
            direct.append(source)

    excluded = {node_id, *direct}
    seen = set(excluded)
    transitive: List[str] = []
    queue = deque(direct)
    while queue:
        current = queue.popleft()
        for source in dependents.get(current, []):
            if source in seen:
                continue
            seen.add(source)
            transitive.append(source)
            queue.append(source)

    analysis = ImpactAnalysis(node_id=node_id, direct=direct, transitive=transitive)
    analysis.risk_level = risk_for(analysis.total_affected)

    if origin.type == NodeType.SCHEMA:
        analysis.recommendations.append("Consider running database migration")
        analysis.recommendations.append("Check all API routes that use this schema")
    if any(graph.node(n).type == NodeType.API for n in direct):
        analysis.recommendations.append("API changes may require client updates")
    if analysis.risk_level in ("high", "critical"):
        analysis.recommendations.append("Consider creating a snapshot before making changes")
        analysis.recommendations.append("Run full test suite after changes")
    return analysis
