#!/usr/bin/env python3
# CUI // SP-CTI
"""Data model for engineering sessions.

gate_status is keyed by EngineeringPhase and always holds every phase;
artifacts are keyed by ArtifactKind. Rows with an unknown phase, gate state
or artifact key fail to load with CorruptRecordError instead of producing a
partially-populated session.
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from patterngate.engineering.phases import (
    PHASE_ORDER,
    AgentRole,
    ArtifactKind,
    EdgeRelation,
    EngineeringPhase,
    GateState,
    NodeType,
    SessionStatus,
)
from patterngate.resilience.errors import CorruptRecordError

COMPLIANCE_FLAGS = ("hipaa", "pci", "gdpr", "soc2", "coppa")


@dataclass
class ProjectScope:
    name: str = ""
    description: str = ""
    target_audience: str = "consumers"
    is_full_business: bool = False
    platforms: List[str] = field(default_factory=lambda: ["web"])
    has_auth: bool = True
    has_payments: bool = False
    payment_model: Optional[str] = None
    has_realtime: bool = False
    compliance: Dict[str, bool] = field(default_factory=lambda: {f: False for f in COMPLIANCE_FLAGS})
    expected_users: str = "small"
    launch_timeline: str = "flexible"
    needs_marketing: bool = False
    needs_analytics: bool = False
    needs_team_features: bool = False
    needs_admin_dashboard: bool = False


@dataclass
class TechStack:
    framework: str = "nextjs"
    database: str = "supabase"
    orm: str = "drizzle"
    auth: str = "supabase"
    ui: str = "shadcn"
    payments: Optional[str] = None


@dataclass
class GateStatus:
    status: GateState = GateState.PENDING
    started_at: Optional[str] = None
    passed_at: Optional[str] = None
    approved_by: Optional[str] = None
    artifacts: List[str] = field(default_factory=list)
    failed_reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class DependencyNode:
    id: str
    type: NodeType
    name: str
    path: str = ""
    created_at: str = ""
    modified_at: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class DependencyEdge:
    source_id: str
    target_id: str
    relation: EdgeRelation
    created_at: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["relation"] = self.relation.value
        return data


@dataclass
class DependencyGraph:
    """Directed graph: an edge (A -> B) means A depends on B."""
    nodes: List[DependencyNode] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)

    def node(self, node_id: str) -> Optional[DependencyNode]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


@dataclass
class AgentDecision:
    id: str
    timestamp: str
    agent: AgentRole
    phase: EngineeringPhase
    decision: str
    reasoning: str
    alternatives: List[str] = field(default_factory=list)
    confidence: int = 100
    reversible: bool = True
    impact: str = "medium"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["agent"] = self.agent.value
        data["phase"] = self.phase.value
        return data


@dataclass
class AgentMessage:
    id: str
    timestamp: str
    from_agent: str
    to_agent: str
    message_type: str            # handoff, question, approval_request, approval, rejection, update
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EngineeringSession:
    id: str
    project_name: str
    created_at: str
    updated_at: str
    project_id: Optional[str] = None
    project_description: str = ""
    team_id: Optional[str] = None
    scope: ProjectScope = field(default_factory=ProjectScope)
    stack: TechStack = field(default_factory=TechStack)
    current_phase: EngineeringPhase = EngineeringPhase.SCOPING
    current_agent: AgentRole = AgentRole.ORCHESTRATOR
    gate_status: Dict[EngineeringPhase, GateStatus] = field(
        default_factory=lambda: {p: GateStatus() for p in PHASE_ORDER}
    )
    artifacts: Dict[ArtifactKind, str] = field(default_factory=dict)
    dependency_graph: DependencyGraph = field(default_factory=DependencyGraph)
    is_running: bool = True
    status: SessionStatus = SessionStatus.ACTIVE
    paused_at: Optional[str] = None
    completed_at: Optional[str] = None
    # Scoping wizard progress and approval bookkeeping
    wizard_answers: Dict[str, Any] = field(default_factory=dict)
    current_step: Optional[str] = None
    pending_approvals: List[dict] = field(default_factory=list)
    decisions: List[AgentDecision] = field(default_factory=list)

    def gate(self, phase: Optional[EngineeringPhase] = None) -> GateStatus:
        return self.gate_status[phase or self.current_phase]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "project_description": self.project_description,
            "team_id": self.team_id,
            "scope": asdict(self.scope),
            "stack": asdict(self.stack),
            "current_phase": self.current_phase.value,
            "current_agent": self.current_agent.value,
            "gate_status": {p.value: g.to_dict() for p, g in self.gate_status.items()},
            "artifacts": {k.value: v for k, v in self.artifacts.items()},
            "dependency_graph": self.dependency_graph.to_dict(),
            "is_running": self.is_running,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "paused_at": self.paused_at,
            "completed_at": self.completed_at,
            "wizard_answers": self.wizard_answers,
            "current_step": self.current_step,
            "pending_approvals": self.pending_approvals,
            "decisions": [d.to_dict() for d in self.decisions],
        }

    def to_row(self) -> dict:
        data = self.to_dict()
        context = {
            "wizard_answers": data["wizard_answers"],
            "current_step": data["current_step"],
            "pending_approvals": data["pending_approvals"],
            "decisions": data["decisions"],
        }
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "project_description": self.project_description,
            "team_id": self.team_id,
            "status": data["status"],
            "current_phase": data["current_phase"],
            "current_agent": data["current_agent"],
            "is_running": int(self.is_running),
            "scope": json.dumps(data["scope"]),
            "stack": json.dumps(data["stack"]),
            "gate_status": json.dumps(data["gate_status"]),
            "artifacts": json.dumps(data["artifacts"]),
            "dependency_graph": json.dumps(data["dependency_graph"]),
            "context": json.dumps(context),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "paused_at": self.paused_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_row(cls, row: dict) -> "EngineeringSession":
        record_id = row.get("id", "")
        try:
            gates_raw = json.loads(row["gate_status"])
            gate_status = {}
            for key, value in gates_raw.items():
                value = dict(value)
                value["status"] = GateState(value["status"])
                gate_status[EngineeringPhase(key)] = GateStatus(**value)
            missing = [p for p in PHASE_ORDER if p not in gate_status]
            if missing:
                raise ValueError(f"gate_status lacks {[p.value for p in missing]}")

            graph_raw = json.loads(row["dependency_graph"])
            graph = DependencyGraph(
                nodes=[DependencyNode(**dict(n, type=NodeType(n["type"])))
                       for n in graph_raw.get("nodes", [])],
                edges=[DependencyEdge(**dict(e, relation=EdgeRelation(e["relation"])))
                       for e in graph_raw.get("edges", [])],
            )
            context = json.loads(row["context"])
            decisions = [
                AgentDecision(**dict(d, agent=AgentRole(d["agent"]), phase=EngineeringPhase(d["phase"])))
                for d in context.get("decisions", [])
            ]
            return cls(
                id=row["id"],
                project_id=row.get("project_id"),
                project_name=row["project_name"],
                project_description=row.get("project_description") or "",
                team_id=row.get("team_id"),
                scope=ProjectScope(**json.loads(row["scope"])),
                stack=TechStack(**json.loads(row["stack"])),
                current_phase=EngineeringPhase(row["current_phase"]),
                current_agent=AgentRole(row["current_agent"]),
                gate_status=gate_status,
                artifacts={ArtifactKind(k): v for k, v in json.loads(row["artifacts"]).items()},
                dependency_graph=graph,
                is_running=bool(row["is_running"]),
                status=SessionStatus(row["status"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                paused_at=row.get("paused_at"),
                completed_at=row.get("completed_at"),
                wizard_answers=context.get("wizard_answers", {}),
                current_step=context.get("current_step"),
                pending_approvals=context.get("pending_approvals", []),
                decisions=decisions,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptRecordError(
                f"Engineering session {record_id} could not be decoded: {exc}", record_id
            ) from exc


# ---------------------------------------------------------------------------
# Transition outcomes
# ---------------------------------------------------------------------------

class TransitionRefusal(str, Enum):
    SESSION_NOT_FOUND = "session_not_found"
    PHASE_NOT_COMPLETE = "phase_not_complete"
    FINAL_PHASE = "final_phase"
    MISSING_ARTIFACT = "missing_artifact"
    NOT_RUNNING = "not_running"
    ALREADY_RUNNING = "already_running"
    SESSION_CLOSED = "session_closed"
    INVALID_STEP = "invalid_step"
    NO_PENDING_APPROVAL = "no_pending_approval"
    INVALID_GRAPH_CHANGE = "invalid_graph_change"
    INVALID_ARTIFACT = "invalid_artifact"


@dataclass
class TransitionResult:
    success: bool
    message: str = ""
    refusal: Optional[TransitionRefusal] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data) -> "TransitionResult":
        return cls(True, message, None, data)

    @classmethod
    def refuse(cls, refusal: TransitionRefusal, message: str) -> "TransitionResult":
        return cls(False, message, refusal)

    def to_dict(self) -> dict:
        result = {"success": self.success, "message": self.message}
        if self.refusal is not None:
            result["refusal"] = self.refusal.value
            result["reason"] = self.message
        result.update(self.data)
        return result
