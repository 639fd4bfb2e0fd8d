#!/usr/bin/env python3
# CUI // SP-CTI
"""Engineering phase orchestrator.

Drives a build session through the scoping wizard and the ordered phase
list, keeps per-phase gate state, tracks the dependency graph and exposes
pause/resume/cancel lifecycle controls.

Every mutation follows the same shape:

    with repository.session_lock(id):
        session = repository.load(id)       # private copy
        ... mutate the copy ...
        repository.save(session)            # row first, then cache
        ... append messages, decisions, gate history, audit events ...

A refused transition returns a TransitionResult with a refusal and leaves
both the row and the cache untouched.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from patterngate.audit.audit_logger import NullSink
from patterngate.engineering import dependency_graph as graph_ops
from patterngate.engineering.models import (
    COMPLIANCE_FLAGS,
    AgentDecision,
    AgentMessage,
    EngineeringSession,
    TransitionRefusal,
    TransitionResult,
)
from patterngate.engineering.phases import (
    AGENT_CONFIGS,
    PHASE_CONFIGS,
    PHASE_ORDER,
    REQUIRED_ARTIFACTS,
    SCOPING_WIZARD_STEPS,
    STEP_INDEX,
    TEXT_ARTIFACTS,
    AgentRole,
    ArtifactKind,
    EngineeringPhase,
    GateState,
    SessionStatus,
    next_phase,
)

logger = logging.getLogger("patterngate.engineering.orchestrator")

CLOSED_STATUSES = (SessionStatus.ABANDONED, SessionStatus.COMPLETED)
RECENT_LIMIT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def has_artifact(session: EngineeringSession, kind: ArtifactKind) -> bool:
    """Existence predicate for a phase input."""
    kind = ArtifactKind(kind)
    if kind == ArtifactKind.SCOPE:
        return session.gate(EngineeringPhase.SCOPING).status == GateState.PASSED
    if kind == ArtifactKind.SOURCE_CODE:
        return len(session.dependency_graph.nodes) > 0
    stored = bool((session.artifacts.get(kind) or "").strip())
    if kind == ArtifactKind.TEST_REPORT:
        return stored or session.gate(EngineeringPhase.TESTING).status == GateState.PASSED
    if kind == ArtifactKind.DEPLOYMENT_REPORT:
        return stored or session.gate(EngineeringPhase.STAGING).status == GateState.PASSED
    return stored


class _Changes:
    """Side records collected during a mutation, written after the session row."""

    def __init__(self):
        self.messages: List[AgentMessage] = []
        self.decisions: List[AgentDecision] = []
        self.history: List[dict] = []
        self.events: List[tuple] = []


class PhaseOrchestrator:

    def __init__(self, repository, sink=None, clock: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.sink = sink or NullSink()
        self.clock = clock or _utcnow

    def _now(self) -> str:
        return self.clock().isoformat()

    # ------------------------------------------------------------------
    # Mutation plumbing
    # ------------------------------------------------------------------

    def _mutate(self, session_id: str, fn) -> TransitionResult:
        with self.repository.session_lock(session_id):
            session = self.repository.load(session_id)
            if session is None:
                return TransitionResult.refuse(
                    TransitionRefusal.SESSION_NOT_FOUND, f"Session {session_id} not found")
            if session.status in CLOSED_STATUSES:
                return TransitionResult.refuse(
                    TransitionRefusal.SESSION_CLOSED, f"Session is {session.status.value}")
            changes = _Changes()
            result = fn(session, changes)
            if not result.success:
                logger.info("Refused on session %s: %s", session_id, result.message)
                return result
            session.updated_at = self._now()
            self.repository.save(session)
            self._flush(session, changes)
        return result

    def _flush(self, session: EngineeringSession, changes: _Changes) -> None:
        for message in changes.messages:
            self.repository.append_message(session.id, message)
        for decision in changes.decisions:
            self.repository.append_decision(session.id, decision)
        for entry in changes.history:
            self.repository.append_gate_history(session.id, **entry)
        for event_type, actor, action, details in changes.events:
            self.sink.emit(event_type, actor, action, details, session_id=session.id)

    def _message(self, changes: _Changes, from_agent, to_agent, message_type: str,
                 content: str, **metadata) -> None:
        changes.messages.append(AgentMessage(
            id=str(uuid.uuid4()),
            timestamp=self._now(),
            from_agent=getattr(from_agent, "value", from_agent),
            to_agent=getattr(to_agent, "value", to_agent),
            message_type=message_type,
            content=content,
            metadata=metadata,
        ))

    def _decision(self, session: EngineeringSession, changes: _Changes, decision: str,
                  reasoning: str, alternatives=None, confidence: int = 100,
                  reversible: bool = True, impact: str = "medium") -> AgentDecision:
        record = AgentDecision(
            id=str(uuid.uuid4()),
            timestamp=self._now(),
            agent=session.current_agent,
            phase=session.current_phase,
            decision=decision,
            reasoning=reasoning,
            alternatives=list(alternatives or []),
            confidence=confidence,
            reversible=reversible,
            impact=impact,
        )
        session.decisions.append(record)
        changes.decisions.append(record)
        return record

    def _set_gate(self, session: EngineeringSession, changes: _Changes, phase: EngineeringPhase,
                  state: GateState, triggered_by: str, reason: str = "", artifacts=None) -> None:
        gate = session.gate(phase)
        previous = gate.status
        now = self._now()
        gate.status = state
        if state == GateState.IN_PROGRESS:
            gate.started_at = now
            gate.failed_reason = None
        elif state == GateState.PASSED:
            gate.passed_at = now
            gate.approved_by = triggered_by
            gate.artifacts = list(artifacts or [])
            gate.failed_reason = None
        elif state == GateState.FAILED:
            gate.failed_reason = reason
        changes.history.append({
            "phase": phase,
            "previous_status": previous,
            "new_status": state,
            "triggered_by": triggered_by,
            "reason": reason,
            "artifacts": artifacts,
            "timestamp": now,
        })

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, project_name: str, project_description: str = "",
                      team_id: Optional[str] = None, project_id: Optional[str] = None) -> dict:
        if not project_name or not project_name.strip():
            raise ValueError("project_name is required")
        now = self._now()
        session = EngineeringSession(
            id=str(uuid.uuid4()),
            project_name=project_name,
            project_description=project_description,
            team_id=team_id,
            project_id=project_id,
            created_at=now,
            updated_at=now,
        )
        session.scope.name = project_name
        session.scope.description = project_description
        first = SCOPING_WIZARD_STEPS[0]
        session.current_step = first.id

        changes = _Changes()
        self._set_gate(session, changes, EngineeringPhase.SCOPING, GateState.IN_PROGRESS, "system")
        self._message(changes, AgentRole.ORCHESTRATOR, "user", "question", first.question,
                      step_id=first.id)
        changes.events.append(("engineering_started", "orchestrator",
                               f"Engineering session started for {project_name}",
                               {"team_id": team_id, "project_id": project_id}))

        with self.repository.session_lock(session.id):
            self.repository.insert(session)
            self._flush(session, changes)
        logger.info("Started engineering session %s (%s)", session.id, project_name)
        return {
            "session_id": session.id,
            "current_phase": session.current_phase.value,
            "first_step": first.to_dict(),
        }

    def get_session(self, session_id: str) -> Optional[EngineeringSession]:
        return self.repository.load(session_id)

    def get_current_step(self, session_id: str) -> Optional[dict]:
        session = self.repository.load(session_id)
        if session is None or session.current_step is None:
            return None
        return SCOPING_WIZARD_STEPS[STEP_INDEX[session.current_step]].to_dict()

    def pause(self, session_id: str) -> TransitionResult:
        def apply(session, changes):
            if not session.is_running:
                return TransitionResult.refuse(TransitionRefusal.NOT_RUNNING, "Session is not running")
            session.is_running = False
            session.status = SessionStatus.PAUSED
            session.paused_at = self._now()
            self._message(changes, AgentRole.ORCHESTRATOR, "user", "update", "Session paused")
            changes.events.append(("session_paused", "admin", "Session paused", {}))
            return TransitionResult.ok("Session paused", status=session.status.value)
        return self._mutate(session_id, apply)

    def resume(self, session_id: str) -> TransitionResult:
        def apply(session, changes):
            if session.is_running:
                return TransitionResult.refuse(
                    TransitionRefusal.ALREADY_RUNNING, "Session is already running")
            session.is_running = True
            session.status = SessionStatus.ACTIVE
            session.paused_at = None
            self._message(changes, AgentRole.ORCHESTRATOR, "user", "update", "Session resumed")
            changes.events.append(("session_resumed", "admin", "Session resumed", {}))
            return TransitionResult.ok("Session resumed", status=session.status.value)
        return self._mutate(session_id, apply)

    def cancel(self, session_id: str, reason: Optional[str] = None) -> TransitionResult:
        """Terminal: fails the current gate and abandons the session."""
        reason = reason or "Cancelled by admin"

        def apply(session, changes):
            self._set_gate(session, changes, session.current_phase, GateState.FAILED, "admin", reason)
            session.status = SessionStatus.ABANDONED
            session.is_running = False
            content = f"Session cancelled by admin: {reason}"
            self._message(changes, AgentRole.ORCHESTRATOR, "user", "update", content)
            changes.events.append(("session_cancelled", "admin", content,
                                   {"phase": session.current_phase.value}))
            return TransitionResult.ok(content, status=session.status.value)
        return self._mutate(session_id, apply)

    # ------------------------------------------------------------------
    # Scoping wizard
    # ------------------------------------------------------------------

    def process_answer(self, session_id: str, step_id: str, answer: Any) -> TransitionResult:
        def apply(session, changes):
            if session.current_phase != EngineeringPhase.SCOPING or session.current_step is None:
                return TransitionResult.refuse(TransitionRefusal.INVALID_STEP, "Scoping is already complete")
            if step_id not in STEP_INDEX:
                return TransitionResult.refuse(TransitionRefusal.INVALID_STEP, f"Unknown step: {step_id}")
            if step_id != session.current_step:
                return TransitionResult.refuse(
                    TransitionRefusal.INVALID_STEP, f"Expected an answer for step '{session.current_step}'")
            step = SCOPING_WIZARD_STEPS[STEP_INDEX[step_id]]
            problem = _check_answer(step, answer)
            if problem:
                return TransitionResult.refuse(TransitionRefusal.INVALID_STEP, problem)

            session.wizard_answers[step_id] = answer
            _apply_answer(session, step_id, answer)

            upcoming = _next_step(STEP_INDEX[step_id], session.wizard_answers)
            if upcoming is not None:
                session.current_step = upcoming.id
                self._message(changes, AgentRole.ORCHESTRATOR, "user", "question", upcoming.question,
                              step_id=upcoming.id)
                return TransitionResult.ok("Answer recorded", next_step=upcoming.to_dict(),
                                           scope_complete=False)

            self._complete_scoping(session, changes)
            return TransitionResult.ok("Scoping complete", next_step=None, scope_complete=True,
                                       current_phase=session.current_phase.value)
        return self._mutate(session_id, apply)

    def _complete_scoping(self, session: EngineeringSession, changes: _Changes) -> None:
        infer_defaults(session)
        session.current_step = None
        self._set_gate(session, changes, EngineeringPhase.SCOPING, GateState.PASSED, "auto",
                       artifacts=[ArtifactKind.SCOPE.value])
        self._decision(
            session, changes, "Project scope defined",
            f"User completed scoping wizard for {session.scope.name or session.project_name}",
            confidence=100, reversible=True, impact="high",
        )
        session.current_phase = EngineeringPhase.REQUIREMENTS
        session.current_agent = PHASE_CONFIGS[EngineeringPhase.REQUIREMENTS].agent
        self._set_gate(session, changes, EngineeringPhase.REQUIREMENTS, GateState.IN_PROGRESS, "auto")
        self._message(changes, AgentRole.ORCHESTRATOR, session.current_agent, "handoff",
                      "Scope is defined. Starting Requirements phase.")
        changes.events.append(("scoping_completed", "orchestrator", "Scoping wizard completed",
                               {"scope": dict(session.to_dict()["scope"])}))

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def advance_phase(self, session_id: str) -> TransitionResult:
        def apply(session, changes):
            current = session.current_phase
            config = PHASE_CONFIGS[current]
            if session.gate(current).status != GateState.PASSED:
                return TransitionResult.refuse(
                    TransitionRefusal.PHASE_NOT_COMPLETE,
                    f'Current phase "{config.display_name}" not yet complete')
            target = next_phase(current)
            if target is None:
                return TransitionResult.refuse(TransitionRefusal.FINAL_PHASE, "Already at final phase")
            for kind in REQUIRED_ARTIFACTS[target]:
                if not has_artifact(session, kind):
                    return TransitionResult.refuse(
                        TransitionRefusal.MISSING_ARTIFACT, f"Missing required artifact: {kind.value}")

            target_config = PHASE_CONFIGS[target]
            previous_agent = session.current_agent
            session.current_phase = target
            session.current_agent = target_config.agent
            self._set_gate(session, changes, target, GateState.IN_PROGRESS, "orchestrator")
            content = f"Starting {target_config.display_name} phase. {target_config.description}"
            self._message(changes, previous_agent, target_config.agent, "handoff", content,
                          from_phase=current.value, to_phase=target.value)
            changes.events.append(("phase_advanced", "orchestrator", content,
                                   {"from": current.value, "to": target.value}))
            return TransitionResult.ok(content, previous_phase=current.value, new_phase=target.value,
                                       agent=target_config.agent.value)
        return self._mutate(session_id, apply)

    def pass_gate(self, session_id: str, artifacts: Optional[List[str]] = None,
                  approved_by: str = "auto") -> TransitionResult:
        def apply(session, changes):
            return self._apply_pass(session, changes, artifacts, approved_by)
        return self._mutate(session_id, apply)

    def _apply_pass(self, session, changes, artifacts, approved_by) -> TransitionResult:
        phase = session.current_phase
        config = PHASE_CONFIGS[phase]
        artifacts = list(artifacts or [])
        self._set_gate(session, changes, phase, GateState.PASSED, approved_by, artifacts=artifacts)
        session.pending_approvals = [a for a in session.pending_approvals if a.get("phase") != phase.value]
        self._decision(
            session, changes, f"{config.display_name} phase completed",
            f"Gate passed with {len(artifacts)} artifacts",
            confidence=100, reversible=False, impact="medium",
        )
        changes.events.append(("gate_passed", approved_by, f"{config.display_name} gate passed",
                               {"phase": phase.value, "artifacts": artifacts}))
        if phase == PHASE_ORDER[-1]:
            session.status = SessionStatus.COMPLETED
            session.is_running = False
            session.completed_at = self._now()
            self._message(changes, AgentRole.ORCHESTRATOR, "user", "update", "Build launched")
            changes.events.append(("session_completed", "orchestrator", "Engineering session completed", {}))
        return TransitionResult.ok(f"{config.display_name} gate passed", phase=phase.value,
                                   status=session.status.value)

    def request_approval(self, session_id: str, reason: str = "") -> TransitionResult:
        def apply(session, changes):
            phase = session.current_phase
            config = PHASE_CONFIGS[phase]
            reason_text = reason or f"{config.display_name} needs approval"
            if not any(a.get("phase") == phase.value for a in session.pending_approvals):
                session.pending_approvals.append({
                    "phase": phase.value,
                    "reason": reason_text,
                    "requested_at": self._now(),
                })
            self._message(changes, session.current_agent, "user", "approval_request", reason_text,
                          phase=phase.value)
            changes.events.append(("approval_requested", session.current_agent.value, reason_text,
                                   {"phase": phase.value}))
            return TransitionResult.ok("Approval requested", phase=phase.value)
        return self._mutate(session_id, apply)

    def handle_approval(self, session_id: str, approved: bool, feedback: Optional[str] = None,
                        approved_by: str = "user",
                        artifacts: Optional[List[str]] = None) -> TransitionResult:
        def apply(session, changes):
            phase = session.current_phase
            if not any(a.get("phase") == phase.value for a in session.pending_approvals):
                return TransitionResult.refuse(
                    TransitionRefusal.NO_PENDING_APPROVAL,
                    f"No approval pending for phase {phase.value}")
            if approved:
                self._message(changes, "user", session.current_agent, "approval", feedback or "Approved",
                              phase=phase.value)
                changes.events.append(("approval_granted", approved_by, "Phase approved",
                                       {"phase": phase.value}))
                return self._apply_pass(session, changes, artifacts, approved_by)

            failed_reason = feedback or "Rejected by user"
            session.pending_approvals = [a for a in session.pending_approvals if a.get("phase") != phase.value]
            self._set_gate(session, changes, phase, GateState.FAILED, approved_by, failed_reason)
            self._message(changes, "user", session.current_agent, "rejection", feedback or "Please revise",
                          phase=phase.value)
            changes.events.append(("approval_denied", approved_by, failed_reason, {"phase": phase.value}))
            changes.events.append(("gate_failed", approved_by, failed_reason, {"phase": phase.value}))
            return TransitionResult.ok("Phase rejected", phase=phase.value, failed_reason=failed_reason)
        return self._mutate(session_id, apply)

    # ------------------------------------------------------------------
    # Artifacts, decisions, messages
    # ------------------------------------------------------------------

    def store_artifact(self, session_id: str, kind, content: str) -> TransitionResult:
        try:
            kind = ArtifactKind(kind)
        except ValueError:
            return TransitionResult.refuse(TransitionRefusal.INVALID_ARTIFACT, f"Unknown artifact: {kind}")
        if kind not in TEXT_ARTIFACTS:
            return TransitionResult.refuse(
                TransitionRefusal.INVALID_ARTIFACT, f"Artifact {kind.value} is not stored as text")

        def apply(session, changes):
            session.artifacts[kind] = content
            changes.events.append(("artifact_stored", session.current_agent.value,
                                   f"Stored {kind.value}", {"artifact": kind.value, "size": len(content)}))
            return TransitionResult.ok(f"Stored {kind.value}", artifact=kind.value)
        return self._mutate(session_id, apply)

    def get_artifact(self, session_id: str, kind) -> Optional[str]:
        session = self.repository.load(session_id)
        if session is None:
            return None
        return session.artifacts.get(ArtifactKind(kind))

    def has_artifact(self, session_id: str, kind) -> bool:
        session = self.repository.load(session_id)
        return session is not None and has_artifact(session, kind)

    def record_decision(self, session_id: str, decision: str, reasoning: str, alternatives=None,
                        confidence: int = 80, reversible: bool = True,
                        impact: str = "medium") -> TransitionResult:
        def apply(session, changes):
            record = self._decision(session, changes, decision, reasoning, alternatives,
                                    confidence, reversible, impact)
            return TransitionResult.ok("Decision recorded", decision_id=record.id)
        return self._mutate(session_id, apply)

    def post_message(self, session_id: str, from_agent, to_agent, message_type: str,
                     content: str) -> TransitionResult:
        def apply(session, changes):
            self._message(changes, from_agent, to_agent, message_type, content,
                          phase=session.current_phase.value)
            return TransitionResult.ok("Message posted")
        return self._mutate(session_id, apply)

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[dict]:
        return self.repository.list_messages(session_id, limit=limit)

    def get_gate_history(self, session_id: str) -> List[dict]:
        return self.repository.list_gate_history(session_id)

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------

    def add_node(self, session_id: str, node_id: str, node_type, name: str,
                 path: str = "") -> TransitionResult:
        def apply(session, changes):
            try:
                node = graph_ops.add_node(session.dependency_graph, node_id, node_type, name,
                                          path, now=self._now())
            except ValueError as exc:
                return TransitionResult.refuse(TransitionRefusal.INVALID_GRAPH_CHANGE, str(exc))
            return TransitionResult.ok(f"Added node {node_id}", node=node.to_dict())
        return self._mutate(session_id, apply)

    def add_edge(self, session_id: str, source_id: str, target_id: str,
                 relation="import") -> TransitionResult:
        def apply(session, changes):
            try:
                edge = graph_ops.add_edge(session.dependency_graph, source_id, target_id,
                                          relation, now=self._now())
            except ValueError as exc:
                return TransitionResult.refuse(TransitionRefusal.INVALID_GRAPH_CHANGE, str(exc))
            return TransitionResult.ok(f"Added edge {source_id} -> {target_id}", edge=edge.to_dict())
        return self._mutate(session_id, apply)

    def analyze_impact(self, session_id: str, node_id: str):
        """Return an ImpactAnalysis, or None when the session or node is unknown."""
        session = self.repository.load(session_id)
        if session is None or session.dependency_graph.node(node_id) is None:
            return None
        return graph_ops.analyze_impact(session.dependency_graph, node_id)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_progress(self, session_id: str) -> Optional[dict]:
        session = self.repository.load(session_id)
        if session is None:
            return None

        phases = []
        passed = 0
        for phase in PHASE_ORDER:
            gate = session.gate(phase)
            if gate.status == GateState.PASSED:
                percent = 100
                passed += 1
            elif gate.status == GateState.IN_PROGRESS:
                percent = 50
            else:
                percent = 0
            phases.append({
                "phase": phase.value,
                "name": PHASE_CONFIGS[phase].display_name,
                "agent": PHASE_CONFIGS[phase].agent.value,
                "status": gate.status.value,
                "progress": percent,
            })

        blockers = [f"Waiting for approval: {a.get('reason', '')}" for a in session.pending_approvals]
        current_gate = session.gate()
        if current_gate.status == GateState.FAILED and current_gate.failed_reason:
            blockers.append(f"Gate failed: {current_gate.failed_reason}")

        if session.status == SessionStatus.COMPLETED:
            next_action = "Build complete"
        elif session.status == SessionStatus.ABANDONED:
            next_action = "Session cancelled"
        else:
            config = PHASE_CONFIGS[session.current_phase]
            next_action = f"{config.display_name}: {config.description}"

        messages = self.repository.list_messages(session_id)
        return {
            "session_id": session.id,
            "project_name": session.project_name,
            "status": session.status.value,
            "is_running": session.is_running,
            "current_phase": session.current_phase.value,
            "current_agent": session.current_agent.value,
            "overall_progress": round(passed * 100 / len(PHASE_ORDER)),
            "phases": phases,
            "blockers": blockers,
            "next_action": next_action,
            "recent_messages": messages[-RECENT_LIMIT:],
        }

    def build_context_bundle(self, session_id: str) -> Optional[dict]:
        session = self.repository.load(session_id)
        if session is None:
            return None
        data = session.to_dict()
        agent = AGENT_CONFIGS[session.current_agent]
        return {
            "session_id": session.id,
            "project_name": session.project_name,
            "phase": session.current_phase.value,
            "agent": session.current_agent.value,
            "focus_areas": list(agent.focus_areas),
            "scope": data["scope"],
            "stack": data["stack"],
            "artifacts": sorted(k.value for k in session.artifacts),
            "graph": {"nodes": len(session.dependency_graph.nodes),
                      "edges": len(session.dependency_graph.edges)},
            "recent_decisions": data["decisions"][-RECENT_LIMIT:],
        }

    def get_agent_system_prompt(self, session_id: str, role: Optional[AgentRole] = None) -> str:
        session = self.repository.load(session_id)
        if session is None:
            return ""
        agent = AGENT_CONFIGS[AgentRole(role) if role else session.current_agent]
        phase = PHASE_CONFIGS[session.current_phase]
        scope = session.scope
        stack = session.stack
        compliance = [flag for flag in COMPLIANCE_FLAGS if scope.compliance.get(flag)]

        lines = [
            f"# {agent.display_name}",
            "",
            agent.description,
            f"Personality: {agent.personality}",
            "",
            f"## Project: {scope.name or session.project_name}",
            scope.description or session.project_description or "(no description)",
            "",
            "## Scope",
            f"- Audience: {scope.target_audience}",
            f"- Platforms: {', '.join(scope.platforms)}",
            f"- Auth: {'yes' if scope.has_auth else 'no'}",
            f"- Payments: {(scope.payment_model or 'yes') if scope.has_payments else 'no'}",
            f"- Realtime: {'yes' if scope.has_realtime else 'no'}",
            f"- Compliance: {', '.join(compliance) if compliance else 'none'}",
            f"- Scale: {scope.expected_users}",
            f"- Timeline: {scope.launch_timeline}",
            "",
            "## Tech Stack",
            f"- Framework: {stack.framework}",
            f"- Database: {stack.database}",
            f"- ORM: {stack.orm}",
            f"- Auth: {stack.auth}",
            f"- UI: {stack.ui}",
        ]
        if stack.payments:
            lines.append(f"- Payments: {stack.payments}")
        lines += ["", "## Your Focus Areas"]
        lines += [f"- {area}" for area in agent.focus_areas]
        lines += ["", f"## Current Phase: {phase.display_name}", phase.description]

        recent = session.decisions[-RECENT_LIMIT:]
        if recent:
            lines += ["", "## Recent Decisions"]
            for d in recent:
                lines.append(f"- **{d.decision}** ({d.agent.value}, {d.impact}): {d.reasoning}")

        lines += [
            "",
            "## Instructions",
            "1. Follow the project's established patterns before inventing new ones.",
            "2. Log every significant decision with its reasoning.",
            "3. Flag anything that falls outside the agreed scope.",
        ]
        return "\n".join(lines)

    def list_sessions(self, status=None, phase=None, limit: int = 50, offset: int = 0) -> dict:
        return {
            "sessions": self.repository.list_sessions(status, phase, limit=limit, offset=offset),
            "total": self.repository.count_sessions(status, phase),
            "limit": limit,
            "offset": offset,
        }

    def get_stats(self) -> dict:
        rows = self.repository.list_sessions()
        now = self.clock()
        by_status: Dict[str, int] = {s.value: 0 for s in SessionStatus}
        phase_distribution: Dict[str, int] = {}
        agent_usage: Dict[str, int] = {}
        durations = []
        today = 0
        for row in rows:
            by_status[row["status"]] = by_status.get(row["status"], 0) + 1
            created = datetime.fromisoformat(row["created_at"])
            if created.date() == now.date():
                today += 1
            if row["status"] == SessionStatus.ACTIVE.value:
                phase_distribution[row["current_phase"]] = phase_distribution.get(row["current_phase"], 0) + 1
                agent_usage[row["current_agent"]] = agent_usage.get(row["current_agent"], 0) + 1
            if row["status"] == SessionStatus.COMPLETED.value and row["completed_at"]:
                finished = datetime.fromisoformat(row["completed_at"])
                durations.append((finished - created).total_seconds() / 60)
        return {
            "total_sessions": len(rows),
            "by_status": by_status,
            "sessions_today": today,
            "phase_distribution": phase_distribution,
            "agent_usage": agent_usage,
            "avg_completion_minutes": round(sum(durations) / len(durations), 1) if durations else None,
        }


# ---------------------------------------------------------------------------
# Wizard helpers
# ---------------------------------------------------------------------------

def _check_answer(step, answer) -> Optional[str]:
    if step.type == "text":
        if not isinstance(answer, str):
            return f"Step '{step.id}' expects text"
        if step.required and not answer.strip():
            return f"Step '{step.id}' requires an answer"
    elif step.type == "boolean":
        if not isinstance(answer, bool):
            return f"Step '{step.id}' expects true or false"
    elif step.type == "single":
        if answer not in step.options:
            return f"Step '{step.id}' expects one of {list(step.options)}"
    elif step.type == "multiple":
        if not isinstance(answer, (list, tuple)) or any(a not in step.options for a in answer):
            return f"Step '{step.id}' expects a list drawn from {list(step.options)}"
        if step.required and not answer:
            return f"Step '{step.id}' requires at least one choice"
    return None


def _next_step(index: int, answers: dict):
    for step in SCOPING_WIZARD_STEPS[index + 1:]:
        if step.depends_on is not None:
            dep_id, value = step.depends_on
            if answers.get(dep_id) != value:
                continue
        return step
    return None


def _apply_answer(session: EngineeringSession, step_id: str, answer) -> None:
    scope = session.scope
    if step_id == "name":
        scope.name = answer.strip()
    elif step_id == "description":
        scope.description = answer.strip()
    elif step_id == "audience":
        scope.target_audience = answer
    elif step_id == "is_full_business":
        scope.is_full_business = answer
        if answer:
            scope.needs_marketing = True
            scope.needs_analytics = True
            scope.needs_admin_dashboard = True
    elif step_id == "platforms":
        scope.platforms = list(answer)
    elif step_id == "has_auth":
        scope.has_auth = answer
    elif step_id == "has_payments":
        scope.has_payments = answer
        if answer:
            scope.compliance["pci"] = True
            session.stack.payments = "stripe"
        else:
            scope.payment_model = None
            session.stack.payments = None
    elif step_id == "payment_model":
        scope.payment_model = answer
    elif step_id == "has_realtime":
        scope.has_realtime = answer
    elif step_id == "compliance":
        scope.compliance = {flag: flag in answer for flag in COMPLIANCE_FLAGS}
        if scope.has_payments:
            scope.compliance["pci"] = True
    elif step_id == "expected_users":
        scope.expected_users = answer
    elif step_id == "launch_timeline":
        scope.launch_timeline = answer


def infer_defaults(session: EngineeringSession) -> None:
    scope = session.scope
    if scope.target_audience == "businesses":
        scope.needs_team_features = True
    if scope.expected_users in ("large", "enterprise"):
        scope.needs_analytics = True
        scope.needs_admin_dashboard = True
