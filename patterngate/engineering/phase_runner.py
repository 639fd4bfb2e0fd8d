#!/usr/bin/env python3
# CUI // SP-CTI
"""Runs engineering phases against a completion provider.

run_phase executes the current phase once: it renders the owning agent's
system prompt, invokes the provider, stores the produced artifact and then
either passes the gate or, for phases that need a human, requests approval.

run_build repeats run_phase and advance_phase until something stops it.
A phase whose gate already passed (approved by a human, or stopped earlier
by a missing artifact for the next phase) is not run again; run_build just
tries to advance it. phases_run lists only phases the provider executed.
is_running is read before every phase, so pause and cancel land at the next
phase boundary and never interrupt a phase in flight.
"""

import logging
from typing import Optional

from patterngate.engineering.models import TransitionRefusal, TransitionResult
from patterngate.engineering.orchestrator import CLOSED_STATUSES
from patterngate.engineering.phases import (
    PHASE_ARTIFACT_OUTPUT,
    PHASE_CONFIGS,
    AgentRole,
    EngineeringPhase,
    GateState,
    SessionStatus,
)
from patterngate.llm.provider import LLMRequest

logger = logging.getLogger("patterngate.engineering.runner")


class PhaseRunner:

    def __init__(self, orchestrator, provider, auto_approve: bool = False, model: str = ""):
        self.orchestrator = orchestrator
        self.provider = provider
        self.auto_approve = auto_approve
        self.model = model

    def run_phase(self, session_id: str) -> TransitionResult:
        session = self.orchestrator.get_session(session_id)
        if session is None:
            return TransitionResult.refuse(TransitionRefusal.SESSION_NOT_FOUND, f"Session {session_id} not found")
        if session.status in CLOSED_STATUSES:
            return TransitionResult.refuse(TransitionRefusal.SESSION_CLOSED, f"Session is {session.status.value}")
        if not session.is_running:
            return TransitionResult.refuse(TransitionRefusal.NOT_RUNNING, "Session is not running")

        phase = session.current_phase
        config = PHASE_CONFIGS[phase]
        if phase == EngineeringPhase.SCOPING:
            return TransitionResult.refuse(
                TransitionRefusal.INVALID_STEP, "Scoping is driven by the wizard, not the runner")
        if any(a.get("phase") == phase.value for a in session.pending_approvals):
            return TransitionResult.ok("Awaiting approval", phase=phase.value, awaiting_approval=True)
        if session.gate().status == GateState.PASSED:
            return TransitionResult.ok("Phase already passed", phase=phase.value,
                                       phase_already_passed=True, status=session.status.value)

        request = LLMRequest(
            messages=[{
                "role": "user",
                "content": f"Produce the {config.display_name} output for {session.project_name}. "
                           f"{config.description}.",
            }],
            system_prompt=self.orchestrator.get_agent_system_prompt(session_id),
            model=self.model,
            agent_id=session.current_agent.value,
            session_id=session_id,
            phase=phase.value,
        )
        response = self.provider.invoke(request)
        logger.info("Phase %s of session %s produced %d tokens via %s",
                    phase.value, session_id, response.output_tokens, response.provider)

        output = PHASE_ARTIFACT_OUTPUT.get(phase)
        if output is not None:
            stored = self.orchestrator.store_artifact(session_id, output, response.content)
            if not stored.success:
                return stored
        else:
            posted = self.orchestrator.post_message(
                session_id, session.current_agent, AgentRole.ORCHESTRATOR, "update", response.content)
            if not posted.success:
                return posted

        self.orchestrator.sink.emit(
            "phase_executed", session.current_agent.value, f"Executed {config.display_name}",
            {"phase": phase.value, "provider": response.provider,
             "input_tokens": response.input_tokens, "output_tokens": response.output_tokens},
            session_id=session_id,
        )

        if config.requires_approval and not self.auto_approve:
            requested = self.orchestrator.request_approval(
                session_id, f"{config.display_name} output ready for review")
            if not requested.success:
                return requested
            return TransitionResult.ok("Awaiting approval", phase=phase.value, awaiting_approval=True)

        artifacts = [output.value] if output is not None else []
        return self.orchestrator.pass_gate(session_id, artifacts, approved_by="auto")

    def run_build(self, session_id: str, max_phases: Optional[int] = None) -> dict:
        executed = []
        stopped = "max_phases"
        message = ""
        while max_phases is None or len(executed) < max_phases:
            session = self.orchestrator.get_session(session_id)
            if session is None:
                stopped, message = "not_found", f"Session {session_id} not found"
                break
            if session.status in CLOSED_STATUSES:
                stopped, message = session.status.value, f"Session is {session.status.value}"
                break
            if not session.is_running:
                stopped, message = "paused", "Session is not running"
                break

            result = self.run_phase(session_id)
            if not result.data.get("phase_already_passed"):
                executed.append(session.current_phase.value)
            if not result.success:
                stopped, message = "refused", result.message
                break
            if result.data.get("awaiting_approval"):
                stopped, message = "awaiting_approval", result.message
                break
            if result.data.get("status") == SessionStatus.COMPLETED.value:
                stopped, message = "completed", result.message
                break

            advanced = self.orchestrator.advance_phase(session_id)
            if not advanced.success:
                stopped, message = "refused", advanced.message
                break

        final = self.orchestrator.get_session(session_id)
        return {
            "session_id": session_id,
            "phases_run": executed,
            "stopped": stopped,
            "message": message,
            "current_phase": final.current_phase.value if final else None,
        }
