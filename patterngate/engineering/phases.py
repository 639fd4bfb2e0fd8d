#!/usr/bin/env python3
# CUI // SP-CTI
"""Static definitions for the engineering build pipeline.

Phases run in the order of ENGINEERING_PHASES. Each phase is owned by one
agent role and lists the artifacts that must exist before it can be
entered. Artifact existence is decided by predicates in the orchestrator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class EngineeringPhase(str, Enum):
    SCOPING = "scoping"
    REQUIREMENTS = "requirements"
    ARCHITECTURE = "architecture"
    DESIGN_REVIEW = "design_review"
    IMPLEMENTATION = "implementation"
    CODE_REVIEW = "code_review"
    TESTING = "testing"
    SECURITY_REVIEW = "security_review"
    DOCUMENTATION = "documentation"
    STAGING = "staging"
    LAUNCH = "launch"


class AgentRole(str, Enum):
    ORCHESTRATOR = "orchestrator"
    PM = "pm"
    ARCHITECT = "architect"
    ENGINEER = "engineer"
    QA = "qa"
    SECURITY = "security"
    DOCUMENTATION = "documentation"
    DEVOPS = "devops"


class GateState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ArtifactKind(str, Enum):
    """Named inputs and outputs of phases."""
    SCOPE = "scope.json"
    PRD = "prd.md"
    TECH_SPEC = "tech-spec.md"
    SOURCE_CODE = "source-code"
    TEST_REPORT = "test-report.md"
    DEPLOYMENT_REPORT = "deployment-report.md"
    API_DOCS = "api-docs.md"
    SECURITY_AUDIT = "security-audit.md"
    USER_GUIDE = "user-guide.md"
    DEPLOYMENT_GUIDE = "deployment-guide.md"


# Artifacts stored as text on the session
TEXT_ARTIFACTS = (
    ArtifactKind.PRD, ArtifactKind.TECH_SPEC, ArtifactKind.TEST_REPORT,
    ArtifactKind.DEPLOYMENT_REPORT, ArtifactKind.API_DOCS, ArtifactKind.SECURITY_AUDIT,
    ArtifactKind.USER_GUIDE, ArtifactKind.DEPLOYMENT_GUIDE,
)


class NodeType(str, Enum):
    SCHEMA = "schema"
    API = "api"
    COMPONENT = "component"
    SERVICE = "service"
    PAGE = "page"
    UTIL = "util"
    CONFIG = "config"


class EdgeRelation(str, Enum):
    IMPORT = "import"
    API_CALL = "api-call"
    DB_QUERY = "db-query"
    EVENT = "event"
    CONFIG = "config"


@dataclass(frozen=True)
class PhaseConfig:
    phase: EngineeringPhase
    display_name: str
    description: str
    agent: AgentRole
    requires_approval: bool
    can_skip: bool
    inputs_required: Tuple[ArtifactKind, ...] = ()
    produces: Tuple[str, ...] = ()


ENGINEERING_PHASES: Tuple[PhaseConfig, ...] = (
    PhaseConfig(EngineeringPhase.SCOPING, "Project Scoping",
                "Define what is being built and how big it is",
                AgentRole.ORCHESTRATOR, False, False, (), ("scope.json",)),
    PhaseConfig(EngineeringPhase.REQUIREMENTS, "Requirements",
                "PM agent writes detailed product requirements",
                AgentRole.PM, True, False, (ArtifactKind.SCOPE,), ("prd.md",)),
    PhaseConfig(EngineeringPhase.ARCHITECTURE, "Architecture",
                "Architect agent designs the system structure",
                AgentRole.ARCHITECT, True, False, (ArtifactKind.PRD,),
                ("tech-spec.md", "dependency-graph.json")),
    PhaseConfig(EngineeringPhase.DESIGN_REVIEW, "Design Review",
                "Review the architecture with stakeholders",
                AgentRole.ORCHESTRATOR, True, True, (ArtifactKind.TECH_SPEC,), ("review-notes.md",)),
    PhaseConfig(EngineeringPhase.IMPLEMENTATION, "Implementation",
                "Engineer agents build the features",
                AgentRole.ENGINEER, False, False, (ArtifactKind.TECH_SPEC,), ("source-code",)),
    PhaseConfig(EngineeringPhase.CODE_REVIEW, "Code Review",
                "Review code quality and pattern conformance",
                AgentRole.ENGINEER, False, True, (ArtifactKind.SOURCE_CODE,), ("code-review.md",)),
    PhaseConfig(EngineeringPhase.TESTING, "Testing",
                "QA agent writes and runs the test suite",
                AgentRole.QA, False, False, (ArtifactKind.SOURCE_CODE,),
                ("test-report.md", "test-files")),
    PhaseConfig(EngineeringPhase.SECURITY_REVIEW, "Security Review",
                "Security agent audits for vulnerabilities",
                AgentRole.SECURITY, True, False, (ArtifactKind.SOURCE_CODE,), ("security-audit.md",)),
    PhaseConfig(EngineeringPhase.DOCUMENTATION, "Documentation",
                "Generate API docs and user guides",
                AgentRole.DOCUMENTATION, False, True, (ArtifactKind.SOURCE_CODE,),
                ("api-docs.md", "user-guide.md", "readme.md")),
    PhaseConfig(EngineeringPhase.STAGING, "Staging",
                "Deploy to staging and verify",
                AgentRole.DEVOPS, True, True,
                (ArtifactKind.SOURCE_CODE, ArtifactKind.TEST_REPORT), ("deployment-report.md",)),
    PhaseConfig(EngineeringPhase.LAUNCH, "Launch",
                "Deploy to production",
                AgentRole.DEVOPS, True, False, (ArtifactKind.DEPLOYMENT_REPORT,), ("launch-report.md",)),
)

PHASE_CONFIGS: Dict[EngineeringPhase, PhaseConfig] = {c.phase: c for c in ENGINEERING_PHASES}
PHASE_ORDER: Tuple[EngineeringPhase, ...] = tuple(c.phase for c in ENGINEERING_PHASES)
REQUIRED_ARTIFACTS: Dict[EngineeringPhase, Tuple[ArtifactKind, ...]] = {
    c.phase: c.inputs_required for c in ENGINEERING_PHASES
}


def next_phase(phase: EngineeringPhase) -> Optional[EngineeringPhase]:
    index = PHASE_ORDER.index(phase)
    if index + 1 >= len(PHASE_ORDER):
        return None
    return PHASE_ORDER[index + 1]


@dataclass(frozen=True)
class AgentConfig:
    role: AgentRole
    display_name: str
    description: str
    personality: str
    focus_areas: Tuple[str, ...]


AGENT_CONFIGS: Dict[AgentRole, AgentConfig] = {
    AgentRole.ORCHESTRATOR: AgentConfig(
        AgentRole.ORCHESTRATOR, "Orchestrator", "Coordinates the entire build process",
        "Organized, methodical, keeps everyone on track",
        ("coordination", "progress tracking", "gate management")),
    AgentRole.PM: AgentConfig(
        AgentRole.PM, "Product Manager", "Focuses on user needs and product requirements",
        'User-focused, asks "why", thinks about edge cases',
        ("user stories", "acceptance criteria", "prioritization")),
    AgentRole.ARCHITECT: AgentConfig(
        AgentRole.ARCHITECT, "System Architect", "Designs system structure and technical decisions",
        "Strategic, considers scale, thinks in systems",
        ("system design", "data flow", "scalability", "patterns")),
    AgentRole.ENGINEER: AgentConfig(
        AgentRole.ENGINEER, "Software Engineer", "Writes production-quality code",
        "Practical, follows patterns, writes tests",
        ("implementation", "code quality", "patterns", "refactoring")),
    AgentRole.QA: AgentConfig(
        AgentRole.QA, "QA Engineer", "Tests everything, finds edge cases",
        "Adversarial, tries to break things, thorough",
        ("testing", "edge cases", "regression", "coverage")),
    AgentRole.SECURITY: AgentConfig(
        AgentRole.SECURITY, "Security Engineer", "Audits for vulnerabilities and compliance",
        "Assumes attackers, thinks like one",
        ("vulnerabilities", "auth", "data protection", "compliance")),
    AgentRole.DOCUMENTATION: AgentConfig(
        AgentRole.DOCUMENTATION, "Technical Writer", "Creates comprehensive documentation",
        "Clear communicator, thinks about readers",
        ("api docs", "user guides", "code comments", "readme")),
    AgentRole.DEVOPS: AgentConfig(
        AgentRole.DEVOPS, "DevOps Engineer", "Handles deployment and infrastructure",
        "Reliable, thinks about failures, automates everything",
        ("deployment", "ci/cd", "monitoring", "infrastructure")),
}


# ---------------------------------------------------------------------------
# Scoping wizard
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScopingStep:
    id: str
    question: str
    description: str
    type: str                                  # text, single, multiple, boolean
    required: bool = True
    options: Tuple[str, ...] = ()
    depends_on: Optional[Tuple[str, object]] = None   # (step id, required answer)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "description": self.description,
            "type": self.type,
            "required": self.required,
            "options": list(self.options),
            "depends_on": (
                {"step_id": self.depends_on[0], "value": self.depends_on[1]}
                if self.depends_on else None
            ),
        }


SCOPING_WIZARD_STEPS: Tuple[ScopingStep, ...] = (
    ScopingStep("name", "What are you building?", "Give the project a name", "text"),
    ScopingStep("description", "Describe it in one sentence", "What does this app do?", "text"),
    ScopingStep("audience", "Who is this for?", "Target users", "single",
                options=("consumers", "businesses", "internal", "developers")),
    ScopingStep("is_full_business", "Is this a full business product?",
                "Needs marketing, analytics, team features", "boolean"),
    ScopingStep("platforms", "Which platforms?", "Where users access the product", "multiple",
                options=("web", "mobile", "api")),
    ScopingStep("has_auth", "Do users need accounts?", "Login, signup, profiles", "boolean"),
    ScopingStep("has_payments", "Will you charge money?", "Subscriptions, one-time payments",
                "boolean"),
    ScopingStep("payment_model", "How will you charge?", "Billing model", "single",
                options=("subscription", "one_time", "usage"),
                depends_on=("has_payments", True)),
    ScopingStep("has_realtime", "Need real-time features?", "Live updates, chat, notifications",
                "boolean"),
    ScopingStep("compliance", "Any compliance requirements?", "Skip if none apply", "multiple",
                required=False, options=("hipaa", "pci", "gdpr", "soc2", "coppa")),
    ScopingStep("expected_users", "Expected scale?", "Drives architecture decisions", "single",
                options=("small", "medium", "large", "enterprise")),
    ScopingStep("launch_timeline", "When do you want to launch?", "Affects prioritization",
                "single", options=("asap", "weeks", "months", "flexible")),
)

STEP_INDEX: Dict[str, int] = {s.id: i for i, s in enumerate(SCOPING_WIZARD_STEPS)}

# Which artifact each executed phase writes back to the session
PHASE_ARTIFACT_OUTPUT: Dict[EngineeringPhase, ArtifactKind] = {
    EngineeringPhase.REQUIREMENTS: ArtifactKind.PRD,
    EngineeringPhase.ARCHITECTURE: ArtifactKind.TECH_SPEC,
    EngineeringPhase.TESTING: ArtifactKind.TEST_REPORT,
    EngineeringPhase.SECURITY_REVIEW: ArtifactKind.SECURITY_AUDIT,
    EngineeringPhase.DOCUMENTATION: ArtifactKind.USER_GUIDE,
    EngineeringPhase.STAGING: ArtifactKind.DEPLOYMENT_REPORT,
}
