#!/usr/bin/env python3
# CUI // SP-CTI
"""Per-task scope locks.

A scope lock bounds which files an agent may touch and which kinds of action
it may take. Boundaries are inferred from the request text, and any field
the caller declares explicitly replaces the inferred value. The sensitive
file and path-fragment sets are always denied on top of whatever was
declared or inferred.

check_action() is first-match-wins, in this order:
    forbidden path fragment -> forbidden file -> delete capability ->
    dependency capability -> schema capability -> allowed action type ->
    allowed file -> allowed directory

A declared allowed_files list is exclusive: a listed file is allowed even
outside allowed_directories, and any other target is denied. Actions with no
target file (run-command, dependency changes) skip both file checks.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from patterngate.safety.decision_log import Decision, check_contradiction as _decision_contradiction

ACTION_TYPES = (
    "create-file", "modify-file", "delete-file",
    "add-dependency", "remove-dependency",
    "run-command", "modify-config",
)

SENSITIVE_FILES = (".env", ".env.local", "package-lock.json", "pnpm-lock.yaml", "yarn.lock")
SENSITIVE_PATTERNS = ("node_modules/", ".git/", ".next/", "dist/")

# (request fragments, directories)
DIRECTORY_RULES = (
    (("component",), ("src/components/",)),
    (("page",), ("src/app/",)),
    (("api", "route"), ("src/app/api/",)),
    (("database", "schema"), ("src/db/",)),
    (("lib", "util"), ("src/lib/",)),
    (("test",), ("tests/", "__tests__/")),
)

# (request fragments, action granted)
ACTION_RULES = (
    (("install", "add package", "add dependency", "npm", "package"), "add-dependency"),
    (("delete", "remove", "clean up"), "delete-file"),
    (("run", "execute", "build", "test"), "run-command"),
    (("config", "setting", "environment"), "modify-config"),
)

ALLOW_REASON = "Action permitted within scope"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unique(items) -> List[str]:
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


@dataclass
class ScopeViolation:
    timestamp: str
    action: str
    target_file: str
    reason: str
    blocked: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScopeCheck:
    allowed: bool
    reason: str
    violation: Optional[ScopeViolation] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "violation": self.violation.to_dict() if self.violation else None,
        }


@dataclass
class ScopeLock:
    id: str
    created_at: str
    request: str
    allowed_files: List[str] = field(default_factory=list)
    allowed_directories: List[str] = field(default_factory=list)
    allowed_actions: List[str] = field(default_factory=list)
    forbidden_files: List[str] = field(default_factory=list)
    forbidden_patterns: List[str] = field(default_factory=list)
    max_new_files: int = 10
    max_modified_files: int = 15
    can_delete_files: bool = False
    can_modify_dependencies: bool = False
    can_modify_schema: bool = False
    is_active: bool = True
    violations: List[ScopeViolation] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["violations"] = [v.to_dict() for v in self.violations]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ScopeLock":
        values = dict(data)
        values["violations"] = [ScopeViolation(**v) for v in data.get("violations", [])]
        return cls(**values)


@dataclass
class ScopeContradiction:
    action: str
    severity: str
    explanation: str
    decision: Decision

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "severity": self.severity,
            "explanation": self.explanation,
            "decision": self.decision.to_dict(),
            "resolution": {"type": "cancel", "reason": self.explanation},
        }


def infer_allowed_actions(request: str) -> List[str]:
    lower = (request or "").lower()
    actions = ["create-file", "modify-file"]
    for fragments, action in ACTION_RULES:
        if any(f in lower for f in fragments):
            actions.append(action)
    return actions


def infer_directories(request: str) -> List[str]:
    lower = (request or "").lower()
    directories: List[str] = []
    for fragments, dirs in DIRECTORY_RULES:
        if any(f in lower for f in fragments):
            directories.extend(dirs)
    return _unique(directories)


def infer_size_caps(request: str):
    """(max_new_files, max_modified_files) from the small/large heuristic."""
    lower = (request or "").lower()
    if any(w in lower for w in ("fix", "typo", "small")):
        return 2, 3
    if any(w in lower for w in ("feature", "system", "refactor")):
        return 20, 30
    return 10, 15


def create_scope_lock(
    request: str,
    provided: Optional[dict] = None,
    sensitive_files: Sequence[str] = SENSITIVE_FILES,
    sensitive_patterns: Sequence[str] = SENSITIVE_PATTERNS,
) -> ScopeLock:
    """Create a lock for ``request``.

    ``provided`` may declare any of: allowed_files, allowed_directories,
    allowed_actions, forbidden_files, forbidden_patterns, max_new_files,
    max_modified_files, can_delete_files, can_modify_dependencies,
    can_modify_schema. Declared values replace inference; declared
    allowed_directories are extended with inferred ones.
    """
    provided = dict(provided or {})
    lower = (request or "").lower()
    max_new, max_modified = infer_size_caps(request)

    actions = provided.get("allowed_actions")
    if actions is not None:
        unknown = [a for a in actions if a not in ACTION_TYPES]
        if unknown:
            raise ValueError(f"Unknown action types {unknown}. Valid: {ACTION_TYPES}")
    else:
        actions = infer_allowed_actions(request)

    def flag(key, fragments):
        if key in provided:
            return bool(provided[key])
        return any(f in lower for f in fragments)

    return ScopeLock(
        id=uuid.uuid4().hex[:8],
        created_at=_now(),
        request=request,
        allowed_files=list(provided.get("allowed_files") or []),
        allowed_directories=_unique(
            list(provided.get("allowed_directories") or []) + infer_directories(request)
        ),
        allowed_actions=_unique(actions),
        forbidden_files=_unique(list(provided.get("forbidden_files") or []) + list(sensitive_files)),
        forbidden_patterns=_unique(
            list(provided.get("forbidden_patterns") or []) + list(sensitive_patterns)
        ),
        max_new_files=int(provided.get("max_new_files", max_new)),
        max_modified_files=int(provided.get("max_modified_files", max_modified)),
        can_delete_files=flag("can_delete_files", ("delete", "remove", "clean")),
        can_modify_dependencies=flag("can_modify_dependencies", ("install", "package", "dependency")),
        can_modify_schema=flag("can_modify_schema", ("database", "schema", "table", "migration")),
    )


def _deny(action_type: str, target: str, reason: str) -> ScopeCheck:
    return ScopeCheck(
        allowed=False,
        reason=reason,
        violation=ScopeViolation(_now(), action_type, target, reason, True),
    )


def _matches_file(target: str, allowed: str) -> bool:
    return target == allowed or target.endswith("/" + allowed.lstrip("/"))


def check_action(lock: ScopeLock, action_type: str, target_file: Optional[str] = None) -> ScopeCheck:
    """Evaluate one proposed action against the lock. Does not record anything."""
    target = target_file or ""

    for pattern in lock.forbidden_patterns:
        if pattern in target:
            return _deny(action_type, target, f"File matches forbidden pattern: {pattern}")

    for forbidden in lock.forbidden_files:
        if target and (target == forbidden or target.endswith(forbidden)):
            return _deny(action_type, target, f"File is explicitly forbidden: {forbidden}")

    if action_type == "delete-file" and not lock.can_delete_files:
        return _deny(action_type, target, "File deletion not allowed for this task")

    if action_type in ("add-dependency", "remove-dependency") and not lock.can_modify_dependencies:
        return _deny(action_type, "package.json", "Dependency changes not allowed for this task")

    if "schema" in target and not lock.can_modify_schema:
        return _deny(action_type, target, "Schema modifications not allowed for this task")

    if action_type not in lock.allowed_actions:
        return _deny(action_type, target, f'Action type "{action_type}" not in allowed actions')

    if not target:
        return ScopeCheck(allowed=True, reason=ALLOW_REASON)

    if lock.allowed_files:
        if any(_matches_file(target, f) for f in lock.allowed_files):
            return ScopeCheck(allowed=True, reason=ALLOW_REASON)
        return _deny(action_type, target, f"File not in allowed files: {', '.join(lock.allowed_files)}")

    if lock.allowed_directories and not any(target.startswith(d) for d in lock.allowed_directories):
        return _deny(
            action_type, target,
            f"File not in allowed directories: {', '.join(lock.allowed_directories)}",
        )

    return ScopeCheck(allowed=True, reason=ALLOW_REASON)


def record_violation(lock: ScopeLock, violation: ScopeViolation) -> None:
    lock.violations.append(violation)


def check_contradiction(action: str, decisions: Sequence[Decision]) -> Optional[ScopeContradiction]:
    """Decision contradiction graded by the conflicting decision's impact."""
    found = _decision_contradiction(action, decisions)
    if found is None:
        return None
    severity = {"critical": "critical", "high": "error"}.get(found.decision.impact, "warning")
    return ScopeContradiction(action, severity, found.explanation, found.decision)


def format_for_display(lock: ScopeLock) -> str:
    lines = [
        "## SCOPE LOCK ACTIVE",
        "",
        f"**Task:** {lock.request}",
        "",
        "### Allowed",
        f"- Actions: {', '.join(lock.allowed_actions)}",
        f"- Directories: {', '.join(lock.allowed_directories) if lock.allowed_directories else 'Any'}",
        f"- Max new files: {lock.max_new_files}",
        f"- Max modified files: {lock.max_modified_files}",
        "",
        "### Forbidden",
        f"- Files: {', '.join(lock.forbidden_files)}",
        f"- Delete files: {'Yes' if lock.can_delete_files else 'No'}",
        f"- Modify dependencies: {'Yes' if lock.can_modify_dependencies else 'No'}",
        f"- Modify schema: {'Yes' if lock.can_modify_schema else 'No'}",
    ]
    if lock.violations:
        lines.extend(["", "### Violations"])
        lines.extend(f"- {v.action} on {v.target_file}: {v.reason}" for v in lock.violations)
    return "\n".join(lines)
