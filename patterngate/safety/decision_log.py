#!/usr/bin/env python3
# CUI // SP-CTI
"""Decision journal and heuristic contradiction checking.

Decisions are immutable once created. check_contradiction() evaluates a
proposed action against each decision in order with four rules, and the
first rule that fires on the first matching decision wins:

    (a) locality      action says "local", decision text says "server-side"
    (b) shipping      action embeds/includes/ships, reasoning forbids shipping
    (c) irreversible  decision is irreversible and shares >= 2 significant words
    (d) tech-stack    a tech-stack decision names a different technology in
                      the same slot (database, orm, auth, ui, css, framework)
"""

import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

DECISION_CATEGORIES = (
    "architecture", "tech-stack", "patterns", "security", "data-model",
    "api-design", "ui-design", "integration", "deployment", "business-logic",
)
IMPACT_LEVELS = ("low", "medium", "high", "critical")
AUTHORS = ("user", "ai", "system")

# Area keyword -> category pulled in by get_relevant_decisions()
AREA_CATEGORIES = (
    ("auth", "security"),
    ("api", "api-design"),
    ("database", "data-model"),
    ("ui", "ui-design"),
    ("pattern", "patterns"),
)

_IMPACT_MARKERS = {"critical": "[CRITICAL]", "high": "[HIGH]", "medium": "[MEDIUM]", "low": "[LOW]"}
_SIGNIFICANT_WORD = re.compile(r"\b[a-z]{4,}\b")


@dataclass(frozen=True)
class Decision:
    id: str
    date: str
    decision: str
    category: str
    reasoning: str
    made_by: str
    impact: str
    user_approved: bool
    reversible: bool = True
    alternatives: Tuple[str, ...] = ()
    related_files: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data = asdict(self)
        data["alternatives"] = list(self.alternatives)
        data["related_files"] = list(self.related_files)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        return cls(
            id=data["id"],
            date=data["date"],
            decision=data["decision"],
            category=data["category"],
            reasoning=data.get("reasoning", ""),
            made_by=data.get("made_by", "ai"),
            impact=data.get("impact", "medium"),
            user_approved=bool(data.get("user_approved", False)),
            reversible=bool(data.get("reversible", True)),
            alternatives=tuple(data.get("alternatives") or ()),
            related_files=tuple(data.get("related_files") or ()),
        )


@dataclass
class Contradiction:
    decision: Decision
    rule: str
    explanation: str

    def to_dict(self) -> dict:
        return {
            "rule": self.rule,
            "explanation": self.explanation,
            "decision": self.decision.to_dict(),
        }


def create_decision(
    decision: str,
    category: str,
    reasoning: str,
    made_by: str = "ai",
    impact: str = "medium",
    alternatives: Optional[Sequence[str]] = None,
    user_approved: Optional[bool] = None,
    reversible: Optional[bool] = None,
    related_files: Optional[Sequence[str]] = None,
    today: Optional[str] = None,
) -> Decision:
    """Build a Decision. user_approved defaults to True only for user decisions."""
    if category not in DECISION_CATEGORIES:
        raise ValueError(f"Invalid category '{category}'. Valid: {DECISION_CATEGORIES}")
    if impact not in IMPACT_LEVELS:
        raise ValueError(f"Invalid impact '{impact}'. Valid: {IMPACT_LEVELS}")
    if made_by not in AUTHORS:
        raise ValueError(f"Invalid author '{made_by}'. Valid: {AUTHORS}")
    return Decision(
        id=uuid.uuid4().hex[:8],
        date=today or datetime.now(timezone.utc).strftime("%Y-%m-%d"),
        decision=decision,
        category=category,
        reasoning=reasoning,
        made_by=made_by,
        impact=impact,
        user_approved=(made_by == "user") if user_approved is None else bool(user_approved),
        reversible=True if reversible is None else bool(reversible),
        alternatives=tuple(alternatives or ()),
        related_files=tuple(related_files or ()),
    )


def tech_stack_decision(stack: Dict[str, str]) -> Decision:
    """Irreversible tech-stack decision seeded when a project's stack is fixed."""
    return create_decision(
        decision=f"Tech stack: {stack.get('framework')} + {stack.get('database')} + {stack.get('auth')}",
        category="tech-stack",
        reasoning=(
            f"Using {stack.get('framework')} with {stack.get('database')} database, "
            f"{stack.get('orm')} ORM, {stack.get('auth')} auth, and {stack.get('ui')} UI components."
        ),
        made_by="ai",
        user_approved=True,
        reversible=False,
        impact="critical",
    )


# ---------------------------------------------------------------------------
# Contradiction rules
# ---------------------------------------------------------------------------

def extract_tech_choice(text: str) -> Dict[str, str]:
    """Map technology slots to the technology a text names.

    Within a slot the first listed technology wins, so "supabase with
    postgres" resolves to supabase.
    """
    text = text.lower()
    found: Dict[str, str] = {}

    if "supabase" in text:
        found["database"] = "supabase"
    elif "prisma" in text:
        found["database"] = "prisma"
    elif "drizzle" in text:
        found["orm"] = "drizzle"
    elif "postgres" in text:
        found["database"] = "postgres"
    elif "mysql" in text:
        found["database"] = "mysql"
    elif "mongodb" in text:
        found["database"] = "mongodb"

    if "supabase auth" in text:
        found["auth"] = "supabase"
    elif "next-auth" in text or "nextauth" in text:
        found["auth"] = "next-auth"
    elif "clerk" in text:
        found["auth"] = "clerk"
    elif "auth0" in text:
        found["auth"] = "auth0"

    if "shadcn" in text:
        found["ui"] = "shadcn"
    elif "chakra" in text:
        found["ui"] = "chakra"
    elif "material" in text:
        found["ui"] = "material-ui"
    elif "tailwind" in text:
        found["css"] = "tailwind"

    if "next.js" in text or "nextjs" in text:
        found["framework"] = "nextjs"
    elif "react" in text:
        found["framework"] = "react"
    elif "vue" in text:
        found["framework"] = "vue"

    return found


def _shares_significant_words(action: str, decision: str, minimum: int = 2) -> bool:
    decision_words = set(_SIGNIFICANT_WORD.findall(decision))
    overlap = [w for w in _SIGNIFICANT_WORD.findall(action) if w in decision_words]
    return len(overlap) >= minimum


def check_contradiction(action: str, decisions: Sequence[Decision]) -> Optional[Contradiction]:
    """Return the first contradiction between ``action`` and ``decisions``."""
    action_lower = (action or "").lower()

    for d in decisions:
        decision_lower = d.decision.lower()
        reasoning_lower = d.reasoning.lower()

        if "local" in action_lower and "server-side" in decision_lower:
            return Contradiction(
                d, "locality",
                f'Action involves local storage/processing, but decision "{d.decision}" '
                "requires a server-side approach.",
            )

        if any(v in action_lower for v in ("embed", "include", "ship")) and any(
            p in reasoning_lower for p in ("don't ship", "never ship", "stay server")
        ):
            return Contradiction(
                d, "shipping",
                f'Action would embed or ship content, but decision "{d.decision}" prohibits this.',
            )

        if not d.reversible and _shares_significant_words(action_lower, decision_lower):
            return Contradiction(
                d, "irreversible",
                f'Action would modify something covered by irreversible decision "{d.decision}".',
            )

        if d.category == "tech-stack":
            decided = extract_tech_choice(decision_lower)
            proposed = extract_tech_choice(action_lower)
            for slot, tech in decided.items():
                choice = proposed.get(slot)
                if choice and choice != tech:
                    return Contradiction(
                        d, "tech-stack",
                        f"Action uses {choice} but decision specifies {tech} for {slot}.",
                    )

    return None


def get_relevant_decisions(decisions: Sequence[Decision], area: str) -> List[Decision]:
    """Decisions that bear on a work area.

    A decision is relevant when the area names its category, when an area
    word longer than three characters appears in its text or reasoning, or
    when its impact is high or critical.
    """
    area_lower = (area or "").lower()
    area_words = [w for w in area_lower.split() if len(w) > 3]
    relevant = []
    for d in decisions:
        if any(key in area_lower and d.category == cat for key, cat in AREA_CATEGORIES):
            relevant.append(d)
            continue
        text = d.decision.lower()
        reasoning = d.reasoning.lower()
        if any(w in text or w in reasoning for w in area_words):
            relevant.append(d)
            continue
        if d.impact in ("high", "critical"):
            relevant.append(d)
    return relevant


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------

def format_for_prompt(decisions: Sequence[Decision]) -> str:
    if not decisions:
        return ""
    lines = ["## ACTIVE DECISIONS (Must follow)", ""]
    by_category: Dict[str, List[Decision]] = {}
    for d in decisions:
        by_category.setdefault(d.category, []).append(d)
    for category, items in by_category.items():
        lines.append(f"### {category}")
        for d in items:
            lines.append(f"{_IMPACT_MARKERS.get(d.impact, '')} **{d.decision}**")
            lines.append(f"   Reasoning: {d.reasoning}")
            if not d.reversible:
                lines.append("   IRREVERSIBLE: cannot be changed")
            lines.append("")
    return "\n".join(lines)


def format_decision_markdown(d: Decision) -> str:
    lines = [
        f"## {d.date} - {d.decision}",
        "",
        f"**Category:** {d.category}",
        f"**Impact:** {d.impact}",
        f"**Reversible:** {'Yes' if d.reversible else 'No'}",
        f"**Made by:** {d.made_by}{' (user approved)' if d.user_approved else ''}",
        "",
        f"**Reasoning:** {d.reasoning}",
        "",
    ]
    if d.alternatives:
        lines.append("**Alternatives considered:**")
        lines.extend(f"- {alt}" for alt in d.alternatives)
        lines.append("")
    if d.related_files:
        lines.append("**Related files:**")
        lines.extend(f"- `{path}`" for path in d.related_files)
        lines.append("")
    lines.extend(["---", ""])
    return "\n".join(lines)


def generate_decisions_file(decisions: Sequence[Decision]) -> str:
    """Full DECISIONS.md document, newest first."""
    header = (
        "# Project Decisions\n\n"
        "This file tracks all significant decisions made during development.\n"
        "**Check this file before making changes that could contradict existing decisions.**\n\n"
    )
    ordered = sorted(decisions, key=lambda d: d.date, reverse=True)
    return header + "\n".join(format_decision_markdown(d) for d in ordered)
