#!/usr/bin/env python3
# CUI // SP-CTI
"""Track what has been tried for each issue so failed approaches are not retried.

Attempts are grouped by issue_hash, the first 8 hex characters of the MD5 of
the lower-cased, stripped issue text. Two approaches are "the same" when the
Jaccard similarity of their words (longer than two characters) exceeds 0.7.
"""

import hashlib
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

RESULTS = ("success", "failure", "partial")
SIMILARITY_THRESHOLD = 0.7


@dataclass(frozen=True)
class Attempt:
    id: str
    timestamp: str
    issue: str
    issue_hash: str
    approach: str
    result: str
    code_or_command: str = ""
    error_message: Optional[str] = None
    lessons_learned: Optional[str] = None
    should_not_retry: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Attempt":
        return cls(**data)


@dataclass
class TriedCheck:
    already_tried: bool
    recommendation: str
    previous_attempt: Optional[Attempt] = None

    def to_dict(self) -> dict:
        return {
            "already_tried": self.already_tried,
            "recommendation": self.recommendation,
            "previous_attempt": self.previous_attempt.to_dict() if self.previous_attempt else None,
        }


def issue_hash(issue: str) -> str:
    return hashlib.md5((issue or "").strip().lower().encode("utf-8")).hexdigest()[:8]


def similarity(a: str, b: str) -> float:
    """Word-set Jaccard similarity, ignoring words of two characters or fewer."""
    words_a = {w for w in a.split() if len(w) > 2}
    words_b = {w for w in b.split() if len(w) > 2}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def create_attempt(
    issue: str,
    approach: str,
    result: str,
    code_or_command: str = "",
    error_message: Optional[str] = None,
    lessons_learned: Optional[str] = None,
) -> Attempt:
    if result not in RESULTS:
        raise ValueError(f"Invalid result '{result}'. Valid: {RESULTS}")
    return Attempt(
        id=uuid.uuid4().hex[:8],
        timestamp=datetime.now(timezone.utc).isoformat(),
        issue=issue,
        issue_hash=issue_hash(issue),
        approach=approach,
        result=result,
        code_or_command=code_or_command or "",
        error_message=error_message,
        lessons_learned=lessons_learned,
        should_not_retry=result == "failure" and "might work" not in (lessons_learned or ""),
    )


def has_been_tried(issue: str, approach: str, attempts: Sequence[Attempt]) -> TriedCheck:
    key = issue_hash(issue)
    approach_lower = (approach or "").lower()
    same_issue = [a for a in attempts if a.issue_hash == key]

    for attempt in same_issue:
        if similarity(approach_lower, attempt.approach.lower()) <= SIMILARITY_THRESHOLD:
            continue
        if attempt.result == "failure" and attempt.should_not_retry:
            return TriedCheck(
                True,
                f'This approach was tried and failed: "{attempt.approach}". '
                f"Error: {attempt.error_message}. Try a different approach.",
                attempt,
            )
        if attempt.result == "success":
            return TriedCheck(
                True,
                f'This approach worked before: "{attempt.approach}". Reuse the same solution.',
                attempt,
            )

    lessons = [a.lessons_learned for a in same_issue if a.lessons_learned]
    if lessons:
        return TriedCheck(False, f"Previous attempts provided insights: {'; '.join(lessons)}")
    return TriedCheck(False, "")


def get_failed_attempts(issue: str, attempts: Sequence[Attempt]) -> List[Attempt]:
    key = issue_hash(issue)
    return [a for a in attempts if a.issue_hash == key and a.result == "failure"]


def get_successful_approaches(topic: str, attempts: Sequence[Attempt]) -> List[Attempt]:
    topic = (topic or "").lower()
    return [
        a for a in attempts
        if a.result == "success" and (topic in a.issue.lower() or topic in a.approach.lower())
    ]


def suggest_alternatives(issue: str, attempts: Sequence[Attempt]) -> List[str]:
    """Hints derived from the commands and error messages of failed attempts."""
    failed = get_failed_attempts(issue, attempts)
    suggestions: List[str] = []

    def add(text):
        if text not in suggestions:
            suggestions.append(text)

    commands = [a.code_or_command for a in failed]
    used_shell = any("bash" in c or "sh " in c for c in commands)
    used_powershell = any("powershell" in c for c in commands)
    used_script = any("node " in c or "npx " in c or "python " in c for c in commands)
    if used_shell and not used_powershell:
        add("Try PowerShell instead of bash for Windows compatibility")
    if not used_script:
        add("Try a script instead of chained shell commands")

    for attempt in failed:
        error = attempt.error_message or ""
        if "not found" in error:
            add("Check that the command or module is installed")
        if "permission" in error:
            add("Check file permissions or run with elevated permissions")
        if "path" in error or "space" in error:
            add("Quote paths or use a different path format")
        if "timeout" in error:
            add("Increase the timeout or split the work into smaller operations")
    return suggestions


def format_for_prompt(issue: str, attempts: Sequence[Attempt]) -> str:
    failed = get_failed_attempts(issue, attempts)
    if not failed:
        return ""
    lines = ["## FAILED APPROACHES (Do not retry these)", ""]
    for attempt in failed:
        lines.append(f"- **{attempt.approach}**")
        if attempt.error_message:
            lines.append(f"   Error: {attempt.error_message}")
        if attempt.lessons_learned:
            lines.append(f"   Lesson: {attempt.lessons_learned}")
        lines.append("")
    return "\n".join(lines)


def format_attempts_markdown(attempts: Sequence[Attempt]) -> str:
    """ATTEMPTS.md: one section per issue, attempts oldest first."""
    header = (
        "# Attempt History\n\n"
        "This file tracks what has been tried for each issue.\n"
        "**Check this file before suggesting fixes to avoid repeating failed approaches.**\n\n"
    )
    by_issue = {}
    for attempt in attempts:
        by_issue.setdefault(attempt.issue_hash, []).append(attempt)

    sections = []
    for group in by_issue.values():
        lines = [f"## Issue: {group[0].issue}", ""]
        for index, attempt in enumerate(sorted(group, key=lambda a: a.timestamp), start=1):
            warning = " DO NOT RETRY" if attempt.should_not_retry else ""
            lines.extend([f"### Attempt {index} ({attempt.result}){warning}", "",
                          f"**Approach:** {attempt.approach}", ""])
            if attempt.code_or_command:
                lines.extend(["```", attempt.code_or_command, "```", ""])
            if attempt.error_message:
                lines.extend([f"**Error:** {attempt.error_message}", ""])
            if attempt.lessons_learned:
                lines.extend([f"**Lesson:** {attempt.lessons_learned}", ""])
        lines.extend(["---", ""])
        sections.append("\n".join(lines))
    return header + "\n".join(sections)
