#!/usr/bin/env python3
# CUI // SP-CTI
"""Ordered keyword rule tables for rule-document discovery.

Matching semantics:
    KEYWORD_RULES           union of matches. Every keyword that occurs as a
                            case-insensitive substring of the task contributes
                            all of its documents; duplicates collapse.
    FALLBACK_VERBS          consulted only when no keyword matched. A generic
                            build verb maps the task to FALLBACK_KEYWORDS.
    RELATED_SUGGESTION_RULES first matches, in table order, capped at
                            MAX_SUGGESTIONS. Used only on the fallback path.

Matching is by plain substring, so "logins" and "relogin" both match
"login". The price is false positives inside unrelated words: "api" hits
"rapid", "test" hits "latest", "auth" hits "author", "route" hits "router".
A spurious match only adds rule documents to the result. Keys too short to
be useful at all are left out (there is no "ai" key because "email" would
match it on every email task).
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

CORE_DOCUMENT = "core/standards"

KEYWORD_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    # Authentication
    ("login", ("auth/email-password", "auth/session")),
    ("signup", ("auth/email-password", "auth/session")),
    ("sign up", ("auth/email-password", "auth/session")),
    ("password", ("auth/email-password",)),
    ("session", ("auth/session",)),
    ("jwt", ("auth/session",)),
    ("oauth", ("auth/oauth",)),
    ("auth", ("auth/session",)),
    # Payments
    ("stripe", ("payments/stripe",)),
    ("checkout", ("payments/checkout",)),
    ("subscription", ("payments/subscriptions", "payments/stripe")),
    ("billing", ("payments/subscriptions",)),
    ("payment", ("payments/stripe",)),
    # API and validation
    ("validation", ("api/validation",)),
    ("zod", ("api/validation",)),
    ("api", ("api/routes",)),
    ("endpoint", ("api/routes",)),
    ("route", ("api/routes",)),
    ("webhook", ("api/webhooks",)),
    # Database
    ("database", ("database/schema",)),
    ("schema", ("database/schema",)),
    ("migration", ("database/migrations",)),
    ("postgres", ("database/schema",)),
    ("drizzle", ("database/schema",)),
    ("sql", ("database/schema",)),
    # Frontend
    ("component", ("frontend/components",)),
    ("react", ("frontend/components",)),
    ("modal", ("frontend/components",)),
    ("dashboard", ("frontend/layouts",)),
    ("layout", ("frontend/layouts",)),
    ("accessibility", ("frontend/accessibility",)),
    ("seo", ("frontend/seo",)),
    # Messaging and integrations
    ("email", ("email/transactional",)),
    ("upload", ("storage/uploads",)),
    ("realtime", ("realtime/subscriptions",)),
    ("websocket", ("realtime/subscriptions",)),
    ("cron", ("jobs/background",)),
    ("queue", ("jobs/background",)),
    ("pdf", ("documents/generation",)),
    ("openai", ("ai/completions",)),
    ("anthropic", ("ai/completions",)),
    ("llm", ("ai/completions",)),
    ("chatbot", ("ai/completions",)),
    ("search", ("search/full-text",)),
    # Testing
    ("test", ("testing/unit",)),
    ("playwright", ("testing/e2e",)),
)

FALLBACK_VERBS = ("add", "create", "build", "implement", "make")
FALLBACK_KEYWORDS = ("component", "api")
DEFAULT_DOCUMENTS = ("frontend/components", "api/routes")

MAX_SUGGESTIONS = 3

# (category, trigger fragments, documents, reason)
RELATED_SUGGESTION_RULES = (
    (
        "api-integration",
        ("integrat", "third-party", "third party", "external", "sync with", "connect to"),
        ("integrations/third-party-api", "api/routes"),
        "Task mentions connecting to an outside service",
    ),
    (
        "background-job",
        ("schedule", "nightly", "every day", "recurring", "batch", "worker"),
        ("jobs/background",),
        "Task describes work that runs outside a request",
    ),
    (
        "document-generation",
        ("report", "export", "invoice", "csv", "spreadsheet"),
        ("documents/generation",),
        "Task produces a downloadable document",
    ),
    (
        "realtime",
        ("live", "notif", "chat", "presence", "collaborat"),
        ("realtime/subscriptions",),
        "Task needs updates pushed to connected clients",
    ),
    (
        "ai-feature",
        ("summar", "classif", "recommend", "assistant", "generate text", "smart"),
        ("ai/completions",),
        "Task relies on a completion model",
    ),
)

DEFAULT_SUGGESTIONS = (
    {
        "category": "general",
        "documents": ["frontend/components"],
        "reason": "Most features touch at least one UI component",
    },
    {
        "category": "general",
        "documents": ["api/routes"],
        "reason": "Most features read or write through an API route",
    },
)

_RULES_BY_KEYWORD: Dict[str, Tuple[str, ...]] = dict(KEYWORD_RULES)


def _unique(items) -> List[str]:
    seen, out = set(), []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def extract_keywords(task: str) -> Tuple[List[str], bool]:
    """Return (keywords, from_fallback) for a task description."""
    text = (task or "").lower()
    matched = [kw for kw, _ in KEYWORD_RULES if kw in text]
    if matched:
        return matched, False
    words = set(re.findall(r"[a-z]+", text))
    if words.intersection(FALLBACK_VERBS):
        return list(FALLBACK_KEYWORDS), True
    return [], True


def documents_for_keywords(keywords: Sequence[str]) -> Tuple[List[str], bool]:
    """Union the documents of every known keyword.

    Returns (documents, matched). When nothing is known the generic
    DEFAULT_DOCUMENTS are returned with matched=False.
    """
    docs = []
    for keyword in keywords or ():
        docs.extend(_RULES_BY_KEYWORD.get(str(keyword).strip().lower(), ()))
    docs = _unique(docs)
    if not docs:
        return list(DEFAULT_DOCUMENTS), False
    return docs, True


def with_core(documents: Sequence[str], core: str = CORE_DOCUMENT) -> List[str]:
    """Prepend the core document unless it is already present."""
    docs = _unique(documents)
    if core in docs:
        return docs
    return [core] + docs


def related_suggestions(task: str, limit: Optional[int] = None) -> List[dict]:
    """Category hints for tasks that matched no keyword directly."""
    text = (task or "").lower()
    found = []
    for category, fragments, documents, reason in RELATED_SUGGESTION_RULES:
        if any(fragment in text for fragment in fragments):
            found.append({"category": category, "documents": list(documents), "reason": reason})
    if not found:
        return [dict(s, documents=list(s["documents"])) for s in DEFAULT_SUGGESTIONS]
    return found[: limit or MAX_SUGGESTIONS]
