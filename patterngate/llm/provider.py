#!/usr/bin/env python3
# CUI // SP-CTI
"""Completion provider interface used by the phase runner.

Defines the request/response format and the abstract interface a provider
must satisfy. StaticProvider answers from canned text and backs offline runs
and tests; vendor adapters implement LLMProvider the same way.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LLMRequest:
    """Provider-neutral completion request."""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    system_prompt: str = ""
    model: str = ""
    max_tokens: int = 4096
    temperature: float = 1.0
    # Tracking metadata
    agent_id: str = ""
    session_id: str = ""
    phase: str = ""


@dataclass
class LLMResponse:
    """Provider-neutral completion response."""
    content: str = ""
    model_id: str = ""
    provider: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    stop_reason: str = ""


class LLMProvider(ABC):
    """Abstract base class for completion providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier."""

    @abstractmethod
    def invoke(self, request: LLMRequest) -> LLMResponse:
        """Invoke the model synchronously.

        Args:
            request: Provider-neutral request.

        Returns:
            Provider-neutral response.
        """


class StaticProvider(LLMProvider):
    """Returns canned text keyed by phase, falling back to a default reply.

    Every request is kept in ``requests`` so callers can inspect prompts.
    """

    def __init__(self, responses: Optional[Dict[str, str]] = None,
                 default: str = "Phase output"):
        self.responses = dict(responses or {})
        self.default = default
        self.requests: List[LLMRequest] = []

    @property
    def provider_name(self) -> str:
        return "static"

    def invoke(self, request: LLMRequest) -> LLMResponse:
        start = time.time()
        self.requests.append(request)
        content = self.responses.get(request.phase, self.default)
        prompt_words = len(request.system_prompt.split()) + sum(
            len(str(m.get("content", "")).split()) for m in request.messages
        )
        return LLMResponse(
            content=content,
            model_id=request.model or "static",
            provider=self.provider_name,
            input_tokens=prompt_words,
            output_tokens=len(content.split()),
            duration_ms=int((time.time() - start) * 1000),
            stop_reason="end_turn",
        )
