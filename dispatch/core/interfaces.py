"""
Collaborator interfaces injected into the dispatcher services.

Services receive these through their constructors; concrete implementations
live in ``clients/``, ``tools/`` and ``dispatch/infrastructure/``.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import numpy as np

from dispatch.core.attention import AttentionState
from dispatch.core.feedback import Feedback
from dispatch.core.invocation import Invocation
from dispatch.core.namespace import Namespace, Tool
from dispatch.core.personality import Personality
from dispatch.core.tool_call import ExecutionSignal, ToolCall, ToolResult


@dataclass(frozen=True)
class ReasoningToolCall:
    """A tool call as returned by the reasoning service."""
    id: str
    name: str  # tool full name
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReasoningResponse:
    content: Optional[str] = None
    tool_calls: List[ReasoningToolCall] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class EmbeddingProvider(Protocol):
    def generate(self, text: str) -> np.ndarray: ...


class ReasoningService(Protocol):
    def converse(
        self,
        model: Optional[str],
        messages: List[Dict[str, Any]],
        tool_defs: List[Dict[str, Any]],
        temperature: float,
        max_tokens: int
    ) -> ReasoningResponse:
        """
        Raises:
            ReasoningTimeoutError: The call timed out
            ReasoningServiceError: Any other service failure
        """
        ...


class ToolExecutor(Protocol):
    def execute_tool_calls(self, calls: List[ToolCall]) -> List[ToolResult]:
        """One result per call, matched by call_id."""
        ...


class ExecutionSignalSink(Protocol):
    def record_success(self, signal: ExecutionSignal) -> None: ...

    def record_failure(self, signal: ExecutionSignal) -> None: ...


class NamespaceRepository(Protocol):
    def find_all(self) -> List[Namespace]:
        """Namespaces in registration order."""
        ...

    def get(self, name: str) -> Optional[Namespace]: ...


class ToolRepository(Protocol):
    def find_by_namespace(self, namespace: str) -> List[Tool]:
        """Tools of one namespace in registration order."""
        ...

    def get(self, full_name: str) -> Optional[Tool]: ...


class PersonalityRepository(Protocol):
    def get_active(self) -> Optional[Personality]: ...

    def get(self, personality_id: str) -> Optional[Personality]: ...

    def save(self, personality: Personality) -> None: ...

    def save_attention(self, personality_id: str, expected_version: int,
                       state: AttentionState) -> AttentionState:
        """
        Compare-and-swap write of a personality's attention state.

        Returns:
            The stored state (version incremented)

        Raises:
            VersionConflictError: Stored version differs from expected_version
        """
        ...


class InvocationRepository(Protocol):
    def save(self, invocation: Invocation) -> None: ...

    def get(self, invocation_id: str) -> Optional[Invocation]: ...

    def find_by_correlation_id(self, correlation_id: str) -> List[Invocation]: ...


class FeedbackRepository(Protocol):
    def save(self, feedback: Feedback) -> None: ...

    def find_by_turn_and_component(self, turn_id: str, component_type: str) -> List[Feedback]: ...
