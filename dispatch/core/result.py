"""
Result contract returned to the wider pipeline.

Every dispatch path, including every error kind, produces a DispatchResult;
callers only read ``error_type`` to tell outcomes apart.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dispatch.core.tool_call import ToolCall, ToolResult


class ErrorType:
    """Error kinds reported through ``DispatchResult.error_type``."""
    EMPTY_INPUT = "empty_input"
    NO_PERSONALITY = "no_personality"
    NO_NAMESPACE = "no_namespace"
    NO_TOOLS = "no_tools"
    LLM_TIMEOUT = "llm_timeout"
    LLM_ERROR = "llm_error"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    CANCELLED = "cancelled"
    UNKNOWN_ERROR = "unknown_error"


def mean_call_confidence(tool_calls: List[ToolCall]) -> float:
    if not tool_calls:
        return 0.0
    return sum(call.confidence for call in tool_calls) / len(tool_calls)


@dataclass(frozen=True)
class DispatchResult:
    invocation_id: Optional[str]
    error_type: Optional[str] = None
    error: Optional[str] = None
    selected_namespace: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    llm_response: Optional[str] = None
    turns: int = 0
    assembled_context: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_error(self) -> bool:
        return self.error_type is not None

    @property
    def success(self) -> bool:
        return self.error_type is None

    @property
    def confidence(self) -> float:
        """Mean confidence of the calls made; 0.0 when nothing was called."""
        return mean_call_confidence(self.tool_calls)

    @classmethod
    def succeeded(cls, invocation_id: str, selected_namespace: str,
                  tool_calls: List[ToolCall], tool_results: List[ToolResult],
                  llm_response: Optional[str], turns: int,
                  assembled_context: Optional[Dict[str, Any]] = None) -> "DispatchResult":
        return cls(
            invocation_id=invocation_id,
            selected_namespace=selected_namespace,
            tool_calls=list(tool_calls),
            tool_results=list(tool_results),
            llm_response=llm_response,
            turns=turns,
            assembled_context=dict(assembled_context or {}),
        )

    @classmethod
    def failed(cls, invocation_id: Optional[str], error_type: str, error: str,
               selected_namespace: Optional[str] = None,
               tool_calls: Optional[List[ToolCall]] = None,
               tool_results: Optional[List[ToolResult]] = None,
               turns: int = 0) -> "DispatchResult":
        return cls(
            invocation_id=invocation_id,
            error_type=error_type,
            error=error,
            selected_namespace=selected_namespace,
            tool_calls=list(tool_calls or []),
            tool_results=list(tool_results or []),
            turns=turns,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "has_error": self.has_error,
            "error_type": self.error_type,
            "error": self.error,
            "selected_namespace": self.selected_namespace,
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "tool_results": [result.to_dict() for result in self.tool_results],
            "confidence": self.confidence,
            "invocation_id": self.invocation_id,
            "llm_response": self.llm_response,
            "turns": self.turns,
        }
