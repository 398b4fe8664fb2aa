"""
Tool call and tool result value objects.

A ToolCall is what the reasoning service asked for; a ToolResult is what the
tool executor produced for it. Results are matched to calls by ``call_id``,
never by position.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.timezone_utils import utc_now, format_utc_iso


class ToolFailureType(str, Enum):
    TOOL_NOT_FOUND = "toolNotFound"
    REQUIRED_SLOT_MISSING = "requiredSlotMissing"
    INVALID_SLOT_FORMAT = "invalidSlotFormat"
    AMBIGUOUS_ENTITY = "ambiguousEntity"
    ENTITY_NOT_FOUND = "entityNotFound"
    TOOL_RETURNED_FAILURE = "toolReturnedFailure"


@dataclass(frozen=True)
class ToolCall:
    """
    One tool invocation requested by the reasoning service.

    ``confidence`` is the tool's combined selection score for this event.
    """
    call_id: str
    tool_name: str  # full name, e.g. "task.create"
    params: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "params": dict(self.params),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ToolFailure:
    type: ToolFailureType
    message: str
    slot_name: Optional[str] = None
    slot_confidence: Optional[float] = None
    ambiguous_values: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type.value, "message": self.message}
        if self.slot_name is not None:
            data["slot_name"] = self.slot_name
        if self.slot_confidence is not None:
            data["slot_confidence"] = self.slot_confidence
        if self.ambiguous_values:
            data["ambiguous_values"] = list(self.ambiguous_values)
        return data


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    tool_name: str
    success: bool
    data: Optional[Any] = None
    failure: Optional[ToolFailure] = None

    @classmethod
    def ok(cls, call: ToolCall, data: Any = None) -> "ToolResult":
        return cls(call_id=call.call_id, tool_name=call.tool_name, success=True, data=data)

    @classmethod
    def failed(cls, call: ToolCall, failure: ToolFailure, data: Any = None) -> "ToolResult":
        return cls(call_id=call.call_id, tool_name=call.tool_name, success=False,
                   data=data, failure=failure)

    def as_message_content(self) -> str:
        """Content of the ``tool`` message appended to the conversation."""
        if self.success:
            return json.dumps(self.data if self.data is not None else {"status": "ok"}, default=str)
        return f"Error [{self.failure.type.value}]: {self.failure.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "success": self.success,
            "data": self.data,
            "failure": self.failure.to_dict() if self.failure else None,
        }


@dataclass(frozen=True)
class ExecutionSignal:
    """
    Learning signal for one tool call, executed or refused.

    Failures carry the affected slot and the call confidence at failure time.
    """
    tool_name: str
    success: bool
    call_id: str
    correlation_id: Optional[str] = None
    failure_type: Optional[ToolFailureType] = None
    message: Optional[str] = None
    slot_name: Optional[str] = None
    confidence: Optional[float] = None
    params: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_result(cls, call: ToolCall, result: "ToolResult") -> "ExecutionSignal":
        failure = result.failure
        return cls(
            tool_name=call.tool_name,
            success=result.success,
            call_id=call.call_id,
            correlation_id=call.correlation_id,
            failure_type=failure.type if failure else None,
            message=failure.message if failure else None,
            slot_name=failure.slot_name if failure else None,
            confidence=call.confidence,
            params=dict(call.params),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "success": self.success,
            "call_id": self.call_id,
            "correlation_id": self.correlation_id,
            "failure_type": self.failure_type.value if self.failure_type else None,
            "message": self.message,
            "slot_name": self.slot_name,
            "confidence": self.confidence,
            "timestamp": format_utc_iso(self.timestamp),
        }
