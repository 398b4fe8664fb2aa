"""
Decision audit record.

One Invocation is recorded per processed event, whatever the outcome. It keeps
the full namespace and tool score maps (not just the winners) so decisions can
be analysed and retrained later. Records are frozen: the recorder builds them
from a mutable draft and nothing changes them afterwards.
"""
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from utils.timezone_utils import format_utc_iso


def _freeze_mapping(value: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class Invocation:
    id: str
    correlation_id: str
    timestamp: datetime
    turn_id: Optional[str] = None
    personality_id: Optional[str] = None
    event_payload: Mapping[str, Any] = field(default_factory=dict)
    event_embedding: Tuple[float, ...] = ()
    namespace_scores: Mapping[str, float] = field(default_factory=dict)
    selected_namespace: Optional[str] = None
    namespace_similarity: Optional[float] = None
    tool_scores: Mapping[str, float] = field(default_factory=dict)
    tools_available: Tuple[str, ...] = ()
    tools_passed: Tuple[str, ...] = ()
    tools_filtered: Tuple[str, ...] = ()
    tools_called: Tuple[str, ...] = ()
    context_item_counts: Mapping[str, int] = field(default_factory=dict)
    confidence: float = 0.0
    turns: int = 0
    latency_ms: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        for name in ("event_payload", "namespace_scores", "tool_scores", "context_item_counts"):
            object.__setattr__(self, name, _freeze_mapping(getattr(self, name)))
        for name in ("event_embedding", "tools_available", "tools_passed", "tools_filtered", "tools_called"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def utterance(self) -> str:
        value = self.event_payload.get("transcription")
        return value if isinstance(value, str) else ""

    @property
    def has_error(self) -> bool:
        return self.error_type is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "correlation_id": self.correlation_id,
            "turn_id": self.turn_id,
            "personality_id": self.personality_id,
            "event_payload": dict(self.event_payload),
            "namespace_scores": dict(self.namespace_scores),
            "selected_namespace": self.selected_namespace,
            "namespace_similarity": self.namespace_similarity,
            "tool_scores": dict(self.tool_scores),
            "tools_available": list(self.tools_available),
            "tools_passed": list(self.tools_passed),
            "tools_filtered": list(self.tools_filtered),
            "tools_called": list(self.tools_called),
            "context_item_counts": dict(self.context_item_counts),
            "confidence": self.confidence,
            "turns": self.turns,
            "latency_ms": self.latency_ms,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "timestamp": format_utc_iso(self.timestamp),
        }
