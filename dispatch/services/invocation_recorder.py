"""
Invocation recorder.

Collects decision data while an event is processed (InvocationDraft) and
persists exactly one frozen Invocation per event, whatever the outcome.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from dispatch.core.event import Event
from dispatch.core.interfaces import InvocationRepository
from dispatch.core.invocation import Invocation
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


def compute_confidence(
    tool_scores: Dict[str, float],
    tools_called: List[str],
    namespace_similarity: Optional[float]
) -> float:
    """
    Decision confidence.

    Mean combined score of the tools actually called; without calls, the
    selected namespace's similarity; without a namespace, 0.0.
    """
    if tools_called:
        scores = [tool_scores.get(name, 0.0) for name in tools_called]
        return sum(scores) / len(scores)
    if namespace_similarity is not None:
        return namespace_similarity
    return 0.0


@dataclass
class InvocationDraft:
    """Mutable working copy filled in by the dispatcher as it progresses."""
    id: str
    correlation_id: str
    turn_id: Optional[str]
    event_payload: Dict[str, Any]
    started_at: float
    personality_id: Optional[str] = None
    event_embedding: List[float] = field(default_factory=list)
    namespace_scores: Dict[str, float] = field(default_factory=dict)
    selected_namespace: Optional[str] = None
    namespace_similarity: Optional[float] = None
    tool_scores: Dict[str, float] = field(default_factory=dict)
    tools_available: List[str] = field(default_factory=list)
    tools_passed: List[str] = field(default_factory=list)
    tools_filtered: List[str] = field(default_factory=list)
    tools_called: List[str] = field(default_factory=list)
    context_item_counts: Dict[str, int] = field(default_factory=dict)
    turns: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def set_embedding(self, embedding: np.ndarray) -> None:
        self.event_embedding = [float(v) for v in np.asarray(embedding).ravel()]

    def fail(self, error_type: str, message: str) -> None:
        self.error_type = error_type
        self.error_message = message


class InvocationRecorder:
    """
    Builds and persists Invocation records.

    Args:
        repository: Append-only invocation store
    """

    def __init__(self, repository: InvocationRepository):
        self.repository = repository

    def begin(self, event: Event) -> InvocationDraft:
        return InvocationDraft(
            id=str(uuid.uuid4()),
            correlation_id=event.correlation_id,
            turn_id=event.turn_id,
            event_payload=dict(event.payload),
            started_at=time.monotonic(),
        )

    def record(self, draft: InvocationDraft) -> Invocation:
        """
        Freeze the draft and persist it.

        Raises:
            ValueError: If the draft was already recorded
        """
        latency_ms = int((time.monotonic() - draft.started_at) * 1000)
        invocation = Invocation(
            id=draft.id,
            correlation_id=draft.correlation_id,
            timestamp=utc_now(),
            turn_id=draft.turn_id,
            personality_id=draft.personality_id,
            event_payload=draft.event_payload,
            event_embedding=tuple(draft.event_embedding),
            namespace_scores=draft.namespace_scores,
            selected_namespace=draft.selected_namespace,
            namespace_similarity=draft.namespace_similarity,
            tool_scores=draft.tool_scores,
            tools_available=tuple(draft.tools_available),
            tools_passed=tuple(draft.tools_passed),
            tools_filtered=tuple(draft.tools_filtered),
            tools_called=tuple(draft.tools_called),
            context_item_counts=draft.context_item_counts,
            confidence=compute_confidence(
                draft.tool_scores, draft.tools_called, draft.namespace_similarity
            ),
            turns=draft.turns,
            latency_ms=latency_ms,
            error_type=draft.error_type,
            error_message=draft.error_message,
        )
        self.repository.save(invocation)
        logger.info(
            f"Recorded invocation {invocation.id} (namespace={invocation.selected_namespace}, "
            f"error={invocation.error_type}, {latency_ms}ms)"
        )
        return invocation

    def get(self, invocation_id: str) -> Optional[Invocation]:
        return self.repository.get(invocation_id)

    def find_by_correlation_id(self, correlation_id: str) -> List[Invocation]:
        return self.repository.find_by_correlation_id(correlation_id)
