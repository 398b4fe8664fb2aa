"""
Inbound event carrying a user utterance.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Event:
    """
    A request to dispatch.

    Attributes:
        correlation_id: Opaque request identifier propagated to every record
        source: Where the event came from (e.g. "stt", "cli")
        payload: Event data; ``transcription`` holds the utterance
        turn_id: Conversational turn this event belongs to, if any
    """
    correlation_id: str
    source: str
    payload: Dict[str, Any] = field(default_factory=dict)
    turn_id: Optional[str] = None

    @property
    def transcription(self) -> str:
        value = self.payload.get("transcription")
        return value if isinstance(value, str) else ""

    @classmethod
    def create(cls, transcription: str, source: str = "stt", turn_id: Optional[str] = None,
               **extra: Any) -> "Event":
        payload = {"transcription": transcription, **extra}
        return cls(
            correlation_id=str(uuid.uuid4()),
            source=source,
            payload=payload,
            turn_id=turn_id,
        )
