"""
User feedback on a dispatch decision.

Feedback rows link an invocation to a user action (confirm / deny / correct /
ignore) and are grouped by the conversational turn they belong to. The
Feedback Trainer reads all rows of one turn at a time.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from dispatch.core.correction import Correction, parse_correction
from utils.timezone_utils import utc_now

DISPATCHER_COMPONENT = "dispatcher"


class FeedbackAction(str, Enum):
    CONFIRM = "confirm"
    DENY = "deny"
    CORRECT = "correct"
    IGNORE = "ignore"


@dataclass(frozen=True)
class Feedback:
    invocation_id: str
    turn_id: str
    action: FeedbackAction
    component_type: str = DISPATCHER_COMPONENT
    correction: Optional[Correction] = None
    reason: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def has_correction(self) -> bool:
        return self.action is FeedbackAction.CORRECT and self.correction is not None

    @classmethod
    def create(
        cls,
        invocation_id: str,
        turn_id: str,
        action: Union[str, FeedbackAction],
        corrected_data: Union[None, str, Dict[str, Any]] = None,
        reason: Optional[str] = None,
        component_type: str = DISPATCHER_COMPONENT
    ) -> "Feedback":
        """
        Build a Feedback row from raw user input.

        The correction payload is validated here; only ``correct`` rows keep
        a correction.

        Raises:
            ValueError: Unknown action
            InvalidCorrectionError: Malformed correction payload
        """
        action = FeedbackAction(action)
        correction = parse_correction(corrected_data) if action is FeedbackAction.CORRECT else None
        return cls(
            invocation_id=invocation_id,
            turn_id=turn_id,
            action=action,
            component_type=component_type,
            correction=correction,
            reason=reason,
        )
