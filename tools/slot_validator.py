"""
Slot format validation.

Checks parameter values against their slot type before a handler runs. Only
the shape is checked here (a duration looks like "5m"); whether the value makes
sense (the contact exists, the time is in the future) is the handler's job.

Slot types:
    contact   non-empty string
    duration  digits followed by s, m or h ("30s", "5m", "2h")
    text      non-empty string
    time      ISO-8601 string or datetime
    number    int or float (not bool)
    boolean   bool

Unknown types pass. None passes; required-ness is checked separately.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

_DURATION_PATTERN = re.compile(r"^\d+[smh]$")


class SlotTypeValidationError(ValueError):
    def __init__(self, slot_name: str, expected_type: str, value: Any, reason: str):
        self.slot_name = slot_name
        self.expected_type = expected_type
        self.value = value
        self.reason = reason
        super().__init__(
            f'Slot "{slot_name}" (type: {expected_type}) failed validation: {reason}'
        )


def _non_empty_string(slot_name: str, slot_type: str, value: Any) -> None:
    if not isinstance(value, str):
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f"expected a string, got {type(value).__name__}"
        )
    if not value.strip():
        raise SlotTypeValidationError(slot_name, slot_type, value, "value cannot be empty")


def _duration(slot_name: str, slot_type: str, value: Any) -> None:
    if not isinstance(value, str):
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f"expected a string, got {type(value).__name__}"
        )
    if not _DURATION_PATTERN.match(value):
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f'expected a duration like "5m", "10s" or "2h", got {value!r}'
        )


def _time(slot_name: str, slot_type: str, value: Any) -> None:
    if isinstance(value, datetime):
        return
    if not isinstance(value, str):
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f"expected an ISO-8601 string, got {type(value).__name__}"
        )
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f"expected an ISO-8601 time, got {value!r}"
        )


def _number(slot_name: str, slot_type: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f"expected a number, got {type(value).__name__}"
        )


def _boolean(slot_name: str, slot_type: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise SlotTypeValidationError(
            slot_name, slot_type, value, f"expected a boolean, got {type(value).__name__}"
        )


_VALIDATORS = {
    "contact": _non_empty_string,
    "duration": _duration,
    "text": _non_empty_string,
    "time": _time,
    "number": _number,
    "boolean": _boolean,
}


class SlotTypeValidator:
    @staticmethod
    def validate(slot_name: str, value: Any, slot_type: Optional[str]) -> None:
        """
        Raises:
            SlotTypeValidationError: If a non-None value does not fit slot_type
        """
        if value is None or not slot_type:
            return
        validator = _VALIDATORS.get(slot_type.lower())
        if validator is not None:
            validator(slot_name, slot_type.lower(), value)

    @staticmethod
    def validate_all(params: Dict[str, Any], slot_types: Dict[str, Optional[str]]) -> List[SlotTypeValidationError]:
        """All validation errors, in slot definition order."""
        errors = []
        for slot_name, slot_type in slot_types.items():
            try:
                SlotTypeValidator.validate(slot_name, params.get(slot_name), slot_type)
            except SlotTypeValidationError as e:
                errors.append(e)
        return errors
