"""
Tool handler contract.

A handler is a callable taking the validated parameter dict and returning a
ToolOutcome (or a plain dict, treated as successful data). Handlers report
entity-resolution problems by raising AmbiguousEntityError or
EntityNotFoundError; any other exception is reported as a tool failure.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union


class ToolError(Exception):
    """Base class for failures a handler reports on purpose."""


class AmbiguousEntityError(ToolError):
    """A parameter matched more than one entity (e.g. two tasks titled "milk")."""

    def __init__(self, message: str, slot_name: Optional[str] = None,
                 candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.slot_name = slot_name
        self.candidates = list(candidates or [])


class EntityNotFoundError(ToolError):
    """A parameter referenced an entity that does not exist."""

    def __init__(self, message: str, slot_name: Optional[str] = None):
        super().__init__(message)
        self.slot_name = slot_name


@dataclass(frozen=True)
class ToolOutcome:
    success: bool
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, message: Optional[str] = None) -> "ToolOutcome":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "ToolOutcome":
        return cls(success=False, data=data, message=message)


ToolHandler = Callable[[Dict[str, Any]], Union[ToolOutcome, Dict[str, Any], None]]
