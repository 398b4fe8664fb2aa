"""
Typed feedback corrections.

Users correct a dispatch by naming the namespace and/or tool that should have
been selected. The raw payload (dict or JSON string) is parsed exactly once,
when the Feedback is created; the trainer only ever sees one of:

- NamespaceCorrection: "it should have been the timer namespace"
- ToolCorrection: "it should have been timer.set" (implies its namespace)
- UnspecifiedCorrection: "that was wrong" with no usable target

A payload naming both a namespace and a tool becomes a ToolCorrection; the
tool must belong to the named namespace.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from dispatch.core.exceptions import InvalidCorrectionError


@dataclass(frozen=True)
class NamespaceCorrection:
    namespace: str

    def to_dict(self) -> Dict[str, Any]:
        return {"namespace": self.namespace}


@dataclass(frozen=True)
class ToolCorrection:
    tool: str  # full name, e.g. "timer.set"

    @property
    def namespace(self) -> str:
        return self.tool.split(".", 1)[0]

    @property
    def tool_name(self) -> str:
        return self.tool.split(".", 1)[1]

    def to_dict(self) -> Dict[str, Any]:
        return {"namespace": self.namespace, "tool": self.tool}


@dataclass(frozen=True)
class UnspecifiedCorrection:
    def to_dict(self) -> Dict[str, Any]:
        return {}


Correction = Union[NamespaceCorrection, ToolCorrection, UnspecifiedCorrection]


def _optional_name(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise InvalidCorrectionError(f"Correction field '{key}' must be a non-empty string")
    return value.strip().lower()


def parse_correction(raw: Union[None, str, Dict[str, Any]]) -> Correction:
    """
    Parse a raw correction payload into a typed correction.

    Args:
        raw: None, a JSON object string, or a dict with optional
             ``namespace`` and ``tool`` keys

    Returns:
        NamespaceCorrection, ToolCorrection or UnspecifiedCorrection

    Raises:
        InvalidCorrectionError: If the payload is malformed or the tool does
            not belong to the named namespace
    """
    if raw is None:
        return UnspecifiedCorrection()

    if isinstance(raw, str):
        if not raw.strip():
            return UnspecifiedCorrection()
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidCorrectionError(f"Correction is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidCorrectionError(
            f"Correction must be a JSON object, got {type(raw).__name__}"
        )

    namespace = _optional_name(raw, "namespace")
    tool = _optional_name(raw, "tool")

    if tool is None:
        if namespace is None:
            return UnspecifiedCorrection()
        if "." in namespace:
            raise InvalidCorrectionError(f"Namespace name cannot contain '.': {namespace}")
        return NamespaceCorrection(namespace=namespace)

    if "." not in tool:
        if namespace is None:
            raise InvalidCorrectionError(
                f"Tool correction '{tool}' must be fully qualified or carry a namespace"
            )
        tool = f"{namespace}.{tool}"

    tool_namespace, _, tool_name = tool.partition(".")
    if not tool_namespace or not tool_name:
        raise InvalidCorrectionError(f"Malformed tool name: {tool}")
    if namespace is not None and namespace != tool_namespace:
        raise InvalidCorrectionError(
            f"Tool {tool} does not belong to namespace {namespace}"
        )

    return ToolCorrection(tool=tool)
