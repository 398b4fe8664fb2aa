"""
Namespace and Tool entities.

A namespace is a capability domain ("task", "timer"); a tool is an invocable
capability inside exactly one namespace. Both carry a semantic centroid that
the decision engine compares against event embeddings.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from dispatch.core.vectors import as_vector

_JSON_SLOT_TYPES = {
    "string": "text",
    "number": "number",
    "integer": "number",
    "boolean": "boolean",
}


@dataclass(frozen=True, eq=False)
class Namespace:
    """A capability domain grouping related tools."""
    name: str
    description: str
    semantic_centroid: np.ndarray
    keywords: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.name or "." in self.name:
            raise ValueError(f"Invalid namespace name: {self.name!r}")
        object.__setattr__(self, "semantic_centroid", as_vector(self.semantic_centroid))
        object.__setattr__(self, "keywords", tuple(k.lower() for k in self.keywords))


@dataclass(frozen=True, eq=False)
class Tool:
    """
    An invocable capability belonging to one namespace.

    ``parameters`` is a JSON-schema object (``properties`` + ``required``).
    """
    name: str
    namespace: str
    description: str
    semantic_centroid: np.ndarray
    parameters: Dict[str, Any] = field(default_factory=dict)
    keywords: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.name or "." in self.name:
            raise ValueError(f"Invalid tool name: {self.name!r}")
        if not self.namespace:
            raise ValueError(f"Tool {self.name} has no namespace")
        object.__setattr__(self, "semantic_centroid", as_vector(self.semantic_centroid))
        object.__setattr__(self, "keywords", tuple(k.lower() for k in self.keywords))

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}"

    @property
    def properties(self) -> Dict[str, Dict[str, Any]]:
        return self.parameters.get("properties", {})

    @property
    def required_parameters(self) -> List[str]:
        return list(self.parameters.get("required", []))

    def slot_type(self, slot_name: str) -> Optional[str]:
        """
        Slot type used for format validation: an explicit ``slot_type`` on the
        property, else derived from its JSON type.
        """
        prop = self.properties.get(slot_name, {})
        if "slot_type" in prop:
            return prop["slot_type"]
        return _JSON_SLOT_TYPES.get(prop.get("type"))

    def definition(self) -> Dict[str, Any]:
        """Function-calling definition handed to the reasoning service."""
        schema = dict(self.parameters or {"type": "object", "properties": {}})
        schema.setdefault("type", "object")
        if "properties" in schema:
            # slot_type is ours, not JSON schema
            schema["properties"] = {
                name: {k: v for k, v in prop.items() if k != "slot_type"}
                for name, prop in schema["properties"].items()
            }
        return {
            "name": self.full_name,
            "description": self.description,
            "parameters": schema,
        }
