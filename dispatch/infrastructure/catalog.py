"""
Namespace/tool catalog loading.

The catalog is a JSON file describing namespaces, their tools and the default
personality. Centroids are either given explicitly (``centroid``) or computed
as the normalised mean embedding of the description and example utterances.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from dispatch.core.attention import AttentionState
from dispatch.core.interfaces import EmbeddingProvider
from dispatch.core.namespace import Namespace, Tool
from dispatch.core.personality import DEFAULT_SYSTEM_PROMPT, Personality
from dispatch.core.vectors import as_vector, normalized_mean

logger = logging.getLogger(__name__)


class CatalogError(ValueError):
    """The catalog file is malformed."""


@dataclass
class Catalog:
    namespaces: List[Namespace] = field(default_factory=list)
    tools: List[Tool] = field(default_factory=list)
    personality: Optional[Personality] = None


def compute_centroid(entry: Dict[str, Any], embeddings: Optional[EmbeddingProvider]) -> np.ndarray:
    """
    Centroid of a catalog entry.

    Raises:
        CatalogError: No explicit centroid and no embedding provider
    """
    if entry.get("centroid") is not None:
        return as_vector(entry["centroid"])
    if embeddings is None:
        raise CatalogError(f"Entry {entry.get('name')!r} has no centroid and no embedding provider was given")

    texts = [entry["description"], *entry.get("examples", [])]
    return normalized_mean([embeddings.generate(text) for text in texts])


def _require(entry: Dict[str, Any], key: str, context: str) -> Any:
    if key not in entry:
        raise CatalogError(f"{context} is missing '{key}'")
    return entry[key]


def parse_catalog(data: Dict[str, Any], embeddings: Optional[EmbeddingProvider] = None) -> Catalog:
    """
    Build a Catalog from parsed JSON.

    Raises:
        CatalogError: Missing fields or invalid names
    """
    catalog = Catalog()

    for ns_entry in _require(data, "namespaces", "Catalog"):
        ns_name = _require(ns_entry, "name", "Namespace")
        try:
            namespace = Namespace(
                name=ns_name,
                description=_require(ns_entry, "description", f"Namespace {ns_name}"),
                semantic_centroid=compute_centroid(ns_entry, embeddings),
                keywords=tuple(ns_entry.get("keywords", [])),
            )
        except ValueError as e:
            raise CatalogError(str(e)) from e
        catalog.namespaces.append(namespace)

        for tool_entry in ns_entry.get("tools", []):
            tool_name = _require(tool_entry, "name", f"Tool in {ns_name}")
            try:
                tool = Tool(
                    name=tool_name,
                    namespace=ns_name,
                    description=_require(tool_entry, "description", f"Tool {ns_name}.{tool_name}"),
                    semantic_centroid=compute_centroid(tool_entry, embeddings),
                    parameters=tool_entry.get("parameters", {}),
                    keywords=tuple(tool_entry.get("keywords", [])),
                )
            except ValueError as e:
                raise CatalogError(str(e)) from e
            catalog.tools.append(tool)

    personality_entry = data.get("personality")
    if personality_entry:
        catalog.personality = Personality(
            name=personality_entry.get("name", "default"),
            base_model=personality_entry.get("base_model"),
            temperature=personality_entry.get("temperature", 0.2),
            max_tokens=personality_entry.get("max_tokens", 1024),
            system_prompt=personality_entry.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
            user_prompt_template=personality_entry.get("user_prompt_template", "{input}"),
            attention=AttentionState.from_dict(personality_entry.get("attention", {})),
        )

    logger.info(
        f"Catalog loaded: {len(catalog.namespaces)} namespaces, {len(catalog.tools)} tools"
    )
    return catalog


def load_catalog(path: str, embeddings: Optional[EmbeddingProvider] = None) -> Catalog:
    """
    Load a catalog JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        CatalogError: If the content is malformed
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Catalog not found: {path}")
    with open(file_path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise CatalogError(f"Catalog {path} is not valid JSON: {e}") from e
    return parse_catalog(data, embeddings)
