"""
Decision engine: namespace and tool selection.

Pure scoring over an event embedding, the registered namespaces and tools and
a personality's attention state. Nothing here mutates state; training lives in
the feedback trainer.

Selection rules:
- a namespace is eligible when cosine(event, centroid) >= its threshold
- the eligible namespace with the highest similarity wins; equal similarities
  resolve to the namespace registered first
- tool score = semantic_weight * cosine + statistical_weight * statistical,
  where statistical = success_rate * keyword_factor
- a tool is eligible when its score >= its tool threshold
- eligible tools are ordered by descending score, then registration order
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from config.config import AttentionConfig, DecisionConfig
from dispatch.core.attention import AttentionState
from dispatch.core.keywords import extract_keywords
from dispatch.core.namespace import Namespace, Tool
from dispatch.core.result import ErrorType
from dispatch.core.vectors import Embeddable, as_vector, cosine_similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NamespaceSelection:
    """Outcome of namespace scoring. ``selected`` is None on a non-match."""
    scores: Dict[str, float]
    selected: Optional[str] = None
    similarity: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.selected is not None


@dataclass(frozen=True)
class ToolSelection:
    """Outcome of tool scoring for the selected namespace."""
    scores: Dict[str, float]
    available: List[str] = field(default_factory=list)
    passed: List[Tool] = field(default_factory=list)
    filtered: List[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return bool(self.passed)

    @property
    def passed_names(self) -> List[str]:
        return [tool.full_name for tool in self.passed]


@dataclass(frozen=True)
class Decision:
    namespace: NamespaceSelection
    tools: Optional[ToolSelection] = None

    @property
    def error_type(self) -> Optional[str]:
        if not self.namespace.matched:
            return ErrorType.NO_NAMESPACE
        if self.tools is None or not self.tools.matched:
            return ErrorType.NO_TOOLS
        return None


class DecisionEngine:
    """
    Scores and filters namespace and tool candidates.

    Args:
        decision_config: Scoring weights and keyword settings
        attention_config: Default thresholds, success rate and keyword weight
    """

    def __init__(self, decision_config: DecisionConfig, attention_config: AttentionConfig):
        self.config = decision_config
        self.attention_config = attention_config

    def similarities(self, event_embedding: np.ndarray, candidates: Sequence[Embeddable]) -> Dict[str, float]:
        """Cosine similarity of the event against each candidate, keyed by name, in candidate order."""
        event_vector = as_vector(event_embedding)
        return {
            candidate.name: cosine_similarity(event_vector, candidate.semantic_centroid)
            for candidate in candidates
        }

    def select_namespace(
        self,
        event_embedding: np.ndarray,
        namespaces: Sequence[Namespace],
        attention: AttentionState
    ) -> NamespaceSelection:
        """
        Select the eligible namespace with the highest similarity.

        Args:
            event_embedding: Embedded utterance
            namespaces: Candidates in registration order (defines tie-break)
            attention: Personality attention state providing thresholds

        Returns:
            NamespaceSelection with the full score map; ``selected`` is None
            when no namespace reaches its threshold
        """
        scores = self.similarities(event_embedding, namespaces)

        best_name: Optional[str] = None
        best_score: Optional[float] = None
        for namespace in namespaces:
            score = scores[namespace.name]
            threshold = attention.get_threshold(
                namespace.name, self.attention_config.default_namespace_threshold
            )
            eligible = score >= threshold
            logger.debug(
                f"Namespace {namespace.name}: similarity={score:.4f} threshold={threshold:.4f} "
                f"eligible={eligible}"
            )
            # Strict comparison keeps the earlier-registered namespace on ties
            if eligible and (best_score is None or score > best_score):
                best_name, best_score = namespace.name, score

        if best_name is None:
            logger.info("No namespace reached its threshold")
            return NamespaceSelection(scores=scores)

        logger.info(f"Selected namespace {best_name} (similarity {best_score:.4f})")
        return NamespaceSelection(scores=scores, selected=best_name, similarity=best_score)

    def score_tool(self, tool: Tool, similarity: float, keywords: List[str],
                   attention: AttentionState) -> float:
        """Combined semantic and statistical score of one tool."""
        success_rate = attention.get_success_rate(
            tool.full_name, self.attention_config.default_success_rate
        )
        statistical = success_rate * self.keyword_factor(tool, keywords, attention)
        return self.config.semantic_weight * similarity + self.config.statistical_weight * statistical

    def keyword_factor(self, tool: Tool, keywords: List[str], attention: AttentionState) -> float:
        """
        Mean learned weight of the utterance keywords for this tool, plus the
        overlap boost for each keyword the tool declares. 1.0 without keywords.
        """
        if not keywords:
            return 1.0
        default_weight = self.attention_config.default_keyword_weight
        weights = [attention.get_keyword_weight(tool.full_name, kw, default_weight) for kw in keywords]
        factor = sum(weights) / len(weights)

        overlap = sum(1 for kw in keywords if kw in tool.keywords)
        return factor + self.config.keyword_overlap_boost * overlap / len(keywords)

    def select_tools(
        self,
        event_embedding: np.ndarray,
        tools: Sequence[Tool],
        attention: AttentionState,
        utterance: str = ""
    ) -> ToolSelection:
        """
        Score and filter the tools of the selected namespace.

        Args:
            event_embedding: Embedded utterance
            tools: Tools of the selected namespace in registration order
            attention: Personality attention state
            utterance: Raw utterance used for keyword weighting

        Returns:
            ToolSelection with eligible tools ordered by descending score
        """
        event_vector = as_vector(event_embedding)
        keywords = extract_keywords(utterance, self.config.min_keyword_length)

        scores: Dict[str, float] = {}
        eligible: List[Tool] = []
        filtered: List[str] = []

        for tool in tools:
            similarity = cosine_similarity(event_vector, tool.semantic_centroid)
            score = self.score_tool(tool, similarity, keywords, attention)
            threshold = attention.get_threshold(
                tool.full_name, self.attention_config.default_tool_threshold
            )
            scores[tool.full_name] = score
            logger.debug(
                f"Tool {tool.full_name}: cosine={similarity:.4f} score={score:.4f} "
                f"threshold={threshold:.4f}"
            )
            if score >= threshold:
                eligible.append(tool)
            else:
                filtered.append(tool.full_name)

        # sorted() is stable, so equal scores keep registration order
        ordered = sorted(eligible, key=lambda t: scores[t.full_name], reverse=True)

        logger.info(
            f"Tools passed: {[t.full_name for t in ordered]}, filtered: {filtered}"
        )
        return ToolSelection(
            scores=scores,
            available=[tool.full_name for tool in tools],
            passed=ordered,
            filtered=filtered,
        )

    def decide(
        self,
        event_embedding: np.ndarray,
        namespaces: Sequence[Namespace],
        tools_for: Callable[[str], Sequence[Tool]],
        attention: AttentionState,
        utterance: str = ""
    ) -> Decision:
        """
        Namespace selection followed by tool selection for the winner.

        Args:
            event_embedding: Embedding of the utterance
            namespaces: Candidates in registration order
            tools_for: Returns the tools of a namespace; only called for the winner
            attention: Learned thresholds, success rates and keyword weights
            utterance: Raw text for keyword matching
        """
        namespace = self.select_namespace(event_embedding, namespaces, attention)
        if not namespace.matched:
            return Decision(namespace=namespace)

        tools = self.select_tools(
            event_embedding,
            tools_for(namespace.selected),
            attention,
            utterance,
        )
        return Decision(namespace=namespace, tools=tools)
