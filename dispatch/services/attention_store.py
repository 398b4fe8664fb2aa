"""
Attention/threshold store.

The only component that mutates learned attention state. Every mutation is a
compare-and-swap write against the personality repository:

  1. read the personality's state and version
  2. apply the adjustments to a copy
  3. save_attention(expected_version) - succeeds only if nobody wrote meanwhile
  4. on VersionConflictError re-read and re-apply, up to cas_max_retries times

Adjustments are recomputed against the freshly read state on every attempt,
so concurrent trainers never lose each other's updates.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from config.config import AttentionConfig
from dispatch.core.attention import Adjustment, AdjustmentKind, AttentionState, describe_adjustments
from dispatch.core.exceptions import AttentionConflictError, VersionConflictError
from dispatch.core.interfaces import PersonalityRepository

logger = logging.getLogger(__name__)


class AttentionStore:
    """
    Versioned access to a personality's thresholds, success rates and keyword weights.

    Args:
        personalities: Repository providing CAS writes of attention state
        config: Defaults, step sizes and bounds
    """

    def __init__(self, personalities: PersonalityRepository, config: AttentionConfig):
        self.personalities = personalities
        self.config = config

    # Reads

    def get_state(self, personality_id: str) -> AttentionState:
        personality = self.personalities.get(personality_id)
        if personality is None:
            raise KeyError(f"Personality not found: {personality_id}")
        return personality.attention

    def get_threshold(self, personality_id: str, name: str) -> float:
        return self.threshold_from(self.get_state(personality_id), name)

    def get_success_rate(self, personality_id: str, tool: str) -> float:
        return self.get_state(personality_id).get_success_rate(tool, self.config.default_success_rate)

    def get_keyword_weight(self, personality_id: str, tool: str, keyword: str) -> float:
        return self.get_state(personality_id).get_keyword_weight(
            tool, keyword, self.config.default_keyword_weight
        )

    def threshold_from(self, state: AttentionState, name: str) -> float:
        """Threshold for a namespace or tool full name, falling back to the default."""
        return state.get_threshold(name, self.config.default_threshold_for(name))

    # Writes

    def raise_threshold(self, personality_id: str, name: str) -> float:
        state = self.apply_adjustments(
            personality_id, [Adjustment(AdjustmentKind.RAISE_THRESHOLD, name)]
        )
        return self.threshold_from(state, name)

    def lower_threshold(self, personality_id: str, name: str) -> float:
        state = self.apply_adjustments(
            personality_id, [Adjustment(AdjustmentKind.LOWER_THRESHOLD, name)]
        )
        return self.threshold_from(state, name)

    def set_success_rate(self, personality_id: str, tool: str, value: float) -> float:
        state = self.apply_adjustments(
            personality_id, [Adjustment(AdjustmentKind.SET_SUCCESS_RATE, tool, amount=value)]
        )
        return state.get_success_rate(tool, self.config.default_success_rate)

    def set_keyword_weight(self, personality_id: str, tool: str, keyword: str, weight: float) -> float:
        state = self.apply_adjustments(
            personality_id,
            [Adjustment(AdjustmentKind.SET_KEYWORD_WEIGHT, tool, amount=weight, keyword=keyword)]
        )
        return state.get_keyword_weight(tool, keyword, self.config.default_keyword_weight)

    def apply_adjustments(
        self,
        personality_id: str,
        adjustments: Iterable[Adjustment],
        training_samples: int = 0
    ) -> AttentionState:
        """
        Apply a batch of adjustments in one compare-and-swap write.

        Args:
            personality_id: Personality whose attention state is updated
            adjustments: Adjustments applied in order
            training_samples: Feedback rows the batch came from (0 for direct edits)

        Returns:
            The stored state after the write (unchanged state if the batch is empty)

        Raises:
            KeyError: Unknown personality
            AttentionConflictError: Version conflicts persisted past cas_max_retries
        """
        adjustments = list(adjustments)
        if not adjustments:
            return self.get_state(personality_id)

        max_attempts = self.config.cas_max_retries + 1
        last_conflict: Optional[VersionConflictError] = None

        for attempt in range(1, max_attempts + 1):
            current = self.get_state(personality_id)
            updated = self.apply_to_state(current, adjustments)
            if training_samples:
                updated.record_training(training_samples)

            try:
                stored = self.personalities.save_attention(personality_id, current.version, updated)
            except VersionConflictError as e:
                last_conflict = e
                logger.warning(
                    f"Attention write conflict for {personality_id} "
                    f"(attempt {attempt}/{max_attempts}): {e}"
                )
                continue

            logger.info(
                f"Applied {len(adjustments)} attention adjustments to {personality_id} "
                f"(version {stored.version}): {describe_adjustments(adjustments)}"
            )
            return stored

        raise AttentionConflictError(max_attempts, last_conflict)

    def apply_to_state(self, state: AttentionState, adjustments: Iterable[Adjustment]) -> AttentionState:
        """Return a copy of state with adjustments applied. The input is not modified."""
        updated = state.copy()
        for adjustment in adjustments:
            self._apply(updated, adjustment)
        return updated

    def _apply(self, state: AttentionState, adj: Adjustment) -> None:
        cfg = self.config
        kind = adj.kind

        if kind in (AdjustmentKind.RAISE_THRESHOLD, AdjustmentKind.LOWER_THRESHOLD):
            step = cfg.threshold_step if adj.amount is None else abs(adj.amount)
            current = self.threshold_from(state, adj.target)
            # Stored values may sit outside the bounds; clamping never reverses the move
            if kind is AdjustmentKind.RAISE_THRESHOLD:
                moved = max(current, min(current + step, cfg.threshold_ceiling))
            else:
                moved = min(current, max(current - step, cfg.threshold_floor))
            state.thresholds[adj.target] = moved
            return

        if kind in (AdjustmentKind.BOOST_SUCCESS_RATE, AdjustmentKind.PENALIZE_SUCCESS_RATE,
                    AdjustmentKind.SHIFT_SUCCESS_RATE, AdjustmentKind.SET_SUCCESS_RATE):
            rate = state.get_success_rate(adj.target, cfg.default_success_rate)
            rate_step = cfg.success_rate_step if adj.amount is None else adj.amount
            if kind is AdjustmentKind.BOOST_SUCCESS_RATE:
                rate = rate + rate_step * (1.0 - rate)
            elif kind is AdjustmentKind.PENALIZE_SUCCESS_RATE:
                rate = rate - rate_step * rate
            elif kind is AdjustmentKind.SHIFT_SUCCESS_RATE:
                rate = rate + rate_step
            else:
                rate = float(adj.amount)
            state.tool_success_rates[adj.target] = _clamp(rate, 0.0, 1.0)
            return

        if kind in (AdjustmentKind.SHIFT_KEYWORD_WEIGHT, AdjustmentKind.SET_KEYWORD_WEIGHT):
            if not adj.keyword or adj.amount is None:
                raise ValueError(f"Keyword adjustment needs a keyword and an amount: {adj}")
            weights = state.tool_keyword_weights.setdefault(adj.target, {})
            if kind is AdjustmentKind.SHIFT_KEYWORD_WEIGHT:
                weight = weights.get(adj.keyword, cfg.default_keyword_weight) + adj.amount
            else:
                weight = float(adj.amount)
            weights[adj.keyword] = _clamp(weight, cfg.keyword_weight_floor, cfg.keyword_weight_ceiling)
            return

        raise ValueError(f"Unsupported adjustment kind: {kind}")

    def snapshot(self, personality_id: str) -> Dict[str, Any]:
        """Adaptation-state report: learned values plus the defaults they override."""
        state = self.get_state(personality_id)
        report = state.to_dict()
        report["defaults"] = {
            "namespace_threshold": self.config.default_namespace_threshold,
            "tool_threshold": self.config.default_tool_threshold,
            "success_rate": self.config.default_success_rate,
            "keyword_weight": self.config.default_keyword_weight,
        }
        return report


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))

