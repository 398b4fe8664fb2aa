"""
Feedback trainer.

Turns user feedback on past dispatches into attention adjustments:

- correct (namespace): raise the threshold of the namespace that was selected,
  lower the threshold of the corrected namespace
- correct (tool): as above for the tool's namespace, plus raise thresholds,
  lower success rates and keyword weights of the wrongly called tools and the
  reverse for the corrected tool
- correct without a usable target: treated as deny
- confirm: boost called tools' success rates, nudge the namespace threshold down
- deny: penalize called tools' success rates
- ignore: nothing

All adjustments of one turn go through a single compare-and-swap write per
personality. Training is not idempotent: running it twice over the same turn
applies the adjustments twice.

The trainer is also the sink for tool-execution signals, which are kept for
inspection alongside the learned state.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from config.config import AttentionConfig, DecisionConfig
from dispatch.core.attention import Adjustment, AdjustmentKind
from dispatch.core.correction import NamespaceCorrection, ToolCorrection, UnspecifiedCorrection
from dispatch.core.feedback import DISPATCHER_COMPONENT, Feedback, FeedbackAction
from dispatch.core.interfaces import FeedbackRepository, InvocationRepository
from dispatch.core.invocation import Invocation
from dispatch.core.keywords import extract_keywords
from dispatch.core.tool_call import ExecutionSignal
from dispatch.services.attention_store import AttentionStore

logger = logging.getLogger(__name__)

MAX_SIGNALS = 1000


@dataclass
class TrainingReport:
    turn_id: str
    rows_seen: int = 0
    rows_applied: int = 0
    rows_skipped: int = 0
    adjustments: List[Adjustment] = field(default_factory=list)
    versions: Dict[str, int] = field(default_factory=dict)  # personality_id -> stored version

    @property
    def changed(self) -> bool:
        return bool(self.adjustments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "rows_seen": self.rows_seen,
            "rows_applied": self.rows_applied,
            "rows_skipped": self.rows_skipped,
            "adjustments": [adj.describe() for adj in self.adjustments],
            "versions": dict(self.versions),
        }


class FeedbackTrainer:
    """
    Applies feedback of a conversational turn to the attention store.

    Args:
        feedback: Feedback rows, queried by turn and component
        invocations: Audit records the feedback refers to
        store: Attention store performing the CAS writes
        attention_config: Step sizes for success rates and keyword weights
        decision_config: Keyword extraction settings
        component_type: Feedback component tag this trainer consumes
    """

    def __init__(
        self,
        feedback: FeedbackRepository,
        invocations: InvocationRepository,
        store: AttentionStore,
        attention_config: AttentionConfig,
        decision_config: DecisionConfig,
        component_type: str = DISPATCHER_COMPONENT
    ):
        self.feedback = feedback
        self.invocations = invocations
        self.store = store
        self.attention_config = attention_config
        self.decision_config = decision_config
        self.component_type = component_type

        self._signals: Deque[ExecutionSignal] = deque(maxlen=MAX_SIGNALS)
        self._signals_lock = threading.Lock()

    def train_from_feedback(self, turn_id: str) -> TrainingReport:
        """
        Train from every feedback row of a turn.

        Args:
            turn_id: Conversational turn whose feedback is applied

        Returns:
            TrainingReport listing the applied adjustments

        Raises:
            AttentionConflictError: The CAS write kept conflicting; nothing
                from this turn was stored
        """
        report = TrainingReport(turn_id=turn_id)
        rows = self.feedback.find_by_turn_and_component(turn_id, self.component_type)
        report.rows_seen = len(rows)

        if not rows:
            logger.debug(f"No feedback for turn {turn_id}")
            return report

        per_personality: Dict[str, List[Adjustment]] = {}
        samples: Dict[str, int] = {}

        for row in rows:
            invocation = self.invocations.get(row.invocation_id)
            if invocation is None:
                logger.warning(f"Feedback {row.id} references unknown invocation {row.invocation_id}")
                report.rows_skipped += 1
                continue
            if invocation.personality_id is None:
                logger.warning(f"Invocation {invocation.id} has no personality; feedback {row.id} skipped")
                report.rows_skipped += 1
                continue

            adjustments = self.plan(row, invocation)
            if not adjustments:
                report.rows_skipped += 1
                continue

            per_personality.setdefault(invocation.personality_id, []).extend(adjustments)
            samples[invocation.personality_id] = samples.get(invocation.personality_id, 0) + 1
            report.rows_applied += 1

        for personality_id, adjustments in per_personality.items():
            stored = self.store.apply_adjustments(
                personality_id, adjustments, training_samples=samples[personality_id]
            )
            report.adjustments.extend(adjustments)
            report.versions[personality_id] = stored.version

        logger.info(
            f"Trained from turn {turn_id}: {report.rows_applied}/{report.rows_seen} rows, "
            f"{len(report.adjustments)} adjustments"
        )
        return report

    def plan(self, row: Feedback, invocation: Invocation) -> List[Adjustment]:
        """Adjustments implied by one feedback row. Does not touch the store."""
        action = row.action

        if action is FeedbackAction.IGNORE:
            return []
        if action is FeedbackAction.CONFIRM:
            return self._plan_confirm(invocation)
        if action is FeedbackAction.DENY:
            return self._plan_deny(invocation)

        correction = row.correction
        if correction is None or isinstance(correction, UnspecifiedCorrection):
            logger.debug(f"Correction without target on {row.id}; treated as deny")
            return self._plan_deny(invocation)
        if isinstance(correction, NamespaceCorrection):
            return self._plan_namespace_correction(invocation, correction.namespace)
        if isinstance(correction, ToolCorrection):
            return self._plan_tool_correction(invocation, correction)

        raise ValueError(f"Unsupported correction type: {type(correction).__name__}")

    def _plan_confirm(self, invocation: Invocation) -> List[Adjustment]:
        adjustments = [
            Adjustment(AdjustmentKind.BOOST_SUCCESS_RATE, tool)
            for tool in _distinct(invocation.tools_called)
        ]
        if invocation.selected_namespace:
            adjustments.append(Adjustment(
                AdjustmentKind.LOWER_THRESHOLD,
                invocation.selected_namespace,
                amount=self.attention_config.confirm_threshold_step,
            ))
        return adjustments

    def _plan_deny(self, invocation: Invocation) -> List[Adjustment]:
        return [
            Adjustment(AdjustmentKind.PENALIZE_SUCCESS_RATE, tool)
            for tool in _distinct(invocation.tools_called)
        ]

    def _plan_namespace_correction(self, invocation: Invocation, correct_namespace: str) -> List[Adjustment]:
        adjustments = []
        selected = invocation.selected_namespace
        if selected is not None and selected != correct_namespace:
            adjustments.append(Adjustment(AdjustmentKind.RAISE_THRESHOLD, selected))
        adjustments.append(Adjustment(AdjustmentKind.LOWER_THRESHOLD, correct_namespace))
        return adjustments

    def _plan_tool_correction(self, invocation: Invocation, correction: ToolCorrection) -> List[Adjustment]:
        cfg = self.attention_config
        correct_tool = correction.tool
        adjustments: List[Adjustment] = []

        if invocation.selected_namespace != correction.namespace:
            adjustments.extend(self._plan_namespace_correction(invocation, correction.namespace))

        keywords = extract_keywords(invocation.utterance, self.decision_config.min_keyword_length)
        wrong_tools = [tool for tool in _distinct(invocation.tools_called) if tool != correct_tool]

        for tool in wrong_tools:
            adjustments.append(Adjustment(AdjustmentKind.RAISE_THRESHOLD, tool))
            adjustments.append(Adjustment(
                AdjustmentKind.SHIFT_SUCCESS_RATE, tool, amount=-cfg.success_rate_step
            ))
            adjustments.extend(
                Adjustment(AdjustmentKind.SHIFT_KEYWORD_WEIGHT, tool,
                           amount=-cfg.keyword_penalty, keyword=kw)
                for kw in keywords
            )

        adjustments.append(Adjustment(AdjustmentKind.LOWER_THRESHOLD, correct_tool))
        adjustments.append(Adjustment(
            AdjustmentKind.SHIFT_SUCCESS_RATE, correct_tool, amount=cfg.success_rate_step
        ))
        adjustments.extend(
            Adjustment(AdjustmentKind.SHIFT_KEYWORD_WEIGHT, correct_tool,
                       amount=cfg.keyword_boost, keyword=kw)
            for kw in keywords
        )
        return adjustments

    # Execution signals

    def record_success(self, signal: ExecutionSignal) -> None:
        with self._signals_lock:
            self._signals.append(signal)
        logger.debug(f"Tool {signal.tool_name} succeeded (call {signal.call_id})")

    def record_failure(self, signal: ExecutionSignal) -> None:
        with self._signals_lock:
            self._signals.append(signal)
        slot = f" slot={signal.slot_name}" if signal.slot_name else ""
        logger.info(
            f"Tool {signal.tool_name} failed: {signal.failure_type.value if signal.failure_type else 'unknown'}"
            f"{slot} confidence={signal.confidence}"
        )

    def execution_signals(self, tool_name: Optional[str] = None,
                          failures_only: bool = False) -> List[ExecutionSignal]:
        with self._signals_lock:
            signals = list(self._signals)
        if tool_name is not None:
            signals = [s for s in signals if s.tool_name == tool_name]
        if failures_only:
            signals = [s for s in signals if not s.success]
        return signals

    def get_adaptation_state(self, personality_id: str) -> Dict[str, Any]:
        """Learned attention state plus execution statistics per tool."""
        state = self.store.snapshot(personality_id)
        stats: Dict[str, Dict[str, int]] = {}
        for signal in self.execution_signals():
            entry = stats.setdefault(signal.tool_name, {"successes": 0, "failures": 0})
            entry["successes" if signal.success else "failures"] += 1
        state["execution_stats"] = stats
        return state


def _distinct(names) -> List[str]:
    seen: List[str] = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen
