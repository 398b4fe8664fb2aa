"""
Learned attention state embedded in a Personality.

Holds everything the dispatcher learns from feedback:
- thresholds keyed by name (namespace names and tool full names share one map;
  tool full names always contain a ".")
- per-tool success rates
- per-tool keyword weight overrides

The state is a plain value: the attention store copies it, applies a batch of
Adjustments to the copy and writes it back with a version check. Nothing else
mutates a stored state in place.
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from utils.timezone_utils import utc_now, format_utc_iso, parse_utc_iso


class AdjustmentKind(str, Enum):
    RAISE_THRESHOLD = "raise_threshold"
    LOWER_THRESHOLD = "lower_threshold"
    BOOST_SUCCESS_RATE = "boost_success_rate"
    PENALIZE_SUCCESS_RATE = "penalize_success_rate"
    SHIFT_SUCCESS_RATE = "shift_success_rate"
    SET_SUCCESS_RATE = "set_success_rate"
    SHIFT_KEYWORD_WEIGHT = "shift_keyword_weight"
    SET_KEYWORD_WEIGHT = "set_keyword_weight"


@dataclass(frozen=True)
class Adjustment:
    """
    One discrete learning step against the attention state.

    ``amount`` is a step size for RAISE/LOWER (None = configured default),
    a signed delta for SHIFT_*, or the absolute value for SET_*.
    """
    kind: AdjustmentKind
    target: str
    amount: Optional[float] = None
    keyword: Optional[str] = None

    def describe(self) -> str:
        suffix = f"[{self.keyword}]" if self.keyword else ""
        amount = "" if self.amount is None else f" {self.amount:+.3f}"
        return f"{self.kind.value} {self.target}{suffix}{amount}"


@dataclass
class AttentionState:
    """Per-personality learned thresholds, success rates and keyword weights."""
    thresholds: Dict[str, float] = field(default_factory=dict)
    tool_success_rates: Dict[str, float] = field(default_factory=dict)
    tool_keyword_weights: Dict[str, Dict[str, float]] = field(default_factory=dict)
    version: int = 0
    training_sample_count: int = 0
    last_trained_at: Optional[datetime] = None

    def get_threshold(self, name: str, default: float) -> float:
        return self.thresholds.get(name, default)

    def get_success_rate(self, tool: str, default: float) -> float:
        return self.tool_success_rates.get(tool, default)

    def get_keyword_weight(self, tool: str, keyword: str, default: float) -> float:
        return self.tool_keyword_weights.get(tool, {}).get(keyword, default)

    def copy(self) -> "AttentionState":
        return copy.deepcopy(self)

    def record_training(self, samples: int = 1) -> None:
        self.training_sample_count += samples
        self.last_trained_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thresholds": dict(self.thresholds),
            "tool_success_rates": dict(self.tool_success_rates),
            "tool_keyword_weights": {
                tool: dict(weights) for tool, weights in self.tool_keyword_weights.items()
            },
            "version": self.version,
            "training_sample_count": self.training_sample_count,
            "last_trained_at": format_utc_iso(self.last_trained_at) if self.last_trained_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttentionState":
        last_trained = data.get("last_trained_at")
        return cls(
            thresholds={k: float(v) for k, v in data.get("thresholds", {}).items()},
            tool_success_rates={k: float(v) for k, v in data.get("tool_success_rates", {}).items()},
            tool_keyword_weights={
                tool: {kw: float(w) for kw, w in weights.items()}
                for tool, weights in data.get("tool_keyword_weights", {}).items()
            },
            version=int(data.get("version", 0)),
            training_sample_count=int(data.get("training_sample_count", 0)),
            last_trained_at=parse_utc_iso(last_trained) if last_trained else None,
        )


def describe_adjustments(adjustments: Iterable[Adjustment]) -> str:
    return ", ".join(adj.describe() for adj in adjustments)
