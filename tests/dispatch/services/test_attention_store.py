"""
Tests for dispatch/services/attention_store.py.

Covers threshold movement and bounds, success-rate and keyword-weight updates,
and the compare-and-swap write with retry and conflict reporting.
"""
import pytest

from config.config import AttentionConfig
from dispatch.core.attention import Adjustment, AdjustmentKind
from dispatch.core.exceptions import AttentionConflictError, VersionConflictError
from dispatch.infrastructure.memory_repositories import InMemoryPersonalityRepository
from dispatch.services.attention_store import AttentionStore
from tests.fixtures.dispatch_data import build_personality

PID = "personality-1"


@pytest.fixture
def store(personality_repo):
    return AttentionStore(personality_repo, AttentionConfig())


class RacingPersonalityRepository(InMemoryPersonalityRepository):
    """Lets another writer sneak in before the first N save_attention calls."""

    def __init__(self, personalities, races: int, adjustment: Adjustment, store_config: AttentionConfig):
        super().__init__(personalities)
        self.races = races
        self.attempts = 0
        self._rival = AttentionStore(self, store_config)
        self._rival_adjustment = adjustment

    def save_attention(self, personality_id, expected_version, state):
        self.attempts += 1
        if self.races > 0:
            self.races -= 1
            current = self.get(personality_id).attention
            rival_state = self._rival.apply_to_state(current, [self._rival_adjustment])
            super().save_attention(personality_id, current.version, rival_state)
        return super().save_attention(personality_id, expected_version, state)


class TestThresholds:
    def test_get_threshold_defaults(self, store):
        """CONTRACT: Unknown namespaces default to 0.6, unknown tools to 0.5."""
        assert store.get_threshold(PID, "weather") == 0.6
        assert store.get_threshold(PID, "weather.forecast") == 0.5

    def test_get_threshold_reads_stored_value(self, store):
        assert store.get_threshold(PID, "timer") == 0.7

    @pytest.mark.parametrize("start", [0.05, 0.3, 0.5, 0.6, 0.9, 0.95])
    def test_raise_moves_strictly_up(self, start):
        """CONTRACT: raise_threshold increases any threshold inside the bounds."""
        repo = InMemoryPersonalityRepository([build_personality({"task": start})])
        store = AttentionStore(repo, AttentionConfig())

        assert store.raise_threshold(PID, "task") > start

    @pytest.mark.parametrize("start", [0.05, 0.3, 0.5, 0.6, 0.9, 0.95])
    def test_lower_moves_strictly_down(self, start):
        """CONTRACT: lower_threshold decreases any threshold inside the bounds."""
        repo = InMemoryPersonalityRepository([build_personality({"task": start})])
        store = AttentionStore(repo, AttentionConfig())

        assert store.lower_threshold(PID, "task") < start

    def test_step_is_fixed(self, store):
        assert store.raise_threshold(PID, "task") == pytest.approx(0.65)
        assert store.lower_threshold(PID, "timer") == pytest.approx(0.65)

    def test_thresholds_saturate_at_bounds(self):
        """CONTRACT: Thresholds are clamped to [0, 1]."""
        repo = InMemoryPersonalityRepository([build_personality({"high": 0.98, "low": 0.02})])
        store = AttentionStore(repo, AttentionConfig())

        assert store.raise_threshold(PID, "high") == 1.0
        assert store.raise_threshold(PID, "high") == 1.0
        assert store.lower_threshold(PID, "low") == 0.0

    def test_out_of_range_values_never_move_backwards(self):
        """CONTRACT: A stored value beyond the bounds is never pulled the wrong way."""
        repo = InMemoryPersonalityRepository([build_personality({"task": 1.2, "timer": -0.1})])
        store = AttentionStore(repo, AttentionConfig())

        assert store.raise_threshold(PID, "task") == 1.2
        assert store.lower_threshold(PID, "timer") == -0.1
        assert store.lower_threshold(PID, "task") == pytest.approx(1.15)
        assert store.raise_threshold(PID, "timer") == pytest.approx(-0.05)

    def test_raise_from_default_stores_value(self, store):
        assert store.raise_threshold(PID, "weather") == pytest.approx(0.65)
        assert store.get_state(PID).thresholds["weather"] == pytest.approx(0.65)


class TestRatesAndWeights:
    def test_set_success_rate(self, store):
        assert store.set_success_rate(PID, "task.create", 0.8) == 0.8
        assert store.get_success_rate(PID, "task.create") == 0.8

    def test_success_rate_defaults(self, store):
        assert store.get_success_rate(PID, "task.create") == 0.5

    def test_set_keyword_weight(self, store):
        store.set_keyword_weight(PID, "task.create", "milk", 2.5)

        assert store.get_keyword_weight(PID, "task.create", "milk") == 2.5
        assert store.get_keyword_weight(PID, "task.create", "eggs") == 1.0

    def test_keyword_weight_is_clamped(self, store):
        assert store.set_keyword_weight(PID, "task.create", "milk", 50.0) == 5.0
        assert store.set_keyword_weight(PID, "task.create", "milk", -3.0) == 0.1

    def test_boost_and_penalize_are_proportional(self, store):
        """CONTRACT: boost r + 0.1 * (1 - r), penalize r - 0.1 * r."""
        store.apply_adjustments(PID, [Adjustment(AdjustmentKind.BOOST_SUCCESS_RATE, "task.create")])
        assert store.get_success_rate(PID, "task.create") == pytest.approx(0.55)

        store.apply_adjustments(PID, [Adjustment(AdjustmentKind.PENALIZE_SUCCESS_RATE, "task.create")])
        assert store.get_success_rate(PID, "task.create") == pytest.approx(0.495)

    def test_shift_success_rate_is_clamped(self, store):
        store.set_success_rate(PID, "task.create", 0.95)

        store.apply_adjustments(PID, [Adjustment(AdjustmentKind.SHIFT_SUCCESS_RATE, "task.create", amount=0.1)])

        assert store.get_success_rate(PID, "task.create") == 1.0


class TestCompareAndSwap:
    def test_every_write_increments_version(self, store):
        start = store.get_state(PID).version

        store.raise_threshold(PID, "task")
        store.lower_threshold(PID, "timer")

        assert store.get_state(PID).version == start + 2

    def test_batch_is_one_write(self, store):
        start = store.get_state(PID).version

        store.apply_adjustments(PID, [
            Adjustment(AdjustmentKind.RAISE_THRESHOLD, "task"),
            Adjustment(AdjustmentKind.LOWER_THRESHOLD, "timer"),
            Adjustment(AdjustmentKind.BOOST_SUCCESS_RATE, "timer.set"),
        ])

        assert store.get_state(PID).version == start + 1

    def test_empty_batch_writes_nothing(self, store):
        before = store.get_state(PID)

        after = store.apply_adjustments(PID, [])

        assert after.version == before.version
        assert after.to_dict() == before.to_dict()

    def test_repository_rejects_stale_version(self, personality_repo):
        """CONTRACT: save_attention only succeeds against the current version."""
        state = personality_repo.get(PID).attention

        personality_repo.save_attention(PID, state.version, state)

        with pytest.raises(VersionConflictError):
            personality_repo.save_attention(PID, state.version, state)

    def test_conflict_is_retried_on_fresh_state(self):
        """CONTRACT: A racing write is not lost; our adjustment is re-applied on top of it."""
        config = AttentionConfig()
        rival = Adjustment(AdjustmentKind.LOWER_THRESHOLD, "timer")
        repo = RacingPersonalityRepository([build_personality()], races=1, adjustment=rival,
                                           store_config=config)
        store = AttentionStore(repo, config)

        store.raise_threshold(PID, "task")

        state = repo.get(PID).attention
        assert state.thresholds["task"] == pytest.approx(0.65)
        assert state.thresholds["timer"] == pytest.approx(0.65)
        assert repo.attempts == 2

    def test_conflict_surfaces_after_retries(self):
        """CONTRACT: Persistent conflicts raise AttentionConflictError instead of dropping the update."""
        config = AttentionConfig(cas_max_retries=2)
        rival = Adjustment(AdjustmentKind.LOWER_THRESHOLD, "timer")
        repo = RacingPersonalityRepository([build_personality()], races=10, adjustment=rival,
                                           store_config=config)
        store = AttentionStore(repo, config)

        with pytest.raises(AttentionConflictError) as exc_info:
            store.raise_threshold(PID, "task")

        assert exc_info.value.attempts == 3
        assert repo.get(PID).attention.thresholds["task"] == 0.6

    def test_unknown_personality_raises(self, store):
        with pytest.raises(KeyError):
            store.raise_threshold("missing", "task")

    def test_reads_return_copies(self, store, personality_repo):
        state = store.get_state(PID)
        state.thresholds["task"] = 0.01

        assert personality_repo.get(PID).attention.thresholds["task"] == 0.6


class TestSnapshot:
    def test_snapshot_reports_defaults_and_learned_values(self, store):
        store.raise_threshold(PID, "task")

        snapshot = store.snapshot(PID)

        assert snapshot["thresholds"]["task"] == pytest.approx(0.65)
        assert snapshot["defaults"]["namespace_threshold"] == 0.6
        assert snapshot["defaults"]["tool_threshold"] == 0.5
