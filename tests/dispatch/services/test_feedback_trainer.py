"""
Tests for dispatch/services/feedback_trainer.py.

Each test dispatches a real event through the factory-built dispatcher, stores
feedback for its turn and trains from it, then reads the learned state back
through the attention store.
"""
import pytest

from dispatch.core.event import Event
from dispatch.core.exceptions import AttentionConflictError, VersionConflictError
from dispatch.core.feedback import Feedback
from dispatch.core.tool_call import ToolFailureType
from tests.fixtures.dispatch_data import (
    TASK_UTTERANCE,
    TIMER_UTTERANCE,
    text_response,
    tool_call_response,
)

PID = "personality-1"
TURN = "turn-1"


def _task_script():
    return [tool_call_response(("task.create", {"title": "buy milk"})), text_response("Added")]


@pytest.fixture
def factory(make_factory):
    return make_factory(script=_task_script(), handlers={"task.create": lambda p: {"created": p["title"]}})


def _dispatch(factory, utterance=TASK_UTTERANCE, turn_id=TURN):
    return factory.dispatcher.handle_event(Event.create(utterance, turn_id=turn_id))


def _feedback(factory, result, action, corrected=None, turn_id=TURN):
    factory.feedback.save(Feedback.create(result.invocation_id, turn_id, action, corrected))


class TestCorrections:
    def test_scenario_b_namespace_correction(self, factory):
        """CONTRACT: Selected task, corrected to timer -> task threshold up, timer threshold down."""
        result = _dispatch(factory)
        assert result.selected_namespace == "task"
        _feedback(factory, result, "correct", {"namespace": "timer"})

        report = factory.trainer.train_from_feedback(TURN)

        assert report.rows_applied == 1
        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.65)
        assert factory.store.get_threshold(PID, "timer") == pytest.approx(0.65)

    def test_correction_to_selected_namespace_only_lowers_it(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "correct", {"namespace": "task"})

        factory.trainer.train_from_feedback(TURN)

        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.55)
        assert factory.store.get_threshold(PID, "timer") == pytest.approx(0.7)

    def test_tool_correction(self, factory):
        """CONTRACT: The wrong tool is demoted and the corrected tool promoted."""
        result = _dispatch(factory)
        _feedback(factory, result, "correct", {"tool": "task.complete"})

        factory.trainer.train_from_feedback(TURN)

        store = factory.store
        assert store.get_threshold(PID, "task.create") == pytest.approx(0.55)
        assert store.get_threshold(PID, "task.complete") == pytest.approx(0.45)
        assert store.get_success_rate(PID, "task.create") == pytest.approx(0.4)
        assert store.get_success_rate(PID, "task.complete") == pytest.approx(0.6)
        assert store.get_keyword_weight(PID, "task.create", "milk") == pytest.approx(0.9)
        assert store.get_keyword_weight(PID, "task.complete", "milk") == pytest.approx(1.2)
        # same namespace: no namespace threshold movement
        assert store.get_threshold(PID, "task") == pytest.approx(0.6)

    def test_tool_correction_across_namespaces_moves_namespaces_too(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "correct", {"namespace": "timer", "tool": "set"})

        factory.trainer.train_from_feedback(TURN)

        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.65)
        assert factory.store.get_threshold(PID, "timer") == pytest.approx(0.65)
        assert factory.store.get_threshold(PID, "timer.set") == pytest.approx(0.45)

    def test_correction_without_target_is_treated_as_deny(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "correct", None)

        report = factory.trainer.train_from_feedback(TURN)

        assert report.rows_applied == 1
        assert factory.store.get_success_rate(PID, "task.create") == pytest.approx(0.45)
        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.6)


class TestConfirmDenyIgnore:
    def test_confirm_boosts_and_nudges_threshold(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "confirm")

        factory.trainer.train_from_feedback(TURN)

        assert factory.store.get_success_rate(PID, "task.create") == pytest.approx(0.55)
        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.59)

    def test_deny_penalizes(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "deny")

        factory.trainer.train_from_feedback(TURN)

        assert factory.store.get_success_rate(PID, "task.create") == pytest.approx(0.45)

    def test_ignore_changes_nothing(self, factory):
        result = _dispatch(factory)
        before = factory.store.get_state(PID)
        _feedback(factory, result, "ignore")

        report = factory.trainer.train_from_feedback(TURN)

        assert not report.changed
        assert report.rows_skipped == 1
        assert factory.store.get_state(PID).version == before.version


class TestTrainingRuns:
    def test_turn_without_feedback_is_a_noop(self, factory):
        """CONTRACT: Zero rows -> empty report and untouched state."""
        before = factory.store.get_state(PID)

        report = factory.trainer.train_from_feedback("turn-without-feedback")

        assert report.rows_seen == 0
        assert not report.changed
        assert factory.store.get_state(PID).to_dict() == before.to_dict()

    def test_unknown_invocation_is_skipped(self, factory):
        factory.feedback.save(Feedback.create("no-such-invocation", TURN, "deny"))

        report = factory.trainer.train_from_feedback(TURN)

        assert report.rows_seen == 1
        assert report.rows_skipped == 1
        assert factory.store.get_state(PID).version == 0

    def test_feedback_of_other_turns_is_ignored(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "deny", turn_id="turn-2")

        report = factory.trainer.train_from_feedback(TURN)

        assert report.rows_seen == 0

    def test_one_write_per_turn(self, make_factory):
        """CONTRACT: All rows of a turn land in a single versioned write."""
        factory = make_factory(script=_task_script() + _task_script(),
                               handlers={"task.create": lambda p: {"created": p["title"]}})
        first = _dispatch(factory)
        second = _dispatch(factory)
        _feedback(factory, first, "confirm")
        _feedback(factory, second, "confirm")

        report = factory.trainer.train_from_feedback(TURN)

        state = factory.store.get_state(PID)
        assert report.rows_applied == 2
        assert report.versions == {PID: 1}
        assert state.version == 1
        assert state.training_sample_count == 2
        assert state.last_trained_at is not None
        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.58)

    def test_training_compounds(self, factory):
        """CONTRACT: Training the same turn twice applies its adjustments twice."""
        result = _dispatch(factory)
        _feedback(factory, result, "correct", {"namespace": "timer"})

        factory.trainer.train_from_feedback(TURN)
        factory.trainer.train_from_feedback(TURN)

        assert factory.store.get_threshold(PID, "task") == pytest.approx(0.7)
        assert factory.store.get_threshold(PID, "timer") == pytest.approx(0.6)

    def test_persistent_conflict_surfaces(self, factory, personality_repo, monkeypatch):
        result = _dispatch(factory)
        _feedback(factory, result, "deny")

        def always_conflict(personality_id, expected_version, state):
            raise VersionConflictError(expected_version, expected_version + 1)

        monkeypatch.setattr(personality_repo, "save_attention", always_conflict)

        with pytest.raises(AttentionConflictError):
            factory.trainer.train_from_feedback(TURN)

        assert personality_repo.get(PID).attention.tool_success_rates == {}

    def test_learned_threshold_changes_the_next_decision(self, make_factory):
        """CONTRACT: Training output is read by the very next dispatch."""
        factory = make_factory(script=_task_script() + [text_response("Which task?")],
                               handlers={"task.create": lambda p: {"created": p["title"]}})
        first_result = _dispatch(factory)
        first = factory.recorder.get(first_result.invocation_id)
        assert first.tools_passed == ("task.create",)

        _feedback(factory, first_result, "correct", {"tool": "task.complete"})
        for _ in range(4):
            factory.trainer.train_from_feedback(TURN)

        second = factory.recorder.get(_dispatch(factory, turn_id="turn-2").invocation_id)

        assert second.tools_passed == ("task.complete",)
        assert second.tools_filtered == ("task.create",)


class TestExecutionSignals:
    def test_signals_are_collected_from_the_executor(self, make_factory):
        factory = make_factory(script=[
            tool_call_response(("timer.set", {"label": "tea"})),
            text_response("How long?"),
        ])

        result = _dispatch(factory, utterance=TIMER_UTTERANCE)

        failures = factory.trainer.execution_signals(failures_only=True)
        assert result.success
        assert len(failures) == 1
        assert failures[0].failure_type is ToolFailureType.REQUIRED_SLOT_MISSING
        assert failures[0].slot_name == "duration"
        invocation = factory.recorder.get(result.invocation_id)
        assert failures[0].confidence == pytest.approx(invocation.tool_scores["timer.set"])

    def test_adaptation_state_reports_learning_and_execution(self, factory):
        result = _dispatch(factory)
        _feedback(factory, result, "confirm")
        factory.trainer.train_from_feedback(TURN)

        state = factory.trainer.get_adaptation_state(PID)

        assert state["thresholds"]["task"] == pytest.approx(0.59)
        assert state["execution_stats"] == {"task.create": {"successes": 1, "failures": 0}}
        assert state["training_sample_count"] == 1

    def test_signal_filters(self, factory):
        _dispatch(factory)

        assert len(factory.trainer.execution_signals(tool_name="task.create")) == 1
        assert factory.trainer.execution_signals(tool_name="timer.set") == []
        assert factory.trainer.execution_signals(failures_only=True) == []
