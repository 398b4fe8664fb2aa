"""
Tests for dispatch/services/dispatcher.py.

End-to-end through the factory: every outcome returns a well-formed
DispatchResult and records exactly one Invocation.
"""
import threading

import pytest

from config.config import AppConfig, OrchestrationConfig
from dispatch.core.event import Event
from dispatch.core.exceptions import ReasoningServiceError, ReasoningTimeoutError
from dispatch.core.tool_call import ToolFailureType
from dispatch.factory import DispatcherFactory
from dispatch.infrastructure.memory_repositories import (
    InMemoryFeedbackRepository,
    InMemoryInvocationRepository,
    InMemoryPersonalityRepository,
)
from tests.fixtures.dispatch_data import (
    ScriptedReasoningService,
    TASK_UTTERANCE,
    TIMER_UTTERANCE,
    UNKNOWN_UTTERANCE,
    build_personality,
    text_response,
    tool_call_response,
)

CREATE_HANDLERS = {"task.create": lambda params: {"created": params["title"]}}


def _factory_with(personalities, namespace_repo, tool_repo, embeddings, script=()):
    return DispatcherFactory(
        config=AppConfig(),
        embeddings=embeddings,
        reasoning=ScriptedReasoningService(script),
        personalities=personalities,
        namespaces=namespace_repo,
        tools=tool_repo,
        invocations=InMemoryInvocationRepository(),
        feedback=InMemoryFeedbackRepository(),
        handlers=CREATE_HANDLERS,
    )


def _assert_well_formed(result, error_type):
    assert result.error_type == error_type
    assert result.has_error is (error_type is not None)
    assert result.invocation_id
    data = result.to_dict()
    assert data["error_type"] == error_type
    assert isinstance(data["tool_calls"], list)
    if not result.tool_calls:
        assert result.confidence == 0.0


class TestSuccess:
    def test_scenario_a_task_dispatch(self, make_factory, embeddings):
        factory = make_factory(script=[
            tool_call_response(("task.create", {"title": "buy milk"})),
            text_response("Added buy milk"),
        ], handlers=CREATE_HANDLERS)
        event = Event.create(TASK_UTTERANCE, turn_id="turn-1")

        result = factory.dispatcher.handle_event(event)

        _assert_well_formed(result, None)
        assert result.success
        assert result.selected_namespace == "task"
        assert result.llm_response == "Added buy milk"
        assert result.turns == 2
        assert result.tool_results[0].data == {"created": "buy milk"}
        assert embeddings.calls == [TASK_UTTERANCE]

        invocation = factory.recorder.get(result.invocation_id)
        assert invocation.correlation_id == event.correlation_id
        assert invocation.personality_id == "personality-1"
        assert invocation.namespace_scores["timer"] == pytest.approx(0.6)
        assert invocation.tools_available == ("task.create", "task.complete")
        assert invocation.tools_passed == ("task.create",)
        assert invocation.tools_filtered == ("task.complete",)
        assert invocation.tools_called == ("task.create",)
        assert invocation.turns == 2
        assert not invocation.has_error

    def test_confidence_matches_invocation(self, make_factory):
        factory = make_factory(script=[
            tool_call_response(("task.create", {"title": "buy milk"})),
            text_response("Added"),
        ], handlers=CREATE_HANDLERS)

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        invocation = factory.recorder.get(result.invocation_id)
        expected = invocation.tool_scores["task.create"]
        assert result.confidence == pytest.approx(expected)
        assert invocation.confidence == pytest.approx(expected)

    def test_only_eligible_tools_are_offered(self, make_factory):
        factory = make_factory(script=[text_response("Nothing to add")])

        factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        offered = [d["name"] for d in factory.reasoning.calls[0]["tool_defs"]]
        assert offered == ["task.create"]

    def test_text_answer_has_zero_confidence(self, make_factory):
        factory = make_factory(script=[text_response("Nothing to add")])

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        assert result.success
        assert result.tool_calls == []
        assert result.confidence == 0.0
        invocation = factory.recorder.get(result.invocation_id)
        assert invocation.confidence == pytest.approx(1.0)


class TestEarlyExits:
    def test_empty_input(self, make_factory, embeddings):
        factory = make_factory()

        result = factory.dispatcher.handle_event(Event.create("   "))

        _assert_well_formed(result, "empty_input")
        assert embeddings.calls == []
        assert factory.recorder.get(result.invocation_id).error_type == "empty_input"

    def test_missing_transcription_is_empty_input(self, make_factory):
        factory = make_factory()
        event = Event(correlation_id="corr-1", source="cli", payload={})

        result = factory.dispatcher.handle_event(event)

        _assert_well_formed(result, "empty_input")

    def test_no_personality(self, namespace_repo, tool_repo, embeddings):
        factory = _factory_with(InMemoryPersonalityRepository([]), namespace_repo, tool_repo, embeddings)

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        _assert_well_formed(result, "no_personality")
        assert embeddings.calls == []
        assert factory.recorder.get(result.invocation_id).personality_id is None

    def test_inactive_personality_does_not_count(self, namespace_repo, tool_repo, embeddings):
        repo = InMemoryPersonalityRepository([build_personality(is_active=False)])
        factory = _factory_with(repo, namespace_repo, tool_repo, embeddings)

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        _assert_well_formed(result, "no_personality")

    def test_no_namespace(self, make_factory):
        """CONTRACT: No match still records every namespace score and skips reasoning."""
        factory = make_factory()

        result = factory.dispatcher.handle_event(Event.create(UNKNOWN_UTTERANCE))

        _assert_well_formed(result, "no_namespace")
        assert result.selected_namespace is None
        assert factory.reasoning.calls == []
        invocation = factory.recorder.get(result.invocation_id)
        assert set(invocation.namespace_scores) == {"task", "timer"}
        assert invocation.error_type == "no_namespace"
        assert invocation.confidence == 0.0

    def test_no_tools(self, namespace_repo, tool_repo, embeddings):
        personality = build_personality({"task": 0.6, "timer": 0.7, "timer.set": 0.95})
        factory = _factory_with(InMemoryPersonalityRepository([personality]),
                                namespace_repo, tool_repo, embeddings)

        result = factory.dispatcher.handle_event(Event.create(TIMER_UTTERANCE))

        _assert_well_formed(result, "no_tools")
        assert result.selected_namespace == "timer"
        assert factory.reasoning.calls == []
        invocation = factory.recorder.get(result.invocation_id)
        assert invocation.tools_filtered == ("timer.set",)
        assert invocation.confidence == pytest.approx(1.0)


class TestLoopFailures:
    def test_llm_timeout(self, make_factory):
        factory = make_factory(script=[ReasoningTimeoutError("timed out")])

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        _assert_well_formed(result, "llm_timeout")
        assert result.selected_namespace == "task"
        assert result.turns == 1
        assert factory.recorder.get(result.invocation_id).error_type == "llm_timeout"

    def test_llm_error(self, make_factory):
        factory = make_factory(script=[ReasoningServiceError("HTTP 401")])

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        _assert_well_formed(result, "llm_error")
        assert "HTTP 401" in result.error

    def test_max_turns_exceeded(self, make_factory, app_config):
        config = app_config.model_copy(update={"orchestration": OrchestrationConfig(max_turns=2)})
        factory = make_factory(script=[
            tool_call_response(("task.create", {"title": "a"})),
            tool_call_response(("task.create", {"title": "b"})),
        ], handlers=CREATE_HANDLERS, config=config)

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        _assert_well_formed(result, "max_turns_exceeded")
        assert result.turns == 2
        assert len(result.tool_calls) == 2
        assert result.confidence > 0.0
        assert factory.recorder.get(result.invocation_id).tools_called == ("task.create", "task.create")

    def test_cancelled(self, make_factory):
        factory = make_factory(script=[text_response("unused")])
        cancel = threading.Event()
        cancel.set()

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE), cancel_event=cancel)

        _assert_well_formed(result, "cancelled")
        assert result.turns == 0

    def test_unexpected_fault_is_unknown_error(self, make_factory, embeddings):
        """CONTRACT: No exception escapes handle_event."""
        factory = make_factory()

        def explode(text):
            raise RuntimeError("model not loaded")

        embeddings.generate = explode

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        _assert_well_formed(result, "unknown_error")
        assert "model not loaded" in result.error
        invocation = factory.recorder.get(result.invocation_id)
        assert invocation.error_type == "unknown_error"
        assert invocation.personality_id == "personality-1"

    def test_recording_failure_turns_success_into_unknown_error(self, make_factory, monkeypatch):
        factory = make_factory(script=[text_response("ok")])

        def refuse(invocation):
            raise IOError("audit store offline")

        monkeypatch.setattr(factory.invocations, "save", refuse)

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        assert result.error_type == "unknown_error"
        assert "audit store offline" in result.error


class TestToolFailuresAndContext:
    def test_scenario_d_missing_slot_does_not_abort(self, make_factory):
        """CONTRACT: A missing slot is fed back to the reasoner; the dispatch still succeeds."""
        factory = make_factory(script=[
            tool_call_response(("timer.set", {"label": "tea"})),
            text_response("How long should the timer run?"),
        ])

        result = factory.dispatcher.handle_event(Event.create(TIMER_UTTERANCE))

        _assert_well_formed(result, None)
        failure = result.tool_results[0].failure
        assert failure.type is ToolFailureType.REQUIRED_SLOT_MISSING
        assert failure.slot_name == "duration"
        assert failure.slot_confidence == pytest.approx(result.tool_calls[0].confidence)
        assert result.llm_response == "How long should the timer run?"

    def test_unoffered_tool_failure_reaches_trainer(self, make_factory):
        """CONTRACT: A call outside the selected namespace becomes a learning signal too."""
        factory = make_factory(script=[
            tool_call_response(("timer.set", {"duration": "5m"})),
            text_response("I can only manage tasks here"),
        ])

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        assert result.tool_results[0].failure.type is ToolFailureType.TOOL_NOT_FOUND
        signal, = factory.trainer.execution_signals(failures_only=True)
        assert signal.tool_name == "timer.set"
        assert signal.failure_type is ToolFailureType.TOOL_NOT_FOUND
        assert signal.correlation_id == result.tool_calls[0].correlation_id

    def test_context_is_injected_and_counted(self, make_factory):
        factory = make_factory(
            script=[text_response("You already have eggs on the list")],
            context_providers={"task": lambda: {"tasks": [{"title": "eggs"}, {"title": "bread"}]}},
        )

        result = factory.dispatcher.handle_event(Event.create(TASK_UTTERANCE))

        assert result.assembled_context == {"tasks": [{"title": "eggs"}, {"title": "bread"}]}
        assert factory.recorder.get(result.invocation_id).context_item_counts == {"tasks": 2}
        system_prompt = factory.reasoning.calls[0]["messages"][0]["content"]
        assert '"eggs"' in system_prompt

    def test_each_event_records_one_invocation(self, make_factory):
        factory = make_factory(script=[text_response("ok")])
        events = [Event.create(TASK_UTTERANCE), Event.create(UNKNOWN_UTTERANCE), Event.create("")]

        for event in events:
            factory.dispatcher.handle_event(event)

        for event in events:
            assert len(factory.recorder.find_by_correlation_id(event.correlation_id)) == 1
