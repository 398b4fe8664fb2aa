"""
Semantic dispatcher: the boundary the wider pipeline talks to.

handle_event() runs one event through the whole flow:

    validate -> embed -> select namespace -> select tools -> inject context
    -> orchestration loop -> record invocation -> DispatchResult

Every path records exactly one Invocation and returns a DispatchResult. No
exception escapes handle_event(); unexpected faults become ``unknown_error``.
"""
import logging
import threading
from typing import Optional

from dispatch.core.event import Event
from dispatch.core.interfaces import (
    EmbeddingProvider,
    NamespaceRepository,
    PersonalityRepository,
    ToolRepository,
)
from dispatch.core.result import DispatchResult, ErrorType
from dispatch.services.context_injector import ContextInjector
from dispatch.services.decision_engine import DecisionEngine
from dispatch.services.invocation_recorder import InvocationDraft, InvocationRecorder
from dispatch.services.orchestration_loop import OrchestrationLoop

logger = logging.getLogger(__name__)


class SemanticDispatcher:
    """
    Coordinates decision, orchestration and recording for each event.

    All collaborators are injected; see dispatch.factory for wiring.
    """

    def __init__(
        self,
        personalities: PersonalityRepository,
        namespaces: NamespaceRepository,
        tools: ToolRepository,
        embeddings: EmbeddingProvider,
        engine: DecisionEngine,
        loop: OrchestrationLoop,
        recorder: InvocationRecorder,
        context: Optional[ContextInjector] = None
    ):
        self.personalities = personalities
        self.namespaces = namespaces
        self.tools = tools
        self.embeddings = embeddings
        self.engine = engine
        self.loop = loop
        self.recorder = recorder
        self.context = context or ContextInjector()

    def handle_event(self, event: Event, cancel_event: Optional[threading.Event] = None) -> DispatchResult:
        """
        Dispatch one event.

        Args:
            event: Event whose payload carries the ``transcription``
            cancel_event: Optional cooperative cancellation flag, observed
                between orchestration turns

        Returns:
            DispatchResult; ``error_type`` is None on success
        """
        draft = self.recorder.begin(event)
        try:
            result = self._handle(event, draft, cancel_event)
        except Exception as e:
            logger.exception(f"Unexpected error dispatching {event.correlation_id}")
            draft.fail(ErrorType.UNKNOWN_ERROR, str(e) or type(e).__name__)
            result = DispatchResult.failed(
                draft.id, ErrorType.UNKNOWN_ERROR, draft.error_message,
                selected_namespace=draft.selected_namespace,
            )

        try:
            self.recorder.record(draft)
        except Exception as e:
            logger.exception(f"Failed to record invocation {draft.id}")
            if not result.has_error:
                result = DispatchResult.failed(
                    draft.id, ErrorType.UNKNOWN_ERROR, f"Invocation not recorded: {e}",
                    selected_namespace=result.selected_namespace,
                    tool_calls=result.tool_calls,
                    tool_results=result.tool_results,
                    turns=result.turns,
                )
        return result

    def _handle(self, event: Event, draft: InvocationDraft,
                cancel_event: Optional[threading.Event]) -> DispatchResult:
        utterance = event.transcription.strip()
        if not utterance:
            draft.fail(ErrorType.EMPTY_INPUT, "Empty utterance")
            return DispatchResult.failed(draft.id, ErrorType.EMPTY_INPUT, draft.error_message)

        personality = self.personalities.get_active()
        if personality is None:
            draft.fail(ErrorType.NO_PERSONALITY, "No active personality")
            return DispatchResult.failed(draft.id, ErrorType.NO_PERSONALITY, draft.error_message)
        draft.personality_id = personality.id
        attention = personality.attention

        embedding = self.embeddings.generate(utterance)
        draft.set_embedding(embedding)

        decision = self.engine.decide(
            embedding,
            self.namespaces.find_all(),
            self.tools.find_by_namespace,
            attention,
            utterance,
        )
        draft.namespace_scores = dict(decision.namespace.scores)
        if decision.error_type == ErrorType.NO_NAMESPACE:
            draft.fail(ErrorType.NO_NAMESPACE, "No namespace reached its threshold")
            return DispatchResult.failed(draft.id, ErrorType.NO_NAMESPACE, draft.error_message)

        namespace = decision.namespace.selected
        draft.selected_namespace = namespace
        draft.namespace_similarity = decision.namespace.similarity

        tool_selection = decision.tools
        draft.tool_scores = dict(tool_selection.scores)
        draft.tools_available = list(tool_selection.available)
        draft.tools_passed = tool_selection.passed_names
        draft.tools_filtered = list(tool_selection.filtered)
        if decision.error_type == ErrorType.NO_TOOLS:
            draft.fail(ErrorType.NO_TOOLS, f"No tool in {namespace} reached its threshold")
            return DispatchResult.failed(
                draft.id, ErrorType.NO_TOOLS, draft.error_message, selected_namespace=namespace
            )

        context = self.context.inject(namespace)
        draft.context_item_counts = self.context.item_counts(context)

        messages = self.loop.build_messages(personality, utterance, self.context.render(context))
        outcome = self.loop.run(
            personality,
            messages,
            tool_selection.passed,
            tool_scores=tool_selection.scores,
            correlation_id=event.correlation_id,
            cancel_event=cancel_event,
        )
        draft.tools_called = [call.tool_name for call in outcome.tool_calls]
        draft.turns = outcome.turns

        if not outcome.success:
            draft.fail(outcome.failure_kind, outcome.failure_message)
            return DispatchResult.failed(
                draft.id,
                outcome.failure_kind,
                outcome.failure_message,
                selected_namespace=namespace,
                tool_calls=outcome.tool_calls,
                tool_results=outcome.tool_results,
                turns=outcome.turns,
            )

        return DispatchResult.succeeded(
            invocation_id=draft.id,
            selected_namespace=namespace,
            tool_calls=outcome.tool_calls,
            tool_results=outcome.tool_results,
            llm_response=outcome.response,
            turns=outcome.turns,
            assembled_context=context,
        )
