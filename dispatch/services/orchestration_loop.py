"""
Bounded tool-calling loop.

State machine driven once per dispatched event:

    Running(turn) --tool calls--> Running(turn + 1)
    Running(turn) --text answer--> Succeeded(response)
    Running(turn) --turn budget spent--> Failed(max_turns_exceeded)
    Running(turn) --reasoning timeout/error--> Failed(llm_timeout | llm_error)
    Running(turn) --cancel set between turns--> Failed(cancelled)

Per-call tool failures never leave Running: they are appended to the history as
tool messages so the reasoning service can recover within the remaining turns.
"""
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from config.config import OrchestrationConfig
from dispatch.core.exceptions import ReasoningServiceError, ReasoningTimeoutError
from dispatch.core.interfaces import ExecutionSignalSink, ReasoningResponse, ReasoningService, ToolExecutor
from dispatch.core.namespace import Tool
from dispatch.core.personality import Personality
from dispatch.core.result import ErrorType
from dispatch.core.tool_call import ExecutionSignal, ToolCall, ToolFailure, ToolFailureType, ToolResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Running:
    turn: int


@dataclass(frozen=True)
class Succeeded:
    response: Optional[str]
    turns: int


@dataclass(frozen=True)
class Failed:
    reason: str
    message: str
    turns: int


LoopState = Union[Running, Succeeded, Failed]


@dataclass
class OrchestrationOutcome:
    """Everything the loop produced, in call order."""
    final_state: Union[Succeeded, Failed]
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def success(self) -> bool:
        return isinstance(self.final_state, Succeeded)

    @property
    def turns(self) -> int:
        return self.final_state.turns

    @property
    def response(self) -> Optional[str]:
        return self.final_state.response if isinstance(self.final_state, Succeeded) else None

    @property
    def failure_kind(self) -> Optional[str]:
        return self.final_state.reason if isinstance(self.final_state, Failed) else None

    @property
    def failure_message(self) -> Optional[str]:
        return self.final_state.message if isinstance(self.final_state, Failed) else None


class OrchestrationLoop:
    """
    Drives the reasoning service and the tool executor for one event.

    Args:
        reasoning: Reasoning service used for every turn
        executor: Executes the tool calls of a turn
        config: Turn budget
        signals: Receives failures for calls the loop answers itself
    """

    def __init__(self, reasoning: ReasoningService, executor: ToolExecutor, config: OrchestrationConfig,
                 signals: Optional[ExecutionSignalSink] = None):
        self.reasoning = reasoning
        self.executor = executor
        self.config = config
        self.signals = signals

    def build_messages(self, personality: Personality, utterance: str,
                       context: Optional[str] = None) -> List[Dict[str, Any]]:
        system_prompt = personality.system_prompt
        if context:
            system_prompt = f"{system_prompt}\n\n{context}"
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": personality.render_user_prompt(utterance)},
        ]

    def run(
        self,
        personality: Personality,
        messages: List[Dict[str, Any]],
        tools: Sequence[Tool],
        tool_scores: Optional[Dict[str, float]] = None,
        correlation_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> OrchestrationOutcome:
        """
        Run the loop until a final answer, a failure or the turn budget.

        Args:
            personality: Supplies model, temperature and max tokens
            messages: Initial history (system + user)
            tools: Eligible tools offered to the reasoning service
            tool_scores: Combined selection scores, used as call confidence
            correlation_id: Propagated onto every ToolCall
            cancel_event: Checked between turns; set it to stop early

        Returns:
            OrchestrationOutcome whose final_state is Succeeded or Failed
        """
        history = list(messages)
        tool_defs = [tool.definition() for tool in tools]
        offered = {tool.full_name for tool in tools}
        scores = tool_scores or {}
        max_turns = self.config.max_turns

        outcome = OrchestrationOutcome(final_state=Failed(ErrorType.UNKNOWN_ERROR, "not started", 0))
        state: LoopState = Running(turn=1)

        while isinstance(state, Running):
            turn = state.turn

            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Orchestration cancelled before turn {turn}")
                state = Failed(ErrorType.CANCELLED, "Request cancelled", turn - 1)
                break

            try:
                response = self.reasoning.converse(
                    personality.base_model,
                    history,
                    tool_defs,
                    personality.temperature,
                    personality.max_tokens,
                )
            except ReasoningTimeoutError as e:
                logger.warning(f"Reasoning service timed out on turn {turn}: {e}")
                state = Failed(ErrorType.LLM_TIMEOUT, str(e), turn)
                break
            except ReasoningServiceError as e:
                logger.error(f"Reasoning service failed on turn {turn}: {e}")
                state = Failed(ErrorType.LLM_ERROR, str(e), turn)
                break

            outcome.tokens_used += response.tokens_used

            if not response.has_tool_calls:
                logger.info(f"Final answer after {turn} turn(s)")
                history.append({"role": "assistant", "content": response.content or ""})
                state = Succeeded(response=response.content, turns=turn)
                break

            calls = self._to_tool_calls(response, scores, correlation_id)
            results = self._execute(calls, offered)

            history.append(self._assistant_message(response, calls))
            for call, result in zip(calls, results):
                history.append({
                    "role": "tool",
                    "tool_call_id": call.call_id,
                    "content": result.as_message_content(),
                })
            outcome.tool_calls.extend(calls)
            outcome.tool_results.extend(results)

            failed = [r.tool_name for r in results if not r.success]
            logger.info(f"Turn {turn}: {len(calls)} tool call(s), failed: {failed}")

            if turn >= max_turns:
                state = Failed(
                    ErrorType.MAX_TURNS_EXCEEDED,
                    f"No final answer within {max_turns} turns",
                    max_turns,
                )
            else:
                state = Running(turn=turn + 1)

        outcome.final_state = state
        outcome.messages = history
        return outcome

    def _to_tool_calls(self, response: ReasoningResponse, scores: Dict[str, float],
                       correlation_id: Optional[str]) -> List[ToolCall]:
        return [
            ToolCall(
                call_id=rc.id,
                tool_name=rc.name,
                params=dict(rc.arguments),
                confidence=scores.get(rc.name, 0.0),
                correlation_id=correlation_id,
            )
            for rc in response.tool_calls
        ]

    def _execute(self, calls: List[ToolCall], offered: set) -> List[ToolResult]:
        """
        Execute offered calls and return results in call order.

        Calls naming a tool that was not offered are answered with toolNotFound
        without reaching the executor; the failure still goes to the signal sink.
        """
        results_by_id: Dict[str, ToolResult] = {}
        runnable = []
        for call in calls:
            if call.tool_name in offered:
                runnable.append(call)
            else:
                logger.warning(f"Reasoning service called unoffered tool {call.tool_name}")
                result = ToolResult.failed(call, ToolFailure(
                    type=ToolFailureType.TOOL_NOT_FOUND,
                    message=f"Tool {call.tool_name} is not available",
                ))
                results_by_id[call.call_id] = result
                self._report_failure(call, result)

        if runnable:
            for result in self.executor.execute_tool_calls(runnable):
                results_by_id[result.call_id] = result

        missing = [call.call_id for call in calls if call.call_id not in results_by_id]
        if missing:
            raise RuntimeError(f"Tool executor returned no result for call(s) {missing}")

        return [results_by_id[call.call_id] for call in calls]

    def _report_failure(self, call: ToolCall, result: ToolResult) -> None:
        if self.signals is None:
            return
        try:
            self.signals.record_failure(ExecutionSignal.from_result(call, result))
        except Exception:
            logger.exception(f"Failed to report execution signal for {call.tool_name}")

    def _assistant_message(self, response: ReasoningResponse, calls: List[ToolCall]) -> Dict[str, Any]:
        return {
            "role": "assistant",
            "content": response.content,
            "tool_calls": [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {"name": call.tool_name, "arguments": json.dumps(call.params)},
                }
                for call in calls
            ],
        }
