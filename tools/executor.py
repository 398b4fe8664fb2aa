"""
Local tool executor.

Runs tool calls against in-process handlers. Each call goes through:

1. tool lookup               -> toolNotFound
2. required slots present    -> requiredSlotMissing (slot name + call confidence)
3. slot formats              -> invalidSlotFormat
4. handler lookup            -> toolNotFound
5. handler invocation        -> ambiguousEntity / entityNotFound / toolReturnedFailure

Every outcome, success or failure, is reported to the signal sink. Sibling
calls run concurrently on a thread pool; results come back in call order and
carry their call_id.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from dispatch.core.interfaces import ExecutionSignalSink, ToolRepository
from dispatch.core.tool_call import ExecutionSignal, ToolCall, ToolFailure, ToolFailureType, ToolResult
from tools.base import AmbiguousEntityError, EntityNotFoundError, ToolHandler, ToolOutcome
from tools.slot_validator import SlotTypeValidator

logger = logging.getLogger(__name__)


class LocalToolExecutor:
    """
    Args:
        tools: Tool definitions (schemas) by full name
        handlers: Full tool name -> handler
        signals: Receives an ExecutionSignal for every executed call
        max_workers: Thread pool size for sibling calls
    """

    def __init__(
        self,
        tools: ToolRepository,
        handlers: Optional[Dict[str, ToolHandler]] = None,
        signals: Optional[ExecutionSignalSink] = None,
        max_workers: int = 4
    ):
        self.tools = tools
        self.handlers: Dict[str, ToolHandler] = dict(handlers or {})
        self.signals = signals
        self.max_workers = max_workers

    def register_handler(self, full_name: str, handler: ToolHandler) -> None:
        self.handlers[full_name] = handler

    def execute_tool_calls(self, calls: List[ToolCall]) -> List[ToolResult]:
        """Execute calls concurrently; one result per call, in call order."""
        if not calls:
            return []
        if len(calls) == 1:
            return [self.execute(calls[0])]

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(calls))) as pool:
            return list(pool.map(self.execute, calls))

    def execute(self, call: ToolCall) -> ToolResult:
        result = self._execute(call)
        self._report(call, result)
        return result

    def _execute(self, call: ToolCall) -> ToolResult:
        tool = self.tools.get(call.tool_name)
        if tool is None:
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.TOOL_NOT_FOUND,
                message=f'Tool "{call.tool_name}" not found in registry',
            ))

        for slot_name in tool.required_parameters:
            if call.params.get(slot_name) is None:
                return ToolResult.failed(call, ToolFailure(
                    type=ToolFailureType.REQUIRED_SLOT_MISSING,
                    message=f'Required slot "{slot_name}" is missing',
                    slot_name=slot_name,
                    slot_confidence=call.confidence,
                ))

        slot_types = {name: tool.slot_type(name) for name in tool.properties}
        errors = SlotTypeValidator.validate_all(call.params, slot_types)
        if errors:
            first = errors[0]
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.INVALID_SLOT_FORMAT,
                message=str(first),
                slot_name=first.slot_name,
                slot_confidence=call.confidence,
            ))

        handler = self.handlers.get(call.tool_name)
        if handler is None:
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.TOOL_NOT_FOUND,
                message=f'No handler registered for "{call.tool_name}"',
            ))

        try:
            outcome = handler(dict(call.params))
        except AmbiguousEntityError as e:
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.AMBIGUOUS_ENTITY,
                message=str(e),
                slot_name=e.slot_name,
                slot_confidence=call.confidence,
                ambiguous_values=e.candidates,
            ))
        except EntityNotFoundError as e:
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.ENTITY_NOT_FOUND,
                message=str(e),
                slot_name=e.slot_name,
                slot_confidence=call.confidence,
            ))
        except Exception as e:
            logger.exception(f"Handler for {call.tool_name} raised")
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.TOOL_RETURNED_FAILURE,
                message=f"Tool execution raised: {e}",
            ))

        if outcome is None or isinstance(outcome, dict):
            outcome = ToolOutcome.ok(outcome)
        elif not isinstance(outcome, ToolOutcome):
            logger.error(f"Handler for {call.tool_name} returned {type(outcome).__name__}")
            return ToolResult.failed(call, ToolFailure(
                type=ToolFailureType.TOOL_RETURNED_FAILURE,
                message=f"Tool returned unsupported {type(outcome).__name__} result",
            ))

        if outcome.success:
            return ToolResult.ok(call, outcome.data)
        return ToolResult.failed(call, ToolFailure(
            type=ToolFailureType.TOOL_RETURNED_FAILURE,
            message=outcome.message or "Tool returned failure",
        ), data=outcome.data)

    def _report(self, call: ToolCall, result: ToolResult) -> None:
        if self.signals is None:
            return

        signal = ExecutionSignal.from_result(call, result)
        try:
            if result.success:
                self.signals.record_success(signal)
            else:
                self.signals.record_failure(signal)
        except Exception:
            # A broken sink must not turn a tool result into an error
            logger.exception(f"Failed to report execution signal for {call.tool_name}")
