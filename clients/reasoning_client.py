"""
OpenAI-compatible reasoning client.

Posts chat-completions requests with tool definitions to any OpenAI-compatible
endpoint (Groq by default, also OpenRouter, Ollama, vLLM) and translates the
response into a ReasoningResponse.

Tool full names contain a "." ("task.create"), which most providers reject in
function names. Names are sent as "task__create" and translated back on the
way in, so the rest of the dispatcher only ever sees full names.
"""
import json
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

import requests

from config.config import ReasoningConfig
from dispatch.core.exceptions import ReasoningServiceError, ReasoningTimeoutError
from dispatch.core.interfaces import ReasoningResponse, ReasoningToolCall

logger = logging.getLogger(__name__)

NAME_SEPARATOR = "__"


def to_wire_name(full_name: str) -> str:
    return full_name.replace(".", NAME_SEPARATOR)


def from_wire_name(wire_name: str) -> str:
    return wire_name.replace(NAME_SEPARATOR, ".", 1)


class OpenAICompatibleReasoningClient:
    """
    Reasoning service over an OpenAI-compatible chat completions endpoint.

    Args:
        config: Endpoint, default model, timeout and sampling defaults
        api_key: API key; read from the ``config.api_key_env`` variable when omitted
        session: requests session to reuse connections (a new one by default)
    """

    def __init__(self, config: ReasoningConfig, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.api_key = api_key if api_key is not None else os.getenv(config.api_key_env)
        self.session = session or requests.Session()
        self.logger = logging.getLogger("reasoning_client")

        if not self.api_key:
            self.logger.warning(
                f"No API key in {config.api_key_env}; requests to {config.endpoint} are unauthenticated"
            )
        self.logger.info(f"Reasoning client initialized: {config.endpoint} / {config.model}")

    def converse(
        self,
        model: Optional[str],
        messages: List[Dict[str, Any]],
        tool_defs: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> ReasoningResponse:
        """
        Run one chat-completions round trip.

        Args:
            model: Model identifier; None uses the configured default
            messages: OpenAI-format history using tool full names
            tool_defs: Tool definitions ({name, description, parameters})
            temperature: Sampling temperature; None uses the configured default
            max_tokens: Completion token limit; None uses the configured default

        Returns:
            ReasoningResponse with content and/or tool calls

        Raises:
            ReasoningTimeoutError: If the request times out
            ReasoningServiceError: On HTTP, transport or response-format errors
        """
        payload: Dict[str, Any] = {
            "model": model or self.config.model,
            "messages": self._convert_messages(messages),
            "max_tokens": max_tokens if max_tokens is not None else self.config.max_tokens,
            "temperature": temperature if temperature is not None else self.config.temperature,
        }
        if tool_defs:
            payload["tools"] = self._convert_tools(tool_defs)
            payload["tool_choice"] = "auto"

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        self.logger.debug(
            f"Reasoning request to {self.config.endpoint}: {len(messages)} messages, {len(tool_defs)} tools"
        )
        try:
            response = self.session.post(
                self.config.endpoint,
                headers=headers,
                json=payload,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.Timeout as e:
            self.logger.error(f"Reasoning request timed out after {self.config.timeout}s")
            raise ReasoningTimeoutError(f"Reasoning request timed out after {self.config.timeout}s") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            detail = e.response.text[:500] if e.response is not None else ""
            self.logger.error(f"Reasoning HTTP error: {status} - {detail}")
            raise ReasoningServiceError(f"Reasoning service HTTP error {status}") from e
        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Reasoning request failed: {e}")
            raise ReasoningServiceError(f"Reasoning request failed: {e}") from e

        try:
            return self._parse_response(body)
        except (TypeError, AttributeError, KeyError, ValueError) as e:
            self.logger.error(f"Malformed reasoning response: {e} - {str(body)[:500]}")
            raise ReasoningServiceError(f"Malformed reasoning response: {e}") from e

    def _convert_tools(self, tool_defs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": to_wire_name(tool["name"]),
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters") or {"type": "object", "properties": {}},
                },
            }
            for tool in tool_defs
        ]

    def _convert_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Copy the history, renaming tool calls to wire names."""
        converted = []
        for msg in messages:
            msg = dict(msg)
            if msg.get("tool_calls"):
                msg["tool_calls"] = [
                    {
                        **tc,
                        "function": {
                            **tc["function"],
                            "name": to_wire_name(tc["function"]["name"]),
                        },
                    }
                    for tc in msg["tool_calls"]
                ]
            converted.append(msg)
        return converted

    def _parse_response(self, body: Dict[str, Any]) -> ReasoningResponse:
        """
        Raises:
            ReasoningServiceError: If the response has no usable choice
        """
        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            self.logger.error(f"Invalid reasoning response: missing choices - {body}")
            raise ReasoningServiceError("Invalid reasoning response: missing or empty choices")

        message = choices[0].get("message") or {}
        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function", {})
            raw_arguments = function.get("arguments") or "{}"
            try:
                arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else dict(raw_arguments)
            except (json.JSONDecodeError, TypeError, ValueError):
                self.logger.warning(f"Unparseable arguments for {function.get('name')}: {raw_arguments!r}")
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}

            tool_calls.append(ReasoningToolCall(
                id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                name=from_wire_name(function.get("name", "")),
                arguments=arguments,
            ))

        usage = body.get("usage") or {}
        tokens_used = int(usage.get("total_tokens") or
                          (usage.get("prompt_tokens") or 0) + (usage.get("completion_tokens") or 0))

        self.logger.debug(f"Reasoning response: {len(tool_calls)} tool calls, {tokens_used} tokens")
        return ReasoningResponse(
            content=message.get("content"),
            tool_calls=tool_calls,
            tokens_used=tokens_used,
        )
