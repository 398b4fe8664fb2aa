"""
In-process repositories.

Thread-safe, lock-guarded stores used by the CLI and the test suite. Reads
return copies so callers never hold a reference into stored state; the only
way to change a personality's attention state is ``save_attention``, which
enforces the optimistic version check.
"""
import copy
import logging
import threading
from typing import Dict, Iterable, List, Optional

from dispatch.core.attention import AttentionState
from dispatch.core.exceptions import VersionConflictError
from dispatch.core.feedback import Feedback
from dispatch.core.invocation import Invocation
from dispatch.core.namespace import Namespace, Tool
from dispatch.core.personality import Personality

logger = logging.getLogger(__name__)


class InMemoryNamespaceRepository:
    """Namespaces kept in registration order."""

    def __init__(self, namespaces: Optional[Iterable[Namespace]] = None):
        self._lock = threading.Lock()
        self._namespaces: Dict[str, Namespace] = {}
        for namespace in namespaces or []:
            self.register(namespace)

    def register(self, namespace: Namespace) -> None:
        with self._lock:
            if namespace.name in self._namespaces:
                raise ValueError(f"Namespace already registered: {namespace.name}")
            self._namespaces[namespace.name] = namespace

    def find_all(self) -> List[Namespace]:
        with self._lock:
            return list(self._namespaces.values())

    def get(self, name: str) -> Optional[Namespace]:
        with self._lock:
            return self._namespaces.get(name)


class InMemoryToolRepository:
    """Tools keyed by full name, kept in registration order."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._lock = threading.Lock()
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        with self._lock:
            if tool.full_name in self._tools:
                raise ValueError(f"Tool already registered: {tool.full_name}")
            self._tools[tool.full_name] = tool

    def find_all(self) -> List[Tool]:
        with self._lock:
            return list(self._tools.values())

    def find_by_namespace(self, namespace: str) -> List[Tool]:
        with self._lock:
            return [tool for tool in self._tools.values() if tool.namespace == namespace]

    def get(self, full_name: str) -> Optional[Tool]:
        with self._lock:
            return self._tools.get(full_name)


class InMemoryPersonalityRepository:
    def __init__(self, personalities: Optional[Iterable[Personality]] = None):
        self._lock = threading.Lock()
        self._personalities: Dict[str, Personality] = {}
        for personality in personalities or []:
            self.save(personality)

    def get_active(self) -> Optional[Personality]:
        with self._lock:
            for personality in self._personalities.values():
                if personality.is_active:
                    return copy.deepcopy(personality)
        return None

    def get(self, personality_id: str) -> Optional[Personality]:
        with self._lock:
            personality = self._personalities.get(personality_id)
            return copy.deepcopy(personality) if personality else None

    def save(self, personality: Personality) -> None:
        with self._lock:
            self._personalities[personality.id] = copy.deepcopy(personality)

    def save_attention(self, personality_id: str, expected_version: int,
                       state: AttentionState) -> AttentionState:
        """
        Store a new attention state if the stored version is still expected_version.

        Raises:
            KeyError: Unknown personality
            VersionConflictError: Another writer got there first
        """
        with self._lock:
            personality = self._personalities.get(personality_id)
            if personality is None:
                raise KeyError(f"Personality not found: {personality_id}")

            current_version = personality.attention.version
            if current_version != expected_version:
                raise VersionConflictError(expected_version, current_version)

            stored = state.copy()
            stored.version = current_version + 1
            personality.attention = stored
            logger.debug(f"Attention state of {personality_id} saved at version {stored.version}")
            return stored.copy()


class InMemoryInvocationRepository:
    """Append-only invocation store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._invocations: Dict[str, Invocation] = {}

    def save(self, invocation: Invocation) -> None:
        with self._lock:
            if invocation.id in self._invocations:
                raise ValueError(f"Invocation {invocation.id} already recorded")
            self._invocations[invocation.id] = invocation

    def get(self, invocation_id: str) -> Optional[Invocation]:
        with self._lock:
            return self._invocations.get(invocation_id)

    def find_by_correlation_id(self, correlation_id: str) -> List[Invocation]:
        with self._lock:
            return [inv for inv in self._invocations.values()
                    if inv.correlation_id == correlation_id]

    def find_recent(self, limit: int = 10) -> List[Invocation]:
        with self._lock:
            ordered = sorted(self._invocations.values(), key=lambda inv: inv.timestamp)
        return ordered[-limit:]


class InMemoryFeedbackRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._feedback: List[Feedback] = []

    def save(self, feedback: Feedback) -> None:
        with self._lock:
            self._feedback.append(feedback)

    def find_by_turn_and_component(self, turn_id: str, component_type: str) -> List[Feedback]:
        with self._lock:
            return [row for row in self._feedback
                    if row.turn_id == turn_id and row.component_type == component_type]

    def find_by_invocation(self, invocation_id: str) -> List[Feedback]:
        with self._lock:
            return [row for row in self._feedback if row.invocation_id == invocation_id]
