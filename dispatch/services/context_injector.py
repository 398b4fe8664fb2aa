"""
Namespace context injection.

Before the reasoning loop starts, the selected namespace may contribute live
context (open tasks, running timers) so the reasoning service can resolve
references like "the second one". Each namespace registers a provider
returning ``{context_key: [item, ...]}``.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ContextProvider = Callable[[], Dict[str, List[Dict[str, Any]]]]


class ContextInjector:
    def __init__(self, providers: Optional[Dict[str, ContextProvider]] = None):
        self._providers: Dict[str, ContextProvider] = dict(providers or {})

    def register(self, namespace: str, provider: ContextProvider) -> None:
        self._providers[namespace] = provider

    def inject(self, namespace: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Collect context for a namespace.

        A failing provider yields empty context; the dispatch continues
        without it.
        """
        provider = self._providers.get(namespace)
        if provider is None:
            return {}
        try:
            context = provider()
        except Exception as e:
            logger.warning(f"Context provider for {namespace} failed: {e}")
            return {}
        return {key: list(items) for key, items in (context or {}).items()}

    @staticmethod
    def item_counts(context: Dict[str, List[Dict[str, Any]]]) -> Dict[str, int]:
        return {key: len(items) for key, items in context.items()}

    @staticmethod
    def render(context: Dict[str, List[Dict[str, Any]]]) -> Optional[str]:
        """Context block appended to the system prompt, or None when empty."""
        sections = []
        for key, items in context.items():
            if not items:
                continue
            lines = "\n".join(f"- {json.dumps(item, default=str)}" for item in items)
            sections.append(f"Current {key}:\n{lines}")
        return "\n\n".join(sections) if sections else None
