"""
Factory wiring the dispatcher services with explicit dependencies.

No service looks anything up globally; everything it needs is passed in here.
Tests build a factory with fakes, the CLI with the real clients.
"""
import logging
from typing import Dict, Optional

from config.config import AppConfig
from dispatch.core.interfaces import (
    EmbeddingProvider,
    FeedbackRepository,
    InvocationRepository,
    NamespaceRepository,
    PersonalityRepository,
    ReasoningService,
    ToolRepository,
)
from dispatch.infrastructure.catalog import Catalog
from dispatch.infrastructure.memory_repositories import (
    InMemoryFeedbackRepository,
    InMemoryInvocationRepository,
    InMemoryNamespaceRepository,
    InMemoryPersonalityRepository,
    InMemoryToolRepository,
)
from dispatch.services.attention_store import AttentionStore
from dispatch.services.context_injector import ContextInjector, ContextProvider
from dispatch.services.decision_engine import DecisionEngine
from dispatch.services.dispatcher import SemanticDispatcher
from dispatch.services.feedback_trainer import FeedbackTrainer
from dispatch.services.invocation_recorder import InvocationRecorder
from dispatch.services.orchestration_loop import OrchestrationLoop
from tools.base import ToolHandler
from tools.executor import LocalToolExecutor

logger = logging.getLogger(__name__)


class DispatcherFactory:
    """
    Creates all dispatcher services.

    Usage:
        factory = DispatcherFactory(config, embeddings, reasoning, personalities,
                                    namespaces, tools, invocations, feedback,
                                    handlers={"timer.set": set_timer})
        result = factory.dispatcher.handle_event(Event.create("set a timer for 5m"))
        factory.trainer.train_from_feedback(turn_id)
    """

    def __init__(
        self,
        config: AppConfig,
        embeddings: EmbeddingProvider,
        reasoning: ReasoningService,
        personalities: PersonalityRepository,
        namespaces: NamespaceRepository,
        tools: ToolRepository,
        invocations: InvocationRepository,
        feedback: FeedbackRepository,
        handlers: Optional[Dict[str, ToolHandler]] = None,
        context_providers: Optional[Dict[str, ContextProvider]] = None
    ):
        logger.info("Initializing DispatcherFactory")
        self.config = config
        self.embeddings = embeddings
        self.reasoning = reasoning
        self.personalities = personalities
        self.namespaces = namespaces
        self.tools = tools
        self.invocations = invocations
        self.feedback = feedback

        self.store = AttentionStore(personalities, config.attention)
        self.engine = DecisionEngine(config.decision, config.attention)
        self.trainer = FeedbackTrainer(
            feedback=feedback,
            invocations=invocations,
            store=self.store,
            attention_config=config.attention,
            decision_config=config.decision,
        )
        self.executor = LocalToolExecutor(
            tools=tools,
            handlers=handlers,
            signals=self.trainer,
            max_workers=config.orchestration.tool_dispatch_workers,
        )
        self.loop = OrchestrationLoop(reasoning, self.executor, config.orchestration, signals=self.trainer)
        self.recorder = InvocationRecorder(invocations)
        self.context = ContextInjector(context_providers)
        self.dispatcher = SemanticDispatcher(
            personalities=personalities,
            namespaces=namespaces,
            tools=tools,
            embeddings=embeddings,
            engine=self.engine,
            loop=self.loop,
            recorder=self.recorder,
            context=self.context,
        )
        logger.info("DispatcherFactory initialization complete")

    @classmethod
    def in_memory(
        cls,
        config: AppConfig,
        catalog: Catalog,
        embeddings: EmbeddingProvider,
        reasoning: ReasoningService,
        handlers: Optional[Dict[str, ToolHandler]] = None,
        context_providers: Optional[Dict[str, ContextProvider]] = None
    ) -> "DispatcherFactory":
        """Factory over in-memory repositories seeded from a catalog."""
        personalities = [catalog.personality] if catalog.personality else []
        return cls(
            config=config,
            embeddings=embeddings,
            reasoning=reasoning,
            personalities=InMemoryPersonalityRepository(personalities),
            namespaces=InMemoryNamespaceRepository(catalog.namespaces),
            tools=InMemoryToolRepository(catalog.tools),
            invocations=InMemoryInvocationRepository(),
            feedback=InMemoryFeedbackRepository(),
            handlers=handlers,
            context_providers=context_providers,
        )

    def cleanup(self) -> None:
        """Release client resources (HTTP sessions, inference sessions)."""
        logger.info("Cleaning up DispatcherFactory")
        for name, resource in (("reasoning", self.reasoning), ("embeddings", self.embeddings)):
            session = getattr(resource, "session", None)
            close = getattr(resource, "close", None) or getattr(session, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")

    def __repr__(self) -> str:
        return "DispatcherFactory(services=[store, engine, trainer, executor, loop, recorder, dispatcher])"
