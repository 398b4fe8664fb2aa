"""Shared fixtures for the dispatcher test suite."""
import pytest

from config.config import AppConfig
from dispatch.factory import DispatcherFactory
from dispatch.infrastructure.memory_repositories import (
    InMemoryFeedbackRepository,
    InMemoryInvocationRepository,
    InMemoryNamespaceRepository,
    InMemoryPersonalityRepository,
    InMemoryToolRepository,
)
from tests.fixtures.dispatch_data import (
    FakeEmbeddingProvider,
    ScriptedReasoningService,
    build_namespaces,
    build_personality,
    build_tools,
)


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture
def namespaces():
    return build_namespaces()


@pytest.fixture
def tools():
    return build_tools()


@pytest.fixture
def personality():
    return build_personality()


@pytest.fixture
def personality_repo(personality):
    return InMemoryPersonalityRepository([personality])


@pytest.fixture
def namespace_repo(namespaces):
    return InMemoryNamespaceRepository(namespaces)


@pytest.fixture
def tool_repo(tools):
    return InMemoryToolRepository(tools)


@pytest.fixture
def embeddings():
    return FakeEmbeddingProvider()


@pytest.fixture
def make_factory(app_config, personality_repo, namespace_repo, tool_repo, embeddings):
    """Build a DispatcherFactory around a scripted reasoning service."""

    def _make(script=(), handlers=None, context_providers=None, config=None):
        return DispatcherFactory(
            config=config or app_config,
            embeddings=embeddings,
            reasoning=ScriptedReasoningService(script),
            personalities=personality_repo,
            namespaces=namespace_repo,
            tools=tool_repo,
            invocations=InMemoryInvocationRepository(),
            feedback=InMemoryFeedbackRepository(),
            handlers=handlers,
            context_providers=context_providers,
        )

    return _make
