"""Shared fixtures for the agentic search test suite."""

from __future__ import annotations

import pytest

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.infrastructure.config import RetryConfig
from agentic_search.infrastructure.registry import ToolRegistry
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.confidence import ConfidenceModel
from agentic_search.services.evaluation import ResultEvaluator
from agentic_search.services.execution import ToolExecutor
from agentic_search.services.planning import RulesBasedPlanner
from agentic_search.services.state import StateManager
from agentic_search.testing.tools import SAMPLE_CATALOG, build_sample_registry


async def no_sleep(delay: float) -> None:
    """Drop-in for ``asyncio.sleep`` that records nothing and waits for nothing."""
    return None


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> ToolRegistry:
    """The sample catalog tools."""
    return build_sample_registry()


@pytest.fixture
def confidence_model() -> ConfidenceModel:
    return ConfidenceModel()


@pytest.fixture
def state_manager(confidence_model: ConfidenceModel) -> StateManager:
    return StateManager(confidence_model)


@pytest.fixture
def detector() -> AmbiguityDetector:
    return AmbiguityDetector()


@pytest.fixture
def planner(detector: AmbiguityDetector) -> RulesBasedPlanner:
    return RulesBasedPlanner(detector)


@pytest.fixture
def evaluator() -> ResultEvaluator:
    return ResultEvaluator()


@pytest.fixture
def executor(
    registry: ToolRegistry,
    confidence_model: ConfidenceModel,
    state_manager: StateManager,
) -> ToolExecutor:
    """Executor over the sample tools with instant, jitter-free retries."""
    return ToolExecutor(
        registry=registry,
        retry_policy=RetryConfig(max_attempts=3, base_delay=0.01, jitter=False),
        confidence_model=confidence_model,
        state_manager=state_manager,
        sleep=no_sleep,
    )


# ---------------------------------------------------------------------------
# Data fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> list[dict]:
    return [dict(item) for item in SAMPLE_CATALOG]


@pytest.fixture
def free_cli_context() -> QueryContext:
    """Context for "free cli" after query analysis has run."""
    return QueryContext(
        original_query="free cli",
        session_id="session_test",
        interpreted_intent="find_category_tools",
        entities={
            "categories": ["cli"],
            "pricingTerms": ["free"],
            "keywords": ["free", "cli"],
        },
        constraints={"hasFreeTier": True},
    )


@pytest.fixture
def initial_state(state_manager: StateManager) -> AgentState:
    return state_manager.create_initial_state("free cli")
