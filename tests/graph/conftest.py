"""Shared fixtures for graph tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from agentic_search.domain.entities import QueryContext
from agentic_search.domain.enums import EvaluationDepth
from agentic_search.graph.graph import build_session_graph
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.evaluation import ResultEvaluator
from agentic_search.services.execution import ToolExecutor
from agentic_search.services.planning import RulesBasedPlanner
from agentic_search.services.query_analysis import QueryAnalyzer
from agentic_search.services.state import StateManager


@pytest.fixture
def analyzer() -> QueryAnalyzer:
    return QueryAnalyzer()


@pytest.fixture
def make_graph_input(state_manager: StateManager) -> Callable[..., dict[str, Any]]:
    """Factory for a fresh graph input around *query*."""

    def make(query: str, **overrides: Any) -> dict[str, Any]:
        state: dict[str, Any] = {
            "session_id": "session_graph",
            "context": QueryContext(original_query=query, session_id="session_graph"),
            "agent_state": state_manager.create_initial_state(query),
            "loop_iteration": 0,
            "max_iterations": 10,
            "confidence_threshold": 0.6,
            "evaluation_depth": EvaluationDepth.MEDIUM,
            "tool_timeout": 30.0,
            "should_continue": True,
            "stop_reason": "",
            "cancel_token": None,
            "clarification": None,
            "plan": None,
            "execution": None,
            "evaluation": None,
            "reasoning_trace": [],
            "tools_used": [],
            "warnings": [],
            "errors": [],
            "metadata": {},
        }
        state.update(overrides)
        return state

    return make


@pytest.fixture
def session_graph(
    detector: AmbiguityDetector,
    planner: RulesBasedPlanner,
    analyzer: QueryAnalyzer,
    executor: ToolExecutor,
    evaluator: ResultEvaluator,
    state_manager: StateManager,
) -> Any:
    return build_session_graph(
        detector=detector,
        planner=planner,
        analyzer=analyzer,
        executor=executor,
        evaluator=evaluator,
        state_manager=state_manager,
    )
