"""Tests for the session graph node factories."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

import pytest

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import ActionType, Phase, Severity
from agentic_search.domain.exceptions import PlanningError
from agentic_search.domain.values import PlanningAction, PlanningResult
from agentic_search.graph.nodes import (
    make_analyze_node,
    make_clarify_node,
    make_detect_node,
    make_evaluate_node,
    make_execute_node,
    make_finalize_node,
    make_plan_node,
)
from agentic_search.infrastructure.cancellation import CancellationToken
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.evaluation import ResultEvaluator
from agentic_search.services.execution import ToolExecutor
from agentic_search.services.planning import RulesBasedPlanner
from agentic_search.services.query_analysis import QueryAnalyzer
from agentic_search.services.state import StateManager

MakeInput = Callable[..., dict[str, Any]]


class _FailingPlanner:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def plan_next_action(self, context: QueryContext, state: AgentState) -> PlanningResult:
        raise self.exc


def _cancelled_token() -> CancellationToken:
    token = CancellationToken()
    token.cancel()
    return token


def _execute_plan(tool_name: str, **parameters: Any) -> PlanningResult:
    return PlanningResult(
        action=PlanningAction(
            type=ActionType.EXECUTE,
            confidence=0.7,
            tool_name=tool_name,
            parameters=parameters,
        )
    )


class TestDetectNode:

    @pytest.mark.asyncio
    async def test_vague_query_requests_clarification(
        self, detector: AmbiguityDetector, make_graph_input: MakeInput
    ) -> None:
        node = make_detect_node(detector)
        update = await node(make_graph_input("good tools"))

        assert update["loop_iteration"] == 1
        assert len(update["ambiguities"]) == 3
        request = update["clarification"]
        assert request is not None
        assert request.priority is Severity.HIGH
        assert "clarification needed" in update["reasoning_trace"][0]
        assert request.id in update["context"].pending_requests

    @pytest.mark.asyncio
    async def test_clear_query_proceeds(
        self, detector: AmbiguityDetector, make_graph_input: MakeInput
    ) -> None:
        node = make_detect_node(detector)
        update = await node(make_graph_input("free cli", loop_iteration=3))
        assert update["loop_iteration"] == 4
        assert update["clarification"] is None
        assert update["plan"] is None

    @pytest.mark.asyncio
    async def test_cancelled(
        self, detector: AmbiguityDetector, make_graph_input: MakeInput
    ) -> None:
        node = make_detect_node(detector)
        update = await node(make_graph_input("free cli", cancel_token=_cancelled_token()))
        assert update == {"stop_reason": "cancelled"}


class TestClarifyNode:

    @pytest.mark.asyncio
    async def test_keeps_request_and_pauses(
        self,
        detector: AmbiguityDetector,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("good tools")
        state.update(await make_detect_node(detector)(state))

        update = await make_clarify_node(detector, state_manager)(state)

        assert update["clarification"] is state["clarification"]
        assert update["agent_state"].phase is Phase.CLARIFYING
        assert update["reasoning_trace"][0].startswith("Asking: ")
        assert "stop_reason" not in update

    @pytest.mark.asyncio
    async def test_unavailable_without_ambiguities(
        self,
        detector: AmbiguityDetector,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        update = await make_clarify_node(detector, state_manager)(make_graph_input("free cli"))
        assert update["stop_reason"] == "clarification_unavailable"
        assert update["warnings"]


class TestPlanNode:

    @pytest.mark.asyncio
    async def test_plans_search_for_clear_intent(
        self,
        planner: RulesBasedPlanner,
        state_manager: StateManager,
        free_cli_context: QueryContext,
        make_graph_input: MakeInput,
    ) -> None:
        node = make_plan_node(planner, state_manager)
        update = await node(make_graph_input("free cli", context=free_cli_context))

        plan = update["plan"]
        assert plan.action.tool_name == "searchByText"
        assert plan.action.is_tool_action
        assert update["agent_state"].phase is Phase.PLANNING
        assert "searchByText" in update["reasoning_trace"][0]

    @pytest.mark.asyncio
    async def test_unanalyzed_query_is_analyzed_first(
        self,
        planner: RulesBasedPlanner,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        update = await make_plan_node(planner, state_manager)(make_graph_input("free cli"))
        assert update["plan"].action.type is ActionType.ANALYZE

    @pytest.mark.asyncio
    async def test_planning_error_stops(
        self, state_manager: StateManager, make_graph_input: MakeInput
    ) -> None:
        node = make_plan_node(_FailingPlanner(PlanningError("no rule")), state_manager)
        update = await node(make_graph_input("free cli"))
        assert update["stop_reason"] == "planning_failed"
        assert update["plan"] is None
        assert update["errors"] == ["no rule"]

    @pytest.mark.asyncio
    async def test_unexpected_error_without_results_stops(
        self, state_manager: StateManager, make_graph_input: MakeInput
    ) -> None:
        node = make_plan_node(_FailingPlanner(RuntimeError("boom")), state_manager)
        update = await node(make_graph_input("free cli"))

        assert update["stop_reason"] == "iteration_failed"
        assert update["errors"] == ["plan failed: boom"]
        assert update["agent_state"].metadata.extra["iteration_errors"] == ["plan failed: boom"]

    @pytest.mark.asyncio
    async def test_unexpected_error_with_results_continues(
        self,
        state_manager: StateManager,
        catalog: list[dict],
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("free cli")
        state["agent_state"] = replace(state["agent_state"], results=tuple(catalog[:2]))
        update = await make_plan_node(_FailingPlanner(RuntimeError("boom")), state_manager)(state)
        assert "stop_reason" not in update
        assert update["errors"] == ["plan failed: boom"]

    @pytest.mark.asyncio
    async def test_cancelled(
        self,
        planner: RulesBasedPlanner,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        node = make_plan_node(planner, state_manager)
        update = await node(make_graph_input("free cli", cancel_token=_cancelled_token()))
        assert update == {"stop_reason": "cancelled"}


class TestAnalyzeNode:

    @pytest.mark.asyncio
    async def test_folds_analysis_into_context(
        self,
        analyzer: QueryAnalyzer,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        update = await make_analyze_node(analyzer, state_manager)(make_graph_input("free cli"))

        context = update["context"]
        assert context.interpreted_intent == "find_category_tools"
        assert context.constraints["hasFreeTier"] is True
        assert update["agent_state"].phase is Phase.ANALYZING
        assert "find_category_tools" in update["reasoning_trace"][0]


class TestExecuteNode:

    @pytest.mark.asyncio
    async def test_runs_planned_tool(
        self,
        planner: RulesBasedPlanner,
        executor: ToolExecutor,
        state_manager: StateManager,
        free_cli_context: QueryContext,
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("free cli", context=free_cli_context)
        state.update(await make_plan_node(planner, state_manager)(state))

        update = await make_execute_node(executor, state_manager)(state)

        agent_state = update["agent_state"]
        assert [r["id"] for r in agent_state.results] == ["t01", "t02", "t03"]
        assert agent_state.iteration_count == 1
        assert update["tools_used"] == ["searchByText"]
        assert update["execution"].success
        assert "stop_reason" not in update

    @pytest.mark.asyncio
    async def test_failure_without_results_stops(
        self,
        executor: ToolExecutor,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("free cli", plan=_execute_plan("noSuchTool"))
        update = await make_execute_node(executor, state_manager)(state)

        assert update["stop_reason"] == "execution_failed"
        assert update["agent_state"].metadata.has_error
        assert update["agent_state"].phase is Phase.ERROR
        assert update["errors"][0].startswith("noSuchTool failed (NotFound)")

    @pytest.mark.asyncio
    async def test_failure_with_results_continues(
        self,
        executor: ToolExecutor,
        state_manager: StateManager,
        catalog: list[dict],
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("free cli", plan=_execute_plan("noSuchTool"))
        state["agent_state"] = replace(state["agent_state"], results=tuple(catalog[:2]))

        update = await make_execute_node(executor, state_manager)(state)

        assert "stop_reason" not in update
        assert update["agent_state"].result_count == 2
        assert update["warnings"] == ["Continuing with results from an earlier iteration"]

    @pytest.mark.asyncio
    async def test_cancelled(
        self,
        executor: ToolExecutor,
        state_manager: StateManager,
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input(
            "free cli", plan=_execute_plan("countItems"), cancel_token=_cancelled_token()
        )
        update = await make_execute_node(executor, state_manager)(state)
        assert update == {"stop_reason": "cancelled"}


class TestEvaluateNode:

    @pytest.mark.asyncio
    async def test_good_results_stop_the_loop(
        self,
        evaluator: ResultEvaluator,
        state_manager: StateManager,
        catalog: list[dict],
        free_cli_context: QueryContext,
        make_graph_input: MakeInput,
    ) -> None:
        agent_state = state_manager.update_state_with_results(
            state_manager.create_initial_state("free cli"),
            catalog[:3],
            "searchByText",
            0.96,
        )
        state = make_graph_input("free cli", context=free_cli_context, agent_state=agent_state)

        update = await make_evaluate_node(evaluator, state_manager)(state)

        assert update["stop_reason"] == "evaluation_complete"
        assert update["should_continue"] is False
        assert update["evaluation"].overall_score >= 0.6
        assert update["agent_state"].phase is Phase.EVALUATING

    @pytest.mark.asyncio
    async def test_no_results_keep_looping(
        self,
        evaluator: ResultEvaluator,
        state_manager: StateManager,
        free_cli_context: QueryContext,
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("free cli", context=free_cli_context)
        update = await make_evaluate_node(evaluator, state_manager)(state)
        assert update["should_continue"] is True
        assert "stop_reason" not in update

    @pytest.mark.asyncio
    async def test_threshold_zero_always_stops(
        self,
        evaluator: ResultEvaluator,
        state_manager: StateManager,
        free_cli_context: QueryContext,
        make_graph_input: MakeInput,
    ) -> None:
        state = make_graph_input("free cli", context=free_cli_context, confidence_threshold=0.0)
        update = await make_evaluate_node(evaluator, state_manager)(state)
        assert update["stop_reason"] == "evaluation_complete"


class TestFinalizeNode:

    @pytest.mark.asyncio
    async def test_evaluation_complete_marks_state(
        self,
        state_manager: StateManager,
        catalog: list[dict],
        make_graph_input: MakeInput,
    ) -> None:
        agent_state = state_manager.update_state_with_results(
            state_manager.create_initial_state("free cli"), catalog[:3], "searchByText", 0.96
        )
        state = make_graph_input(
            "free cli", agent_state=agent_state, stop_reason="evaluation_complete"
        )
        update = await make_finalize_node(state_manager)(state)

        assert update["agent_state"].is_complete
        assert update["should_continue"] is False
        assert update["reasoning_trace"] == ["Stopped: evaluation complete"]

    @pytest.mark.asyncio
    async def test_planner_complete_without_iterations_is_not_marked(
        self, state_manager: StateManager, make_graph_input: MakeInput
    ) -> None:
        plan = PlanningResult(action=PlanningAction(type=ActionType.COMPLETE, confidence=0.9))
        update = await make_finalize_node(state_manager)(make_graph_input("free cli", plan=plan))
        assert update["stop_reason"] == "planner_complete"
        assert not update["agent_state"].is_complete

    @pytest.mark.asyncio
    async def test_budget_spent(
        self, state_manager: StateManager, make_graph_input: MakeInput
    ) -> None:
        state = make_graph_input("free cli", loop_iteration=3, max_iterations=3)
        update = await make_finalize_node(state_manager)(state)
        assert update["stop_reason"] == "max_iterations"
        assert not update["agent_state"].is_complete

    @pytest.mark.asyncio
    async def test_cancellation_is_not_completion(
        self,
        state_manager: StateManager,
        catalog: list[dict],
        make_graph_input: MakeInput,
    ) -> None:
        agent_state = state_manager.update_state_with_results(
            state_manager.create_initial_state("free cli"), catalog[:3], "searchByText", 0.96
        )
        state = make_graph_input("free cli", agent_state=agent_state, stop_reason="cancelled")
        update = await make_finalize_node(state_manager)(state)
        assert update["stop_reason"] == "cancelled"
        assert not update["agent_state"].is_complete
