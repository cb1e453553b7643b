"""Tests for the rule-based planner."""

from __future__ import annotations

from dataclasses import replace

import pytest

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import ActionType, Phase
from agentic_search.domain.exceptions import NoApplicableRuleError, NotFoundError
from agentic_search.domain.values import PlanningAction
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.planning import (
    PlanningRule,
    RulesBasedPlanner,
    context_quality,
)


def _rule(id_: str, priority: int, matches: bool = True, category: str = "custom") -> PlanningRule:
    return PlanningRule(
        id=id_,
        name=id_.replace("_", " "),
        priority=priority,
        condition=lambda c, s: matches,
        action=PlanningAction(ActionType.EVALUATE, 0.5, id_),
        category=category,
    )


class TestDefaultRules:
    def test_first_iteration_analyzes(
        self, planner: RulesBasedPlanner, initial_state: AgentState
    ) -> None:
        result = planner.plan_next_action(QueryContext(original_query="free cli"), initial_state)
        assert result.rule_id == "initial_analysis"
        assert result.action.type is ActionType.ANALYZE
        assert result.action.confidence == pytest.approx(0.475)
        assert result.action.next_phase is Phase.PLANNING
        assert [a.type for a in result.alternatives] == [ActionType.ITERATE]
        assert result.planner == "rules"

    def test_clear_intent_searches(
        self,
        planner: RulesBasedPlanner,
        initial_state: AgentState,
        free_cli_context: QueryContext,
    ) -> None:
        result = planner.plan_next_action(free_cli_context, initial_state)
        assert result.rule_id == "search_clear_intent"
        action = result.action
        assert action.tool_name == "searchByText"
        assert action.parameters["query"] == "free cli"
        assert action.parameters["keywords"] == ["free", "cli"]
        assert action.parameters["features"] == ["hasFreeTier"]
        assert action.next_phase is Phase.EXECUTING
        assert action.confidence == pytest.approx(0.72)

    def test_blocking_ambiguity_clarifies(
        self,
        planner: RulesBasedPlanner,
        detector: AmbiguityDetector,
        initial_state: AgentState,
    ) -> None:
        context = QueryContext(original_query="good tools")
        detector.record(context, detector.detect("good tools"))
        result = planner.plan_next_action(context, initial_state)
        assert result.rule_id == "need_clarification"
        assert result.action.type is ActionType.CLARIFY

    def test_price_constraint_filters(
        self, planner: RulesBasedPlanner, initial_state: AgentState
    ) -> None:
        context = QueryContext(
            original_query="recommend design apps under $50",
            interpreted_intent="recommend_tools",
            entities={"keywords": ["design"]},
            constraints={"maxPrice": 50},
        )
        state = replace(initial_state, iteration_count=1, results=tuple(range(15)))
        result = planner.plan_next_action(context, state)
        assert result.rule_id == "apply_price_constraints"
        assert result.action.tool_name == "filterByPriceRange"
        assert result.action.parameters["maxPrice"] == 50

    def test_category_filter_gets_value(
        self, planner: RulesBasedPlanner, initial_state: AgentState
    ) -> None:
        context = QueryContext(
            original_query="recommend cli apps",
            interpreted_intent="recommend_tools",
            entities={"categories": ["cli"]},
        )
        state = replace(initial_state, iteration_count=1, results=tuple(range(25)))
        result = planner.plan_next_action(context, state)
        assert result.rule_id == "filter_by_category"
        assert result.action.parameters["field"] == "categories.primary"
        assert result.action.parameters["value"] == "cli"

    def test_excessive_results_sorted(
        self, planner: RulesBasedPlanner, initial_state: AgentState
    ) -> None:
        context = QueryContext(original_query="apps", interpreted_intent="recommend_tools")
        state = replace(initial_state, iteration_count=1, results=tuple(range(60)))
        assert planner.plan_next_action(context, state).rule_id == "sort_excessive_results"

    def test_good_results_complete(
        self,
        planner: RulesBasedPlanner,
        initial_state: AgentState,
        free_cli_context: QueryContext,
        catalog: list[dict],
    ) -> None:
        state = replace(
            initial_state,
            iteration_count=3,
            current_confidence=0.85,
            results=tuple(catalog[:3]),
        )
        result = planner.plan_next_action(free_cli_context, state)
        assert result.rule_id == "complete_good_results"
        assert result.action.type is ActionType.COMPLETE
        assert result.action.next_phase is Phase.COMPLETED

    def test_catch_all_always_answers(
        self, planner: RulesBasedPlanner, initial_state: AgentState
    ) -> None:
        context = QueryContext(original_query="x", interpreted_intent="recommend_tools")
        for iteration in (1, 4, 9):
            state = replace(initial_state, iteration_count=iteration)
            result = planner.plan_next_action(context, state)
            assert result.rule_id == "continue_iteration"
            assert result.action.type is ActionType.ITERATE

    def test_context_quality_bounds(self, free_cli_context: QueryContext) -> None:
        assert context_quality(QueryContext(original_query="x")) == pytest.approx(0.5)
        assert context_quality(free_cli_context) == pytest.approx(0.9)


class TestRuleManagement:
    def test_custom_rule_takes_priority(
        self, planner: RulesBasedPlanner, initial_state: AgentState
    ) -> None:
        planner.add_rule(_rule("always_first", 200))
        result = planner.plan_next_action(QueryContext(original_query="x"), initial_state)
        assert result.rule_id == "always_first"
        assert planner.get_rules()[0].id == "always_first"

    def test_duplicate_rejected(self, planner: RulesBasedPlanner) -> None:
        with pytest.raises(ValueError, match="already registered"):
            planner.add_rule(_rule("continue_iteration", 5))

    def test_remove(self, planner: RulesBasedPlanner) -> None:
        removed = planner.remove_rule("analyze_results")
        assert removed.id == "analyze_results"
        assert all(r.id != "analyze_results" for r in planner.get_rules())
        with pytest.raises(NotFoundError):
            planner.remove_rule("analyze_results")

    def test_cannot_remove_last_rule(self) -> None:
        planner = RulesBasedPlanner(initialize=False)
        planner.add_rule(_rule("only", 1))
        with pytest.raises(ValueError, match="last planning rule"):
            planner.remove_rule("only")

    def test_by_category(self, planner: RulesBasedPlanner) -> None:
        ids = [r.id for r in planner.get_rules_by_category("completion")]
        assert ids == ["complete_good_results", "max_iterations_reached"]

    def test_validate_rules(self, planner: RulesBasedPlanner) -> None:
        assert planner.validate_rules() == (True, [])
        planner.remove_rule("continue_iteration")
        ok, issues = planner.validate_rules()
        assert ok is False
        assert "no catch-all rule registered" in issues

    def test_no_matching_rule(self, initial_state: AgentState) -> None:
        planner = RulesBasedPlanner(initialize=False)
        planner.add_rule(_rule("never", 1, matches=False))
        with pytest.raises(NoApplicableRuleError):
            planner.plan_next_action(QueryContext(original_query="x"), initial_state)

    def test_raising_condition_skipped(self, initial_state: AgentState) -> None:
        planner = RulesBasedPlanner(initialize=False)

        def explode(context: QueryContext, state: AgentState) -> bool:
            raise RuntimeError("bad rule")

        planner.add_rule(
            PlanningRule("broken", "broken", 50, explode, PlanningAction(ActionType.ANALYZE, 0.5, ""))
        )
        planner.add_rule(_rule("fallback", 1, category="fallback"))
        result = planner.plan_next_action(QueryContext(original_query="x"), initial_state)
        assert result.rule_id == "fallback"
        assert planner.get_metrics()["rule_errors"] == {"broken": 1}

    def test_initialize_reseeds(self, planner: RulesBasedPlanner) -> None:
        planner.remove_rule("analyze_results")
        planner.initialize()
        assert len(planner.get_rules()) == 10


class TestMetricsAndSummary:
    def test_metrics(
        self, planner: RulesBasedPlanner, initial_state: AgentState, free_cli_context: QueryContext
    ) -> None:
        planner.plan_next_action(free_cli_context, initial_state)
        planner.plan_next_action(free_cli_context, initial_state)
        metrics = planner.get_metrics()
        assert metrics["total_plans"] == 2
        assert metrics["rule_usage"] == {"search_clear_intent": 2}
        assert metrics["average_confidence"] == pytest.approx(0.72)
        planner.reset_metrics()
        assert planner.get_metrics()["total_plans"] == 0

    def test_context_summary(
        self, planner: RulesBasedPlanner, initial_state: AgentState, free_cli_context: QueryContext
    ) -> None:
        summary = planner.context_summary(free_cli_context, initial_state)
        assert summary["intent"] == "find_category_tools"
        assert summary["entities"] == 3
        assert summary["iteration"] == 0
