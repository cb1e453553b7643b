"""Priority-ordered, rule-based next-action planning.

A ``PlanningRule`` pairs a pure predicate over ``(QueryContext,
AgentState)`` with a ``PlanningAction`` template.  ``RulesBasedPlanner``
keeps its rules sorted by descending priority, picks the first match,
offers the next two as alternatives, and enhances the chosen action with
parameters derived from the context.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import ActionType, Phase
from agentic_search.domain.exceptions import NoApplicableRuleError, NotFoundError
from agentic_search.domain.values import PlanningAction, PlanningResult
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.query_analysis import extract_keywords

logger = logging.getLogger(__name__)

RuleCondition = Callable[[QueryContext, AgentState], bool]

CATCH_ALL_CATEGORY = "fallback"

NEXT_PHASE: dict[ActionType, Phase] = {
    ActionType.ANALYZE: Phase.PLANNING,
    ActionType.CLARIFY: Phase.ANALYZING,
    ActionType.SELECT_TOOL: Phase.EXECUTING,
    ActionType.EXECUTE: Phase.EVALUATING,
    ActionType.EVALUATE: Phase.PLANNING,
    ActionType.ITERATE: Phase.PLANNING,
    ActionType.COMPLETE: Phase.COMPLETED,
    ActionType.ERROR: Phase.ERROR,
}

_SEARCH_VERBS = ("find", "search", "show", "get", "list")
_ANALYSIS_VERBS = ("analyze", "compare", "summarize", "statistics")
_FEATURE_KEYS = (
    "apiAccess", "hasWebhooks", "hasSDK", "offlineMode", "mobileSupport",
    "cloudBased", "onPremise", "collaborationFeatures", "realTimeFeatures",
    "multiUserSupport", "hasFreeTier",
)


@dataclass(frozen=True)
class PlanningRule:
    """One condition -> action entry of the rule table."""

    id: str
    name: str
    priority: int
    condition: RuleCondition
    action: PlanningAction
    reasoning: str = ""
    category: str = "general"


# ===================================================================== #
#  Context helpers                                                       #
# ===================================================================== #

def context_quality(context: QueryContext) -> float:
    """Heuristic in [0, 1] describing how much the loop knows."""
    quality = 0.5
    if context.interpreted_intent and context.interpreted_intent != "unknown":
        quality += 0.2
    quality += min(0.2, 0.05 * len(context.entities))
    quality += min(0.15, 0.05 * len(context.constraints))
    quality -= min(0.3, 0.1 * len(context.ambiguities))
    return max(0.0, min(1.0, quality))


def _intent_has(context: QueryContext, verbs: Iterable[str]) -> bool:
    intent = context.interpreted_intent.lower()
    return any(v in intent for v in verbs)


def _has_price_constraint(context: QueryContext) -> bool:
    return "minPrice" in context.constraints or "maxPrice" in context.constraints


# ===================================================================== #
#  Default rule table                                                    #
# ===================================================================== #

def default_rules(detector: AmbiguityDetector) -> list[PlanningRule]:
    def select(tool: str, confidence: float, reasoning: str, **parameters: Any) -> PlanningAction:
        return PlanningAction(
            type=ActionType.SELECT_TOOL,
            confidence=confidence,
            reasoning=reasoning,
            tool_name=tool,
            parameters=parameters,
        )

    return [
        PlanningRule(
            id="need_clarification",
            name="Clarification needed",
            priority=100,
            condition=lambda c, s: detector.needs_clarification(c),
            action=PlanningAction(ActionType.CLARIFY, 0.9, "Query has blocking ambiguities"),
            reasoning="Unresolved high-severity ambiguity",
            category="clarification",
        ),
        PlanningRule(
            id="initial_analysis",
            name="Initial analysis",
            priority=90,
            condition=lambda c, s: s.iteration_count == 0 and not c.interpreted_intent,
            action=PlanningAction(ActionType.ANALYZE, 0.95, "Query has not been analyzed yet"),
            reasoning="No interpreted intent on the first iteration",
            category="analysis",
        ),
        PlanningRule(
            id="search_clear_intent",
            name="Search with clear intent",
            priority=80,
            condition=lambda c, s: (
                _intent_has(c, _SEARCH_VERBS) and bool(c.entities) and s.iteration_count < 3
            ),
            action=select("searchByText", 0.8, "Intent and entities are clear; run a text search"),
            reasoning="Search-like intent with entities",
            category="search",
        ),
        PlanningRule(
            id="apply_price_constraints",
            name="Apply price constraints",
            priority=75,
            condition=lambda c, s: (
                _has_price_constraint(c) and s.result_count > 10 and s.iteration_count < 5
            ),
            action=select("filterByPriceRange", 0.85, "Narrow results to the requested price range"),
            reasoning="Price constraint with a large result set",
            category="filtering",
        ),
        PlanningRule(
            id="sort_excessive_results",
            name="Sort excessive results",
            priority=70,
            condition=lambda c, s: s.result_count > 50 and s.iteration_count < 6,
            action=select(
                "sortByField", 0.7, "Too many results; sort by price",
                field="pricing.models.price", order="asc",
            ),
            reasoning="More than 50 results",
            category="sorting",
        ),
        PlanningRule(
            id="filter_by_category",
            name="Filter by category",
            priority=65,
            condition=lambda c, s: (
                bool(c.entities.get("categories"))
                and s.result_count > 20
                and s.iteration_count < 4
            ),
            action=select(
                "filterByArrayContains", 0.75, "Narrow results to the requested category",
                field="categories.primary",
            ),
            reasoning="Category entity with more than 20 results",
            category="filtering",
        ),
        PlanningRule(
            id="analyze_results",
            name="Analyze results",
            priority=50,
            condition=lambda c, s: _intent_has(c, _ANALYSIS_VERBS) and s.has_results,
            action=select(
                "groupBy", 0.8, "Analysis intent; group results by category",
                field="categories.primary",
            ),
            reasoning="Analysis-type intent with results",
            category="analysis",
        ),
        PlanningRule(
            id="complete_good_results",
            name="Complete with good results",
            priority=40,
            condition=lambda c, s: (
                0 < s.result_count <= 20
                and s.current_confidence >= 0.8
                and s.iteration_count >= 2
            ),
            action=PlanningAction(ActionType.COMPLETE, 0.9, "Results are focused and confident"),
            reasoning="Good result set",
            category="completion",
        ),
        PlanningRule(
            id="max_iterations_reached",
            name="Maximum iterations reached",
            priority=35,
            condition=lambda c, s: s.iteration_count >= 10,
            action=PlanningAction(ActionType.COMPLETE, 0.6, "Iteration budget exhausted"),
            reasoning="Ten or more iterations",
            category="completion",
        ),
        PlanningRule(
            id="continue_iteration",
            name="Continue iterating",
            priority=10,
            condition=lambda c, s: True,
            action=PlanningAction(ActionType.ITERATE, 0.4, "No specific rule applies"),
            reasoning="Catch-all",
            category=CATCH_ALL_CATEGORY,
        ),
    ]


# ===================================================================== #
#  Planner                                                               #
# ===================================================================== #

class RulesBasedPlanner:
    """Deterministic planner over a priority-sorted rule table.

    Parameters
    ----------
    detector:
        Supplies the clarification predicate of the highest-priority rule.
    initialize:
        Seed the default rule table on construction.
    """

    name = "rules"

    def __init__(
        self,
        detector: AmbiguityDetector | None = None,
        initialize: bool = True,
    ) -> None:
        self.detector = detector or AmbiguityDetector()
        self._lock = threading.Lock()
        self._rules: list[PlanningRule] = []
        self._reset_counters()
        if initialize:
            self.initialize()

    # ---- rule table -------------------------------------------------- #

    def initialize(self) -> None:
        """(Re)seed the default rule table."""
        rules = default_rules(self.detector)
        with self._lock:
            self._rules = sorted(rules, key=lambda r: r.priority, reverse=True)
        logger.debug("Planner initialized with %d rules", len(rules))

    def add_rule(self, rule: PlanningRule) -> None:
        with self._lock:
            if any(r.id == rule.id for r in self._rules):
                raise ValueError(f"Rule '{rule.id}' is already registered")
            self._rules.append(rule)
            self._rules.sort(key=lambda r: r.priority, reverse=True)

    def remove_rule(self, rule_id: str) -> PlanningRule:
        with self._lock:
            for i, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    if len(self._rules) == 1:
                        raise ValueError("Cannot remove the last planning rule")
                    return self._rules.pop(i)
        raise NotFoundError(f"Planning rule '{rule_id}' not found", "rule", rule_id)

    def get_rules(self) -> list[PlanningRule]:
        with self._lock:
            return list(self._rules)

    def get_rules_by_category(self, category: str) -> list[PlanningRule]:
        return [r for r in self.get_rules() if r.category == category]

    def validate_rules(self) -> tuple[bool, list[str]]:
        rules = self.get_rules()
        issues: list[str] = []
        seen: set[str] = set()
        for rule in rules:
            if rule.id in seen:
                issues.append(f"duplicate rule id '{rule.id}'")
            seen.add(rule.id)
            if not rule.name.strip():
                issues.append(f"rule '{rule.id}' has an empty name")
            if not callable(rule.condition):
                issues.append(f"rule '{rule.id}' condition is not callable")
        if not any(r.category == CATCH_ALL_CATEGORY for r in rules):
            issues.append("no catch-all rule registered")
        return (not issues, issues)

    # ---- planning ---------------------------------------------------- #

    def plan_next_action(self, context: QueryContext, state: AgentState) -> PlanningResult:
        """Pick the highest-priority matching rule and enhance its action.

        Raises
        ------
        NoApplicableRuleError
            Only if the table has no rule that matches, which the catch-all
            rule prevents.
        """
        start = time.perf_counter()
        rules = self.get_rules()
        matched: list[PlanningRule] = []
        for rule in rules:
            try:
                if rule.condition(context, state):
                    matched.append(rule)
            except Exception:
                logger.exception("Planning rule %s raised; skipping", rule.id)
                with self._lock:
                    self._rule_errors[rule.id] = self._rule_errors.get(rule.id, 0) + 1
        if not matched:
            raise NoApplicableRuleError(len(rules))

        primary = matched[0]
        quality = context_quality(context)
        action = self._enhance(primary.action, context, quality)
        alternatives = tuple(r.action for r in matched[1:3])
        elapsed = (time.perf_counter() - start) * 1000.0

        result = PlanningResult(
            action=action,
            alternatives=alternatives,
            reasoning=f"{primary.name}: {primary.reasoning}",
            confidence=action.confidence,
            rule_id=primary.id,
            planner=self.name,
            planning_time_ms=elapsed,
            metadata={
                "context_quality": quality,
                "matched_rules": [r.id for r in matched],
                "rules_checked": len(rules),
            },
        )
        with self._lock:
            self._plans += 1
            self._confidence_sum += action.confidence
            self._time_sum += elapsed
            self._rule_usage[primary.id] = self._rule_usage.get(primary.id, 0) + 1
        logger.debug(
            "Rule %s -> %s%s (confidence %.2f)",
            primary.id,
            action.type.value,
            f":{action.tool_name}" if action.tool_name else "",
            action.confidence,
        )
        return result

    def _enhance(
        self,
        action: PlanningAction,
        context: QueryContext,
        quality: float,
    ) -> PlanningAction:
        parameters = dict(action.parameters)
        if action.type is ActionType.SELECT_TOOL:
            parameters.setdefault("query", context.original_query)
            parameters["keywords"] = context.entities.get("keywords") or extract_keywords(
                context.original_query
            )
            parameters["features"] = [k for k in _FEATURE_KEYS if context.constraints.get(k)]
            if action.tool_name == "filterByPriceRange":
                for key in ("minPrice", "maxPrice"):
                    if key in context.constraints:
                        parameters[key] = context.constraints[key]
            elif action.tool_name == "filterByArrayContains":
                categories = context.entities.get("categories") or []
                if categories:
                    parameters.setdefault("value", categories[0])
        return replace(
            action,
            confidence=max(0.0, min(1.0, action.confidence * quality)),
            parameters=parameters,
            next_phase=NEXT_PHASE.get(action.type),
        )

    def context_summary(self, context: QueryContext, state: AgentState) -> dict[str, Any]:
        return {
            "query": context.original_query,
            "intent": context.interpreted_intent or "unknown",
            "entities": len(context.entities),
            "constraints": len(context.constraints),
            "ambiguities": len(context.ambiguities),
            "clarification_rounds": context.clarification_rounds,
            "iteration": state.iteration_count,
            "results": state.result_count,
            "confidence": state.current_confidence,
            "context_quality": context_quality(context),
        }

    # ---- metrics ----------------------------------------------------- #

    def _reset_counters(self) -> None:
        self._plans = 0
        self._confidence_sum = 0.0
        self._time_sum = 0.0
        self._rule_usage: dict[str, int] = {}
        self._rule_errors: dict[str, int] = {}

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_plans": self._plans,
                "rule_usage": dict(self._rule_usage),
                "rule_errors": dict(self._rule_errors),
                "average_confidence": self._confidence_sum / self._plans if self._plans else 0.0,
                "average_planning_time_ms": self._time_sum / self._plans if self._plans else 0.0,
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._reset_counters()
