"""LangGraph node factories for the session loop.

Each ``make_*_node`` closes over the service it delegates to and returns an
async node that takes a ``SearchGraphState`` and returns a partial update
dict.  Nodes never reimplement service logic.

Every node except ``finalize`` first checks the session's
``CancellationToken`` and records ``stop_reason="cancelled"`` if it fired.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from agentic_search.domain.enums import ActionType, Phase
from agentic_search.domain.exceptions import PlanningError
from agentic_search.domain.values import ExecutionRequest
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.evaluation import ResultEvaluator
from agentic_search.services.execution import ToolExecutor
from agentic_search.services.llm_planning import LLMPlanner
from agentic_search.services.planning import RulesBasedPlanner
from agentic_search.services.query_analysis import QueryAnalyzer
from agentic_search.services.state import StateManager

logger = logging.getLogger(__name__)

Node = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

COMPLETING_REASONS = frozenset({"evaluation_complete", "planner_complete"})


def _cancelled(state: dict[str, Any]) -> bool:
    token = state.get("cancel_token")
    return token is not None and token.cancelled


def _guarded(step: str, node: Node) -> Node:
    """Absorb an unexpected failure inside one loop step.

    The error is recorded on ``agent_state.metadata.extra["iteration_errors"]``.
    The loop keeps going when earlier results exist and stops otherwise.
    """

    @functools.wraps(node)
    async def guarded(state: dict[str, Any]) -> dict[str, Any]:
        try:
            return await node(state)
        except Exception as exc:
            logger.exception("Loop step %r failed", step)
            agent_state = state["agent_state"]
            message = f"{step} failed: {exc}"
            extra = dict(agent_state.metadata.extra)
            extra["iteration_errors"] = [*extra.get("iteration_errors", []), message]
            agent_state = replace(agent_state, metadata=replace(agent_state.metadata, extra=extra))
            update: dict[str, Any] = {"agent_state": agent_state, "errors": [message]}
            if not agent_state.has_results:
                update["stop_reason"] = "iteration_failed"
            return update

    return guarded


def make_detect_node(detector: AmbiguityDetector) -> Node:
    """Start of each loop iteration: detect ambiguities, maybe ask."""

    async def detect_node(state: dict[str, Any]) -> dict[str, Any]:
        if _cancelled(state):
            return {"stop_reason": "cancelled"}
        context = state["context"]
        iteration = state.get("loop_iteration", 0) + 1

        ambiguities = detector.detect(context.original_query, context)
        detector.record(context, ambiguities)

        update: dict[str, Any] = {
            "loop_iteration": iteration,
            "ambiguities": ambiguities,
            "clarification": None,
            "plan": None,
            "execution": None,
            "context": context,
        }
        trace = f"Iteration {iteration}: {len(ambiguities)} ambiguities detected"
        if detector.needs_clarification(context):
            request = detector.build_request(ambiguities, context.original_query, context)
            if request is not None:
                update["clarification"] = request
                trace += f"; clarification needed ({request.priority.value})"
        update["reasoning_trace"] = [trace]
        logger.debug("detect_node: %s", trace)
        return update

    return detect_node


def make_clarify_node(detector: AmbiguityDetector, state_manager: StateManager) -> Node:
    """Pause the loop with a clarification request for the caller."""

    async def clarify_node(state: dict[str, Any]) -> dict[str, Any]:
        context = state["context"]
        request = state.get("clarification")
        if request is None:
            request = detector.build_request(
                list(context.ambiguities), context.original_query, context
            )
        if request is None:
            logger.warning("Clarification requested but no ambiguity qualifies")
            return {
                "stop_reason": "clarification_unavailable",
                "warnings": ["Clarification was requested but no question could be built"],
            }
        agent_state = state_manager.transition_state(
            state["agent_state"], Phase.CLARIFYING, "awaiting clarification"
        )
        return {
            "agent_state": agent_state,
            "clarification": request,
            "reasoning_trace": [f"Asking: {request.question}"],
        }

    return clarify_node


def make_plan_node(
    planner: RulesBasedPlanner,
    state_manager: StateManager,
    llm_planner: LLMPlanner | None = None,
) -> Node:
    """Choose the next action; the LLM planner, when given, is tried first."""

    async def plan_node(state: dict[str, Any]) -> dict[str, Any]:
        if _cancelled(state):
            return {"stop_reason": "cancelled"}
        context = state["context"]
        agent_state = state_manager.transition_state(
            state["agent_state"], Phase.PLANNING, "planning next action"
        )
        warnings: list[str] = []
        result = None
        if llm_planner is not None:
            try:
                result = await asyncio.to_thread(
                    llm_planner.plan_next_action, context, agent_state
                )
            except Exception as exc:
                logger.warning("LLM planner failed, falling back to rules: %s", exc)
                warnings.append(f"LLM planner unavailable, used rules: {exc}")
        if result is None:
            try:
                result = planner.plan_next_action(context, agent_state)
            except PlanningError as exc:
                logger.warning("Planning failed: %s", exc)
                return {
                    "agent_state": agent_state,
                    "plan": None,
                    "stop_reason": "planning_failed",
                    "errors": [str(exc)],
                    "warnings": warnings,
                }

        action = result.action
        target = f":{action.tool_name}" if action.tool_name else ""
        trace = (
            f"Plan ({result.planner}{'/' + result.rule_id if result.rule_id else ''}): "
            f"{action.type.value}{target} confidence {action.confidence:.2f}. {action.reasoning}"
        )
        return {
            "agent_state": agent_state,
            "plan": result,
            "reasoning_trace": [trace],
            "warnings": warnings,
        }

    return _guarded("plan", plan_node)


def make_analyze_node(analyzer: QueryAnalyzer, state_manager: StateManager) -> Node:
    """Fold query analysis (intent, entities, constraints) into the context."""

    async def analyze_node(state: dict[str, Any]) -> dict[str, Any]:
        context = state["context"]
        agent_state = state_manager.transition_state(
            state["agent_state"], Phase.ANALYZING, "analyzing query"
        )
        analysis = analyzer.analyze(context.original_query)
        analyzer.apply(analysis, context)
        return {
            "context": context,
            "agent_state": agent_state,
            "reasoning_trace": [
                f"Analysis: intent={analysis.intent}, pattern={analysis.pattern_type}, "
                f"constraints={sorted(analysis.constraints)}"
            ],
        }

    return _guarded("analyze", analyze_node)


def make_execute_node(executor: ToolExecutor, state_manager: StateManager) -> Node:
    """Run the planned tool and fold its results into the agent state."""

    async def execute_node(state: dict[str, Any]) -> dict[str, Any]:
        if _cancelled(state):
            return {"stop_reason": "cancelled"}
        context = state["context"]
        action = state["plan"].action
        tool_name = action.tool_name or ""
        agent_state = state_manager.transition_state(
            state["agent_state"], Phase.EXECUTING, f"running {tool_name}"
        )
        request = ExecutionRequest(
            tool_name=tool_name,
            parameters=dict(action.parameters),
            context=context,
            state=agent_state,
            timeout=state.get("tool_timeout"),
        )
        result = await executor.execute(request, state.get("cancel_token"))
        update: dict[str, Any] = {"execution": result, "tools_used": [tool_name]}

        if result.success:
            agent_state = state_manager.update_state_with_results(
                agent_state,
                result.data,
                tool_name,
                result.confidence,
                action.reasoning,
                parameters=action.parameters,
            )
            update["agent_state"] = agent_state
            update["reasoning_trace"] = [
                f"Executed {tool_name}: {agent_state.result_count} results, "
                f"confidence {result.confidence:.2f} ({result.attempts} attempt(s))"
            ]
            if result.fallback_used:
                update["warnings"] = [f"Fallback used for {tool_name}"]
            return update

        if result.error_kind == "Cancelled":
            update.update(agent_state=agent_state, stop_reason="cancelled")
            return update

        message = f"{tool_name} failed ({result.error_kind}): {result.error}"
        update["errors"] = [message]
        if agent_state.has_results:
            update["agent_state"] = agent_state
            update["warnings"] = ["Continuing with results from an earlier iteration"]
        else:
            update["agent_state"] = state_manager.mark_error(agent_state, message)
            update["stop_reason"] = "execution_failed"
        return update

    return _guarded("execute", execute_node)


def make_evaluate_node(evaluator: ResultEvaluator, state_manager: StateManager) -> Node:
    """Score the results and decide whether another iteration is needed."""

    async def evaluate_node(state: dict[str, Any]) -> dict[str, Any]:
        if _cancelled(state):
            return {"stop_reason": "cancelled"}
        context = state["context"]
        agent_state = state_manager.transition_state(
            state["agent_state"], Phase.EVALUATING, "evaluating results"
        )
        evaluation = evaluator.evaluate(agent_state, context, state.get("evaluation_depth"))
        threshold = state.get("confidence_threshold", 0.6)
        should_continue = evaluation.should_continue and evaluation.overall_score < threshold

        update: dict[str, Any] = {
            "agent_state": agent_state,
            "evaluation": evaluation,
            "should_continue": should_continue,
            "reasoning_trace": [
                f"Evaluation: overall {evaluation.overall_score:.2f}, "
                f"next={evaluation.next_action}, continue={should_continue}"
            ],
        }
        if not should_continue:
            update["stop_reason"] = "evaluation_complete"
        logger.debug(
            "evaluate_node: overall=%.3f continue=%s", evaluation.overall_score, should_continue
        )
        return update

    return _guarded("evaluate", evaluate_node)


def make_finalize_node(state_manager: StateManager) -> Node:
    """Record why the loop stopped and mark the state complete when earned."""

    async def finalize_node(state: dict[str, Any]) -> dict[str, Any]:
        agent_state = state["agent_state"]
        reason = state.get("stop_reason", "")
        if not reason:
            plan = state.get("plan")
            if plan is not None and plan.action.type is ActionType.COMPLETE:
                reason = "planner_complete"
            elif state.get("loop_iteration", 0) >= state.get("max_iterations", 10):
                reason = "max_iterations"
            else:
                reason = "stopped"
        if (
            reason in COMPLETING_REASONS
            and agent_state.iteration_count > 0
            and not agent_state.is_complete
        ):
            agent_state = state_manager.mark_complete(agent_state, reason)
        return {
            "agent_state": agent_state,
            "stop_reason": reason,
            "should_continue": False,
            "reasoning_trace": [f"Stopped: {reason.replace('_', ' ')}"],
        }

    return finalize_node
