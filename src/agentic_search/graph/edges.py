"""Conditional edge functions for the session graph.

These functions determine routing between nodes based on the current state.
They never mutate state; nodes record ``stop_reason`` and the edges only
read it.
"""

from __future__ import annotations

from typing import Any, Literal

from agentic_search.domain.enums import ActionType


def after_detect(state: dict[str, Any]) -> Literal["clarify", "plan", "finalize"]:
    """Pause for clarification, stop, or go on to planning."""
    if state.get("stop_reason"):
        return "finalize"
    if state.get("clarification") is not None:
        return "clarify"
    return "plan"


def after_plan(
    state: dict[str, Any],
) -> Literal["analyze", "clarify", "execute", "evaluate", "finalize"]:
    """Route on the planned action type."""
    if state.get("stop_reason"):
        return "finalize"
    plan = state.get("plan")
    if plan is None:
        # Planning failed but earlier results survive: judge those.
        return "evaluate"
    action = plan.action.type
    if action is ActionType.ANALYZE:
        return "analyze"
    if action is ActionType.CLARIFY:
        return "clarify"
    if action in (ActionType.SELECT_TOOL, ActionType.EXECUTE):
        return "execute"
    if action in (ActionType.EVALUATE, ActionType.ITERATE):
        return "evaluate"
    return "finalize"


def after_clarify(state: dict[str, Any]) -> Literal["__end__", "finalize"]:
    """End the run to wait for the user, unless no question could be built."""
    if state.get("clarification") is not None and not state.get("stop_reason"):
        return "__end__"
    return "finalize"


def after_execute(state: dict[str, Any]) -> Literal["evaluate", "finalize"]:
    if state.get("stop_reason"):
        return "finalize"
    return "evaluate"


def should_loop(state: dict[str, Any]) -> Literal["detect", "finalize"]:
    """Loop back to detection unless a stop was recorded or the budget is spent."""
    if state.get("stop_reason"):
        return "finalize"
    if state.get("loop_iteration", 0) >= state.get("max_iterations", 10):
        return "finalize"
    return "detect"
