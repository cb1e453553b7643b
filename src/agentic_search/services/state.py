"""AgentState lifecycle.

Every operation here is a pure function of its inputs that returns a new
``AgentState`` (``dataclasses.replace``); callers never mutate a state in
place.  The only mutable data on ``StateManager`` is its metrics, guarded
by a lock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from agentic_search.domain.entities import AgentState, StateMetadata
from agentic_search.domain.enums import Phase
from agentic_search.domain.exceptions import ValidationError
from agentic_search.domain.values import Query, StateTransition, ToolInvocation
from agentic_search.services.confidence import (
    ConfidenceModel,
    iteration_factor,
    progress_factor,
    result_count_factor,
    tool_success_factor,
    trajectory_factor,
)

logger = logging.getLogger(__name__)

MAX_HISTORY = 100
COMPLETE_CONFIDENCE = 0.9
MAX_COMPLETE_RESULTS = 50
LATE_ITERATION = 10
ERROR_CONFIDENCE = 0.3


def normalize_results(data: Any) -> tuple[Any, ...]:
    """``None`` -> ``()``, list/tuple -> tuple, anything else -> 1-tuple."""
    if data is None:
        return ()
    if isinstance(data, (list, tuple)):
        return tuple(data)
    return (data,)


@dataclass(frozen=True)
class StateAnalysis:
    """Diagnostic read-out produced by :meth:`StateManager.analyze_state`."""

    quality: str
    completion_likelihood: float
    recommendations: tuple[str, ...] = ()
    next_actions: tuple[str, ...] = ()
    potential_issues: tuple[str, ...] = ()
    metrics: Mapping[str, Any] = field(default_factory=dict)


class StateManager:
    """Creates and evolves ``AgentState`` snapshots.

    Parameters
    ----------
    confidence_model:
        Shared model used to aggregate the five loop-state factors.
    """

    def __init__(self, confidence_model: ConfidenceModel | None = None) -> None:
        self.confidence_model = confidence_model or ConfidenceModel()
        self._lock = threading.Lock()
        self._created = 0
        self._updates = 0
        self._transitions = 0
        self._completed = 0
        self._completion_iterations = 0

    # ------------------------------------------------------------------ #
    #  Construction and updates                                          #
    # ------------------------------------------------------------------ #

    def create_initial_state(self, query: Query | str) -> AgentState:
        text = query.text if isinstance(query, Query) else query
        if not text or not text.strip():
            raise ValidationError("Query text must not be empty", issues=["empty query"])
        with self._lock:
            self._created += 1
        return AgentState(query=text, phase=Phase.IDLE, metadata=StateMetadata())

    def update_state_with_results(
        self,
        state: AgentState,
        results: Any,
        tool_name: str,
        confidence: float,
        reasoning: str = "",
        parameters: Mapping[str, Any] | None = None,
    ) -> AgentState:
        """Fold one tool execution into *state*.

        Results are replaced (not merged), the iteration counter advances
        by one, the confidence and tool histories are appended to, and
        ``current_confidence`` is recomputed from the loop-state factors.
        """
        items = normalize_results(results)
        confidence = min(1.0, max(0.0, confidence))
        now = time.time()
        invocation = ToolInvocation(
            tool_name=tool_name,
            parameters=dict(parameters or {}),
            result_count=len(items),
            confidence=confidence,
            reasoning=reasoning,
            timestamp=now,
        )
        updated = replace(
            state,
            results=items,
            iteration_count=state.iteration_count + 1,
            confidence_scores=state.confidence_scores + (confidence,),
            tool_history=state.tool_history + (invocation,),
            metadata=replace(
                state.metadata,
                last_update_time=now,
                total_steps=state.metadata.total_steps + 1,
                completed_steps=state.metadata.completed_steps + 1,
            ),
        )
        updated = replace(updated, current_confidence=self._state_confidence(updated, confidence))
        with self._lock:
            self._updates += 1
        logger.debug(
            "State updated by %s: %d results, confidence %.3f (iteration %d)",
            tool_name, len(items), updated.current_confidence, updated.iteration_count,
        )
        return updated

    def _state_confidence(self, state: AgentState, latest: float) -> float:
        calculation = self.confidence_model.score([
            result_count_factor(state.result_count),
            trajectory_factor(state.confidence_scores),
            iteration_factor(state.iteration_count),
            progress_factor(self.progress(state, latest)),
            tool_success_factor(state.tool_history),
        ])
        return calculation.score

    @staticmethod
    def progress(state: AgentState, confidence: float | None = None) -> float:
        """Heuristic completion progress in [0, 1]."""
        if state.is_complete:
            return 1.0
        conf = state.current_confidence if confidence is None else confidence
        value = (
            min(0.7, state.iteration_count / 8)
            + conf * 0.2
            + min(0.1, state.result_count / 100)
        )
        return min(1.0, value)

    def transition_state(
        self,
        state: AgentState,
        to_phase: Phase,
        reason: str = "",
        confidence: float | None = None,
    ) -> AgentState:
        """Move *state* to *to_phase*, recording the transition."""
        now = time.time()
        transition = StateTransition(
            from_phase=state.phase,
            to_phase=to_phase,
            reason=reason,
            confidence=state.current_confidence if confidence is None else confidence,
            iteration=state.iteration_count,
            result_count=state.result_count,
            timestamp=now,
        )
        history = (state.history + (transition,))[-MAX_HISTORY:]
        with self._lock:
            self._transitions += 1
        logger.debug("Phase %s -> %s (%s)", state.phase.value, to_phase.value, reason or "-")
        return replace(
            state,
            phase=to_phase,
            history=history,
            metadata=replace(
                state.metadata,
                last_update_time=now,
                total_steps=state.metadata.total_steps + 1,
            ),
        )

    def mark_complete(self, state: AgentState, reason: str = "complete") -> AgentState:
        """Flag *state* complete.  A state with no tool iteration cannot be."""
        if state.iteration_count == 0:
            raise ValidationError(
                "Cannot complete a state before any tool iteration",
                issues=["is_complete with iteration_count == 0"],
            )
        completed = self.transition_state(
            replace(state, is_complete=True), Phase.COMPLETED, reason
        )
        with self._lock:
            self._completed += 1
            self._completion_iterations += state.iteration_count
        return completed

    def mark_error(self, state: AgentState, message: str) -> AgentState:
        errored = replace(
            state,
            metadata=replace(state.metadata, has_error=True, error_message=message),
        )
        return self.transition_state(errored, Phase.ERROR, message)

    # ------------------------------------------------------------------ #
    #  Predicates                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def is_complete(state: AgentState) -> bool:
        if state.is_complete:
            return True
        if (
            state.current_confidence >= COMPLETE_CONFIDENCE
            and 0 < state.result_count <= MAX_COMPLETE_RESULTS
        ):
            return True
        recent = state.confidence_scores[-3:]
        return (
            state.iteration_count >= LATE_ITERATION
            and len(recent) > 0
            and float(np.mean(recent)) >= 0.7
        )

    @staticmethod
    def has_error(state: AgentState) -> bool:
        if state.metadata.has_error:
            return True
        if state.iteration_count > 0 and state.current_confidence < ERROR_CONFIDENCE:
            return True
        recent = state.confidence_scores[-5:]
        return sum(1 for s in recent if s < 0.4) >= 4

    @staticmethod
    def validate_state(state: AgentState) -> list[str]:
        """Return every invariant violation found on *state*.  Never raises."""
        issues: list[str] = []
        if not state.query or not state.query.strip():
            issues.append("query must not be empty")
        if state.iteration_count < 0:
            issues.append(f"iteration_count must be >= 0, got {state.iteration_count}")
        if state.is_complete and state.iteration_count == 0:
            issues.append("state cannot be complete with iteration_count == 0")
        cc = state.current_confidence
        if not isinstance(cc, (int, float)) or not math.isfinite(cc) or not 0.0 <= cc <= 1.0:
            issues.append(f"current_confidence must be in [0, 1], got {cc}")
        for i, score in enumerate(state.confidence_scores):
            if not math.isfinite(score) or not 0.0 <= score <= 1.0:
                issues.append(f"confidence_scores[{i}] out of range: {score}")
        if len(state.confidence_scores) > state.iteration_count:
            issues.append(
                f"{len(state.confidence_scores)} confidence scores for "
                f"{state.iteration_count} iterations"
            )
        if len(state.tool_history) > state.iteration_count:
            issues.append(
                f"{len(state.tool_history)} tool invocations for "
                f"{state.iteration_count} iterations"
            )
        if len(state.history) > MAX_HISTORY:
            issues.append(f"transition history exceeds {MAX_HISTORY} entries")
        if state.metadata.completed_steps > state.metadata.total_steps:
            issues.append("completed_steps exceeds total_steps")
        if state.metadata.last_update_time < state.metadata.start_time:
            issues.append("last_update_time precedes start_time")
        return issues

    # ------------------------------------------------------------------ #
    #  Diagnostics                                                        #
    # ------------------------------------------------------------------ #

    def analyze_state(self, state: AgentState) -> StateAnalysis:
        conf = state.current_confidence
        if conf >= 0.8:
            quality = "excellent"
        elif conf >= 0.6:
            quality = "good"
        elif conf >= 0.4:
            quality = "fair"
        else:
            quality = "poor"

        recommendations: list[str] = []
        next_actions: list[str] = []
        issues: list[str] = []

        if not state.has_results:
            recommendations.append("Broaden the search criteria")
            next_actions.append("select_tool")
        elif state.result_count > MAX_COMPLETE_RESULTS:
            recommendations.append("Apply filters to reduce the result set")
            next_actions.append("filter")
        if conf < 0.5:
            recommendations.append("Refine the query or try a different tool")
        if state.iteration_count >= 8:
            issues.append(f"High iteration count ({state.iteration_count})")
        if self.has_error(state):
            issues.append(state.metadata.error_message or "Low or declining confidence")
            next_actions.append("recover")
        if len(state.confidence_scores) >= 3:
            recent = np.asarray(state.confidence_scores[-3:], dtype=float)
            if recent[-1] < recent[0] - 0.1:
                issues.append("Confidence is declining")
        if self.is_complete(state):
            next_actions.append("complete")
        elif not next_actions:
            next_actions.append("evaluate")

        likelihood = min(1.0, 0.6 * conf + 0.4 * self.progress(state))
        return StateAnalysis(
            quality=quality,
            completion_likelihood=round(likelihood, 4),
            recommendations=tuple(recommendations),
            next_actions=tuple(next_actions),
            potential_issues=tuple(issues),
            metrics={
                "iteration_count": state.iteration_count,
                "result_count": state.result_count,
                "current_confidence": conf,
                "tools_used": len(state.tool_history),
                "elapsed_s": state.metadata.last_update_time - state.metadata.start_time,
            },
        )

    def get_state_summary(self, state: AgentState) -> str:
        tools = ", ".join(dict.fromkeys(t.tool_name for t in state.tool_history)) or "none"
        return (
            f"Phase: {state.phase.value} | Iteration: {state.iteration_count} | "
            f"Results: {state.result_count} | Confidence: {state.current_confidence:.2f} | "
            f"Complete: {self.is_complete(state)} | Tools: {tools}"
        )

    @staticmethod
    def get_state_history(state: AgentState) -> list[StateTransition]:
        return list(state.history)

    # ------------------------------------------------------------------ #
    #  Metrics                                                            #
    # ------------------------------------------------------------------ #

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "states_created": self._created,
                "updates": self._updates,
                "transitions": self._transitions,
                "completed": self._completed,
                "average_iterations_to_completion": (
                    self._completion_iterations / self._completed if self._completed else 0.0
                ),
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._created = 0
            self._updates = 0
            self._transitions = 0
            self._completed = 0
            self._completion_iterations = 0
