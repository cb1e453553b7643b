"""Tests for AgentState lifecycle management."""

from __future__ import annotations

from dataclasses import replace

import pytest

from agentic_search.domain.entities import AgentState
from agentic_search.domain.enums import Phase
from agentic_search.domain.exceptions import ValidationError
from agentic_search.domain.values import Query
from agentic_search.services.state import MAX_HISTORY, StateManager, normalize_results


class TestNormalizeResults:
    def test_shapes(self) -> None:
        assert normalize_results(None) == ()
        assert normalize_results([1, 2]) == (1, 2)
        assert normalize_results((1,)) == (1,)
        assert normalize_results({"a": 1}) == ({"a": 1},)


class TestCreateAndUpdate:
    def test_initial_state(self, state_manager: StateManager) -> None:
        state = state_manager.create_initial_state(Query("free cli"))
        assert state.query == "free cli"
        assert state.phase is Phase.IDLE
        assert state.iteration_count == 0
        assert state.results == ()
        assert state_manager.validate_state(state) == []

    def test_empty_query_rejected(self, state_manager: StateManager) -> None:
        with pytest.raises(ValidationError):
            state_manager.create_initial_state("   ")

    def test_update_folds_one_execution(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        state = state_manager.update_state_with_results(
            initial_state, catalog[:3], "searchByText", 0.96, "search", parameters={"query": "free cli"}
        )
        assert state.result_count == 3
        assert state.iteration_count == 1
        assert state.confidence_scores == (0.96,)
        assert state.tool_history[0].tool_name == "searchByText"
        assert state.tool_history[0].parameters == {"query": "free cli"}
        assert 0.0 <= state.current_confidence <= 1.0
        assert initial_state.iteration_count == 0
        assert state_manager.validate_state(state) == []

    def test_results_are_replaced_not_merged(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        first = state_manager.update_state_with_results(initial_state, catalog[:3], "searchByText", 0.9)
        second = state_manager.update_state_with_results(first, catalog[:1], "limitResults", 0.9)
        assert second.results == (catalog[0],)
        assert second.iteration_count == 2

    def test_same_inputs_same_state(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        a = state_manager.update_state_with_results(initial_state, catalog[:3], "searchByText", 0.8)
        b = state_manager.update_state_with_results(initial_state, catalog[:3], "searchByText", 0.8)
        assert a.results == b.results
        assert a.confidence_scores == b.confidence_scores
        assert a.current_confidence == pytest.approx(b.current_confidence)

    def test_confidence_clamped(self, state_manager: StateManager, initial_state: AgentState) -> None:
        state = state_manager.update_state_with_results(initial_state, [], "searchByText", 1.4)
        assert state.confidence_scores == (1.0,)


class TestTransitions:
    def test_transition_records_history(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        state = state_manager.transition_state(initial_state, Phase.PLANNING, "planning")
        assert state.phase is Phase.PLANNING
        history = state_manager.get_state_history(state)
        assert len(history) == 1
        assert history[0].from_phase is Phase.IDLE
        assert history[0].to_phase is Phase.PLANNING
        assert history[0].reason == "planning"

    def test_history_is_bounded(self, state_manager: StateManager, initial_state: AgentState) -> None:
        state = initial_state
        for _ in range(MAX_HISTORY + 20):
            state = state_manager.transition_state(state, Phase.EVALUATING)
        assert len(state.history) == MAX_HISTORY
        assert state_manager.validate_state(state) == []

    def test_mark_complete_requires_an_iteration(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        with pytest.raises(ValidationError):
            state_manager.mark_complete(initial_state)

    def test_mark_complete(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        state = state_manager.update_state_with_results(initial_state, catalog[:3], "searchByText", 0.9)
        done = state_manager.mark_complete(state, "evaluation_complete")
        assert done.is_complete is True
        assert done.phase is Phase.COMPLETED
        assert state_manager.is_complete(done)
        assert state_manager.get_metrics()["completed"] == 1

    def test_mark_error(self, state_manager: StateManager, initial_state: AgentState) -> None:
        state = state_manager.mark_error(initial_state, "tool exploded")
        assert state.phase is Phase.ERROR
        assert state.metadata.has_error is True
        assert state.metadata.error_message == "tool exploded"
        assert state_manager.has_error(state)


class TestPredicates:
    def test_confident_focused_results_complete(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        state = replace(
            initial_state, iteration_count=1, current_confidence=0.95, results=tuple(catalog[:10])
        )
        assert state_manager.is_complete(state) is True

    def test_confidence_without_results_is_not_complete(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        state = replace(initial_state, iteration_count=1, current_confidence=0.95)
        assert state_manager.is_complete(state) is False

    def test_late_iterations_with_good_recent_scores_complete(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        state = replace(initial_state, iteration_count=10, confidence_scores=(0.2, 0.8, 0.7, 0.75))
        assert state_manager.is_complete(state) is True

    def test_fresh_state_has_no_error(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        assert state_manager.has_error(initial_state) is False

    def test_low_confidence_after_iterations_is_error(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        state = replace(initial_state, iteration_count=2, current_confidence=0.2)
        assert state_manager.has_error(state) is True

    def test_repeated_low_scores_is_error(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        state = replace(
            initial_state,
            iteration_count=5,
            current_confidence=0.5,
            confidence_scores=(0.1, 0.2, 0.3, 0.35, 0.9),
        )
        assert state_manager.has_error(state) is True

    def test_validate_state_reports_violations(
        self, state_manager: StateManager, initial_state: AgentState
    ) -> None:
        broken = replace(
            initial_state, is_complete=True, current_confidence=1.5, confidence_scores=(0.5,)
        )
        issues = state_manager.validate_state(broken)
        assert any("complete" in i for i in issues)
        assert any("current_confidence" in i for i in issues)
        assert any("confidence scores" in i for i in issues)


class TestDiagnostics:
    def test_analyze_empty_state(self, state_manager: StateManager, initial_state: AgentState) -> None:
        analysis = state_manager.analyze_state(initial_state)
        assert analysis.quality == "poor"
        assert "Broaden the search criteria" in analysis.recommendations
        assert "select_tool" in analysis.next_actions

    def test_analyze_complete_state(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        state = replace(
            initial_state, iteration_count=1, current_confidence=0.95, results=tuple(catalog[:3])
        )
        analysis = state_manager.analyze_state(state)
        assert analysis.quality == "excellent"
        assert "complete" in analysis.next_actions
        assert analysis.metrics["result_count"] == 3

    def test_summary(
        self, state_manager: StateManager, initial_state: AgentState, catalog: list[dict]
    ) -> None:
        state = state_manager.update_state_with_results(initial_state, catalog[:3], "searchByText", 0.9)
        summary = state_manager.get_state_summary(state)
        assert "Iteration: 1" in summary
        assert "Results: 3" in summary
        assert "Tools: searchByText" in summary

    def test_progress(self, state_manager: StateManager, initial_state: AgentState) -> None:
        assert state_manager.progress(initial_state) == 0.0
        assert state_manager.progress(replace(initial_state, is_complete=True)) == 1.0
