"""Tests for the confidence model and its factor functions."""

from __future__ import annotations

import math

import numpy as np
import pytest

from agentic_search.domain.entities import QueryContext
from agentic_search.domain.enums import ConfidenceSource
from agentic_search.domain.values import ConfidenceFactor
from agentic_search.services.confidence import (
    ConfidenceModel,
    query_clarity_factor,
    result_quality_factor,
    retry_stability_factor,
    tool_success_factor,
    trajectory_factor,
)


class TestScore:
    def test_weighted_mean(self, confidence_model: ConfidenceModel) -> None:
        calc = confidence_model.score([
            ConfidenceFactor("a", 1.0, 1.0),
            ConfidenceFactor("b", 0.0, 3.0),
        ])
        assert calc.score == pytest.approx(0.25)
        assert calc.source is ConfidenceSource.HEURISTIC
        assert len(calc.factors) == 2

    def test_clamped_to_unit_interval(self, confidence_model: ConfidenceModel) -> None:
        assert confidence_model.score([ConfidenceFactor("a", 1.5, 1.0)]).score == 1.0
        assert confidence_model.score([ConfidenceFactor("a", -0.5, 1.0)]).score == 0.0

    def test_no_factors_scores_zero(self, confidence_model: ConfidenceModel) -> None:
        calc = confidence_model.score([])
        assert calc.score == 0.0
        assert "No weighted" in calc.reasoning

    def test_zero_weights_score_zero(self, confidence_model: ConfidenceModel) -> None:
        calc = confidence_model.score([ConfidenceFactor("a", 0.9, 0.0)])
        assert calc.score == 0.0

    def test_non_finite_factor_ignored(self, confidence_model: ConfidenceModel) -> None:
        calc = confidence_model.score([
            ConfidenceFactor("nan", math.nan, 1.0),
            ConfidenceFactor("ok", 0.7, 1.0),
        ])
        assert calc.score == pytest.approx(0.7)

    def test_random_factor_sets_stay_in_range(self, confidence_model: ConfidenceModel) -> None:
        rng = np.random.default_rng(7)
        for _ in range(50):
            n = int(rng.integers(1, 8))
            scores = rng.uniform(-0.5, 1.5, n)
            weights = rng.uniform(0.01, 1.0, n)
            factors = [
                ConfidenceFactor(f"f{i}", float(s), float(w))
                for i, (s, w) in enumerate(zip(scores, weights))
            ]
            expected = float(np.clip(np.average(scores, weights=weights), 0.0, 1.0))
            value = confidence_model.score(factors).score
            assert 0.0 <= value <= 1.0
            assert value == pytest.approx(expected)

    def test_reasoning_names_strong_and_weak(self, confidence_model: ConfidenceModel) -> None:
        calc = confidence_model.score([
            ConfidenceFactor("strong", 0.9, 1.0),
            ConfidenceFactor("weak", 0.1, 1.0),
        ])
        assert "Strong indicators: strong" in calc.reasoning
        assert "Weak areas: weak" in calc.reasoning


class TestCategoryAndValidation:
    def test_categories(self, confidence_model: ConfidenceModel) -> None:
        assert confidence_model.category(0.85) == "high"
        assert confidence_model.category(0.8) == "high"
        assert confidence_model.category(0.65) == "medium"
        assert confidence_model.category(0.45) == "low"
        assert confidence_model.category(0.1) == "very_low"

    def test_threshold_order_enforced(self) -> None:
        with pytest.raises(ValueError, match="thresholds"):
            ConfidenceModel(high_threshold=0.5, medium_threshold=0.7)

    def test_validate_accepts_unit_value(self) -> None:
        assert ConfidenceModel.validate(0.7) == (True, [])
        assert ConfidenceModel.validate(0)[0] is True

    @pytest.mark.parametrize("value", ["0.5", None, True, math.nan, math.inf, 1.2, -0.1])
    def test_validate_rejects(self, value: object) -> None:
        ok, issues = ConfidenceModel.validate(value)
        assert ok is False
        assert len(issues) == 1


class TestFactors:
    def test_query_clarity_rewards_specific_terms(self) -> None:
        assert query_clarity_factor("free cli").score == pytest.approx(0.9)

    def test_query_clarity_penalises_vague_terms(self) -> None:
        assert query_clarity_factor("good tools").score == pytest.approx(0.4)

    def test_query_clarity_very_short(self) -> None:
        assert query_clarity_factor("cli").score == pytest.approx(0.3)

    def test_result_quality(self) -> None:
        assert result_quality_factor(None).score == 0.0
        assert result_quality_factor([]).score == 0.3
        assert result_quality_factor([1, 2, 3]).score == 0.9
        assert result_quality_factor(list(range(60))).score == 0.6

    def test_retry_stability(self) -> None:
        assert retry_stability_factor(1).score == 1.0
        assert retry_stability_factor(2).score == 0.75
        assert retry_stability_factor(3).score == 0.5

    def test_trajectory(self) -> None:
        assert trajectory_factor([0.5]).score == 0.5
        assert trajectory_factor([0.2, 0.5]).score == 0.8
        assert trajectory_factor([0.8, 0.5]).score == 0.3
        assert trajectory_factor([0.5, 0.55]).score == 0.6

    def test_tool_success_without_history(self) -> None:
        assert tool_success_factor([]).score == 0.8


class TestComposites:
    def test_execution_confidence_for_aligned_results(
        self, confidence_model: ConfidenceModel, catalog: list[dict]
    ) -> None:
        data = [t for t in catalog if "cli" in t["tags"] and t["pricing"]["hasFreeTier"]]
        assert data
        calc = confidence_model.calculate_execution_confidence(
            data, {"query": "free cli", "keywords": ["free", "cli"]}, elapsed_ms=5.0
        )
        assert calc.score == pytest.approx(0.96)

    def test_execution_confidence_without_data_is_low(
        self, confidence_model: ConfidenceModel
    ) -> None:
        calc = confidence_model.calculate_execution_confidence(None, {}, elapsed_ms=20000.0, attempts=3)
        assert calc.score < 0.4

    def test_query_confidence_rises_with_analysis(
        self, confidence_model: ConfidenceModel, free_cli_context: QueryContext
    ) -> None:
        bare = confidence_model.calculate_query_confidence(QueryContext(original_query="free cli"))
        analysed = confidence_model.calculate_query_confidence(free_cli_context)
        assert analysed.score > bare.score


class TestMetrics:
    def test_metrics_accumulate_and_reset(self, confidence_model: ConfidenceModel) -> None:
        confidence_model.score([ConfidenceFactor("a", 0.9)])
        confidence_model.score([ConfidenceFactor("a", 0.1)])
        metrics = confidence_model.get_metrics()
        assert metrics["total_calculations"] == 2
        assert metrics["average_confidence"] == pytest.approx(0.5)
        assert metrics["distribution"] == {"high": 1, "medium": 0, "low": 1}
        assert metrics["factor_usage"] == {"a": 2}
        assert metrics["last_calculation"].score == pytest.approx(0.1)

        confidence_model.reset_metrics()
        assert confidence_model.get_metrics()["total_calculations"] == 0
