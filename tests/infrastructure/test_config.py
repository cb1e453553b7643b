"""Tests for configuration dataclasses."""

from __future__ import annotations

import json

import pytest

from agentic_search.domain.enums import EvaluationDepth
from agentic_search.infrastructure.config import (
    ExecutorConfig,
    LoopConfig,
    RetryConfig,
    load_config_from_json,
)


class TestLoopConfig:
    def test_defaults_validate(self) -> None:
        cfg = LoopConfig()
        cfg.validate()
        assert cfg.max_iterations == 10
        assert cfg.confidence_threshold == 0.6
        assert cfg.depth is EvaluationDepth.MEDIUM

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": 0},
            {"max_iterations": 21},
            {"confidence_threshold": 1.5},
            {"evaluation_depth": "extreme"},
            {"tool_timeout": 0},
            {"max_clarification_rounds": -1},
        ],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            LoopConfig(**kwargs).validate()

    def test_round_trip_ignores_unknown_keys(self) -> None:
        data = LoopConfig(max_iterations=4, evaluation_depth="deep").to_dict()
        data["unknown"] = True
        cfg = LoopConfig.from_dict(data)
        assert cfg.max_iterations == 4
        assert cfg.depth is EvaluationDepth.DEEP

    def test_from_dict_validates(self) -> None:
        with pytest.raises(ValueError, match="max_iterations"):
            LoopConfig.from_dict({"max_iterations": 50})


class TestRetryConfig:
    def test_delay_for_is_exponential_and_capped(self) -> None:
        cfg = RetryConfig(base_delay=1.0, factor=2.0, max_delay=5.0)
        assert [cfg.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1.0},
            {"base_delay": 10.0, "max_delay": 1.0},
            {"factor": 0.5},
        ],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs).validate()


class TestExecutorConfig:
    def test_invalid_timeout(self) -> None:
        with pytest.raises(ValueError, match="default_timeout"):
            ExecutorConfig(default_timeout=0).validate()


class TestLoadConfigFromJson:
    def test_known_sections_are_typed(self) -> None:
        raw = json.dumps(
            {
                "loop": {"max_iterations": 5},
                "retry": {"max_attempts": 2},
                "executor": {"default_timeout": 5.0},
                "custom": {"x": 1},
            }
        )
        result = load_config_from_json(raw)
        assert isinstance(result["loop"], LoopConfig)
        assert result["loop"].max_iterations == 5
        assert isinstance(result["retry"], RetryConfig)
        assert isinstance(result["executor"], ExecutorConfig)
        assert result["custom"] == {"x": 1}

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ValueError, match="object"):
            load_config_from_json("[1, 2]")
