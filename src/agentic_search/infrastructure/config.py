"""Configuration dataclasses for the agentic search loop.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations.  No third-party dependencies, just
stdlib ``dataclasses``.

Configs are **frozen** (``frozen=True``) so they can be hashed and shared
between concurrently running sessions without risking silent mutation.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from typing import Any

from agentic_search.domain.enums import EvaluationDepth

# ===================================================================== #
#  Loop Configuration                                                    #
# ===================================================================== #

_VALID_DEPTHS = frozenset(d.value for d in EvaluationDepth)


@dataclass(frozen=True)
class LoopConfig:
    """Parameters governing one session's iterate-until-done loop.

    Attributes
    ----------
    max_iterations:
        Hard upper limit on loop iterations (1-20).
    confidence_threshold:
        Once the evaluator's overall score reaches this value the loop
        stops ("good enough").
    evaluation_depth:
        ``"shallow"``, ``"medium"`` or ``"deep"`` quality-check tier.
    use_llm_planner:
        Try the LLM planner first, falling back to rules on any error.
    enable_cache:
        Consult the plan cache before running the loop.
    tool_timeout:
        Per-request timeout (seconds) for tool invocations.
    max_clarification_rounds:
        Hard cap on question/response exchanges per session.
    """

    max_iterations: int = 10
    confidence_threshold: float = 0.6
    evaluation_depth: str = "medium"
    use_llm_planner: bool = False
    enable_cache: bool = True
    tool_timeout: float = 30.0
    max_clarification_rounds: int = 3

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if not (1 <= self.max_iterations <= 20):
            raise ValueError(
                f"max_iterations must be in [1, 20], got {self.max_iterations}"
            )
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ValueError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.evaluation_depth not in _VALID_DEPTHS:
            raise ValueError(
                f"evaluation_depth must be one of {sorted(_VALID_DEPTHS)}, "
                f"got '{self.evaluation_depth}'"
            )
        if self.tool_timeout <= 0:
            raise ValueError(f"tool_timeout must be > 0, got {self.tool_timeout}")
        if self.max_clarification_rounds < 0:
            raise ValueError(
                f"max_clarification_rounds must be >= 0, got {self.max_clarification_rounds}"
            )

    @property
    def depth(self) -> EvaluationDepth:
        return EvaluationDepth(self.evaluation_depth)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoopConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Retry Configuration                                                   #
# ===================================================================== #

@dataclass(frozen=True)
class RetryConfig:
    """Exponential-backoff policy for tool invocations.

    Attributes
    ----------
    max_attempts:
        Total attempts including the first one.
    base_delay:
        Delay (seconds) before the second attempt.
    max_delay:
        Upper bound on any single delay.
    factor:
        Multiplier applied per attempt.
    jitter:
        Randomise each delay by +/-25 %.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    jitter: bool = True

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        if self.factor < 1.0:
            raise ValueError(f"factor must be >= 1, got {self.factor}")

    def delay_for(self, attempt: int) -> float:
        """Un-jittered delay after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * self.factor ** max(0, attempt - 1))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Executor Configuration                                                #
# ===================================================================== #

@dataclass(frozen=True)
class ExecutorConfig:
    """Tool-executor behaviour switches.

    Attributes
    ----------
    default_timeout:
        Timeout (seconds) used when a request does not carry its own.
    enable_fallback:
        Try a similar tool or a safe default after retries are exhausted.
    enable_recovery:
        Route exceptions through the error-recovery manager.
    memory_limit_mb:
        Ceiling checked against a tool's declared ``memory_mb`` requirement.
    """

    default_timeout: float = 30.0
    enable_fallback: bool = True
    enable_recovery: bool = True
    memory_limit_mb: int = 1024

    def validate(self) -> None:
        if self.default_timeout <= 0:
            raise ValueError(
                f"default_timeout must be > 0, got {self.default_timeout}"
            )
        if self.memory_limit_mb < 1:
            raise ValueError(
                f"memory_limit_mb must be >= 1, got {self.memory_limit_mb}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutorConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Unified config loader                                                 #
# ===================================================================== #

_CONFIG_MAP: dict[str, type] = {
    "loop": LoopConfig,
    "retry": RetryConfig,
    "executor": ExecutorConfig,
}


def load_config_from_json(json_str: str) -> dict[str, Any]:
    """Parse a JSON string into a dict of typed config objects.

    The JSON is expected to be an object whose top-level keys correspond to
    config section names (``loop``, ``retry``, ``executor``).  Unknown
    sections are preserved as raw dicts.

    Returns a dict mapping section name -> config instance (or raw dict).
    """
    raw = json.loads(json_str)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    result: dict[str, Any] = {}
    for section, data in raw.items():
        cls = _CONFIG_MAP.get(section)
        if cls is not None and isinstance(data, dict):
            result[section] = cls.from_dict(data)
        else:
            result[section] = data
    return result
