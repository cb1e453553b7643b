"""Value objects for the agentic search loop.

All types here are frozen dataclasses: immutable and compared by value.
They represent confidence measurements, ambiguities, clarification
exchanges, planner actions, tool requests/results, evaluations, and
recovery outcomes.
"""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .enums import (
    ActionType,
    AmbiguityType,
    ConfidenceSource,
    EvaluationDepth,
    Phase,
    Severity,
)

if TYPE_CHECKING:
    from .entities import AgentState, QueryContext


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Query:
    """The original request text and the session it belongs to."""

    text: str
    session_id: str = field(default_factory=lambda: _short_id("session"))
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.text or not self.text.strip():
            raise ValueError("Query text must not be empty")


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConfidenceFactor:
    """A named, weighted sub-score contributing to a confidence value."""

    name: str
    score: float
    weight: float = 1.0
    reasoning: str = ""

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"weight must be >= 0, got {self.weight}")


@dataclass(frozen=True)
class ConfidenceCalculation:
    """A set of factors aggregated into one overall score.

    ``source`` records where the score came from so heuristic and
    LLM-reported values can be told apart even though they share a scale.
    """

    score: float
    factors: tuple[ConfidenceFactor, ...] = ()
    reasoning: str = ""
    computation_time_ms: float = 0.0
    source: ConfidenceSource = ConfidenceSource.HEURISTIC
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Ambiguity & clarification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolutionOption:
    """One answer a user can pick to resolve an ambiguity."""

    id: str
    text: str
    confidence: float
    refined_query: str | None = None


@dataclass(frozen=True)
class Ambiguity:
    """An underspecified span of a query."""

    type: AmbiguityType
    severity: Severity
    text: str
    description: str = ""
    position: int = 0
    questions: tuple[str, ...] = ()
    options: tuple[ResolutionOption, ...] = ()
    id: str = field(default_factory=lambda: _short_id("ambiguity"))

    @property
    def signature(self) -> tuple[str, str]:
        """``(type, lowercased text)`` used to recognise re-detections."""
        return (self.type.value, self.text.lower())


@dataclass(frozen=True)
class ClarificationRequest:
    """A question put to the user, tied to the ambiguities it addresses."""

    question: str
    options: tuple[ResolutionOption, ...]
    ambiguity_ids: tuple[str, ...]
    priority: Severity = Severity.MEDIUM
    reasoning: str = ""
    span: str = ""
    signatures: tuple[tuple[str, str], ...] = ()
    id: str = field(default_factory=lambda: _short_id("clarification"))
    timestamp: float = field(default_factory=time.time)

    def option(self, option_id: str) -> ResolutionOption | None:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


@dataclass(frozen=True)
class ClarificationResponse:
    """The user's answer: a selected option, free text, or both."""

    request_id: str
    option_id: str | None = None
    free_text: str | None = None
    confidence: float = 0.8
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ClarificationRecord:
    """One completed clarification round."""

    round: int
    question: str
    response: str
    confidence: float
    request_id: str
    resolved_ambiguity_ids: tuple[str, ...] = ()
    resolved_signatures: tuple[tuple[str, str], ...] = ()
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RefinementRecord:
    """An original -> refined query transition."""

    original: str
    refined: str
    reason: str = ""
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

_TOOL_ACTIONS = frozenset({ActionType.SELECT_TOOL, ActionType.EXECUTE})


@dataclass(frozen=True)
class PlanningAction:
    """Tagged variant over the actions the loop can take next.

    ``SELECT_TOOL`` and ``EXECUTE`` actions must name a tool; every other
    variant ignores ``tool_name`` and carries free-form ``parameters``.
    """

    type: ActionType
    confidence: float
    reasoning: str = ""
    tool_name: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    next_phase: Phase | None = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.confidence <= 1.0) or math.isnan(self.confidence):
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.type in _TOOL_ACTIONS and not self.tool_name:
            raise ValueError(f"{self.type.value} action requires a tool_name")

    @property
    def is_tool_action(self) -> bool:
        return self.type in _TOOL_ACTIONS


@dataclass(frozen=True)
class PlanningResult:
    """A primary action plus up to two alternatives."""

    action: PlanningAction
    alternatives: tuple[PlanningAction, ...] = ()
    reasoning: str = ""
    confidence: float = 0.0
    rule_id: str | None = None
    planner: str = "rules"
    planning_time_ms: float = 0.0
    metadata: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tools & execution
# ---------------------------------------------------------------------------

_PARAM_TYPES = frozenset({"string", "number", "integer", "boolean", "array", "object", "any"})


@dataclass(frozen=True)
class ParameterSpec:
    """Declared contract for one tool parameter."""

    name: str
    type: str = "any"
    required: bool = False
    default: Any = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.type not in _PARAM_TYPES:
            raise ValueError(
                f"parameter type must be one of {sorted(_PARAM_TYPES)}, got '{self.type}'"
            )


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable tool plus its declared contract.

    ``invoke(parameters, context)`` may be a plain function or a coroutine
    function; it returns the tool's data or raises.

    ``context_requirements`` names predicates that must hold on the
    ``QueryContext`` (``hasQuery``, ``hasIntent``, ``hasEntities``,
    ``hasConstraints``).  ``resource_requirements`` may declare
    ``memory_mb``.  ``expected_result`` may declare ``type="array"`` and
    ``min_length``.
    """

    name: str
    invoke: Callable[..., Any]
    parameters: tuple[ParameterSpec, ...] = ()
    category: str = "general"
    description: str = ""
    context_requirements: tuple[str, ...] = ()
    resource_requirements: Mapping[str, Any] = field(default_factory=dict)
    expected_result: Mapping[str, Any] = field(default_factory=dict)

    def parameter(self, name: str) -> ParameterSpec | None:
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None


@dataclass(frozen=True)
class ExecutionRequest:
    """A tool name, its parameters, and the session snapshot it runs against."""

    tool_name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    context: QueryContext | None = None
    state: AgentState | None = None
    priority: int = 0
    timeout: float | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """Structured outcome of one ``ToolExecutor.execute`` call."""

    success: bool
    tool_name: str
    data: Any = None
    error: BaseException | None = None
    error_kind: str | None = None
    execution_time_ms: float = 0.0
    confidence: float = 0.0
    attempts: int = 0
    fallback_used: bool = False
    result_count: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QualityCheck:
    """A single named, scored, pass/fail assessment of the result set."""

    name: str
    passed: bool
    score: float
    reasoning: str = ""
    priority: Severity = Severity.MEDIUM
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class EvaluationCriteria:
    """The five weighted criteria that feed the overall score."""

    relevance: float = 0.0
    completeness: float = 0.0
    accuracy: float = 0.0
    quality: float = 0.0
    confidence: float = 0.0

    WEIGHTS = {
        "relevance": 0.3,
        "completeness": 0.2,
        "accuracy": 0.2,
        "quality": 0.2,
        "confidence": 0.1,
    }

    def overall(self) -> float:
        total = sum(getattr(self, name) * w for name, w in self.WEIGHTS.items())
        return max(0.0, min(1.0, total))


@dataclass(frozen=True)
class EvaluationResult:
    """Evaluator verdict for one loop iteration."""

    criteria: EvaluationCriteria
    checks: tuple[QualityCheck, ...]
    overall_score: float
    should_continue: bool
    next_action: str
    reasoning: str = ""
    recommendations: tuple[str, ...] = ()
    confidence: float = 0.0
    depth: EvaluationDepth = EvaluationDepth.MEDIUM
    evaluation_time_ms: float = 0.0
    result_count: int = 0
    iteration: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def check(self, name: str) -> QualityCheck | None:
        for c in self.checks:
            if c.name == name:
                return c
        return None


# ---------------------------------------------------------------------------
# Error recovery
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorContext:
    """A failure and where it happened."""

    component: str
    operation: str
    error: BaseException
    retry_count: int = 0
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass(frozen=True)
class RecoveryResult:
    """Outcome of a recovery attempt."""

    success: bool
    recovered: bool
    action: str
    message: str = ""
    data: Any = None
    should_retry: bool = False
    next_strategy: str | None = None
    confidence: float = 0.0
    strategy: str | None = None


# ---------------------------------------------------------------------------
# State bookkeeping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolInvocation:
    """One entry of the append-only tool history."""

    tool_name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    result_count: int = 0
    confidence: float = 0.0
    reasoning: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class StateTransition:
    """A recorded phase change."""

    from_phase: Phase
    to_phase: Phase
    reason: str = ""
    confidence: float = 0.0
    iteration: int = 0
    result_count: int = 0
    timestamp: float = field(default_factory=time.time)
