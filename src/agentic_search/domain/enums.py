"""Domain enumerations for the agentic search loop.

These enums capture the fixed vocabularies used across the domain layer:
loop phases, ambiguity types and severities, planner action types,
evaluation depths, confidence provenance, and session outcomes.
"""

from enum import Enum


class Phase(Enum):
    """Phase tag of an ``AgentState``."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    CLARIFYING = "clarifying"
    COMPLETED = "completed"
    ERROR = "error"


class AmbiguityType(Enum):
    """Family of a detected query ambiguity."""

    SUBJECTIVE = "subjective-criteria"
    QUANTITATIVE = "quantitative"
    TECHNICAL = "technical"
    SCOPE = "scope"
    CONTEXT = "context"
    TEMPORAL = "temporal"
    COMPARATIVE = "comparative"


class Severity(Enum):
    """Three-level severity / priority scale."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Ordinal used for sorting (higher = more severe)."""
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class ActionType(Enum):
    """Tag of a ``PlanningAction`` variant."""

    ANALYZE = "analyze"
    CLARIFY = "clarify"
    SELECT_TOOL = "select_tool"
    EXECUTE = "execute"
    EVALUATE = "evaluate"
    ITERATE = "iterate"
    COMPLETE = "complete"
    ERROR = "error"


class EvaluationDepth(Enum):
    """Tier of quality checks run by the result evaluator."""

    SHALLOW = "shallow"
    MEDIUM = "medium"
    DEEP = "deep"


class ConfidenceSource(Enum):
    """Provenance of a confidence value."""

    HEURISTIC = "heuristic"
    LLM = "llm"


class SessionStatus(Enum):
    """Outcome of one ``submit_query`` / ``submit_clarification`` call."""

    COMPLETED = "completed"
    FAILED = "failed"
    NEEDS_CLARIFICATION = "needs_clarification"
    CANCELLED = "cancelled"
