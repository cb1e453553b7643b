"""Domain layer for the agentic search loop.

Re-exports all public domain types so that consumers can write::

    from agentic_search.domain import AgentState, QueryContext, Phase
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    ActionType,
    AmbiguityType,
    ConfidenceSource,
    EvaluationDepth,
    Phase,
    SessionStatus,
    Severity,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    Ambiguity,
    ClarificationRecord,
    ClarificationRequest,
    ClarificationResponse,
    ConfidenceCalculation,
    ConfidenceFactor,
    ErrorContext,
    EvaluationCriteria,
    EvaluationResult,
    ExecutionRequest,
    ExecutionResult,
    ParameterSpec,
    PlanningAction,
    PlanningResult,
    QualityCheck,
    Query,
    RecoveryResult,
    RefinementRecord,
    ResolutionOption,
    StateTransition,
    ToolDescriptor,
    ToolInvocation,
)

# -- Entities -----------------------------------------------------------------
from .entities import AgentState, QueryContext, StateMetadata

# -- Exceptions ---------------------------------------------------------------
from .exceptions import (
    AgenticSearchError,
    ClarificationNotFoundError,
    EvaluationError,
    ExecutionError,
    NoApplicableRuleError,
    NotFoundError,
    OptionNotFoundError,
    PlanningError,
    RecoveryExhaustedError,
    SessionCancelledError,
    ToolNotFoundError,
    ToolTimeoutError,
    ValidationError,
)

__all__ = [
    # Enums
    "ActionType",
    "AmbiguityType",
    "ConfidenceSource",
    "EvaluationDepth",
    "Phase",
    "SessionStatus",
    "Severity",
    # Values
    "Ambiguity",
    "ClarificationRecord",
    "ClarificationRequest",
    "ClarificationResponse",
    "ConfidenceCalculation",
    "ConfidenceFactor",
    "ErrorContext",
    "EvaluationCriteria",
    "EvaluationResult",
    "ExecutionRequest",
    "ExecutionResult",
    "ParameterSpec",
    "PlanningAction",
    "PlanningResult",
    "QualityCheck",
    "Query",
    "RecoveryResult",
    "RefinementRecord",
    "ResolutionOption",
    "StateTransition",
    "ToolDescriptor",
    "ToolInvocation",
    # Entities
    "AgentState",
    "QueryContext",
    "StateMetadata",
    # Exceptions
    "AgenticSearchError",
    "ClarificationNotFoundError",
    "EvaluationError",
    "ExecutionError",
    "NoApplicableRuleError",
    "NotFoundError",
    "OptionNotFoundError",
    "PlanningError",
    "RecoveryExhaustedError",
    "SessionCancelledError",
    "ToolNotFoundError",
    "ToolTimeoutError",
    "ValidationError",
]
