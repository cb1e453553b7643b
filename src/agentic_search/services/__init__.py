"""Service layer for the agentic search loop.

Re-exports public service types for convenient top-level access::

    from agentic_search.services import (
        AmbiguityDetector, ConfidenceModel, QueryAnalyzer,
        ErrorRecoveryManager, ToolExecutor, RulesBasedPlanner,
        LLMPlanner, ResultEvaluator, StateManager,
    )

``SearchSession`` lives in :mod:`agentic_search.services.session`; it
depends on the graph layer and is exported from the package root.
"""

from agentic_search.services.ambiguity import AmbiguityDetector, AmbiguityPattern, Resolution
from agentic_search.services.confidence import ConfidenceModel
from agentic_search.services.evaluation import ResultEvaluator
from agentic_search.services.execution import ToolExecutor
from agentic_search.services.llm_planning import ActionProposal, LLMPlanner, PlanningOutput
from agentic_search.services.planning import PlanningRule, RulesBasedPlanner, default_rules
from agentic_search.services.query_analysis import QueryAnalysis, QueryAnalyzer
from agentic_search.services.recovery import (
    ErrorRecoveryManager,
    MemoryErrorRecovery,
    NetworkErrorRecovery,
    ParseErrorRecovery,
    RecoveryStrategy,
    ToolExecutionErrorRecovery,
    ValidationErrorRecovery,
)
from agentic_search.services.state import StateAnalysis, StateManager

__all__ = [
    # Ambiguity
    "AmbiguityDetector",
    "AmbiguityPattern",
    "Resolution",
    # Confidence
    "ConfidenceModel",
    # Evaluation
    "ResultEvaluator",
    # Execution
    "ToolExecutor",
    # Planning
    "ActionProposal",
    "LLMPlanner",
    "PlanningOutput",
    "PlanningRule",
    "RulesBasedPlanner",
    "default_rules",
    # Query analysis
    "QueryAnalysis",
    "QueryAnalyzer",
    # Recovery
    "ErrorRecoveryManager",
    "MemoryErrorRecovery",
    "NetworkErrorRecovery",
    "ParseErrorRecovery",
    "RecoveryStrategy",
    "ToolExecutionErrorRecovery",
    "ValidationErrorRecovery",
    # State
    "StateAnalysis",
    "StateManager",
]
