"""Agentic search.

An iterate-until-confident search loop: detect ambiguity, ask when needed,
plan the next action, run tools with retry and recovery, evaluate the
results and stop once they are good enough.
"""

__version__ = "0.1.0"

# Services are imported before the graph layer, which depends on them.
from agentic_search.services import (
    AmbiguityDetector,
    ConfidenceModel,
    LLMPlanner,
    ResultEvaluator,
    RulesBasedPlanner,
    StateManager,
    ToolExecutor,
)
from agentic_search.graph import SearchGraphState, build_session_graph
from agentic_search.infrastructure import LoopConfig, ToolRegistry
from agentic_search.services.session import SearchSession, SessionResponse, SessionStore

__all__ = [
    "AmbiguityDetector",
    "ConfidenceModel",
    "LLMPlanner",
    "LoopConfig",
    "ResultEvaluator",
    "RulesBasedPlanner",
    "SearchGraphState",
    "SearchSession",
    "SessionResponse",
    "SessionStore",
    "StateManager",
    "ToolExecutor",
    "ToolRegistry",
    "build_session_graph",
]
