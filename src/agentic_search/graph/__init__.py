"""LangGraph-native search session loop.

Public API
----------
build_session_graph
    Build and compile the detect-plan-execute-evaluate graph.
SearchGraphState
    The TypedDict state flowing through the graph.

Node factories (for advanced customisation):
    make_detect_node, make_clarify_node, make_plan_node, make_analyze_node,
    make_execute_node, make_evaluate_node, make_finalize_node

Edge functions:
    after_detect, after_plan, after_clarify, after_execute, should_loop
"""

from agentic_search.graph.edges import (
    after_clarify,
    after_detect,
    after_execute,
    after_plan,
    should_loop,
)
from agentic_search.graph.graph import build_session_graph, recursion_limit_for
from agentic_search.graph.nodes import (
    make_analyze_node,
    make_clarify_node,
    make_detect_node,
    make_evaluate_node,
    make_execute_node,
    make_finalize_node,
    make_plan_node,
)
from agentic_search.graph.state import SearchGraphState

__all__ = [
    "build_session_graph",
    "recursion_limit_for",
    "SearchGraphState",
    # Nodes
    "make_analyze_node",
    "make_clarify_node",
    "make_detect_node",
    "make_evaluate_node",
    "make_execute_node",
    "make_finalize_node",
    "make_plan_node",
    # Edges
    "after_clarify",
    "after_detect",
    "after_execute",
    "after_plan",
    "should_loop",
]
