"""Build the search session StateGraph.

``build_session_graph()`` wires the detect, clarify, plan, analyze, execute,
evaluate and finalize nodes into a compiled LangGraph that implements one
run of the agentic search loop.  A run ends either at ``finalize`` or,
when the user must answer a question, straight after ``clarify``.
"""

from typing import Any

from langgraph.graph import END, START, StateGraph

from agentic_search.graph.edges import after_clarify, after_detect, after_execute, after_plan, should_loop
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

# Worst case per loop iteration: detect, plan, execute, evaluate.
STEPS_PER_ITERATION = 4


def recursion_limit_for(max_iterations: int) -> int:
    """LangGraph step budget large enough for *max_iterations* loops."""
    return max_iterations * STEPS_PER_ITERATION + 10


def build_session_graph(
    *,
    detector: Any,
    planner: Any,
    analyzer: Any,
    executor: Any,
    evaluator: Any,
    state_manager: Any,
    llm_planner: Any | None = None,
    checkpointer: Any | None = None,
) -> Any:
    """Build and compile the session StateGraph.

    Parameters
    ----------
    detector:
        ``AmbiguityDetector`` used by the detect and clarify nodes.
    planner:
        ``RulesBasedPlanner``; always present as the fallback planner.
    analyzer:
        ``QueryAnalyzer`` for ``analyze`` actions.
    executor:
        ``ToolExecutor`` for tool actions.
    evaluator:
        ``ResultEvaluator`` scoring each iteration.
    state_manager:
        ``StateManager`` owning every ``AgentState`` transition.
    llm_planner:
        Optional ``LLMPlanner`` tried before the rules.
    checkpointer:
        Optional LangGraph checkpointer for persistence.

    Returns
    -------
    CompiledStateGraph
        A compiled graph ready for ``.ainvoke()``.
    """
    graph = StateGraph(SearchGraphState)

    graph.add_node("detect", make_detect_node(detector))
    graph.add_node("clarify", make_clarify_node(detector, state_manager))
    graph.add_node("plan", make_plan_node(planner, state_manager, llm_planner))
    graph.add_node("analyze", make_analyze_node(analyzer, state_manager))
    graph.add_node("execute", make_execute_node(executor, state_manager))
    graph.add_node("evaluate", make_evaluate_node(evaluator, state_manager))
    graph.add_node("finalize", make_finalize_node(state_manager))

    graph.add_edge(START, "detect")
    graph.add_conditional_edges(
        "detect",
        after_detect,
        {"clarify": "clarify", "plan": "plan", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "clarify",
        after_clarify,
        {"__end__": END, "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "plan",
        after_plan,
        {
            "analyze": "analyze",
            "clarify": "clarify",
            "execute": "execute",
            "evaluate": "evaluate",
            "finalize": "finalize",
        },
    )
    graph.add_conditional_edges(
        "analyze",
        should_loop,
        {"detect": "detect", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "execute",
        after_execute,
        {"evaluate": "evaluate", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "evaluate",
        should_loop,
        {"detect": "detect", "finalize": "finalize"},
    )
    graph.add_edge("finalize", END)

    compile_kwargs: dict[str, Any] = {}
    if checkpointer is not None:
        compile_kwargs["checkpointer"] = checkpointer
    return graph.compile(**compile_kwargs)
