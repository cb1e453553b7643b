"""LangGraph state definition for one search session run.

Defines ``SearchGraphState``, a ``TypedDict`` that flows through the
LangGraph ``StateGraph``.  Append-only channels use
``Annotated[list, operator.add]`` so each node can emit new items without
overwriting earlier entries.

Note: We intentionally do NOT use ``from __future__ import annotations`` because
LangGraph needs to resolve type hints at runtime via ``get_type_hints()``.
"""

import operator
from typing import Annotated, Any, TypedDict

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import EvaluationDepth
from agentic_search.domain.values import (
    Ambiguity,
    ClarificationRequest,
    EvaluationResult,
    ExecutionResult,
    PlanningResult,
)
from agentic_search.infrastructure.cancellation import CancellationToken


class SearchGraphState(TypedDict, total=False):
    """State flowing through the session graph.

    Fields are grouped into:

    - **Loop control**: ``loop_iteration``, ``max_iterations``,
      ``confidence_threshold``, ``evaluation_depth``, ``tool_timeout``,
      ``should_continue``, ``stop_reason``, ``cancel_token``
    - **Session data**: ``session_id``, ``context`` (mutated in place by
      the nodes that own it), ``agent_state`` (replaced, never mutated)
    - **Step outputs**: ``ambiguities``, ``clarification``, ``plan``,
      ``execution``, ``evaluation``
    - **Accumulation channels**: ``reasoning_trace``, ``tools_used``,
      ``warnings``, ``errors``
    """

    # -- Loop control
    loop_iteration: int
    max_iterations: int
    confidence_threshold: float
    evaluation_depth: EvaluationDepth
    tool_timeout: float
    should_continue: bool
    stop_reason: str
    cancel_token: CancellationToken | None

    # -- Session data
    session_id: str
    context: QueryContext
    agent_state: AgentState

    # -- Step outputs
    ambiguities: list[Ambiguity]
    clarification: ClarificationRequest | None
    plan: PlanningResult | None
    execution: ExecutionResult | None
    evaluation: EvaluationResult | None

    # -- Accumulation channels
    reasoning_trace: Annotated[list, operator.add]
    tools_used: Annotated[list, operator.add]
    warnings: Annotated[list, operator.add]
    errors: Annotated[list, operator.add]

    # -- Extensibility
    metadata: dict[str, Any]
