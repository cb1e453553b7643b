"""LLM-backed next-action planning using LangChain structured output.

``LLMPlanner`` exposes the same ``plan_next_action(context, state)``
signature as ``RulesBasedPlanner`` so the session loop can try it first
and fall back to the rules on any ``PlanningError``.

LLM-reported confidences share the heuristic [0, 1] scale.  They are
checked with ``ConfidenceModel.validate`` and replaced by the heuristic
tool confidence when invalid; ``PlanningResult.metadata["confidence_source"]``
records which one was used.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from typing import Any, Literal

from langchain_core.language_models import BaseChatModel
from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import ActionType, ConfidenceSource
from agentic_search.domain.exceptions import PlanningError
from agentic_search.domain.values import PlanningAction, PlanningResult
from agentic_search.infrastructure.registry import ToolRegistry
from agentic_search.services.confidence import ConfidenceModel
from agentic_search.services.planning import NEXT_PHASE

logger = logging.getLogger(__name__)


# -- Structured output schemas -----------------------------------------------


class ActionProposal(BaseModel):
    """One next action proposed by the LLM."""

    action_type: Literal[
        "analyze", "clarify", "select_tool", "execute", "evaluate", "iterate", "complete"
    ] = Field(description="Kind of action to take next")
    tool_name: str | None = Field(default=None, description="Tool to run for select_tool")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Tool parameters")
    confidence: float = Field(description="Confidence in this action [0, 1]")
    reasoning: str = Field(default="", description="Why this action")


class PlanningOutput(BaseModel):
    """Primary action plus up to two alternatives."""

    action: ActionProposal = Field(description="Recommended next action")
    alternatives: list[ActionProposal] = Field(
        default_factory=list, description="Up to two alternative actions"
    )
    reasoning: str = Field(default="", description="Overall planning rationale")


# -- Prompt ------------------------------------------------------------------

_PLANNING_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are the planner of an iterative search agent that answers "
            "questions about software tools by calling search and filter tools. "
            "Choose the single best next action.\n\n"
            "{tools_description}"
            "Rules:\n"
            "1. Use select_tool with one of the listed tool names to run a tool\n"
            "2. Use analyze when the query intent is still unknown\n"
            "3. Use complete when the current results already answer the query\n"
            "4. Report a confidence between 0 and 1",
        ),
        (
            "human",
            "## Query\n{query}\n\n"
            "## Understanding\n"
            "**Intent**: {intent}\n"
            "**Entities**: {entities}\n"
            "**Constraints**: {constraints}\n\n"
            "## Loop state\n"
            "**Iteration**: {iteration}\n"
            "**Results**: {result_count}\n"
            "**Confidence**: {confidence}\n"
            "**Tools used**: {tools_used}\n\n"
            "Choose the next action.",
        ),
    ]
)


# -- LLMPlanner -------------------------------------------------------------


class LLMPlanner:
    """Asks a chat model for the next ``PlanningAction``.

    Parameters
    ----------
    model:
        A LangChain chat model supporting ``with_structured_output``.
    registry:
        Tools the model may select.  Proposals naming other tools are
        rejected.
    confidence_model:
        Validates reported confidences and supplies the heuristic fallback.
    prompt:
        Optional custom ``ChatPromptTemplate``.
    timeout:
        Seconds to wait for the model; ``None`` waits indefinitely.
    """

    name = "llm"

    def __init__(
        self,
        model: BaseChatModel,
        registry: ToolRegistry | None = None,
        confidence_model: ConfidenceModel | None = None,
        prompt: ChatPromptTemplate | None = None,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.registry = registry
        self.confidence_model = confidence_model or ConfidenceModel()
        self._prompt = prompt or _PLANNING_PROMPT
        self._timeout = timeout
        self._chain = self._build_chain()

    def _build_chain(self) -> Any:
        structured_model = self.model.with_structured_output(PlanningOutput)
        return self._prompt | structured_model

    def _invoke_with_timeout(self, inputs: dict[str, Any]) -> Any:
        if self._timeout is None:
            return self._chain.invoke(inputs)
        # A hung model call keeps its worker thread; never wait on it.
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self._chain.invoke, inputs)
            return future.result(timeout=self._timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _get_tools_description(self) -> str:
        if self.registry is None or not len(self.registry):
            return ""
        lines = ["Available tools:\n"]
        for name in self.registry.list_tools():
            descriptor = self.registry.get(name)
            params = ", ".join(
                f"{p.name}{'' if p.required else '?'}: {p.type}" for p in descriptor.parameters
            )
            lines.append(f"  - {name}({params}): {descriptor.description}")
        lines.append("\n")
        return "\n".join(lines)

    def plan_next_action(self, context: QueryContext, state: AgentState) -> PlanningResult:
        """Return the model's next action.

        Raises
        ------
        PlanningError
            The model call failed or timed out, or its proposal is unusable.
        """
        start = time.perf_counter()
        inputs = {
            "tools_description": self._get_tools_description(),
            "query": context.original_query,
            "intent": context.interpreted_intent or "unknown",
            "entities": str(context.entities) if context.entities else "N/A",
            "constraints": str(context.constraints) if context.constraints else "N/A",
            "iteration": state.iteration_count,
            "result_count": state.result_count,
            "confidence": f"{state.current_confidence:.2f}",
            "tools_used": ", ".join(t.tool_name for t in state.tool_history) or "none",
        }
        try:
            output: PlanningOutput = self._invoke_with_timeout(inputs)
        except Exception as exc:
            raise PlanningError(f"LLM planning call failed: {exc}", planner=self.name) from exc
        if not isinstance(output, PlanningOutput):
            raise PlanningError(
                f"LLM returned {type(output).__name__}, expected PlanningOutput",
                planner=self.name,
            )

        action, source = self._to_action(output.action, context)
        alternatives: list[PlanningAction] = []
        for proposal in output.alternatives[:2]:
            try:
                alternatives.append(self._to_action(proposal, context)[0])
            except PlanningError as exc:
                logger.debug("Dropping unusable alternative: %s", exc)

        logger.debug(
            "LLM proposed %s%s (confidence %.2f, %s)",
            action.type.value,
            f":{action.tool_name}" if action.tool_name else "",
            action.confidence,
            source.value,
        )
        return PlanningResult(
            action=action,
            alternatives=tuple(alternatives),
            reasoning=output.reasoning or action.reasoning,
            confidence=action.confidence,
            planner=self.name,
            planning_time_ms=(time.perf_counter() - start) * 1000.0,
            metadata={"confidence_source": source.value},
        )

    def _to_action(
        self,
        proposal: ActionProposal,
        context: QueryContext,
    ) -> tuple[PlanningAction, ConfidenceSource]:
        action_type = ActionType(proposal.action_type)
        if action_type in (ActionType.SELECT_TOOL, ActionType.EXECUTE):
            if not proposal.tool_name:
                raise PlanningError(f"{action_type.value} proposal names no tool", planner=self.name)
            if self.registry is not None and not self.registry.has(proposal.tool_name):
                raise PlanningError(
                    f"LLM proposed unknown tool '{proposal.tool_name}'", planner=self.name
                )

        valid, issues = ConfidenceModel.validate(proposal.confidence)
        if valid:
            confidence, source = float(proposal.confidence), ConfidenceSource.LLM
        else:
            logger.warning("Rejected LLM confidence %r: %s", proposal.confidence, "; ".join(issues))
            confidence = self.confidence_model.calculate_tool_confidence(
                proposal.tool_name or action_type.value,
                proposal.parameters,
                context,
                proposal.reasoning,
            ).score
            source = ConfidenceSource.HEURISTIC

        return (
            PlanningAction(
                type=action_type,
                confidence=confidence,
                reasoning=proposal.reasoning,
                tool_name=proposal.tool_name,
                parameters=dict(proposal.parameters),
                next_phase=NEXT_PHASE.get(action_type),
            ),
            source,
        )
