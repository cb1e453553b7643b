"""Session surface for the agentic search loop.

``SearchSession`` composes every service through constructor injection and
drives the LangGraph loop built by :func:`build_session_graph`.  A run
ends either with a final result or with a clarification request, in
which case the session is parked in a ``SessionStore`` until
:meth:`SearchSession.submit_clarification` resumes it.

Classes
-------
SessionResponse
    What the caller sees after every submission.
PausedSession
    Everything needed to resume a session waiting on the user.
SessionStore
    Thread-safe holder of paused sessions.
SearchSession
    The query-to-answer orchestrator.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import SessionStatus
from agentic_search.domain.exceptions import NotFoundError, ValidationError
from agentic_search.domain.values import (
    ClarificationRequest,
    ClarificationResponse,
    EvaluationResult,
    Query,
)
from agentic_search.graph.graph import build_session_graph, recursion_limit_for
from agentic_search.infrastructure.cache import PlanCache
from agentic_search.infrastructure.cancellation import CancellationToken
from agentic_search.infrastructure.config import ExecutorConfig, LoopConfig
from agentic_search.infrastructure.registry import ToolRegistry
from agentic_search.services.ambiguity import AmbiguityDetector
from agentic_search.services.confidence import ConfidenceModel
from agentic_search.services.evaluation import ResultEvaluator
from agentic_search.services.execution import ToolExecutor
from agentic_search.services.llm_planning import LLMPlanner
from agentic_search.services.planning import RulesBasedPlanner
from agentic_search.services.query_analysis import QueryAnalyzer
from agentic_search.services.state import StateManager

logger = logging.getLogger(__name__)

# Per-submission overrides accepted in ``options``.
OVERRIDABLE_OPTIONS = frozenset(
    {"max_iterations", "confidence_threshold", "evaluation_depth", "tool_timeout"}
)

FAILED_CONFIDENCE_CAP = 0.2


# ===================================================================== #
#  Response                                                              #
# ===================================================================== #


@dataclass(frozen=True)
class SessionResponse:
    """Outcome of one ``submit_query`` or ``submit_clarification`` call.

    ``success`` is False only for failed and cancelled sessions; a
    clarification request is a successful pause.
    """

    session_id: str
    status: SessionStatus
    success: bool
    results: tuple[Any, ...] = ()
    confidence: float = 0.0
    clarification: ClarificationRequest | None = None
    reasoning: tuple[str, ...] = ()
    tools_used: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    evaluation: EvaluationResult | None = None
    iterations: int = 0
    from_cache: bool = False

    @property
    def needs_clarification(self) -> bool:
        return self.status is SessionStatus.NEEDS_CLARIFICATION

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "status": self.status.value,
            "success": self.success,
            "results": list(self.results),
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "tools_used": list(self.tools_used),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "iterations": self.iterations,
            "from_cache": self.from_cache,
        }
        if self.clarification is not None:
            data["clarification"] = {
                "id": self.clarification.id,
                "question": self.clarification.question,
                "options": [
                    {"id": o.id, "text": o.text, "confidence": o.confidence}
                    for o in self.clarification.options
                ],
                "priority": self.clarification.priority.value,
            }
        if self.evaluation is not None:
            data["evaluation"] = {
                "overall_score": self.evaluation.overall_score,
                "next_action": self.evaluation.next_action,
                "recommendations": list(self.evaluation.recommendations),
            }
        return data


# ===================================================================== #
#  Paused sessions                                                       #
# ===================================================================== #


@dataclass
class PausedSession:
    """A session parked on a clarification request."""

    session_id: str
    context: QueryContext
    agent_state: AgentState
    request: ClarificationRequest
    config: LoopConfig
    reasoning: list[str] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    iterations: int = 0
    paused_at: float = field(default_factory=time.time)


class SessionStore:
    """Thread-safe store of paused sessions keyed by session id.

    Entries expire ``ttl_seconds`` after they were parked, and at most
    ``max_sessions`` are kept; parking one more evicts the oldest.  Pass
    ``ttl_seconds=None`` to keep entries until they are resumed.

    Parameters
    ----------
    ttl_seconds:
        Lifetime of a paused session, measured from ``paused_at``.
    max_sessions:
        Upper bound on stored sessions.
    clock:
        Wall-clock source used to stamp and expire entries.
    """

    def __init__(
        self,
        ttl_seconds: float | None = 3600.0,
        max_sessions: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValidationError("ttl_seconds must be positive", issues=["ttl_seconds"])
        if max_sessions < 1:
            raise ValidationError("max_sessions must be at least 1", issues=["max_sessions"])
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: dict[str, PausedSession] = {}
        self._lock = threading.Lock()

    def _expired(self, paused: PausedSession, now: float) -> bool:
        return self.ttl_seconds is not None and now - paused.paused_at >= self.ttl_seconds

    def _evict_expired(self, now: float) -> None:
        # Caller holds the lock.
        for session_id in [sid for sid, p in self._sessions.items() if self._expired(p, now)]:
            del self._sessions[session_id]
            logger.info("Paused session %s expired", session_id)

    def put(self, paused: PausedSession) -> None:
        with self._lock:
            now = self._clock()
            paused.paused_at = now
            self._evict_expired(now)
            self._sessions.pop(paused.session_id, None)
            while len(self._sessions) >= self.max_sessions:
                oldest = min(self._sessions, key=lambda sid: self._sessions[sid].paused_at)
                del self._sessions[oldest]
                logger.warning("Session store full; evicted paused session %s", oldest)
            self._sessions[paused.session_id] = paused

    def get(self, session_id: str) -> PausedSession:
        with self._lock:
            self._evict_expired(self._clock())
            paused = self._sessions.get(session_id)
        if paused is None:
            raise NotFoundError(
                f"No session waiting for clarification: '{session_id}'",
                resource="session",
                identifier=session_id,
            )
        return paused

    def pop(self, session_id: str) -> PausedSession | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def list_sessions(self) -> list[str]:
        with self._lock:
            self._evict_expired(self._clock())
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            self._evict_expired(self._clock())
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired(self._clock())
            return len(self._sessions)


# ===================================================================== #
#  Session orchestrator                                                  #
# ===================================================================== #


class SearchSession:
    """Query-to-answer orchestrator over the session graph.

    Parameters
    ----------
    registry:
        Tools available to the loop.  Ignored when *executor* is given.
    config:
        Loop configuration; ``LoopConfig()`` by default.
    executor, detector, planner, analyzer, evaluator, state_manager, confidence_model:
        Optional pre-built services; defaults are constructed otherwise.
    cache:
        Optional ``PlanCache`` consulted before the loop when
        ``config.enable_cache`` is set.  Cache failures never fail a session.
    llm_model:
        Chat model for the ``LLMPlanner``; used only when
        ``config.use_llm_planner`` is set.
    store:
        Where paused sessions are kept.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        config: LoopConfig | None = None,
        *,
        executor: ToolExecutor | None = None,
        detector: AmbiguityDetector | None = None,
        planner: RulesBasedPlanner | None = None,
        analyzer: QueryAnalyzer | None = None,
        evaluator: ResultEvaluator | None = None,
        state_manager: StateManager | None = None,
        confidence_model: ConfidenceModel | None = None,
        cache: PlanCache | None = None,
        llm_model: Any | None = None,
        store: SessionStore | None = None,
    ) -> None:
        self.config = config or LoopConfig()
        self.config.validate()
        self.confidence_model = confidence_model or ConfidenceModel()
        self.state_manager = state_manager or StateManager(self.confidence_model)
        self.executor = executor or ToolExecutor(
            registry=registry,
            config=ExecutorConfig(default_timeout=self.config.tool_timeout),
            confidence_model=self.confidence_model,
            state_manager=self.state_manager,
        )
        self.detector = detector or AmbiguityDetector(
            max_rounds=self.config.max_clarification_rounds
        )
        self.planner = planner or RulesBasedPlanner(self.detector)
        self.analyzer = analyzer or QueryAnalyzer()
        self.evaluator = evaluator or ResultEvaluator(self.config.depth)
        self.cache = cache
        self.store = store or SessionStore()

        self.llm_planner: LLMPlanner | None = None
        if self.config.use_llm_planner and llm_model is not None:
            self.llm_planner = LLMPlanner(
                llm_model,
                registry=self.executor.registry,
                confidence_model=self.confidence_model,
                timeout=self.config.tool_timeout,
            )

        self._graph = build_session_graph(
            detector=self.detector,
            planner=self.planner,
            analyzer=self.analyzer,
            executor=self.executor,
            evaluator=self.evaluator,
            state_manager=self.state_manager,
            llm_planner=self.llm_planner,
        )
        self._lock = threading.Lock()
        self._status_counts: dict[str, int] = {}

    # ------------------------------------------------------------------ #
    #  Public surface                                                     #
    # ------------------------------------------------------------------ #

    async def submit_query(
        self,
        text: str,
        options: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SessionResponse:
        """Run the loop for a new query.

        Raises
        ------
        ValidationError
            *text* is empty or *options* are out of range.
        """
        config = self._resolve_config(options)
        try:
            query = Query(text)
        except ValueError as exc:
            raise ValidationError(str(exc), issues=["empty query"]) from exc

        if config.enable_cache and self.cache is not None:
            cached = self._from_cache(query, config)
            if cached is not None:
                return cached

        context = QueryContext(original_query=query.text.strip(), session_id=query.session_id)
        agent_state = self.state_manager.create_initial_state(query)
        return await self._run(
            query.session_id, context, agent_state, config, cancel_token, prior=None
        )

    async def submit_clarification(
        self,
        session_id: str,
        option_id: str | None = None,
        free_text: str | None = None,
        confidence: float = 0.8,
        cancel_token: CancellationToken | None = None,
    ) -> SessionResponse:
        """Answer a pending clarification and resume the paused loop.

        Raises
        ------
        NotFoundError
            No paused session *session_id*, or *option_id* is not offered.
        ValidationError
            Neither *option_id* nor *free_text* is given, or *confidence*
            is out of range.
        """
        paused = self.store.get(session_id)
        response = ClarificationResponse(
            request_id=paused.request.id,
            option_id=option_id,
            free_text=free_text,
            confidence=confidence,
        )
        resolution = self.detector.resolve(
            response, paused.context.original_query, paused.context
        )
        self.store.pop(session_id)

        agent_state = replace(paused.agent_state, query=resolution.refined_query)
        paused.reasoning.append(f"Clarified; refined query: {resolution.refined_query}")
        logger.info("Session %s resumed with %r", session_id, resolution.refined_query)
        return await self._run(
            session_id, resolution.context, agent_state, paused.config, cancel_token, prior=paused
        )

    # ------------------------------------------------------------------ #
    #  Loop                                                               #
    # ------------------------------------------------------------------ #

    def _resolve_config(self, options: dict[str, Any] | None) -> LoopConfig:
        if not options:
            return self.config
        overrides = {k: v for k, v in options.items() if k in OVERRIDABLE_OPTIONS}
        try:
            return LoopConfig.from_dict({**self.config.to_dict(), **overrides})
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid session options: {exc}", issues=[str(exc)]) from exc

    async def _run(
        self,
        session_id: str,
        context: QueryContext,
        agent_state: AgentState,
        config: LoopConfig,
        cancel_token: CancellationToken | None,
        prior: PausedSession | None,
    ) -> SessionResponse:
        started = time.monotonic()
        reasoning = list(prior.reasoning) if prior else []
        tools_used = list(prior.tools_used) if prior else []
        warnings = list(prior.warnings) if prior else []
        prior_iterations = prior.iterations if prior else 0

        if cancel_token is not None and cancel_token.cancelled:
            return self._finish(
                SessionResponse(
                    session_id=session_id,
                    status=SessionStatus.CANCELLED,
                    success=False,
                    reasoning=tuple(reasoning),
                    warnings=(*warnings, "Session cancelled"),
                    iterations=prior_iterations,
                )
            )

        graph_input: dict[str, Any] = {
            "session_id": session_id,
            "context": context,
            "agent_state": agent_state,
            "loop_iteration": 0,
            "max_iterations": config.max_iterations,
            "confidence_threshold": config.confidence_threshold,
            "evaluation_depth": config.depth,
            "tool_timeout": config.tool_timeout,
            "should_continue": True,
            "stop_reason": "",
            "cancel_token": cancel_token,
            "clarification": None,
            "plan": None,
            "execution": None,
            "evaluation": None,
            "reasoning_trace": [],
            "tools_used": [],
            "warnings": [],
            "errors": [],
            "metadata": {},
        }
        final = await self._graph.ainvoke(
            graph_input, config={"recursion_limit": recursion_limit_for(config.max_iterations)}
        )

        agent_state = final["agent_state"]
        stop_reason = final.get("stop_reason", "")
        reasoning.extend(final.get("reasoning_trace", []))
        tools_used.extend(final.get("tools_used", []))
        warnings.extend(final.get("warnings", []))
        errors = list(final.get("errors", []))
        iterations = prior_iterations + final.get("loop_iteration", 0)
        evaluation = final.get("evaluation")
        request = final.get("clarification")

        if request is not None and not stop_reason:
            self.store.put(
                PausedSession(
                    session_id=session_id,
                    context=final["context"],
                    agent_state=agent_state,
                    request=request,
                    config=config,
                    reasoning=reasoning,
                    tools_used=tools_used,
                    warnings=warnings,
                    iterations=iterations,
                )
            )
            return self._finish(
                SessionResponse(
                    session_id=session_id,
                    status=SessionStatus.NEEDS_CLARIFICATION,
                    success=True,
                    results=agent_state.results,
                    confidence=agent_state.current_confidence,
                    clarification=request,
                    reasoning=tuple(reasoning),
                    tools_used=tuple(tools_used),
                    warnings=tuple(warnings),
                    errors=tuple(errors),
                    iterations=iterations,
                )
            )

        confidence = (
            evaluation.overall_score if evaluation is not None else agent_state.current_confidence
        )
        if stop_reason == "cancelled":
            status = SessionStatus.CANCELLED
            warnings.append("Session cancelled")
        elif agent_state.is_complete or (
            agent_state.has_results and not agent_state.metadata.has_error
        ):
            status = SessionStatus.COMPLETED
            if stop_reason == "max_iterations":
                warnings.append(f"Stopped after {config.max_iterations} iterations")
        else:
            status = SessionStatus.FAILED
            confidence = min(confidence, FAILED_CONFIDENCE_CAP)
            if not errors:
                errors.append(f"No results found ({stop_reason.replace('_', ' ')})")

        response = SessionResponse(
            session_id=session_id,
            status=status,
            success=status is SessionStatus.COMPLETED,
            results=agent_state.results,
            confidence=confidence,
            reasoning=tuple(reasoning),
            tools_used=tuple(tools_used),
            warnings=tuple(warnings),
            errors=tuple(errors),
            evaluation=evaluation,
            iterations=iterations,
        )
        if status is SessionStatus.COMPLETED and config.enable_cache and self.cache is not None:
            self._store_in_cache(final["context"], agent_state, response, started)
        return self._finish(response)

    # ------------------------------------------------------------------ #
    #  Cache                                                              #
    # ------------------------------------------------------------------ #

    def _from_cache(self, query: Query, config: LoopConfig) -> SessionResponse | None:
        """Rebuild a state from a cached plan and evaluate it.

        Any cache failure degrades to a miss.
        """
        try:
            hit = self.cache.lookup(query.text)
        except Exception as exc:
            logger.warning("Plan cache lookup failed, running full loop: %s", exc)
            return None
        if not hit.found or hit.cached_plan is None:
            return None

        plan = hit.cached_plan
        context = QueryContext(original_query=query.text.strip(), session_id=query.session_id)
        state = self.state_manager.create_initial_state(query)
        state = self.state_manager.update_state_with_results(
            state,
            list(hit.candidates),
            plan.get("tool_name", "cache"),
            float(plan.get("confidence", 0.8)),
            "restored from plan cache",
            parameters=plan.get("parameters"),
        )
        evaluation = self.evaluator.evaluate(state, context, config.depth)
        if not state.has_results:
            return None
        logger.info("Session %s served from plan cache (%s)", query.session_id, hit.match_kind)
        return self._finish(
            SessionResponse(
                session_id=query.session_id,
                status=SessionStatus.COMPLETED,
                success=True,
                results=state.results,
                confidence=evaluation.overall_score,
                reasoning=(f"Plan cache hit ({hit.match_kind}); skipped the search loop",),
                tools_used=(plan.get("tool_name", "cache"),),
                evaluation=evaluation,
                iterations=0,
                from_cache=True,
            )
        )

    def _store_in_cache(
        self,
        context: QueryContext,
        agent_state: AgentState,
        response: SessionResponse,
        started: float,
    ) -> None:
        last = agent_state.tool_history[-1] if agent_state.tool_history else None
        plan = {
            "tool_name": last.tool_name if last else None,
            "parameters": dict(last.parameters) if last else {},
            "confidence": response.confidence,
        }
        intent_state = {
            "intent": context.interpreted_intent,
            "entities": dict(context.entities),
            "constraints": dict(context.constraints),
        }
        try:
            self.cache.store(
                context.original_query,
                intent_state,
                plan,
                agent_state.results,
                (time.monotonic() - started) * 1000,
                {"session_id": response.session_id, "iterations": response.iterations},
            )
        except Exception as exc:
            logger.warning("Plan cache store failed: %s", exc)

    # ------------------------------------------------------------------ #
    #  Metrics                                                            #
    # ------------------------------------------------------------------ #

    def _finish(self, response: SessionResponse) -> SessionResponse:
        with self._lock:
            key = response.status.value
            self._status_counts[key] = self._status_counts.get(key, 0) + 1
        logger.info(
            "Session %s %s: %d results, confidence %.2f",
            response.session_id,
            response.status.value,
            len(response.results),
            response.confidence,
        )
        return response

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            sessions = dict(self._status_counts)
        metrics: dict[str, Any] = {
            "sessions": sessions,
            "paused_sessions": len(self.store),
            "executor": self.executor.get_metrics(),
            "planner": self.planner.get_metrics(),
            "evaluator": self.evaluator.get_metrics(),
            "state": self.state_manager.get_metrics(),
            "confidence": self.confidence_model.get_metrics(),
            "ambiguity": self.detector.get_metrics(),
        }
        if self.cache is not None and hasattr(self.cache, "get_metrics"):
            metrics["cache"] = self.cache.get_metrics()
        return metrics

    def reset_metrics(self) -> None:
        with self._lock:
            self._status_counts.clear()
        self.executor.reset_metrics()
        self.planner.reset_metrics()
        self.evaluator.reset_metrics()
        self.state_manager.reset_metrics()
        self.confidence_model.reset_metrics()
        self.detector.reset_metrics()
