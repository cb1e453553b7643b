"""Tool execution with validation, retry, fallback and recovery.

``ToolExecutor.execute`` never raises for a tool failure: every outcome,
including unknown tools and invalid parameters, comes back as an
``ExecutionResult``.  Only ``asyncio.CancelledError`` propagates.

Per request the executor:

1. resolves the tool from the ``ToolRegistry``;
2. validates and narrowly coerces parameters against the tool's declared
   ``ParameterSpec`` list;
3. checks declared context and resource requirements;
4. invokes the tool under ``run_with_retry``, each attempt racing the
   per-request timeout and the session's ``CancellationToken``;
5. checks the result shape and scores it with the ``ConfidenceModel``;
6. on failure tries one fallback (a similar tool, else a safe default) and
   then the ``ErrorRecoveryManager``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.exceptions import (
    ExecutionError,
    RecoveryExhaustedError,
    SessionCancelledError,
    ToolNotFoundError,
    ToolTimeoutError,
    ValidationError,
    error_kind,
)
from agentic_search.domain.values import (
    ErrorContext,
    ExecutionRequest,
    ExecutionResult,
    ParameterSpec,
    ToolDescriptor,
)
from agentic_search.infrastructure.cancellation import CancellationToken
from agentic_search.infrastructure.config import ExecutorConfig, RetryConfig
from agentic_search.infrastructure.registry import ToolRegistry
from agentic_search.infrastructure.retry import is_retryable_tool_error, run_with_retry
from agentic_search.services.confidence import ConfidenceModel
from agentic_search.services.recovery import ErrorRecoveryManager, safe_default
from agentic_search.services.state import StateManager

logger = logging.getLogger(__name__)

FAILURE_CONFIDENCE = 0.05
SAFE_DEFAULT_CONFIDENCE = 0.3
SIMILAR_TOOL_PENALTY = 0.8

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off"})


# ===================================================================== #
#  Parameter coercion                                                    #
# ===================================================================== #

def coerce_value(value: Any, type_: str) -> tuple[bool, Any]:
    """Narrow coercion between string, number, boolean and singleton array.

    Returns ``(ok, value)``; ``ok`` is ``False`` when no coercion applies.
    """
    if type_ == "any":
        return True, value
    if type_ == "array":
        if isinstance(value, list):
            return True, value
        if isinstance(value, tuple):
            return True, list(value)
        if isinstance(value, Mapping):
            return False, value
        return True, [value]
    if type_ == "object":
        return (True, dict(value)) if isinstance(value, Mapping) else (False, value)

    if isinstance(value, (list, tuple)):
        if len(value) == 1:
            return coerce_value(value[0], type_)
        return False, value

    if type_ == "string":
        if isinstance(value, str):
            return True, value
        if isinstance(value, bool):
            return True, "true" if value else "false"
        if isinstance(value, (int, float)):
            return True, str(value)
        return False, value

    if type_ in ("number", "integer"):
        if isinstance(value, bool):
            number: float = int(value)
        elif isinstance(value, (int, float)):
            number = value
        elif isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                return False, value
        else:
            return False, value
        if type_ == "integer":
            if float(number).is_integer():
                return True, int(number)
            return False, value
        if isinstance(number, float) and number.is_integer() and isinstance(value, str):
            return True, int(number)
        return True, number

    if type_ == "boolean":
        if isinstance(value, bool):
            return True, value
        if isinstance(value, (int, float)) and value in (0, 1):
            return True, bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True, True
            if lowered in _FALSE_STRINGS:
                return True, False
        return False, value

    return False, value


def _has_query(context: QueryContext | None, state: AgentState | None) -> bool:
    if context is not None and context.original_query.strip():
        return True
    return state is not None and bool(state.query.strip())


_CONTEXT_CHECKS: dict[str, Callable[[QueryContext | None, AgentState | None], bool]] = {
    "hasQuery": _has_query,
    "hasIntent": lambda c, s: c is not None and bool(c.interpreted_intent),
    "hasEntities": lambda c, s: c is not None and bool(c.entities),
    "hasConstraints": lambda c, s: c is not None and bool(c.constraints),
}


# ===================================================================== #
#  Executor                                                              #
# ===================================================================== #

class ToolExecutor:
    """Runs registered tools and always returns an ``ExecutionResult``.

    Parameters
    ----------
    registry:
        Tool lookup.  A fresh empty registry is used if omitted.
    config:
        Timeout, fallback and recovery switches.
    retry_policy:
        Backoff policy for tool invocations.
    confidence_model:
        Scores successful results.
    recovery:
        Consulted when a tool and its fallback both fail.
    state_manager:
        Folds step results into state for :meth:`execute_sequence`.
    sleep:
        Awaitable used for backoff delays; injectable for tests.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        config: ExecutorConfig | None = None,
        retry_policy: RetryConfig | None = None,
        confidence_model: ConfidenceModel | None = None,
        recovery: ErrorRecoveryManager | None = None,
        state_manager: StateManager | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.registry = registry if registry is not None else ToolRegistry()
        self.config = config or ExecutorConfig()
        self.config.validate()
        self.retry_policy = retry_policy or RetryConfig()
        self.confidence_model = confidence_model or ConfidenceModel()
        self.recovery = recovery or ErrorRecoveryManager()
        self.state_manager = state_manager or StateManager(self.confidence_model)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._reset_counters()

    # ---- registry facade -------------------------------------------- #

    def register_tool(self, descriptor: ToolDescriptor, *, overwrite: bool = False) -> None:
        self.registry.register(descriptor, overwrite=overwrite)

    def has_tool(self, name: str) -> bool:
        return self.registry.has(name)

    def list_tools(self) -> list[str]:
        return self.registry.list_tools()

    def success_rate(self, tool_name: str) -> float | None:
        """Observed success ratio for *tool_name*, ``None`` if never run."""
        with self._lock:
            usage = self._tool_usage.get(tool_name)
            if not usage or not usage["count"]:
                return None
            return usage["successes"] / usage["count"]

    # ---- validation ------------------------------------------------- #

    def validate_parameters(
        self,
        descriptor: ToolDescriptor,
        parameters: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Return coerced parameters or raise ``ValidationError``.

        Parameters the tool does not declare are passed through unchanged.
        """
        validated = dict(parameters)
        issues: list[str] = []
        for spec in descriptor.parameters:
            value = validated.get(spec.name)
            if value is None:
                if spec.required:
                    issues.append(f"missing required parameter '{spec.name}'")
                elif spec.default is not None:
                    validated[spec.name] = spec.default
                continue
            ok, coerced = coerce_value(value, spec.type)
            if not ok:
                issues.append(self._type_issue(spec, value))
                continue
            validated[spec.name] = coerced
        if issues:
            raise ValidationError(
                f"Invalid parameters for tool '{descriptor.name}': {'; '.join(issues)}",
                issues=issues,
            )
        return validated

    @staticmethod
    def _type_issue(spec: ParameterSpec, value: Any) -> str:
        return (
            f"parameter '{spec.name}' expects {spec.type}, "
            f"got {type(value).__name__} ({value!r})"
        )

    def check_preconditions(self, descriptor: ToolDescriptor, request: ExecutionRequest) -> None:
        """Raise ``ValidationError`` if declared requirements do not hold."""
        issues: list[str] = []
        for requirement in descriptor.context_requirements:
            check = _CONTEXT_CHECKS.get(requirement)
            if check is None:
                issues.append(f"unknown context requirement '{requirement}'")
            elif not check(request.context, request.state):
                issues.append(f"context requirement '{requirement}' not met")
        memory = descriptor.resource_requirements.get("memory_mb")
        if memory is not None and memory > self.config.memory_limit_mb:
            issues.append(
                f"tool needs {memory} MB, limit is {self.config.memory_limit_mb} MB"
            )
        if issues:
            raise ValidationError(
                f"Pre-execution checks failed for '{descriptor.name}': {'; '.join(issues)}",
                issues=issues,
            )

    @staticmethod
    def check_result(descriptor: ToolDescriptor, data: Any) -> None:
        """Raise ``ExecutionError`` if *data* violates the declared shape."""
        if data is None:
            raise ExecutionError(
                f"Tool '{descriptor.name}' returned no result", tool_name=descriptor.name
            )
        expected = descriptor.expected_result
        if expected.get("type") == "array":
            if not isinstance(data, (list, tuple)):
                raise ExecutionError(
                    f"Tool '{descriptor.name}': array expected, got {type(data).__name__}",
                    tool_name=descriptor.name,
                )
            min_length = expected.get("min_length")
            if min_length is not None and len(data) < min_length:
                raise ExecutionError(
                    f"Tool '{descriptor.name}' returned {len(data)} items, "
                    f"expected at least {min_length}",
                    tool_name=descriptor.name,
                )

    # ---- invocation ------------------------------------------------- #

    @staticmethod
    async def _call(descriptor: ToolDescriptor, parameters: dict[str, Any], context: Any) -> Any:
        if inspect.iscoroutinefunction(descriptor.invoke):
            result = await descriptor.invoke(parameters, context)
        else:
            result = await asyncio.to_thread(descriptor.invoke, parameters, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _invoke(
        self,
        descriptor: ToolDescriptor,
        parameters: dict[str, Any],
        request: ExecutionRequest,
        timeout: float,
        cancel_token: CancellationToken | None,
    ) -> Any:
        """One attempt: race the call against the timeout and the token."""
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        task = asyncio.ensure_future(self._call(descriptor, parameters, request.context))
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Future[Any] | None = None
        if cancel_token is not None:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            data = task.result()
            self.check_result(descriptor, data)
            return data

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if cancel_token is not None and cancel_token.cancelled:
            raise SessionCancelledError()
        raise ToolTimeoutError(descriptor.name, timeout)

    def _prepare(
        self,
        descriptor: ToolDescriptor,
        request: ExecutionRequest,
        parameters: Mapping[str, Any],
    ) -> dict[str, Any]:
        params = dict(parameters)
        # Chaining tools operate on the current result set unless given one.
        if (
            descriptor.parameter("items") is not None
            and params.get("items") is None
            and request.state is not None
            and request.state.has_results
        ):
            params["items"] = list(request.state.results)
        params = self.validate_parameters(descriptor, params)
        self.check_preconditions(descriptor, request)
        return params

    async def execute(
        self,
        request: ExecutionRequest,
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Run one request through the full validate/retry/fallback pipeline."""
        start = time.perf_counter()
        descriptor = self.registry.lookup(request.tool_name)
        if descriptor is None:
            error = ToolNotFoundError(request.tool_name, self.registry.list_tools())
            return self._failure(request.tool_name, error, start, attempts=0)

        try:
            params = self._prepare(descriptor, request, request.parameters)
        except ValidationError as exc:
            return self._failure(descriptor.name, exc, start, attempts=0)

        timeout = request.timeout or self.config.default_timeout
        outcome = await run_with_retry(
            lambda: self._invoke(descriptor, params, request, timeout, cancel_token),
            self.retry_policy,
            is_retryable=is_retryable_tool_error,
            sleep=self._sleep,
            cancel_token=cancel_token,
        )

        if outcome.success:
            elapsed = (time.perf_counter() - start) * 1000.0
            confidence = self.confidence_model.calculate_execution_confidence(
                outcome.value, params, elapsed, outcome.attempts
            ).score
            return self._success(
                descriptor.name, outcome.value, start, confidence, outcome.attempts,
                parameters=params,
            )

        error = outcome.error or ExecutionError("Tool execution failed", tool_name=descriptor.name)
        if isinstance(error, SessionCancelledError):
            return self._failure(descriptor.name, error, start, attempts=outcome.attempts)
        logger.warning(
            "Tool %s failed after %d attempt(s): %s", descriptor.name, outcome.attempts, error
        )

        if self.config.enable_fallback:
            try:
                return await self._fallback(
                    descriptor, params, request, timeout, cancel_token, start, outcome.attempts
                )
            except SessionCancelledError as exc:
                return self._failure(descriptor.name, exc, start, attempts=outcome.attempts)
            except Exception as exc:
                logger.warning("Fallback for %s failed: %s", descriptor.name, exc)
                error = exc

        if self.config.enable_recovery:
            return await self._recover(
                descriptor, params, request, timeout, cancel_token, start, outcome.attempts, error
            )
        return self._failure(descriptor.name, error, start, attempts=outcome.attempts)

    async def _fallback(
        self,
        descriptor: ToolDescriptor,
        params: dict[str, Any],
        request: ExecutionRequest,
        timeout: float,
        cancel_token: CancellationToken | None,
        start: float,
        attempts: int,
    ) -> ExecutionResult:
        for similar in self.registry.similar_tools(descriptor.name):
            try:
                similar_params = self._prepare(similar, request, params)
                data = await self._invoke(similar, similar_params, request, timeout, cancel_token)
            except SessionCancelledError:
                raise
            except Exception as exc:
                logger.debug("Similar tool %s failed: %s", similar.name, exc)
                continue
            elapsed = (time.perf_counter() - start) * 1000.0
            confidence = self.confidence_model.calculate_execution_confidence(
                data, similar_params, elapsed, attempts + 1
            ).score * SIMILAR_TOOL_PENALTY
            logger.warning("Using similar tool %s in place of %s", similar.name, descriptor.name)
            return self._success(
                descriptor.name, data, start, confidence, attempts + 1,
                fallback_used=True, parameters=similar_params,
                metadata={"fallback": "similar_tool", "fallback_tool": similar.name},
            )

        default = safe_default(descriptor.name)
        if default is None:
            raise ExecutionError(
                f"No fallback available for tool '{descriptor.name}'", tool_name=descriptor.name
            )
        logger.warning("Using safe default result for %s", descriptor.name)
        return self._success(
            descriptor.name, default, start, SAFE_DEFAULT_CONFIDENCE, attempts,
            fallback_used=True, metadata={"fallback": "safe_default"},
        )

    async def _recover(
        self,
        descriptor: ToolDescriptor,
        params: dict[str, Any],
        request: ExecutionRequest,
        timeout: float,
        cancel_token: CancellationToken | None,
        start: float,
        attempts: int,
        error: BaseException,
    ) -> ExecutionResult:
        ctx = ErrorContext(
            component="executor",
            operation="execute",
            error=error,
            retry_count=attempts,
            payload={
                "tool_name": descriptor.name,
                "parameters": params,
                "alternatives": [d.name for d in self.registry.similar_tools(descriptor.name)],
            },
        )
        recovery = self.recovery.handle(ctx)
        if recovery.recovered:
            data = recovery.data
            if recovery.should_retry and isinstance(data, Mapping) and "tool_name" in data:
                retry_tool = self.registry.lookup(str(data["tool_name"]))
                if retry_tool is not None:
                    try:
                        retry_params = self._prepare(retry_tool, request, data.get("parameters", {}))
                        value = await self._invoke(
                            retry_tool, retry_params, request, timeout, cancel_token
                        )
                    except SessionCancelledError as exc:
                        return self._failure(descriptor.name, exc, start, attempts=attempts + 1)
                    except Exception as exc:
                        logger.debug("Recovery retry with %s failed: %s", retry_tool.name, exc)
                    else:
                        return self._success(
                            descriptor.name, value, start, recovery.confidence, attempts + 1,
                            fallback_used=True, parameters=retry_params,
                            metadata={"recovery": recovery.action, "fallback_tool": retry_tool.name},
                        )
            elif recovery.action == "fallback-result" and data is not None:
                return self._success(
                    descriptor.name, data, start, recovery.confidence, attempts,
                    fallback_used=True, metadata={"recovery": recovery.action},
                )

        exhausted = RecoveryExhaustedError(
            f"Tool '{descriptor.name}' failed and could not be recovered: {error}",
            component="executor",
            operation="execute",
            details={"recovery_action": recovery.action, "should_retry": recovery.should_retry},
        )
        exhausted.__cause__ = error
        return self._failure(descriptor.name, exhausted, start, attempts=attempts)

    # ---- batch execution -------------------------------------------- #

    async def execute_parallel(
        self,
        requests: Sequence[ExecutionRequest],
        cancel_token: CancellationToken | None = None,
    ) -> list[ExecutionResult]:
        """Run independent requests concurrently; one failure never aborts the rest."""
        outcomes = await asyncio.gather(
            *(self.execute(r, cancel_token) for r in requests), return_exceptions=True
        )
        results: list[ExecutionResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, ExecutionResult):
                results.append(outcome)
            else:
                results.append(self._failure(request.tool_name, outcome, time.perf_counter(), 0))
        return results

    async def execute_sequence(
        self,
        requests: Sequence[ExecutionRequest],
        cancel_token: CancellationToken | None = None,
    ) -> list[ExecutionResult]:
        """Run requests in order, feeding each success into the next step's state.

        A request without its own context inherits the previous step's.
        """
        state: AgentState | None = None
        context: QueryContext | None = None
        results: list[ExecutionResult] = []
        for request in requests:
            state = state if state is not None else request.state
            context = request.context if request.context is not None else context
            step = replace(request, state=state, context=context)
            result = await self.execute(step, cancel_token)
            results.append(result)
            if result.success and state is not None:
                state = self.state_manager.update_state_with_results(
                    state,
                    result.data,
                    result.tool_name,
                    result.confidence,
                    reasoning="sequence step",
                    parameters=step.parameters,
                )
        return results

    # ---- result construction & metrics ------------------------------ #

    def _success(
        self,
        tool_name: str,
        data: Any,
        start: float,
        confidence: float,
        attempts: int,
        *,
        fallback_used: bool = False,
        parameters: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        elapsed = (time.perf_counter() - start) * 1000.0
        count = len(data) if isinstance(data, (list, tuple)) else (0 if data is None else 1)
        result = ExecutionResult(
            success=True,
            tool_name=tool_name,
            data=data,
            execution_time_ms=elapsed,
            confidence=min(1.0, max(0.0, confidence)),
            attempts=attempts,
            fallback_used=fallback_used,
            result_count=count,
            metadata={"parameters": dict(parameters or {}), **dict(metadata or {})},
        )
        self._record(result)
        logger.debug(
            "Tool %s succeeded: %d results, confidence %.3f, %d attempt(s)%s",
            tool_name, count, result.confidence, attempts, " [fallback]" if fallback_used else "",
        )
        return result

    def _failure(
        self,
        tool_name: str,
        error: BaseException,
        start: float,
        attempts: int,
    ) -> ExecutionResult:
        result = ExecutionResult(
            success=False,
            tool_name=tool_name,
            error=error,
            error_kind=error_kind(error),
            execution_time_ms=(time.perf_counter() - start) * 1000.0,
            confidence=FAILURE_CONFIDENCE if attempts else 0.0,
            attempts=attempts,
        )
        self._record(result)
        logger.debug("Tool %s failed (%s): %s", tool_name, result.error_kind, error)
        return result

    def _record(self, result: ExecutionResult) -> None:
        with self._lock:
            self._total += 1
            self._total_time_ms += result.execution_time_ms
            self._confidence_sum += result.confidence
            usage = self._tool_usage.setdefault(
                result.tool_name,
                {"count": 0, "successes": 0, "total_time_ms": 0.0, "confidence_sum": 0.0},
            )
            usage["count"] += 1
            usage["total_time_ms"] += result.execution_time_ms
            usage["confidence_sum"] += result.confidence
            if result.success:
                self._successes += 1
                usage["successes"] += 1
            else:
                kind = result.error_kind or "Execution"
                self._errors[kind] = self._errors.get(kind, 0) + 1
            if result.fallback_used:
                self._fallbacks += 1

    def _reset_counters(self) -> None:
        self._total = 0
        self._successes = 0
        self._total_time_ms = 0.0
        self._confidence_sum = 0.0
        self._tool_usage: dict[str, dict[str, Any]] = {}
        self._errors: dict[str, int] = {}
        self._fallbacks = 0

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            total = self._total
            return {
                "total_executions": total,
                "success_rate": self._successes / total if total else 0.0,
                "average_execution_time_ms": self._total_time_ms / total if total else 0.0,
                "average_confidence": self._confidence_sum / total if total else 0.0,
                "tool_usage": {
                    name: {
                        "count": u["count"],
                        "success_rate": u["successes"] / u["count"],
                        "average_time_ms": u["total_time_ms"] / u["count"],
                        "average_confidence": u["confidence_sum"] / u["count"],
                    }
                    for name, u in self._tool_usage.items()
                },
                "error_distribution": dict(self._errors),
                "fallback_usage": self._fallbacks,
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._reset_counters()
