"""Pluggable error recovery.

Classes
-------
RecoveryStrategy
    Abstract base: ``can_handle(ctx)`` and ``execute(ctx)``.
ParseErrorRecovery
    Partial key/value extraction, then near-JSON repair.
ValidationErrorRecovery
    Sanitize, then re-validate against a pydantic target shape.
ToolExecutionErrorRecovery
    Parameter repair, alternative tool, or a safe default result.
NetworkErrorRecovery
    Never recovers; signals retry-later with exponential backoff.
MemoryErrorRecovery
    Signals a reduced-dataset hint and reports recovered.
ErrorRecoveryManager
    Priority-ordered strategy chain with lock-protected metrics.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

import pydantic

from agentic_search.domain.exceptions import ExecutionError, ToolTimeoutError, ValidationError
from agentic_search.domain.values import ErrorContext, RecoveryResult

logger = logging.getLogger(__name__)


def safe_default(tool_name: str) -> Any:
    """Empty result appropriate for a tool, judged by its name.

    Search-like tools yield ``[]``, group-like ``{}``, count-like ``0``,
    anything else ``None``.
    """
    name = tool_name.lower()
    if any(k in name for k in ("search", "find", "filter", "sort", "limit")):
        return []
    if "group" in name:
        return {}
    if "count" in name:
        return 0
    return None


# ===================================================================== #
#  Strategy base                                                         #
# ===================================================================== #

class RecoveryStrategy(ABC):
    """Turns one class of failure into a usable (possibly degraded) result."""

    name: str = "strategy"
    priority: int = 0

    @abstractmethod
    def can_handle(self, ctx: ErrorContext) -> bool:
        """Return ``True`` if this strategy applies to *ctx*."""

    @abstractmethod
    def execute(self, ctx: ErrorContext) -> RecoveryResult:
        """Attempt recovery.  May raise; the manager absorbs it."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


# ===================================================================== #
#  Built-in strategies                                                   #
# ===================================================================== #

_KV_LINE = re.compile(r'^\s*["\']?(\w+)["\']?\s*:\s*(.+?)\s*,?\s*$')


class ParseErrorRecovery(RecoveryStrategy):
    """Salvage data from malformed parser input (``payload["text"]``)."""

    name = "parse-error-recovery"
    priority = 100

    def can_handle(self, ctx: ErrorContext) -> bool:
        message = ctx.message.lower()
        if isinstance(ctx.error, json.JSONDecodeError):
            return True
        return ctx.component == "parser" and ("parse" in message or "json" in message)

    def execute(self, ctx: ErrorContext) -> RecoveryResult:
        text = str(ctx.payload.get("text", ""))

        partial = self._extract_partial(text)
        if partial:
            return RecoveryResult(
                success=True,
                recovered=True,
                action="partial-extraction",
                message=f"Extracted {len(partial)} fields from malformed input",
                data=partial,
                confidence=0.4,
                strategy=self.name,
            )

        repaired = self._repair(text)
        if repaired is not None:
            return RecoveryResult(
                success=True,
                recovered=True,
                action="syntax-repair",
                message="Repaired near-JSON input",
                data=repaired,
                confidence=0.6,
                strategy=self.name,
            )

        return RecoveryResult(
            success=False,
            recovered=False,
            action="parse-failed",
            message="Could not salvage malformed input",
            should_retry=ctx.retry_count < 2,
            strategy=self.name,
        )

    @staticmethod
    def _extract_partial(text: str) -> dict[str, Any]:
        extracted: dict[str, Any] = {}
        for line in text.splitlines():
            match = _KV_LINE.match(line)
            if not match:
                continue
            key, raw = match.group(1), match.group(2)
            try:
                extracted[key] = json.loads(raw)
            except ValueError:
                extracted[key] = raw.strip().strip("'\"")
        return extracted

    @staticmethod
    def _repair(text: str) -> Any:
        fixed = re.sub(r",\s*([}\]])", r"\1", text)
        fixed = re.sub(r"([{,]\s*)([A-Za-z_]\w*)\s*:", r'\1"\2":', fixed)
        fixed = fixed.replace("'", '"')
        try:
            return json.loads(fixed)
        except ValueError:
            return None


class ValidationErrorRecovery(RecoveryStrategy):
    """Re-validate sanitized data against ``payload["schema"]``.

    The payload carries ``data`` (a mapping) and ``schema`` (a pydantic
    model class).  A result whose share of valid fields exceeds
    ``partial_threshold`` is accepted as partial.
    """

    name = "validation-error-recovery"
    priority = 90

    def __init__(self, partial_threshold: float = 0.5) -> None:
        self.partial_threshold = partial_threshold

    def can_handle(self, ctx: ErrorContext) -> bool:
        if isinstance(ctx.error, (ValidationError, pydantic.ValidationError)):
            return True
        return ctx.component == "validator" or "validation" in ctx.message.lower()

    def execute(self, ctx: ErrorContext) -> RecoveryResult:
        schema = ctx.payload.get("schema")
        data = ctx.payload.get("data")
        if not (isinstance(schema, type) and issubclass(schema, pydantic.BaseModel)):
            return RecoveryResult(
                success=False, recovered=False, action="no-schema",
                message="No target schema to validate against", strategy=self.name,
            )
        if not isinstance(data, Mapping):
            return RecoveryResult(
                success=False, recovered=False, action="no-data",
                message="No mapping data to sanitize", strategy=self.name,
            )

        sanitized = self.sanitize(data)
        try:
            model = schema.model_validate(sanitized)
        except pydantic.ValidationError as exc:
            field_names = list(schema.model_fields)
            bad = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
            score = (len(field_names) - len(bad & set(field_names))) / max(1, len(field_names))
            if score > self.partial_threshold:
                partial = {k: v for k, v in sanitized.items() if k in field_names and k not in bad}
                return RecoveryResult(
                    success=True,
                    recovered=True,
                    action="partial-validation",
                    message=f"Accepted {score:.0%} of fields; invalid: {sorted(bad)}",
                    data=partial,
                    confidence=round(0.7 * score, 4),
                    strategy=self.name,
                )
            return RecoveryResult(
                success=False,
                recovered=False,
                action="validation-failed",
                message=f"Only {score:.0%} of fields valid",
                strategy=self.name,
            )
        return RecoveryResult(
            success=True,
            recovered=True,
            action="sanitized",
            message="Data valid after sanitization",
            data=model.model_dump(),
            confidence=0.7,
            strategy=self.name,
        )

    @staticmethod
    def sanitize(data: Mapping[str, Any]) -> dict[str, Any]:
        """Strip strings, drop ``None`` and blank values, parse numeric strings."""
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str):
                value = value.strip()
                if not value:
                    continue
                if re.fullmatch(r"-?\d+", value):
                    value = int(value)
                elif re.fullmatch(r"-?\d+\.\d+", value):
                    value = float(value)
            if value is None:
                continue
            cleaned[key] = value
        return cleaned


_ALTERNATIVE_TOOLS = (
    ("field not found", "searchByText"),
    ("array expected", "limitResults"),
    ("invalid price", "filterByPriceRange"),
)


class ToolExecutionErrorRecovery(RecoveryStrategy):
    """Recover from a failed tool call.

    Tries, in order: dropping empty parameters, switching to an alternative
    tool (from the error message or ``payload["alternatives"]``), and a safe
    default result for the tool.
    """

    name = "tool-execution-error-recovery"
    priority = 80

    def can_handle(self, ctx: ErrorContext) -> bool:
        if isinstance(ctx.error, ExecutionError) and not isinstance(ctx.error, ToolTimeoutError):
            return True
        return ctx.component in ("executor", "tool") or "tool execution" in ctx.message.lower()

    def execute(self, ctx: ErrorContext) -> RecoveryResult:
        tool_name = str(ctx.payload.get("tool_name", ""))
        parameters = ctx.payload.get("parameters") or {}

        if isinstance(parameters, Mapping) and not ctx.payload.get("parameters_fixed"):
            fixed = {
                k: v for k, v in parameters.items()
                if v is not None and not (isinstance(v, str) and not v.strip())
            }
            if fixed != dict(parameters):
                return RecoveryResult(
                    success=True,
                    recovered=True,
                    action="fix-parameters",
                    message=f"Removed {len(parameters) - len(fixed)} empty parameters",
                    data={"tool_name": tool_name, "parameters": fixed},
                    should_retry=True,
                    confidence=0.8,
                    strategy=self.name,
                )

        message = ctx.message.lower()
        alternative = next((alt for marker, alt in _ALTERNATIVE_TOOLS if marker in message), None)
        if alternative is None or alternative == tool_name:
            candidates = [a for a in ctx.payload.get("alternatives", ()) if a != tool_name]
            alternative = candidates[0] if candidates else None
        if alternative is not None and alternative != tool_name:
            return RecoveryResult(
                success=True,
                recovered=True,
                action="use-alternative-tool",
                message=f"Suggest '{alternative}' instead of '{tool_name}'",
                data={"tool_name": alternative, "parameters": dict(parameters)},
                should_retry=True,
                confidence=0.6,
                strategy=self.name,
            )

        return RecoveryResult(
            success=True,
            recovered=True,
            action="fallback-result",
            message=f"Returning safe default for '{tool_name}'",
            data=safe_default(tool_name),
            confidence=0.3,
            strategy=self.name,
        )


_NETWORK_MARKERS = ("network", "timeout", "connection", "econnrefused", "timed out")


class NetworkErrorRecovery(RecoveryStrategy):
    """Signal retry-later; never recovers directly."""

    name = "network-error-recovery"
    priority = 70

    def __init__(self, max_retries: int = 3) -> None:
        self.max_retries = max_retries

    def can_handle(self, ctx: ErrorContext) -> bool:
        if isinstance(ctx.error, (TimeoutError, ConnectionError, ToolTimeoutError)):
            return True
        message = ctx.message.lower()
        return any(marker in message for marker in _NETWORK_MARKERS)

    def execute(self, ctx: ErrorContext) -> RecoveryResult:
        return RecoveryResult(
            success=True,
            recovered=False,
            action="retry-later",
            message="Transient network failure; retry with backoff",
            should_retry=ctx.retry_count < self.max_retries,
            next_strategy="exponential-backoff",
            confidence=0.5,
            strategy=self.name,
        )


class MemoryErrorRecovery(RecoveryStrategy):
    """Ask the caller to continue on a reduced dataset."""

    name = "memory-error-recovery"
    priority = 60

    def can_handle(self, ctx: ErrorContext) -> bool:
        if isinstance(ctx.error, MemoryError):
            return True
        message = ctx.message.lower()
        return "memory" in message or "heap" in message

    def execute(self, ctx: ErrorContext) -> RecoveryResult:
        return RecoveryResult(
            success=True,
            recovered=True,
            action="reduce-memory-usage",
            message="Continue with a reduced dataset",
            data={"reduce_dataset": True, "limit_results": 100},
            confidence=0.6,
            strategy=self.name,
        )


def default_strategies() -> list[RecoveryStrategy]:
    return [
        ParseErrorRecovery(),
        ValidationErrorRecovery(),
        ToolExecutionErrorRecovery(),
        NetworkErrorRecovery(),
        MemoryErrorRecovery(),
    ]


# ===================================================================== #
#  Manager                                                               #
# ===================================================================== #

class ErrorRecoveryManager:
    """Runs strategies highest-priority-first until one recovers.

    Parameters
    ----------
    strategies:
        Initial strategies.  ``None`` registers :func:`default_strategies`.
    """

    def __init__(self, strategies: Iterable[RecoveryStrategy] | None = None) -> None:
        self._lock = threading.Lock()
        self._strategies: list[RecoveryStrategy] = []
        self._usage: dict[str, int] = {}
        self._recovered = 0
        self._failed = 0
        self._total_time_ms = 0.0
        self._handled = 0
        for strategy in default_strategies() if strategies is None else strategies:
            self.register(strategy)

    # ---- registration ------------------------------------------------

    def register(self, strategy: RecoveryStrategy) -> None:
        with self._lock:
            if any(s.name == strategy.name for s in self._strategies):
                raise ValueError(f"Strategy '{strategy.name}' is already registered")
            self._strategies.append(strategy)
            self._strategies.sort(key=lambda s: s.priority, reverse=True)

    def unregister(self, name: str) -> RecoveryStrategy:
        with self._lock:
            for i, s in enumerate(self._strategies):
                if s.name == name:
                    return self._strategies.pop(i)
        raise KeyError(f"Strategy '{name}' not registered")

    @property
    def strategies(self) -> list[RecoveryStrategy]:
        with self._lock:
            return list(self._strategies)

    # ---- handling ----------------------------------------------------

    def handle(self, ctx: ErrorContext) -> RecoveryResult:
        """Return the first recovering strategy's result, or a ``fail`` result."""
        start = time.perf_counter()
        hints: list[RecoveryResult] = []
        tried: list[str] = []

        for strategy in self.strategies:
            try:
                if not strategy.can_handle(ctx):
                    continue
                tried.append(strategy.name)
                self._bump_usage(strategy.name)
                result = strategy.execute(ctx)
            except Exception:
                logger.exception(
                    "Recovery strategy %s raised while handling %s.%s",
                    strategy.name, ctx.component, ctx.operation,
                )
                continue
            if result.recovered:
                self._finish(start, recovered=True)
                logger.debug(
                    "%s recovered %s.%s via %s",
                    strategy.name, ctx.component, ctx.operation, result.action,
                )
                return result
            hints.append(result)

        self._finish(start, recovered=False)
        hint = next((h for h in hints if h.should_retry or h.next_strategy), None)
        logger.warning(
            "No recovery for %s.%s (%s); tried: %s",
            ctx.component, ctx.operation, ctx.message, tried or "none",
        )
        return RecoveryResult(
            success=False,
            recovered=False,
            action="fail",
            message=f"No strategy recovered from: {ctx.message}",
            should_retry=hint.should_retry if hint else False,
            next_strategy=hint.next_strategy if hint else None,
            confidence=0.0,
        )

    # ---- metrics -----------------------------------------------------

    def _bump_usage(self, name: str) -> None:
        with self._lock:
            self._usage[name] = self._usage.get(name, 0) + 1

    def _finish(self, start: float, *, recovered: bool) -> None:
        elapsed = (time.perf_counter() - start) * 1000.0
        with self._lock:
            self._handled += 1
            self._total_time_ms += elapsed
            if recovered:
                self._recovered += 1
            else:
                self._failed += 1

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_handled": self._handled,
                "recovered": self._recovered,
                "failed": self._failed,
                "strategy_usage": dict(self._usage),
                "average_recovery_time_ms": (
                    self._total_time_ms / self._handled if self._handled else 0.0
                ),
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._usage = {}
            self._recovered = 0
            self._failed = 0
            self._total_time_ms = 0.0
            self._handled = 0
