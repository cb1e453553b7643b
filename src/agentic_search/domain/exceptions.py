"""Domain exceptions for the agentic search loop.

All domain-specific exceptions inherit from ``AgenticSearchError`` so callers
can catch the full family with a single ``except`` clause when needed.

Only ``ValidationError`` and ``NotFoundError`` are meant to reach a session
caller.  Execution faults are converted into failed ``ExecutionResult``
objects, and judgment faults (``EvaluationError``, ``PlanningError``) are
absorbed by the component that raised them.
"""

from __future__ import annotations

from typing import Any


class AgenticSearchError(Exception):
    """Base exception for all agentic search errors."""

    kind: str = "Error"

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class ValidationError(AgenticSearchError):
    """Raised for bad input shapes or parameters.  Never retried."""

    kind = "Validation"

    def __init__(
        self,
        message: str = "Validation failed",
        issues: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.issues: list[str] = issues or []


class NotFoundError(AgenticSearchError):
    """Raised when a tool, rule, clarification request or option id is unknown."""

    kind = "NotFound"

    def __init__(
        self,
        message: str = "Not found",
        resource: str = "",
        identifier: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.resource = resource
        self.identifier = identifier


class ToolNotFoundError(NotFoundError):
    """Raised when a tool name is not registered."""

    def __init__(self, tool_name: str, available: list[str] | None = None) -> None:
        super().__init__(
            f"Tool '{tool_name}' is not registered",
            resource="tool",
            identifier=tool_name,
            details={"available": sorted(available or [])},
        )


class ClarificationNotFoundError(NotFoundError):
    """Raised when a clarification response references an unknown request."""

    def __init__(self, request_id: str) -> None:
        super().__init__(
            f"Clarification request '{request_id}' not found or expired",
            resource="clarification",
            identifier=request_id,
        )


class OptionNotFoundError(NotFoundError):
    """Raised when a clarification response selects an unknown option id."""

    def __init__(self, option_id: str, request_id: str = "") -> None:
        super().__init__(
            f"Option '{option_id}' not found in request '{request_id}'",
            resource="option",
            identifier=option_id,
            details={"request_id": request_id},
        )


class ExecutionError(AgenticSearchError):
    """Raised when a tool invocation fails.

    Execution errors are retried, then routed through error recovery, then
    replaced by a fallback.
    """

    kind = "Execution"

    def __init__(
        self,
        message: str = "Tool execution failed",
        tool_name: str = "",
        attempts: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.tool_name = tool_name
        self.attempts = attempts


class ToolTimeoutError(ExecutionError):
    """Raised when a tool invocation exceeds its per-request timeout."""

    kind = "Timeout"

    def __init__(self, tool_name: str = "", timeout: float = 0.0) -> None:
        super().__init__(
            f"Tool '{tool_name}' timed out after {timeout:.2f}s",
            tool_name=tool_name,
            details={"timeout": timeout},
        )
        self.timeout = timeout


class RecoveryExhaustedError(AgenticSearchError):
    """Raised when no recovery strategy could turn a failure into a result."""

    kind = "RecoveryExhausted"

    def __init__(
        self,
        message: str = "No recovery strategy succeeded",
        component: str = "",
        operation: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.component = component
        self.operation = operation


class EvaluationError(AgenticSearchError):
    """Raised when result evaluation fails internally."""

    kind = "Evaluation"

    def __init__(
        self,
        message: str = "Evaluation failed",
        check: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.check = check


class PlanningError(AgenticSearchError):
    """Raised when next-action planning fails."""

    kind = "Planning"

    def __init__(
        self,
        message: str = "Planning failed",
        planner: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.planner = planner


class NoApplicableRuleError(PlanningError):
    """Raised when no planning rule matches, including the catch-all."""

    def __init__(self, rules_checked: int = 0) -> None:
        super().__init__(
            f"No planning rule matched ({rules_checked} rules checked)",
            planner="rules",
            details={"rules_checked": rules_checked},
        )


class SessionCancelledError(AgenticSearchError):
    """Raised when a session's cancellation token fires."""

    kind = "Cancelled"

    def __init__(self, session_id: str = "") -> None:
        super().__init__(f"Session '{session_id}' was cancelled")
        self.session_id = session_id


def error_kind(exc: BaseException) -> str:
    """Return the short taxonomy tag for *exc*.

    Non-domain exceptions are reported as ``"Execution"``, except the
    builtin ``TimeoutError`` which maps to ``"Timeout"``.
    """
    if isinstance(exc, AgenticSearchError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return "Timeout"
    return "Execution"
