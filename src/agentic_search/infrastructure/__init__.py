"""Infrastructure layer: configuration, tool registry, retry, cache, cancellation."""

from agentic_search.infrastructure.cache import CacheLookup, InMemoryPlanCache, PlanCache
from agentic_search.infrastructure.cancellation import CancellationToken
from agentic_search.infrastructure.config import (
    ExecutorConfig,
    LoopConfig,
    RetryConfig,
    load_config_from_json,
)
from agentic_search.infrastructure.registry import ToolRegistry
from agentic_search.infrastructure.retry import (
    RetryOutcome,
    is_retryable_error,
    is_retryable_tool_error,
    run_with_retry,
)

__all__ = [
    "CacheLookup",
    "CancellationToken",
    "ExecutorConfig",
    "InMemoryPlanCache",
    "LoopConfig",
    "PlanCache",
    "RetryConfig",
    "RetryOutcome",
    "ToolRegistry",
    "is_retryable_error",
    "is_retryable_tool_error",
    "load_config_from_json",
    "run_with_retry",
]
