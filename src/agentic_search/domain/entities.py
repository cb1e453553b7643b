"""Domain entities for the agentic search loop.

``QueryContext`` is the mutable per-session record of what the loop has
understood about a request.  It is owned by exactly one session.

``AgentState`` is immutable: every change goes through a ``StateManager``
function that returns a new instance (copy-on-write), so append-only
histories can never be rewritten by a caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .enums import Phase, Severity
from .values import (
    Ambiguity,
    ClarificationRecord,
    ClarificationRequest,
    RefinementRecord,
    StateTransition,
    ToolInvocation,
)

# ---------------------------------------------------------------------------
# QueryContext
# ---------------------------------------------------------------------------

@dataclass
class QueryContext:
    """Mutable, session-scoped understanding of the query.

    ``pending_requests`` holds clarification requests that have been shown
    to the user but not yet answered.  Every ambiguity id referenced by a
    pending request stays in ``ambiguities`` until that request is
    resolved.
    """

    original_query: str
    session_id: str = ""
    interpreted_intent: str = ""
    entities: dict[str, Any] = field(default_factory=dict)
    constraints: dict[str, Any] = field(default_factory=dict)
    ambiguities: list[Ambiguity] = field(default_factory=list)
    clarification_history: list[ClarificationRecord] = field(default_factory=list)
    refinement_history: list[RefinementRecord] = field(default_factory=list)
    pending_requests: dict[str, ClarificationRequest] = field(default_factory=dict)

    @property
    def clarification_rounds(self) -> int:
        return len(self.clarification_history)

    @property
    def has_prior_context(self) -> bool:
        """True once anything beyond the raw query text is known."""
        return bool(
            self.interpreted_intent
            or self.entities
            or self.clarification_history
            or self.refinement_history
        )

    def resolved_signatures(self) -> set[tuple[str, str]]:
        """``(type, text)`` pairs already settled in earlier rounds."""
        resolved: set[tuple[str, str]] = set()
        for record in self.clarification_history:
            resolved.update(record.resolved_signatures)
        return resolved

    def ambiguities_at(self, severity: Severity) -> list[Ambiguity]:
        return [a for a in self.ambiguities if a.severity is severity]

    def referenced_ambiguity_ids(self) -> set[str]:
        ids: set[str] = set()
        for request in self.pending_requests.values():
            ids.update(request.ambiguity_ids)
        return ids


# ---------------------------------------------------------------------------
# AgentState
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StateMetadata:
    """Timestamps, step counters and the error flag of an ``AgentState``."""

    start_time: float = field(default_factory=time.time)
    last_update_time: float = field(default_factory=time.time)
    total_steps: int = 0
    completed_steps: int = 0
    has_error: bool = False
    error_message: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentState:
    """Immutable snapshot of one session's loop state.

    Note: ``results`` items and ``metadata.extra`` are whatever the tools
    returned; the tuple containers are immutable but their items are not
    copied.
    """

    query: str
    results: tuple[Any, ...] = ()
    iteration_count: int = 0
    is_complete: bool = False
    confidence_scores: tuple[float, ...] = ()
    tool_history: tuple[ToolInvocation, ...] = ()
    current_confidence: float = 0.0
    phase: Phase = Phase.IDLE
    metadata: StateMetadata = field(default_factory=StateMetadata)
    history: tuple[StateTransition, ...] = ()

    @property
    def result_count(self) -> int:
        return len(self.results)

    @property
    def has_results(self) -> bool:
        return bool(self.results)
