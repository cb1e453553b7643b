"""Confidence model: explainable 0-1 scores from weighted factors.

Every judgment in the loop (query understanding, tool choice, tool result,
loop state) is expressed as a set of ``ConfidenceFactor`` objects built by
the pure functions in this module and aggregated by
:meth:`ConfidenceModel.score`.

Classes
-------
ConfidenceModel
    Weighted-mean aggregation, category thresholds, validation of external
    confidence values, and lock-protected rolling metrics.
"""

from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from agentic_search.domain.enums import ConfidenceSource
from agentic_search.domain.values import (
    Ambiguity,
    ConfidenceCalculation,
    ConfidenceFactor,
    ToolInvocation,
)

if TYPE_CHECKING:
    from agentic_search.domain.entities import QueryContext

logger = logging.getLogger(__name__)

HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.6
LOW_THRESHOLD = 0.4

STRONG_FACTOR = 0.7
WEAK_FACTOR = 0.4


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _words(text: str) -> list[str]:
    return re.findall(r"[a-z0-9$]+", text.lower())


# ===================================================================== #
#  Query-understanding factors                                           #
# ===================================================================== #

_SPECIFIC_TERMS = ("under", "less than", "with", "for", "api", "free", "paid")
_VAGUE_TERMS = ("good", "best", "interesting", "nice", "cool")


def query_clarity_factor(query: str) -> ConfidenceFactor:
    """Score how specific the query text itself is.

    Base 0.5; +0.2 for length in [5, 100]; -0.2 below 5 characters; -0.1
    above 100; +0.2 for domain-specific qualifier terms; -0.3 for vague
    subjective terms; +0.1 for question form.
    """
    text = query.strip().lower()
    words = set(_words(text))
    score = 0.5
    reasons: list[str] = []

    if len(text) < 5:
        score -= 0.2
        reasons.append("very short query")
    elif len(text) <= 100:
        score += 0.2
        reasons.append("reasonable query length")
    else:
        score -= 0.1
        reasons.append("very long query")

    specific = [t for t in _SPECIFIC_TERMS if (t in words if " " not in t else t in text)]
    if specific:
        score += 0.2
        reasons.append(f"specific terms: {', '.join(specific)}")

    vague = [t for t in _VAGUE_TERMS if t in words]
    if vague:
        score -= 0.3
        reasons.append(f"vague terms: {', '.join(vague)}")

    if "?" in text:
        score += 0.1
        reasons.append("question form")

    return ConfidenceFactor("query_clarity", _clamp(score), 0.25, "; ".join(reasons))


def entity_quality_factor(entities: Mapping[str, Any]) -> ConfidenceFactor:
    """Base 0.3; +0.1 per entity (max +0.3) or -0.2 with none; +0.2 for
    structured values; +0.1 each for pricing and feature entities."""
    score = 0.3
    reasons: list[str] = []
    count = len(entities)
    if count:
        score += min(0.3, 0.1 * count)
        reasons.append(f"{count} entities extracted")
    else:
        score -= 0.2
        reasons.append("no entities extracted")

    if any(isinstance(v, (Mapping, list, tuple)) for v in entities.values()):
        score += 0.2
        reasons.append("structured entity values")
    keys = " ".join(entities).lower()
    if "pric" in keys:
        score += 0.1
        reasons.append("pricing entity")
    if "feature" in keys or "capabilit" in keys:
        score += 0.1
        reasons.append("feature entity")

    return ConfidenceFactor("entity_quality", _clamp(score), 0.2, "; ".join(reasons))


def constraint_specificity_factor(constraints: Mapping[str, Any]) -> ConfidenceFactor:
    """Base 0.3; +0.15 per constraint (max +0.4); +0.2 for numeric values;
    +0.1 for list values."""
    score = 0.3
    reasons: list[str] = []
    if constraints:
        score += min(0.4, 0.15 * len(constraints))
        reasons.append(f"{len(constraints)} constraints")
    else:
        reasons.append("no constraints")
    values = list(constraints.values())
    if any(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        score += 0.2
        reasons.append("numeric constraint")
    if any(isinstance(v, (list, tuple)) for v in values):
        score += 0.1
        reasons.append("list constraint")
    return ConfidenceFactor(
        "constraint_specificity", _clamp(score), 0.15, "; ".join(reasons)
    )


_CRITICAL_AMBIGUITY_TERMS = ("budget", "price", "specific features")


def ambiguity_factor(ambiguities: Sequence[Ambiguity | str]) -> ConfidenceFactor:
    """Base 0.8; -0.15 per ambiguity; -0.2 more when one concerns budget,
    price or specific features."""
    score = 0.8 - 0.15 * len(ambiguities)
    texts = [
        (a if isinstance(a, str) else f"{a.text} {a.description}").lower()
        for a in ambiguities
    ]
    critical = any(term in t for t in texts for term in _CRITICAL_AMBIGUITY_TERMS)
    if critical:
        score -= 0.2
    reasoning = (
        f"{len(ambiguities)} ambiguities" + (", including budget/feature" if critical else "")
        if ambiguities
        else "no ambiguities"
    )
    return ConfidenceFactor("ambiguity_level", _clamp(score), 0.2, reasoning)


_SPECIFIC_INTENTS = frozenset({
    "find_free_tools",
    "filter_by_price",
    "search_by_category",
    "compare_tools",
    "analyze_pricing",
    "compare_brands",
    "find_brand",
    "find_category_tools",
    "find_capability_tools",
    "find_pricing_type_tools",
    "find_tools_in_price_range",
})
_GENERAL_INTENT_TERMS = ("search", "browse", "find", "show", "list", "recommend")


def intent_factor(intent: str, query: str) -> ConfidenceFactor:
    """Base 0.5; +0.3 for a specific intent, +0.1 for a general one, -0.1
    otherwise; +0.05 per intent word that also appears in the query (max
    +0.2)."""
    if not intent or intent == "unknown":
        return ConfidenceFactor("intent_recognition", 0.2, 0.2, "no intent recognised")
    score = 0.5
    reasons: list[str] = []
    if intent in _SPECIFIC_INTENTS:
        score += 0.3
        reasons.append(f"specific intent '{intent}'")
    elif any(term in intent for term in _GENERAL_INTENT_TERMS):
        score += 0.1
        reasons.append(f"general intent '{intent}'")
    else:
        score -= 0.1
        reasons.append(f"unrecognised intent '{intent}'")
    overlap = set(intent.lower().split("_")) & set(_words(query))
    if overlap:
        score += min(0.2, 0.05 * len(overlap))
        reasons.append(f"{len(overlap)} intent terms in query")
    return ConfidenceFactor("intent_recognition", _clamp(score), 0.2, "; ".join(reasons))


def context_completeness_factor(context: QueryContext) -> ConfidenceFactor:
    """Base 0.4; +0.3 when query, intent and entities are all present
    (-0.2 otherwise); +0.1 per populated optional field."""
    score = 0.4
    reasons: list[str] = []
    required = {
        "query": context.original_query,
        "intent": context.interpreted_intent,
        "entities": context.entities,
    }
    missing = [k for k, v in required.items() if not v]
    if missing:
        score -= 0.2
        reasons.append(f"missing: {', '.join(missing)}")
    else:
        score += 0.3
        reasons.append("query, intent and entities present")
    optional = {
        "constraints": context.constraints,
        "ambiguities": context.ambiguities,
        "clarification_history": context.clarification_history,
    }
    present = [k for k, v in optional.items() if v]
    if present:
        score += 0.1 * len(present)
        reasons.append(f"additional: {', '.join(present)}")
    return ConfidenceFactor("context_completeness", _clamp(score), 0.1, "; ".join(reasons))


# ===================================================================== #
#  Tool-selection factors                                                #
# ===================================================================== #

# tool-name fragment -> intent fragments it serves
_TOOL_INTENT_AFFINITY: dict[str, tuple[str, ...]] = {
    "search": ("find", "search", "show", "list", "get", "recommend", "brand"),
    "filter": ("price", "pricing", "category", "capability", "filter", "free"),
    "sort": ("sort", "top", "rank", "popular", "recent"),
    "group": ("analyze", "compare", "summarize", "statistics"),
    "count": ("count", "statistics", "how_many"),
    "limit": ("top", "limit", "list"),
}


def _tool_family(tool_name: str) -> str | None:
    lowered = tool_name.lower()
    for family in _TOOL_INTENT_AFFINITY:
        if family in lowered:
            return family
    return None


def tool_intent_match_factor(tool_name: str, intent: str) -> ConfidenceFactor:
    """0.8 when the tool family serves the intent, 0.4 when it does not,
    0.5 when either is unknown."""
    family = _tool_family(tool_name)
    if not intent or family is None:
        return ConfidenceFactor("tool_intent_match", 0.5, 0.3, "tool or intent unknown")
    if any(term in intent.lower() for term in _TOOL_INTENT_AFFINITY[family]):
        return ConfidenceFactor(
            "tool_intent_match", 0.8, 0.3, f"{family} tool serves intent '{intent}'"
        )
    return ConfidenceFactor(
        "tool_intent_match", 0.4, 0.3, f"{family} tool is a weak fit for '{intent}'"
    )


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple, dict)) and not value)


def parameter_quality_factor(parameters: Mapping[str, Any]) -> ConfidenceFactor:
    """0.5 plus half the fraction of non-empty parameters; 0.5 with none."""
    if not parameters:
        return ConfidenceFactor("parameter_quality", 0.5, 0.2, "no parameters")
    filled = sum(1 for v in parameters.values() if not _is_empty(v))
    ratio = filled / len(parameters)
    return ConfidenceFactor(
        "parameter_quality",
        _clamp(0.5 + 0.5 * ratio),
        0.2,
        f"{filled}/{len(parameters)} parameters populated",
    )


def reasoning_coherence_factor(reasoning: str) -> ConfidenceFactor:
    words = _words(reasoning)
    if not words:
        return ConfidenceFactor("reasoning_coherence", 0.3, 0.2, "no reasoning given")
    if len(words) < 5:
        return ConfidenceFactor("reasoning_coherence", 0.5, 0.2, "terse reasoning")
    return ConfidenceFactor("reasoning_coherence", 0.8, 0.2, "reasoning present")


def historical_success_factor(success_rate: float | None) -> ConfidenceFactor:
    if success_rate is None:
        return ConfidenceFactor("historical_success", 0.6, 0.15, "no execution history")
    return ConfidenceFactor(
        "historical_success",
        _clamp(success_rate),
        0.15,
        f"historical success rate {success_rate:.2f}",
    )


def context_compatibility_factor(tool_name: str, context: QueryContext) -> ConfidenceFactor:
    """Whether the context carries what the tool family consumes."""
    family = _tool_family(tool_name)
    if family == "search":
        ok = bool(context.original_query.strip())
        need = "query text"
    elif family == "filter":
        ok = bool(context.constraints or context.entities)
        need = "constraints or entities"
    elif family in ("group", "count", "sort", "limit"):
        ok = bool(context.interpreted_intent)
        need = "an interpreted intent"
    else:
        return ConfidenceFactor("context_compatibility", 0.6, 0.15, "generic tool")
    score = 0.8 if ok else 0.4
    return ConfidenceFactor(
        "context_compatibility",
        score,
        0.15,
        f"{family} tool {'has' if ok else 'lacks'} {need}",
    )


# ===================================================================== #
#  Execution factors                                                     #
# ===================================================================== #

def result_quality_factor(data: Any) -> ConfidenceFactor:
    """0.9 for 1-50 list items, 0.6 above 50, 0.3 for an empty list,
    0.8 for a non-empty mapping, 0.7 for a scalar, 0.0 for no data."""
    if data is None:
        return ConfidenceFactor("result_quality", 0.0, 0.4, "no data returned")
    if isinstance(data, (list, tuple)):
        n = len(data)
        if n == 0:
            return ConfidenceFactor("result_quality", 0.3, 0.4, "empty result list")
        if n <= 50:
            return ConfidenceFactor("result_quality", 0.9, 0.4, f"{n} results")
        return ConfidenceFactor("result_quality", 0.6, 0.4, f"{n} results (too many)")
    if isinstance(data, Mapping):
        score = 0.8 if data else 0.4
        return ConfidenceFactor("result_quality", score, 0.4, f"mapping with {len(data)} keys")
    return ConfidenceFactor("result_quality", 0.7, 0.4, "scalar result")


def execution_efficiency_factor(elapsed_ms: float) -> ConfidenceFactor:
    if elapsed_ms < 1000:
        score = 1.0
    elif elapsed_ms < 5000:
        score = 0.8
    elif elapsed_ms < 15000:
        score = 0.6
    else:
        score = 0.4
    return ConfidenceFactor(
        "execution_efficiency", score, 0.2, f"completed in {elapsed_ms:.0f}ms"
    )


def parameter_alignment_factor(parameters: Mapping[str, Any], data: Any) -> ConfidenceFactor:
    """Fraction of textual parameter terms that appear in the results."""
    terms: set[str] = set()
    for value in parameters.values():
        if isinstance(value, str):
            terms.update(w for w in _words(value) if len(w) > 2)
        elif isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, str):
                    terms.update(w for w in _words(item) if len(w) > 2)
    if not terms or not isinstance(data, (list, tuple)) or not data:
        return ConfidenceFactor("parameter_alignment", 0.6, 0.2, "nothing to align")
    try:
        blob = json.dumps(list(data), default=str).lower()
    except (TypeError, ValueError):
        blob = str(data).lower()
    hits = sum(1 for t in terms if t in blob)
    ratio = hits / len(terms)
    return ConfidenceFactor(
        "parameter_alignment",
        _clamp(0.4 + 0.6 * ratio),
        0.2,
        f"{hits}/{len(terms)} parameter terms found in results",
    )


def retry_stability_factor(attempts: int) -> ConfidenceFactor:
    if attempts <= 1:
        score = 1.0
    elif attempts == 2:
        score = 0.75
    else:
        score = 0.5
    return ConfidenceFactor("retry_stability", score, 0.2, f"{attempts} attempt(s)")


# ===================================================================== #
#  Loop-state factors                                                    #
# ===================================================================== #

def result_count_factor(count: int) -> ConfidenceFactor:
    """Sweet spot 1..50 -> 0.8; above 50 -> 0.6; none -> 0.3."""
    if 0 < count <= 50:
        return ConfidenceFactor("result_quality", 0.8, 0.3, f"{count} results in sweet spot")
    if count > 50:
        return ConfidenceFactor("result_quality", 0.6, 0.3, f"{count} results (too many)")
    return ConfidenceFactor("result_quality", 0.3, 0.3, "no results")


def trajectory_factor(scores: Sequence[float]) -> ConfidenceFactor:
    """Trend over the last three scores: rising -> 0.8, falling -> 0.3,
    flat -> 0.6; 0.5 with fewer than two scores."""
    if len(scores) < 2:
        return ConfidenceFactor("confidence_trajectory", 0.5, 0.25, "insufficient history")
    recent = np.asarray(scores[-3:], dtype=float)
    trend = float(recent[-1] - recent[0])
    if trend > 0.1:
        return ConfidenceFactor("confidence_trajectory", 0.8, 0.25, f"improving ({trend:+.2f})")
    if trend < -0.1:
        return ConfidenceFactor("confidence_trajectory", 0.3, 0.25, f"declining ({trend:+.2f})")
    return ConfidenceFactor("confidence_trajectory", 0.6, 0.25, f"stable ({trend:+.2f})")


def iteration_factor(iteration: int) -> ConfidenceFactor:
    if iteration > 8:
        return ConfidenceFactor("iteration_efficiency", 0.4, 0.2, f"{iteration} iterations")
    if iteration > 5:
        return ConfidenceFactor("iteration_efficiency", 0.6, 0.2, f"{iteration} iterations")
    return ConfidenceFactor("iteration_efficiency", 0.8, 0.2, f"{iteration} iterations")


def progress_factor(progress: float) -> ConfidenceFactor:
    return ConfidenceFactor("progress", _clamp(progress), 0.15, f"progress {progress:.2f}")


def tool_success_factor(history: Sequence[ToolInvocation]) -> ConfidenceFactor:
    """Share of tool invocations whose confidence reached 0.5."""
    if not history:
        return ConfidenceFactor("tool_success_rate", 0.8, 0.1, "no tool history")
    ok = sum(1 for entry in history if entry.confidence >= 0.5)
    return ConfidenceFactor(
        "tool_success_rate", ok / len(history), 0.1, f"{ok}/{len(history)} successful"
    )


# ===================================================================== #
#  ConfidenceModel                                                       #
# ===================================================================== #

class ConfidenceModel:
    """Aggregates factors into a ``ConfidenceCalculation``.

    One instance is shared by the components of a process.  Only the
    rolling metrics are mutable, and they are guarded by a lock.

    Parameters
    ----------
    high_threshold, medium_threshold, low_threshold:
        Boundaries used by :meth:`category`.
    """

    def __init__(
        self,
        high_threshold: float = HIGH_THRESHOLD,
        medium_threshold: float = MEDIUM_THRESHOLD,
        low_threshold: float = LOW_THRESHOLD,
    ) -> None:
        if not (0.0 <= low_threshold <= medium_threshold <= high_threshold <= 1.0):
            raise ValueError(
                "thresholds must satisfy 0 <= low <= medium <= high <= 1, got "
                f"{low_threshold}, {medium_threshold}, {high_threshold}"
            )
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.low_threshold = low_threshold
        self._lock = threading.Lock()
        self._total = 0
        self._average = 0.0
        self._distribution = {"high": 0, "medium": 0, "low": 0}
        self._factor_usage: dict[str, int] = {}
        self._last: ConfidenceCalculation | None = None

    # ------------------------------------------------------------------ #
    #  Aggregation                                                        #
    # ------------------------------------------------------------------ #

    def score(
        self,
        factors: Sequence[ConfidenceFactor],
        source: ConfidenceSource = ConfidenceSource.HEURISTIC,
    ) -> ConfidenceCalculation:
        """Weighted mean of factor scores, clamped to [0, 1].

        Factors with a non-finite score are ignored.  With no usable weight
        the score is 0.0.  Never raises.
        """
        start = time.perf_counter()
        usable = [f for f in factors if math.isfinite(f.score)]
        total_weight = sum(f.weight for f in usable)
        if total_weight > 0:
            raw = sum(f.score * f.weight for f in usable) / total_weight
            value = _clamp(raw)
            reasoning = self._reasoning(usable)
        else:
            value = 0.0
            reasoning = "No weighted confidence factors provided"

        calculation = ConfidenceCalculation(
            score=value,
            factors=tuple(factors),
            reasoning=reasoning,
            computation_time_ms=(time.perf_counter() - start) * 1000.0,
            source=source,
        )
        self._record(calculation)
        return calculation

    @staticmethod
    def _reasoning(factors: Sequence[ConfidenceFactor]) -> str:
        strong = [f.name for f in factors if f.score >= STRONG_FACTOR]
        weak = [f.name for f in factors if f.score < WEAK_FACTOR]
        parts: list[str] = []
        if strong:
            parts.append(f"Strong indicators: {', '.join(strong)}.")
        if weak:
            parts.append(f"Weak areas: {', '.join(weak)}.")
        if len(strong) > len(weak):
            parts.append("Overall positive assessment.")
        elif len(weak) > len(strong):
            parts.append("Overall uncertain assessment.")
        else:
            parts.append("Mixed assessment.")
        return " ".join(parts)

    # ------------------------------------------------------------------ #
    #  Use-case composites                                                #
    # ------------------------------------------------------------------ #

    def calculate_query_confidence(self, context: QueryContext) -> ConfidenceCalculation:
        return self.score([
            query_clarity_factor(context.original_query),
            entity_quality_factor(context.entities),
            constraint_specificity_factor(context.constraints),
            ambiguity_factor(context.ambiguities),
            intent_factor(context.interpreted_intent, context.original_query),
            context_completeness_factor(context),
        ])

    def calculate_tool_confidence(
        self,
        tool_name: str,
        parameters: Mapping[str, Any],
        context: QueryContext,
        reasoning: str = "",
        success_rate: float | None = None,
    ) -> ConfidenceCalculation:
        return self.score([
            tool_intent_match_factor(tool_name, context.interpreted_intent),
            parameter_quality_factor(parameters),
            reasoning_coherence_factor(reasoning),
            historical_success_factor(success_rate),
            context_compatibility_factor(tool_name, context),
        ])

    def calculate_execution_confidence(
        self,
        data: Any,
        parameters: Mapping[str, Any],
        elapsed_ms: float,
        attempts: int = 1,
    ) -> ConfidenceCalculation:
        return self.score([
            result_quality_factor(data),
            execution_efficiency_factor(elapsed_ms),
            parameter_alignment_factor(parameters, data),
            retry_stability_factor(attempts),
        ])

    # ------------------------------------------------------------------ #
    #  Classification & validation                                        #
    # ------------------------------------------------------------------ #

    def category(self, score: float) -> str:
        """``"high"``, ``"medium"``, ``"low"`` or ``"very_low"``."""
        if score >= self.high_threshold:
            return "high"
        if score >= self.medium_threshold:
            return "medium"
        if score >= self.low_threshold:
            return "low"
        return "very_low"

    @staticmethod
    def validate(score: Any) -> tuple[bool, list[str]]:
        """Check an externally reported confidence value before trusting it."""
        issues: list[str] = []
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            issues.append("Confidence score must be a number")
        elif math.isnan(score):
            issues.append("Confidence score cannot be NaN")
        elif not math.isfinite(score):
            issues.append("Confidence score must be finite")
        elif score < 0 or score > 1:
            issues.append("Confidence score must be between 0 and 1")
        return (not issues, issues)

    # ------------------------------------------------------------------ #
    #  Metrics                                                            #
    # ------------------------------------------------------------------ #

    def _record(self, calculation: ConfidenceCalculation) -> None:
        bucket = self.category(calculation.score)
        if bucket == "very_low":
            bucket = "low"
        with self._lock:
            self._total += 1
            self._average += (calculation.score - self._average) / self._total
            self._distribution[bucket] += 1
            for f in calculation.factors:
                self._factor_usage[f.name] = self._factor_usage.get(f.name, 0) + 1
            self._last = calculation

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_calculations": self._total,
                "average_confidence": self._average,
                "distribution": dict(self._distribution),
                "factor_usage": dict(self._factor_usage),
                "last_calculation": self._last,
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._total = 0
            self._average = 0.0
            self._distribution = {"high": 0, "medium": 0, "low": 0}
            self._factor_usage = {}
            self._last = None
