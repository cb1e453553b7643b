"""Result-set evaluation: depth-tiered quality checks and the stop decision.

Tiers are cumulative:

* ``shallow`` -- result presence, result consistency, confidence trajectory
* ``medium``  -- adds query relevance, result diversity, iteration efficiency
* ``deep``    -- adds semantic quality, constraint completeness, accuracy,
  intent alignment

``ResultEvaluator.evaluate`` never raises.  Any internal fault yields a
conservative fallback evaluation instead.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import numpy as np

from agentic_search.domain.entities import AgentState, QueryContext
from agentic_search.domain.enums import EvaluationDepth, Severity
from agentic_search.domain.exceptions import EvaluationError
from agentic_search.domain.values import EvaluationCriteria, EvaluationResult, QualityCheck

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 5

CheckFn = Callable[[AgentState, QueryContext], QualityCheck]


# ===================================================================== #
#  Result helpers                                                        #
# ===================================================================== #

def get_path(item: Any, path: str) -> Any:
    """Resolve a dotted path through mappings; lists map over their items."""
    value = item
    for part in path.split("."):
        if isinstance(value, Mapping):
            value = value.get(part)
        elif isinstance(value, (list, tuple)):
            value = [v.get(part) if isinstance(v, Mapping) else None for v in value]
        else:
            return None
        if value is None:
            return None
    return value


def item_text(item: Any) -> str:
    if isinstance(item, str):
        return item.lower()
    try:
        return json.dumps(item, default=str).lower()
    except (TypeError, ValueError):
        return str(item).lower()


def item_price(item: Any) -> float | None:
    """Lowest listed price of a result, ``None`` if it has none."""
    prices = get_path(item, "pricing.models.price")
    if isinstance(prices, list):
        numeric = [p for p in prices if isinstance(p, (int, float)) and not isinstance(p, bool)]
        if numeric:
            return float(min(numeric))
    flat = get_path(item, "price")
    if isinstance(flat, (int, float)) and not isinstance(flat, bool):
        return float(flat)
    return None


def _price_bucket(price: float) -> str:
    if price <= 0:
        return "free"
    if price < 20:
        return "low"
    if price < 100:
        return "mid"
    return "high"


def _has_free_tier(item: Any) -> bool:
    flag = get_path(item, "pricing.hasFreeTier")
    if isinstance(flag, bool):
        return flag
    price = item_price(item)
    return price is not None and price <= 0


def _query_words(text: str) -> list[str]:
    return [w for w in re.findall(r"[\w$-]+", text.lower()) if len(w) > 2]


# ===================================================================== #
#  Evaluator                                                             #
# ===================================================================== #

class ResultEvaluator:
    """Scores the current result set and decides continue-vs-stop.

    Parameters
    ----------
    default_depth:
        Depth used when ``evaluate`` is called without one.
    """

    def __init__(self, default_depth: EvaluationDepth = EvaluationDepth.MEDIUM) -> None:
        self.default_depth = default_depth
        self._lock = threading.Lock()
        self._reset_counters()

    def _tiers(self) -> dict[EvaluationDepth, list[CheckFn]]:
        shallow = [self._check_presence, self._check_consistency, self._check_trajectory]
        medium = shallow + [self._check_relevance, self._check_diversity, self._check_efficiency]
        deep = medium + [
            self._check_semantic_quality,
            self._check_constraint_completeness,
            self._check_accuracy,
            self._check_intent_alignment,
        ]
        return {
            EvaluationDepth.SHALLOW: shallow,
            EvaluationDepth.MEDIUM: medium,
            EvaluationDepth.DEEP: deep,
        }

    # ------------------------------------------------------------------ #
    #  Public API                                                         #
    # ------------------------------------------------------------------ #

    def evaluate(
        self,
        state: AgentState,
        context: QueryContext,
        depth: EvaluationDepth | str | None = None,
    ) -> EvaluationResult:
        start = time.perf_counter()
        try:
            tier = EvaluationDepth(depth) if depth is not None else self.default_depth
            checks = [self._run_check(fn, state, context) for fn in self._tiers()[tier]]
            result = self._aggregate(state, checks, tier, start)
        except Exception as exc:
            logger.warning("Evaluation failed, using fallback: %s", exc)
            result = self._fallback(state, exc, start)
        self._record(result)
        return result

    @staticmethod
    def _run_check(fn: CheckFn, state: AgentState, context: QueryContext) -> QualityCheck:
        try:
            return fn(state, context)
        except Exception as exc:
            name = getattr(fn, "__name__", "check").removeprefix("_check_")
            raise EvaluationError(f"Quality check '{name}' failed: {exc}", check=name) from exc

    # ------------------------------------------------------------------ #
    #  Aggregation                                                        #
    # ------------------------------------------------------------------ #

    def _aggregate(
        self,
        state: AgentState,
        checks: list[QualityCheck],
        depth: EvaluationDepth,
        start: float,
    ) -> EvaluationResult:
        by_name = {c.name: c for c in checks}

        def mean_of(*names: str) -> float | None:
            scores = [by_name[n].score for n in names if n in by_name]
            return float(np.mean(scores)) if scores else None

        high = [c.score for c in checks if c.priority is Severity.HIGH]
        relevance = mean_of("query_relevance")
        trajectory = mean_of("confidence_trajectory")
        criteria = EvaluationCriteria(
            relevance=relevance if relevance is not None else by_name["result_presence"].score,
            completeness=mean_of("constraint_completeness", "result_presence") or 0.0,
            accuracy=mean_of("accuracy", "result_consistency") or 0.0,
            quality=float(np.mean(high)) if high else 0.5,
            confidence=trajectory if trajectory is not None else state.current_confidence,
        )
        overall = criteria.overall()
        should_continue = self._should_continue(state, checks, overall)
        next_action = self._next_action(state, overall, should_continue)

        recommendations: list[str] = []
        for check in sorted(checks, key=lambda c: (c.passed, -c.priority.rank)):
            for suggestion in check.suggestions:
                if suggestion not in recommendations:
                    recommendations.append(suggestion)

        scores = np.asarray([c.score for c in checks], dtype=float)
        pass_rate = sum(1 for c in checks if c.passed) / len(checks)
        confidence = 0.6 * max(0.3, 1.0 - float(np.var(scores))) + 0.4 * pass_rate

        passed = sum(1 for c in checks if c.passed)
        reasoning = (
            f"Overall score {overall:.2f} from {len(checks)} checks ({passed} passed). "
            + ("Continue: " if should_continue else "Stop: ")
            + next_action.replace("_", " ")
            + "."
        )
        failed = [c.name for c in checks if not c.passed]
        if failed:
            reasoning += f" Failed: {', '.join(failed)}."

        result = EvaluationResult(
            criteria=criteria,
            checks=tuple(checks),
            overall_score=overall,
            should_continue=should_continue,
            next_action=next_action,
            reasoning=reasoning,
            recommendations=tuple(recommendations[:MAX_RECOMMENDATIONS]),
            confidence=min(1.0, confidence),
            depth=depth,
            evaluation_time_ms=(time.perf_counter() - start) * 1000.0,
            result_count=state.result_count,
            iteration=state.iteration_count,
        )
        logger.debug(
            "Evaluated iteration %d: overall %.3f, continue=%s, next=%s",
            state.iteration_count, overall, should_continue, next_action,
        )
        return result

    @staticmethod
    def _should_continue(state: AgentState, checks: Sequence[QualityCheck], overall: float) -> bool:
        if state.is_complete:
            return False
        iteration = state.iteration_count
        high_failed = any(c.priority is Severity.HIGH and not c.passed for c in checks)
        with_suggestions = sum(1 for c in checks if c.suggestions)
        return (
            overall < 0.4
            or high_failed
            or (iteration < 3 and overall < 0.8)
            or (with_suggestions > 2 and iteration < 6)
        )

    @staticmethod
    def _next_action(state: AgentState, overall: float, should_continue: bool) -> str:
        if not should_continue:
            return "complete_search"
        if not state.has_results:
            return "broaden_search_criteria"
        if overall < 0.3:
            return "restart_search_with_different_strategy"
        if state.result_count > 50:
            return "apply_filters_to_reduce_results"
        if sum(1 for s in state.confidence_scores if s < 0.5) > 2:
            return "refine_search_approach"
        return "continue_with_current_strategy"

    def _fallback(self, state: AgentState, exc: BaseException, start: float) -> EvaluationResult:
        score = 0.5 if state.has_results else 0.2
        check = QualityCheck(
            name="fallback_evaluation",
            passed=score >= 0.5,
            score=score,
            reasoning=f"Evaluation error: {exc}",
            priority=Severity.MEDIUM,
        )
        return EvaluationResult(
            criteria=EvaluationCriteria(score, score, score, score, score),
            checks=(check,),
            overall_score=score,
            should_continue=score < 0.6,
            next_action="continue_with_caution",
            reasoning=f"Fallback evaluation after internal error: {exc}",
            confidence=0.3,
            depth=self.default_depth,
            evaluation_time_ms=(time.perf_counter() - start) * 1000.0,
            result_count=state.result_count,
            iteration=state.iteration_count,
            metadata={"fallback": True, "error": str(exc)},
        )

    # ------------------------------------------------------------------ #
    #  Shallow checks                                                     #
    # ------------------------------------------------------------------ #

    def _check_presence(self, state: AgentState, context: QueryContext) -> QualityCheck:
        n = state.result_count
        if n == 0:
            return QualityCheck(
                "result_presence", False, 0.0, "No results found", Severity.HIGH,
                ("Broaden search criteria", "Try alternative search terms"),
            )
        if n > 50:
            return QualityCheck(
                "result_presence", True, 0.7, f"{n} results may be too many", Severity.HIGH,
                ("Apply filters to narrow results",),
            )
        return QualityCheck("result_presence", True, 1.0, f"{n} results", Severity.HIGH)

    def _check_consistency(self, state: AgentState, context: QueryContext) -> QualityCheck:
        results = state.results
        if not results:
            return QualityCheck(
                "result_consistency", True, 1.0, "No results to compare", Severity.MEDIUM
            )
        first = results[0]
        reference = set(first) if isinstance(first, Mapping) else None
        consistent = 0
        for item in results:
            if type(item) is not type(first):
                continue
            if reference is not None:
                keys = set(item)
                overlap = len(keys & reference) / max(1, len(keys | reference))
                if overlap < 0.5:
                    continue
            consistent += 1
        score = consistent / len(results)
        passed = score >= 0.8
        return QualityCheck(
            "result_consistency", passed, score,
            f"{consistent}/{len(results)} results share the same structure",
            Severity.MEDIUM,
            () if passed else ("Normalize result formats before combining tools",),
        )

    def _check_trajectory(self, state: AgentState, context: QueryContext) -> QualityCheck:
        scores = state.confidence_scores
        if not scores:
            return QualityCheck(
                "confidence_trajectory", True, 0.5, "No confidence history", Severity.MEDIUM
            )
        overall = float(np.mean(scores))
        recent = float(np.mean(scores[-3:]))
        if recent >= overall + 0.1:
            score, reasoning = 0.9, "Confidence is improving"
        elif recent <= overall - 0.1:
            score, reasoning = 0.3, "Confidence is declining"
        else:
            score, reasoning = 0.7, "Confidence is stable"
        passed = score >= 0.5
        return QualityCheck(
            "confidence_trajectory", passed, score, reasoning, Severity.MEDIUM,
            () if passed else ("Reconsider the current search approach",),
        )

    # ------------------------------------------------------------------ #
    #  Medium checks                                                      #
    # ------------------------------------------------------------------ #

    def _check_relevance(self, state: AgentState, context: QueryContext) -> QualityCheck:
        words = _query_words(context.original_query or state.query)
        if not state.results:
            return QualityCheck(
                "query_relevance", False, 0.0, "No results to score", Severity.HIGH,
                ("Refine query terms",),
            )
        if not words:
            return QualityCheck(
                "query_relevance", True, 0.6, "Query has no scorable terms", Severity.HIGH
            )
        needed = max(1, int(0.3 * len(words)))
        relevant = 0
        for item in state.results:
            text = item_text(item)
            if sum(1 for w in words if w in text) >= needed:
                relevant += 1
        score = relevant / len(state.results)
        passed = score >= 0.6
        return QualityCheck(
            "query_relevance", passed, score,
            f"{relevant}/{len(state.results)} results match the query terms",
            Severity.HIGH,
            () if passed else ("Use more specific search terms", "Try a different search tool"),
        )

    def _check_diversity(self, state: AgentState, context: QueryContext) -> QualityCheck:
        if not state.results:
            return QualityCheck(
                "result_diversity", False, 0.0, "No results", Severity.LOW,
                ("Broaden search to include more varied results",),
            )
        categories = {
            str(c) for c in (get_path(item, "categories.primary") for item in state.results)
            if c is not None
        }
        buckets = {
            _price_bucket(p) for p in (item_price(item) for item in state.results)
            if p is not None
        }
        score = (min(1.0, len(categories) / 3) + min(1.0, len(buckets) / 2)) / 2
        passed = score >= 0.4
        return QualityCheck(
            "result_diversity", passed, score,
            f"{len(categories)} categories, {len(buckets)} price ranges",
            Severity.LOW,
            () if passed else ("Broaden search to include more varied results",),
        )

    def _check_efficiency(self, state: AgentState, context: QueryContext) -> QualityCheck:
        iterations = state.iteration_count
        if iterations > 10:
            score = 0.3
        elif iterations > 6:
            score = 0.6
        else:
            score = 1.0
        if iterations > 0 and state.result_count / iterations < 1:
            score *= 0.8
        passed = score >= 0.6
        return QualityCheck(
            "iteration_efficiency", passed, score,
            f"{state.result_count} results in {iterations} iterations",
            Severity.MEDIUM,
            () if passed else ("Simplify the search strategy",),
        )

    # ------------------------------------------------------------------ #
    #  Deep checks                                                        #
    # ------------------------------------------------------------------ #

    def _check_semantic_quality(self, state: AgentState, context: QueryContext) -> QualityCheck:
        score = 0.8 if state.results else 0.3
        return QualityCheck(
            "semantic_quality", score >= 0.6, score,
            "Semantic quality estimated from result presence", Severity.LOW,
        )

    def _check_constraint_completeness(
        self, state: AgentState, context: QueryContext
    ) -> QualityCheck:
        if not state.results:
            return QualityCheck(
                "constraint_completeness", False, 0.0, "No results", Severity.HIGH,
                ("Relax constraints to find matching results",),
            )
        checks: list[bool] = []
        constraints = context.constraints
        for item in state.results:
            price = item_price(item)
            if "maxPrice" in constraints and price is not None:
                checks.append(price <= constraints["maxPrice"])
            if "minPrice" in constraints and price is not None:
                checks.append(price >= constraints["minPrice"])
            if constraints.get("hasFreeTier"):
                checks.append(_has_free_tier(item))
            if constraints.get("apiAccess"):
                checks.append("api" in item_text(item))
        if not checks:
            return QualityCheck(
                "constraint_completeness", True, 0.8, "No checkable constraints", Severity.HIGH
            )
        score = sum(checks) / len(checks)
        passed = score >= 0.6
        return QualityCheck(
            "constraint_completeness", passed, score,
            f"{sum(checks)}/{len(checks)} constraint checks satisfied",
            Severity.HIGH,
            () if passed else ("Apply constraint filters to the results",),
        )

    def _check_accuracy(self, state: AgentState, context: QueryContext) -> QualityCheck:
        score = 0.9 if state.results else 0.5
        return QualityCheck(
            "accuracy", score >= 0.7, score, "No contradicting data detected", Severity.HIGH
        )

    def _check_intent_alignment(self, state: AgentState, context: QueryContext) -> QualityCheck:
        intent = context.interpreted_intent.lower()
        score = 0.7
        if any(v in intent for v in ("find", "search", "list", "show")):
            score = 0.9 if state.results else 0.4
        elif any(v in intent for v in ("analyze", "compare", "statistics")):
            score = 0.8
        passed = score >= 0.6
        return QualityCheck(
            "intent_alignment", passed, score,
            f"Results aligned with intent '{intent or 'unknown'}'",
            Severity.MEDIUM,
            () if passed else ("Revisit the interpreted intent",),
        )

    # ------------------------------------------------------------------ #
    #  Metrics                                                            #
    # ------------------------------------------------------------------ #

    def _reset_counters(self) -> None:
        self._total = 0
        self._score_sum = 0.0
        self._continues = 0
        self._fallbacks = 0
        self._check_runs: dict[str, list[int]] = {}

    def _record(self, result: EvaluationResult) -> None:
        with self._lock:
            self._total += 1
            self._score_sum += result.overall_score
            if result.should_continue:
                self._continues += 1
            if result.metadata.get("fallback"):
                self._fallbacks += 1
            for check in result.checks:
                runs = self._check_runs.setdefault(check.name, [0, 0])
                runs[0] += 1
                runs[1] += int(check.passed)

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            total = self._total
            return {
                "total_evaluations": total,
                "average_score": self._score_sum / total if total else 0.0,
                "continue_rate": self._continues / total if total else 0.0,
                "fallback_evaluations": self._fallbacks,
                "check_pass_rates": {
                    name: passes / runs for name, (runs, passes) in self._check_runs.items()
                },
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._reset_counters()
