"""Ambiguity detection and the clarification protocol.

Detection is driven by a declarative table of ``AmbiguityPattern`` rows
(pattern, type, severity) plus two contextual heuristics; questions and
resolution options are looked up per ambiguity type.  The protocol is a
detect -> question -> resolve cycle over ``QueryContext.ambiguities``,
``QueryContext.pending_requests`` and ``QueryContext.clarification_history``.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any

from agentic_search.domain.entities import QueryContext
from agentic_search.domain.enums import AmbiguityType, Severity
from agentic_search.domain.exceptions import (
    ClarificationNotFoundError,
    OptionNotFoundError,
    ValidationError,
)
from agentic_search.domain.values import (
    Ambiguity,
    ClarificationRecord,
    ClarificationRequest,
    ClarificationResponse,
    RefinementRecord,
    ResolutionOption,
)

logger = logging.getLogger(__name__)

MAX_CLARIFICATION_ROUNDS = 3
MEDIUM_CLARIFICATION_ROUNDS = 2


# ===================================================================== #
#  Pattern table                                                         #
# ===================================================================== #

@dataclass(frozen=True)
class AmbiguityPattern:
    """One row of the detection table."""

    type: AmbiguityType
    pattern: re.Pattern[str]
    severity: Severity


def _row(type_: AmbiguityType, regex: str, severity: Severity) -> AmbiguityPattern:
    return AmbiguityPattern(type_, re.compile(regex, re.IGNORECASE), severity)


_T = AmbiguityType
_S = Severity

DEFAULT_PATTERNS: tuple[AmbiguityPattern, ...] = (
    # subjective criteria
    _row(_T.SUBJECTIVE, r"\b(good|best|interesting)\b", _S.HIGH),
    _row(_T.SUBJECTIVE, r"\b(excellent|nice|cool|awesome|amazing|terrible|bad|poor)\b", _S.LOW),
    _row(_T.SUBJECTIVE, r"\b(high quality|low quality|top notch|professional|enterprise-grade)\b", _S.LOW),
    _row(_T.SUBJECTIVE, r"\b(popular|trending|recommended|preferred)\b", _S.LOW),
    # quantitative vagueness
    _row(_T.QUANTITATIVE, r"\b(cheap|expensive|affordable|reasonable|budget|premium|luxury)\b", _S.MEDIUM),
    _row(_T.QUANTITATIVE, r"\b(few|many|several|some|lots of|a lot of)\b", _S.MEDIUM),
    _row(_T.QUANTITATIVE, r"\b(recent|new|old|outdated|modern|legacy)\b", _S.MEDIUM),
    _row(_T.QUANTITATIVE, r"\b(fast|slow|quick|responsive|performant)\b", _S.MEDIUM),
    # technical vagueness
    _row(_T.TECHNICAL, r"\b(api|webhook|sdk|integration)\b", _S.LOW),
    _row(_T.TECHNICAL, r"\b(scalable|secure|reliable|stable|robust)\b", _S.LOW),
    _row(_T.TECHNICAL, r"\b(easy to use|user friendly|intuitive|complex)\b", _S.LOW),
    # scope too broad
    _row(_T.SCOPE, r"\b(tools|software|solutions|platforms|services)\s*$", _S.HIGH),
    _row(_T.SCOPE, r"\b(for my|for our|for business|for personal)\b", _S.HIGH),
    _row(_T.SCOPE, r"\b(show me|find|get|list)\s+\w+\s*$", _S.HIGH),
    # missing context
    _row(_T.CONTEXT, r"\b(my project|my startup|my company|my team)\b", _S.MEDIUM),
    _row(_T.CONTEXT, r"\b(we need|i need|looking for)\b", _S.MEDIUM),
    _row(_T.CONTEXT, r"\b(specific|particular|certain)\b", _S.MEDIUM),
    # temporal vagueness
    _row(_T.TEMPORAL, r"\b(recently|currently|now|soon|later|eventually)\b", _S.LOW),
    _row(_T.TEMPORAL, r"\b(this year|last year|next year)\b", _S.LOW),
    _row(_T.TEMPORAL, r"\b(quarter|month|week)\b", _S.LOW),
    # comparison without baseline
    _row(_T.COMPARATIVE, r"\b(better|worse|superior|inferior|compared to|versus|vs)\b", _S.LOW),
    _row(_T.COMPARATIVE, r"\b(like|similar to|different from)\b", _S.LOW),
    _row(_T.COMPARATIVE, r"\b(alternative to|replacement for)\b", _S.LOW),
)

# A standalone pronoun; "this"/"that" followed by a word are determiners or
# relative pronouns and carry their own referent.
_PRONOUN = re.compile(r"\b(it|they|them)\b|\b(this|that)\b(?!\s+\w)", re.IGNORECASE)
_QUALIFIER_TERMS = ("free", "paid", "api", "under", "with", "for", "less than")

_DESCRIPTIONS: dict[AmbiguityType, str] = {
    _T.SUBJECTIVE: '"{text}" is subjective and may mean different things to different people',
    _T.QUANTITATIVE: '"{text}" lacks specific quantitative information',
    _T.TECHNICAL: '"{text}" requires more technical specification',
    _T.SCOPE: '"{text}" is too broad and needs more specific context',
    _T.CONTEXT: '"{text}" lacks sufficient context for precise interpretation',
    _T.TEMPORAL: '"{text}" has unclear temporal scope',
    _T.COMPARATIVE: '"{text}" requires comparison targets for clarity',
}

_QUESTIONS: dict[AmbiguityType, tuple[str, ...]] = {
    _T.SUBJECTIVE: (
        'What specific qualities make something "{text}" for you?',
        'Can you provide examples of what you consider "{text}"?',
        'What criteria are you using to evaluate "{text}"?',
    ),
    _T.QUANTITATIVE: (
        'What specific price range do you consider "{text}"?',
        'Can you provide a specific number for "{text}"?',
        'What are the exact parameters for "{text}"?',
    ),
    _T.TECHNICAL: (
        'What specific technical requirements do you have for "{text}"?',
        "Can you describe the technical specifications you need?",
        'What technical context should I consider for "{text}"?',
    ),
    _T.SCOPE: (
        "What specific type of tools are you looking for?",
        "Can you specify the category or use case?",
        "What particular features are you interested in?",
    ),
    _T.CONTEXT: (
        "Can you provide more context about your specific needs?",
        "What industry or use case are you targeting?",
        "Can you describe your specific situation?",
    ),
    _T.TEMPORAL: (
        'What time frame are you considering for "{text}"?',
        "Can you specify the recency or date range you need?",
        "What period are you interested in?",
    ),
    _T.COMPARATIVE: (
        'What are you comparing "{text}" against?',
        "Can you provide a baseline or reference point?",
        "What specific features should be compared?",
    ),
}

# (text, confidence, refined query)
_OPTIONS: dict[AmbiguityType, tuple[tuple[str, float, str | None], ...]] = {
    _T.SUBJECTIVE: (
        ("High user ratings and reviews", 0.8, None),
        ("Popular among developers", 0.7, None),
        ("Industry recognized tools", 0.6, None),
        ("Cutting-edge technology", 0.7, None),
    ),
    _T.QUANTITATIVE: (
        ("Free tools only", 0.9, "free tools"),
        ("Under $50/month", 0.8, "tools under $50"),
        ("Under $100/month", 0.7, "tools under $100"),
        ("Budget-friendly options", 0.6, "affordable tools"),
    ),
    _T.TECHNICAL: (
        ("API-based tools", 0.8, "tools with API"),
        ("Enterprise-grade solutions", 0.7, "enterprise tools"),
        ("Open source tools", 0.8, "open source tools"),
    ),
    _T.SCOPE: (
        ("AI and machine learning tools", 0.8, "AI tools"),
        ("Productivity and automation tools", 0.7, "productivity tools"),
        ("Development and coding tools", 0.8, "development tools"),
        ("Data analysis tools", 0.7, "data analysis tools"),
    ),
    _T.CONTEXT: (
        ("Personal use", 0.7, "personal tools"),
        ("Business use", 0.8, "business tools"),
        ("Educational use", 0.6, "educational tools"),
    ),
    _T.TEMPORAL: (
        ("Latest releases", 0.8, "new tools"),
        ("Established tools", 0.7, "established tools"),
        ("Classic tools", 0.6, "classic tools"),
    ),
    _T.COMPARATIVE: (
        ("Better alternatives", 0.8, "better tools"),
        ("Similar options", 0.7, "similar tools"),
        ("Complementary tools", 0.6, "complementary tools"),
    ),
}


def resolution_options(type_: AmbiguityType) -> tuple[ResolutionOption, ...]:
    return tuple(
        ResolutionOption(id=f"option_{i}", text=text, confidence=conf, refined_query=refined)
        for i, (text, conf, refined) in enumerate(_OPTIONS[type_], start=1)
    )


def _questions(type_: AmbiguityType, text: str) -> tuple[str, ...]:
    return tuple(q.format(text=text) for q in _QUESTIONS[type_])


@dataclass(frozen=True)
class Resolution:
    """Outcome of :meth:`AmbiguityDetector.resolve`."""

    refined_query: str
    context: QueryContext
    confidence: float
    resolved_ids: tuple[str, ...]


# ===================================================================== #
#  Detector                                                              #
# ===================================================================== #

class AmbiguityDetector:
    """Detects ambiguities and runs the clarification cycle.

    Parameters
    ----------
    patterns:
        Detection table; defaults to :data:`DEFAULT_PATTERNS`.
    max_rounds:
        Hard cap on clarification rounds per session.
    """

    def __init__(
        self,
        patterns: tuple[AmbiguityPattern, ...] = DEFAULT_PATTERNS,
        max_rounds: int = MAX_CLARIFICATION_ROUNDS,
    ) -> None:
        self._patterns = patterns
        self.max_rounds = max_rounds
        self._lock = threading.Lock()
        self._detections: dict[str, int] = {}
        self._requests = 0
        self._resolutions = 0

    @property
    def patterns(self) -> tuple[AmbiguityPattern, ...]:
        return self._patterns

    # ------------------------------------------------------------------ #
    #  Detection                                                          #
    # ------------------------------------------------------------------ #

    def detect(self, query: str, context: QueryContext | None = None) -> list[Ambiguity]:
        """Scan *query* and return ambiguities, most severe first.

        Ambiguities whose ``(type, text)`` was already settled in an earlier
        clarification round of *context* are not reported again.
        """
        found: list[Ambiguity] = []
        for row in self._patterns:
            for match in row.pattern.finditer(query):
                text = match.group(0).strip()
                found.append(
                    Ambiguity(
                        type=row.type,
                        severity=row.severity,
                        text=text,
                        description=_DESCRIPTIONS[row.type].format(text=text),
                        position=match.start(),
                        questions=_questions(row.type, text),
                        options=resolution_options(row.type),
                    )
                )
        found.extend(self._contextual(query, context))

        seen: set[tuple[str, str, int]] = set()
        resolved = context.resolved_signatures() if context is not None else set()
        unique: list[Ambiguity] = []
        for amb in found:
            key = (amb.type.value, amb.text.lower(), amb.position)
            if key in seen or amb.signature in resolved:
                continue
            seen.add(key)
            unique.append(amb)

        unique.sort(key=lambda a: (-a.severity.rank, a.position))
        self._count(unique)
        logger.debug("Detected %d ambiguities in %r", len(unique), query)
        return unique

    def _contextual(self, query: str, context: QueryContext | None) -> list[Ambiguity]:
        result: list[Ambiguity] = []
        stripped = query.strip()
        tokens = stripped.split()
        if len(tokens) < 3:
            lowered = stripped.lower()
            qualified = any(
                re.search(rf"\b{re.escape(term)}\b", lowered) for term in _QUALIFIER_TERMS
            )
            result.append(
                Ambiguity(
                    type=AmbiguityType.SCOPE,
                    severity=Severity.LOW if qualified else Severity.MEDIUM,
                    text=stripped,
                    description="Query is very short and lacks specific criteria",
                    position=0,
                    questions=(
                        "Can you provide more details about what you are looking for?",
                        "What specific features or capabilities do you need?",
                        "Are there any particular requirements or constraints?",
                    ),
                    options=resolution_options(AmbiguityType.SCOPE),
                )
            )
        if (context is None or not context.has_prior_context):
            match = _PRONOUN.search(query)
            if match is not None:
                result.append(
                    Ambiguity(
                        type=AmbiguityType.CONTEXT,
                        severity=Severity.HIGH,
                        text=match.group(0),
                        description="Pronoun used without a clear reference",
                        position=match.start(),
                        questions=(
                            "What specific tools or items are you referring to?",
                            "Can you provide more specific names or categories?",
                        ),
                        options=resolution_options(AmbiguityType.CONTEXT),
                    )
                )
        return result

    def record(self, context: QueryContext, ambiguities: list[Ambiguity]) -> None:
        """Replace ``context.ambiguities`` with a fresh detection pass.

        Ambiguities still referenced by a pending request are kept.
        """
        referenced = context.referenced_ambiguity_ids()
        kept = [a for a in context.ambiguities if a.id in referenced]
        kept_ids = {a.id for a in kept}
        context.ambiguities = kept + [a for a in ambiguities if a.id not in kept_ids]

    # ------------------------------------------------------------------ #
    #  Clarification decision                                             #
    # ------------------------------------------------------------------ #

    def needs_clarification(self, context: QueryContext) -> bool:
        """Whether the loop must pause and ask the user.

        The round cap wins over everything; below it, any high-severity
        ambiguity asks, and medium ones ask only during the first two rounds.
        """
        rounds = context.clarification_rounds
        if rounds >= self.max_rounds:
            return False
        if context.ambiguities_at(Severity.HIGH):
            return True
        return bool(context.ambiguities_at(Severity.MEDIUM)) and rounds < MEDIUM_CLARIFICATION_ROUNDS

    def build_request(
        self,
        ambiguities: list[Ambiguity],
        query: str,
        context: QueryContext | None = None,
    ) -> ClarificationRequest | None:
        """Build a question for the most important medium/high ambiguity.

        The request references every medium/high ambiguity of the pass.
        When *context* is given the request is registered as pending there.
        """
        qualifying = sorted(
            (a for a in ambiguities if a.severity in (Severity.HIGH, Severity.MEDIUM)),
            key=lambda a: (-a.severity.rank, a.position),
        )
        if not qualifying:
            return None
        primary = qualifying[0]
        question = (
            primary.questions[0]
            if primary.questions
            else f'To help me find better results, could you clarify what you mean by "{primary.text}"?'
        )
        reasoning = (
            f"Primary ambiguity: {primary.description}. This {primary.severity.value} "
            f"priority ambiguity needs clarification to provide more accurate results."
        )
        if len(ambiguities) > 1:
            reasoning += f" Additional ambiguities detected: {len(ambiguities) - 1}"

        request = ClarificationRequest(
            question=question,
            options=primary.options,
            ambiguity_ids=tuple(a.id for a in qualifying),
            priority=primary.severity,
            reasoning=reasoning,
            span=primary.text if primary.text.lower() != query.strip().lower() else "",
            signatures=tuple(a.signature for a in qualifying),
        )
        if context is not None:
            known = {a.id for a in context.ambiguities}
            context.ambiguities.extend(a for a in qualifying if a.id not in known)
            context.pending_requests[request.id] = request
        with self._lock:
            self._requests += 1
        logger.debug("Clarification request %s: %s", request.id, question)
        return request

    # ------------------------------------------------------------------ #
    #  Resolution                                                         #
    # ------------------------------------------------------------------ #

    def resolve(
        self,
        response: ClarificationResponse,
        query: str,
        context: QueryContext,
    ) -> Resolution:
        """Apply the user's answer to *context* and return the refined query.

        Raises
        ------
        ClarificationNotFoundError
            The request id is unknown or was already resolved.
        OptionNotFoundError
            The response selects an option the request does not offer.
        ValidationError
            The response carries neither an option nor free text, or an
            out-of-range confidence.
        """
        request = context.pending_requests.get(response.request_id)
        if request is None:
            raise ClarificationNotFoundError(response.request_id)

        option: ResolutionOption | None = None
        if response.option_id is not None:
            option = request.option(response.option_id)
            if option is None:
                raise OptionNotFoundError(response.option_id, request.id)
        elif not (response.free_text and response.free_text.strip()):
            raise ValidationError(
                "Clarification response must select an option or supply free text",
                issues=["missing option_id and free_text"],
            )
        if not (0.0 <= response.confidence <= 1.0):
            raise ValidationError(
                f"Clarification confidence must be in [0, 1], got {response.confidence}",
                issues=["confidence out of range"],
            )

        answer = (response.free_text or "").strip() or (option.text if option else "")
        if option is not None and option.refined_query:
            refined = option.refined_query
        else:
            refined = self.refine_query(query, request.span, answer)

        resolved = set(request.ambiguity_ids)
        context.ambiguities = [a for a in context.ambiguities if a.id not in resolved]
        del context.pending_requests[request.id]
        context.clarification_history.append(
            ClarificationRecord(
                round=context.clarification_rounds + 1,
                question=request.question,
                response=answer,
                confidence=response.confidence,
                request_id=request.id,
                resolved_ambiguity_ids=request.ambiguity_ids,
                resolved_signatures=request.signatures,
            )
        )
        if refined != query:
            context.refinement_history.append(
                RefinementRecord(
                    original=query,
                    refined=refined,
                    reason=f"clarification: {answer}",
                )
            )
        context.original_query = refined
        with self._lock:
            self._resolutions += 1
        logger.debug("Resolved %s: %r -> %r", request.id, query, refined)
        return Resolution(
            refined_query=refined,
            context=context,
            confidence=response.confidence,
            resolved_ids=request.ambiguity_ids,
        )

    @staticmethod
    def refine_query(query: str, span: str, clarification: str) -> str:
        """Substitute *span* with *clarification*, or append when absent."""
        if not clarification:
            return query
        if span:
            pattern = re.compile(rf"\b{re.escape(span)}\b", re.IGNORECASE)
            if pattern.search(query):
                return pattern.sub(lambda _m: clarification, query, count=1)
        return f"{query} {clarification}".strip()

    # ------------------------------------------------------------------ #
    #  Metrics                                                            #
    # ------------------------------------------------------------------ #

    def _count(self, ambiguities: list[Ambiguity]) -> None:
        with self._lock:
            for a in ambiguities:
                self._detections[a.type.value] = self._detections.get(a.type.value, 0) + 1

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "detections_by_type": dict(self._detections),
                "total_detections": sum(self._detections.values()),
                "clarification_requests": self._requests,
                "resolutions": self._resolutions,
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._detections = {}
            self._requests = 0
            self._resolutions = 0
