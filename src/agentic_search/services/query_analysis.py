"""Rule-based query analysis: intent, entities and constraints.

``QueryAnalyzer`` is what the loop runs when the planner asks for an
``analyze`` action.  It normalises the text, scores four pattern families
(brand, category, pricing, capability), and derives an intent tag, an
entity map, a constraint map and a list of suggested tools.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from agentic_search.domain.entities import QueryContext

logger = logging.getLogger(__name__)

BRAND_TERMS = (
    "chatgpt", "gpt-4", "openai", "claude", "anthropic", "gemini", "midjourney",
    "dall-e", "stable diffusion", "notion", "jasper", "grammarly", "canva",
    "figma", "slack", "discord", "zoom", "microsoft", "google", "aws", "azure",
    "adobe", "salesforce", "hubspot", "airtable", "trello", "github", "gitlab",
)

CATEGORY_TERMS = (
    "writing", "coding", "programming", "development", "design", "image",
    "video", "audio", "music", "productivity", "automation", "analytics",
    "data", "marketing", "sales", "customer service", "chatbot",
    "project management", "collaboration", "security", "testing",
    "monitoring", "deployment", "cli", "terminal", "editor", "database",
)

PRICING_TERMS = (
    "free", "freemium", "open source", "cheap", "affordable", "expensive",
    "enterprise", "premium", "subscription", "monthly", "annual", "pricing",
    "cost", "price", "paid", "budget",
)

CAPABILITY_TERMS = (
    "api", "webhook", "sdk", "offline", "real-time", "multi-user", "cloud",
    "on-premise", "mobile", "desktop", "browser", "code generation",
    "image generation", "data analysis", "machine learning", "workflow",
    "template", "integration", "self-hosted",
)

_ABBREVIATIONS = {
    "ml": "machine learning",
    "ui": "user interface",
    "ux": "user experience",
    "crm": "customer relationship management",
    "saas": "software as a service",
    "no code": "no-code",
    "low code": "low-code",
    "self hosted": "self-hosted",
    "on premise": "on-premise",
    "onprem": "on-premise",
    "real time": "real-time",
    "realtime": "real-time",
    "chat gpt": "chatgpt",
    "gpt4": "gpt-4",
    "dalle": "dall-e",
}

_CAPABILITY_CONSTRAINTS = {
    "hasWebhooks": r"\bwebhooks?\b",
    "hasSDK": r"\bsdk\b",
    "offlineMode": r"\boffline\b",
    "mobileSupport": r"\bmobile\b",
    "cloudBased": r"\bcloud\b",
    "onPremise": r"\bon-premise\b",
    "collaborationFeatures": r"\bcollaboration\b",
    "realTimeFeatures": r"\breal-time\b",
    "multiUserSupport": r"\bmulti-user\b",
}

_FREE_PATTERN = re.compile(r"\b(free|no cost|free tier|free plan|freemium|open source|no charge)\b")

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "have", "has",
    "had", "do", "does", "did", "will", "would", "could", "should", "may",
    "might", "must", "can", "this", "that", "these", "those", "you", "it",
    "we", "they", "me", "us", "them", "show", "find", "get", "list", "some",
    "any", "all", "tools", "tool",
})


@dataclass(frozen=True)
class QueryAnalysis:
    """Output of :meth:`QueryAnalyzer.analyze`."""

    original_query: str
    normalized_query: str
    pattern_type: str
    intent: str
    entities: dict[str, Any] = field(default_factory=dict)
    constraints: dict[str, Any] = field(default_factory=dict)
    suggested_tools: tuple[str, ...] = ()
    confidence: float = 0.0


def _contains(text: str, term: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(term)}(?![\w-])", text) is not None


def extract_keywords(query: str) -> list[str]:
    """Stop-word filtered, de-duplicated words longer than two characters.

    Short all-alphanumeric tokens such as ``cli`` are kept.
    """
    words = re.sub(r"[^\w\s$-]", " ", query.lower()).split()
    seen: dict[str, None] = {}
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


class QueryAnalyzer:
    """Extracts intent, entities and constraints from query text."""

    def normalize(self, query: str) -> str:
        text = query.lower().strip()
        for short, expanded in _ABBREVIATIONS.items():
            text = re.sub(rf"\b{re.escape(short)}\b", expanded, text)
        return re.sub(r"\s+", " ", text).strip()

    def analyze(self, query: str) -> QueryAnalysis:
        text = self.normalize(query)
        scores, entities = self._match_families(text)

        pattern_type = "general"
        best = 0.0
        for family, score in scores.items():
            if score > best:
                pattern_type, best = family, score

        entities["keywords"] = extract_keywords(text)
        limit = re.search(r"\b(\d+)\s*(items?|results?|tools?)\b", text)
        if limit:
            entities["resultLimit"] = int(limit.group(1))
        if _contains(text, "popular") or _contains(text, "trending"):
            entities["sortPreference"] = "popularity"
        if _contains(text, "new") or _contains(text, "latest"):
            entities["sortPreference"] = "recent"
        if _contains(text, "best") or _contains(text, "top"):
            entities["sortPreference"] = "rating"

        constraints = self._extract_constraints(text)
        intent = self._intent(text, pattern_type, entities)
        suggested = self._suggest_tools(intent, entities, constraints)
        confidence = self._confidence(best, entities, constraints, text)

        analysis = QueryAnalysis(
            original_query=query,
            normalized_query=text,
            pattern_type=pattern_type,
            intent=intent,
            entities=entities,
            constraints=constraints,
            suggested_tools=tuple(suggested),
            confidence=confidence,
        )
        logger.debug(
            "Analyzed %r: pattern=%s intent=%s constraints=%s",
            query, pattern_type, intent, sorted(constraints),
        )
        return analysis

    def apply(self, analysis: QueryAnalysis, context: QueryContext) -> QueryContext:
        """Fold *analysis* into *context* (in place) and return it."""
        context.interpreted_intent = analysis.intent
        context.entities.update(analysis.entities)
        context.constraints.update(analysis.constraints)
        return context

    # ------------------------------------------------------------------ #

    def _match_families(self, text: str) -> tuple[dict[str, float], dict[str, Any]]:
        entities: dict[str, Any] = {}
        scores: dict[str, float] = {}

        brands = [b for b in BRAND_TERMS if _contains(text, b)]
        if brands:
            entities["brandNames"] = brands
        scores["brand"] = min(1.0, 0.3 * len(brands))

        categories = [c for c in CATEGORY_TERMS if _contains(text, c)]
        if categories:
            entities["categories"] = categories
        scores["category"] = min(1.0, 0.25 * len(categories))

        pricing = [p for p in PRICING_TERMS if _contains(text, p)]
        price_ranges = re.findall(
            r"\$\d+\s*-\s*\$\d+|(?:under|below|less than)\s*\$\d+|between\s*\$\d+\s*(?:and|to)\s*\$\d+",
            text,
        )
        if pricing:
            entities["pricingTerms"] = pricing
        if price_ranges:
            entities["priceRanges"] = price_ranges
        scores["pricing"] = min(1.0, 0.2 * len(pricing) + (0.3 if price_ranges else 0.0))

        capabilities = [c for c in CAPABILITY_TERMS if _contains(text, c)]
        if capabilities:
            entities["capabilities"] = capabilities
        scores["capability"] = min(1.0, 0.2 * len(capabilities))

        return scores, entities

    @staticmethod
    def _extract_constraints(text: str) -> dict[str, Any]:
        constraints: dict[str, Any] = {}
        m = re.search(r"(under|below|less than)\s*\$(\d+)", text)
        if m:
            constraints["maxPrice"] = int(m.group(2))
        m = re.search(r"\$(\d+)\s*-\s*\$(\d+)", text)
        if m:
            constraints["minPrice"] = int(m.group(1))
            constraints["maxPrice"] = int(m.group(2))
        m = re.search(r"between\s*\$(\d+)\s*(and|to)\s*\$(\d+)", text)
        if m:
            constraints["minPrice"] = int(m.group(1))
            constraints["maxPrice"] = int(m.group(3))
        if "monthly" in text or "per month" in text:
            constraints["pricingPeriod"] = "monthly"
        elif any(t in text for t in ("annual", "yearly", "per year")):
            constraints["pricingPeriod"] = "annual"
        if _FREE_PATTERN.search(text):
            constraints["hasFreeTier"] = True
        if _contains(text, "api") or _contains(text, "integration"):
            constraints["apiAccess"] = True
        for name, pattern in _CAPABILITY_CONSTRAINTS.items():
            if re.search(pattern, text):
                constraints[name] = True
        if re.search(r"\b(without|exclude|excluding|no)\b", text) and not re.search(
            r"\bno (cost|charge)\b", text
        ):
            constraints["negativeConstraints"] = True
        return constraints

    @staticmethod
    def _intent(text: str, pattern_type: str, entities: dict[str, Any]) -> str:
        if re.search(r"\b(analy[sz]e|statistics|summari[sz]e|breakdown)\b", text):
            return "analyze_tools"
        if pattern_type == "brand":
            return "compare_brands" if len(entities.get("brandNames", [])) > 1 else "find_brand"
        if pattern_type == "category":
            return "find_category_tools"
        if pattern_type == "pricing":
            return "find_tools_in_price_range" if entities.get("priceRanges") else "find_pricing_type_tools"
        if pattern_type == "capability":
            return "find_capability_tools"
        if re.search(r"\b(compare|vs|versus)\b", text):
            return "compare_tools"
        if re.search(r"\b(list|show)\b", text):
            return "list_tools"
        if re.search(r"\b(recommend|suggest)\b", text):
            return "recommend_tools"
        return "find_tools"

    @staticmethod
    def _suggest_tools(
        intent: str,
        entities: dict[str, Any],
        constraints: dict[str, Any],
    ) -> list[str]:
        tools = ["searchByText"]
        if "minPrice" in constraints or "maxPrice" in constraints:
            tools.append("filterByPriceRange")
        if entities.get("categories"):
            tools.append("filterByArrayContains")
        if entities.get("sortPreference"):
            tools.append("sortByField")
        if intent.startswith(("analyze", "compare")):
            tools.append("groupBy")
        if "resultLimit" in entities:
            tools.append("limitResults")
        return tools

    @staticmethod
    def _confidence(
        pattern_score: float,
        entities: dict[str, Any],
        constraints: dict[str, Any],
        text: str,
    ) -> float:
        score = 0.3 + 0.4 * pattern_score
        score += min(0.15, 0.05 * (len(entities) - 1))
        score += min(0.15, 0.05 * len(constraints))
        if len(text.split()) < 2:
            score -= 0.1
        return max(0.0, min(1.0, score))
