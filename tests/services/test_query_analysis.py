"""Tests for rule-based query analysis."""

from __future__ import annotations

import pytest

from agentic_search.domain.entities import QueryContext
from agentic_search.services.query_analysis import QueryAnalyzer, extract_keywords


@pytest.fixture
def analyzer() -> QueryAnalyzer:
    return QueryAnalyzer()


class TestExtractKeywords:
    def test_drops_stop_words_and_short_words(self) -> None:
        assert extract_keywords("Show me the best CLI tools!") == ["best", "cli"]

    def test_deduplicates_in_order(self) -> None:
        assert extract_keywords("free cli free terminal") == ["free", "cli", "terminal"]

    def test_empty(self) -> None:
        assert extract_keywords("the a to") == []


class TestAnalyze:
    def test_category_with_pricing_term(self, analyzer: QueryAnalyzer) -> None:
        analysis = analyzer.analyze("free cli")
        assert analysis.intent == "find_category_tools"
        assert analysis.pattern_type == "category"
        assert analysis.entities["categories"] == ["cli"]
        assert analysis.entities["pricingTerms"] == ["free"]
        assert analysis.entities["keywords"] == ["free", "cli"]
        assert analysis.constraints == {"hasFreeTier": True}
        assert analysis.suggested_tools == ("searchByText", "filterByArrayContains")

    def test_brand_comparison(self, analyzer: QueryAnalyzer) -> None:
        analysis = analyzer.analyze("ChatGPT vs Claude")
        assert analysis.intent == "compare_brands"
        assert analysis.entities["brandNames"] == ["chatgpt", "claude"]

    def test_single_brand(self, analyzer: QueryAnalyzer) -> None:
        assert analyzer.analyze("notion alternatives").intent == "find_brand"

    def test_price_range(self, analyzer: QueryAnalyzer) -> None:
        analysis = analyzer.analyze("design tools under $50 per month")
        assert analysis.intent == "find_tools_in_price_range"
        assert analysis.constraints["maxPrice"] == 50
        assert analysis.constraints["pricingPeriod"] == "monthly"
        assert "filterByPriceRange" in analysis.suggested_tools

    def test_explicit_price_bounds(self, analyzer: QueryAnalyzer) -> None:
        analysis = analyzer.analyze("between $10 and $30")
        assert analysis.constraints["minPrice"] == 10
        assert analysis.constraints["maxPrice"] == 30

    def test_analysis_verbs_win(self, analyzer: QueryAnalyzer) -> None:
        analysis = analyzer.analyze("analyze ml tools")
        assert analysis.normalized_query == "analyze machine learning tools"
        assert analysis.intent == "analyze_tools"
        assert analysis.entities["capabilities"] == ["machine learning"]
        assert "groupBy" in analysis.suggested_tools

    def test_negative_constraint(self, analyzer: QueryAnalyzer) -> None:
        assert analyzer.analyze("tools without ads").constraints["negativeConstraints"] is True

    def test_no_cost_is_not_negative(self, analyzer: QueryAnalyzer) -> None:
        constraints = analyzer.analyze("no cost tools").constraints
        assert constraints["hasFreeTier"] is True
        assert "negativeConstraints" not in constraints

    def test_result_limit_and_sort(self, analyzer: QueryAnalyzer) -> None:
        analysis = analyzer.analyze("top 5 tools")
        assert analysis.entities["resultLimit"] == 5
        assert analysis.entities["sortPreference"] == "rating"
        assert analysis.intent == "find_tools"
        assert "limitResults" in analysis.suggested_tools
        assert "sortByField" in analysis.suggested_tools

    def test_recommend(self, analyzer: QueryAnalyzer) -> None:
        assert analyzer.analyze("recommend something").intent == "recommend_tools"

    @pytest.mark.parametrize("query", ["x", "free cli", "chatgpt vs claude api webhooks sdk offline"])
    def test_confidence_in_range(self, analyzer: QueryAnalyzer, query: str) -> None:
        assert 0.0 <= analyzer.analyze(query).confidence <= 1.0


class TestApply:
    def test_folds_into_context(self, analyzer: QueryAnalyzer) -> None:
        context = QueryContext(original_query="free cli", entities={"extra": 1})
        analyzer.apply(analyzer.analyze("free cli"), context)
        assert context.interpreted_intent == "find_category_tools"
        assert context.entities["extra"] == 1
        assert context.entities["categories"] == ["cli"]
        assert context.constraints["hasFreeTier"] is True
