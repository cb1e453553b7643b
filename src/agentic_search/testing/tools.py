"""In-memory sample tool catalog for tests and examples.

``build_sample_registry()`` returns a ``ToolRegistry`` with the standard
search, filter, sort, group, limit and count tools operating on
``SAMPLE_CATALOG``, a small fictional directory of software tools.
Chaining tools accept an ``items`` parameter; the executor fills it with
the session's current results when it is omitted.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from agentic_search.domain.values import ParameterSpec
from agentic_search.infrastructure.registry import ToolRegistry
from agentic_search.services.evaluation import get_path, item_price
from agentic_search.services.query_analysis import extract_keywords


def _entry(
    id_: str,
    name: str,
    description: str,
    primary: str,
    tags: list[str],
    prices: list[float],
    api: bool = False,
    rating: float = 4.0,
) -> dict[str, Any]:
    return {
        "id": id_,
        "name": name,
        "description": description,
        "categories": {"primary": primary, "secondary": tags[1:]},
        "tags": tags,
        "pricing": {
            "hasFreeTier": 0 in prices,
            "models": [{"name": f"tier{i}", "price": p} for i, p in enumerate(prices)],
        },
        "features": {"apiAccess": api},
        "rating": rating,
    }


SAMPLE_CATALOG: tuple[dict[str, Any], ...] = (
    _entry("t01", "ShellPilot", "Fast terminal with a free plan and AI command search",
           "terminal", ["cli", "terminal", "ai"], [0, 15], rating=4.7),
    _entry("t02", "GitDeck", "Free command line companion for pull requests and issues",
           "developer-tools", ["cli", "git"], [0], api=True, rating=4.5),
    _entry("t03", "TermDocs", "Free community help pages for everyday cli commands",
           "documentation", ["cli", "docs"], [0], rating=4.3),
    _entry("t04", "PromptForge", "Paid command line assistant for prompt engineering",
           "ai", ["cli", "ai"], [29], api=True, rating=4.1),
    _entry("t05", "DraftWell", "Free AI writing assistant for blogs and email",
           "writing", ["writing", "ai"], [0, 12], rating=4.2),
    _entry("t06", "PixelMuse", "Image generation studio with style presets",
           "image", ["image", "design"], [10, 30], api=True, rating=4.4),
    _entry("t07", "DataLens", "Analytics dashboards with data analysis API",
           "analytics", ["analytics", "data"], [49, 199], api=True, rating=4.0),
    _entry("t08", "FlowPilot", "Workflow automation with webhooks and a free starter plan",
           "automation", ["automation", "integration"], [0, 25], api=True, rating=4.3),
    _entry("t09", "CodeMentor", "AI coding assistant for your editor",
           "coding", ["coding", "editor", "ai"], [19], rating=4.6),
    _entry("t10", "MeetNote", "Meeting transcription and summaries",
           "productivity", ["productivity", "audio"], [8, 16], rating=3.9),
    _entry("t11", "ChatDesk", "Customer service chatbot for support teams",
           "customer service", ["chatbot", "support"], [99], api=True, rating=3.8),
    _entry("t12", "SecureScan", "Security scanner for containers and dependencies",
           "security", ["security", "devops"], [199], rating=4.1),
)


def _words(item: dict[str, Any]) -> set[str]:
    text = " ".join(
        [
            str(item.get("name", "")),
            str(item.get("description", "")),
            str(get_path(item, "categories.primary") or ""),
            " ".join(item.get("tags", [])),
        ]
    )
    return set(re.findall(r"[\w$-]+", text.lower()))


def _source(parameters: dict[str, Any], catalog: Sequence[dict[str, Any]]) -> list[Any]:
    items = parameters.get("items")
    return list(items) if items is not None else list(catalog)


def _sort_key(value: Any) -> Any:
    if isinstance(value, list):
        numeric = [v for v in value if isinstance(v, (int, float))]
        return min(numeric) if numeric else None
    return value


def build_sample_registry(
    catalog: Sequence[dict[str, Any]] = SAMPLE_CATALOG,
) -> ToolRegistry:
    """Return a registry of tools operating on *catalog*."""
    tools = ToolRegistry()
    items_param = ParameterSpec("items", "array", description="Items to operate on")

    @tools.tool(
        "searchByText",
        category="search",
        description="Find tools whose name, description, category or tags contain every keyword",
        parameters=[
            ParameterSpec("query", "string", required=True),
            ParameterSpec("keywords", "array"),
            ParameterSpec("limit", "integer", default=50),
        ],
        context_requirements=["hasQuery"],
        expected_result={"type": "array"},
    )
    def search_by_text(parameters: dict[str, Any], context: Any) -> list[dict[str, Any]]:
        keywords = [k.lower() for k in parameters.get("keywords") or []]
        if not keywords:
            keywords = extract_keywords(parameters["query"])
        hits = [item for item in catalog if all(k in _words(item) for k in keywords)]
        return hits[: parameters.get("limit", 50)]

    @tools.tool(
        "filterByPriceRange",
        category="filter",
        description="Keep items whose lowest price lies within [minPrice, maxPrice]",
        parameters=[
            items_param,
            ParameterSpec("minPrice", "number"),
            ParameterSpec("maxPrice", "number"),
        ],
        expected_result={"type": "array"},
    )
    def filter_by_price_range(parameters: dict[str, Any], context: Any) -> list[Any]:
        low = parameters.get("minPrice")
        high = parameters.get("maxPrice")
        if low is not None and high is not None and low > high:
            raise ValueError(f"invalid price range: {low} > {high}")
        kept = []
        for item in _source(parameters, catalog):
            price = item_price(item)
            if price is None:
                continue
            if (low is None or price >= low) and (high is None or price <= high):
                kept.append(item)
        return kept

    @tools.tool(
        "filterByArrayContains",
        category="filter",
        description="Keep items whose field equals or contains value",
        parameters=[
            items_param,
            ParameterSpec("field", "string", required=True),
            ParameterSpec("value", "string", required=True),
        ],
        expected_result={"type": "array"},
    )
    def filter_by_array_contains(parameters: dict[str, Any], context: Any) -> list[Any]:
        wanted = parameters["value"].lower()
        kept = []
        for item in _source(parameters, catalog):
            value = get_path(item, parameters["field"])
            if isinstance(value, list):
                if wanted in (str(v).lower() for v in value):
                    kept.append(item)
            elif value is not None and str(value).lower() == wanted:
                kept.append(item)
        return kept

    @tools.tool(
        "sortByField",
        category="sort",
        description="Sort items by a dotted field path; missing values sort last",
        parameters=[
            items_param,
            ParameterSpec("field", "string", required=True),
            ParameterSpec("order", "string", default="asc"),
        ],
        expected_result={"type": "array"},
    )
    def sort_by_field(parameters: dict[str, Any], context: Any) -> list[Any]:
        field_path = parameters["field"]
        keyed = [(_sort_key(get_path(item, field_path)), item) for item in _source(parameters, catalog)]
        present = [pair for pair in keyed if pair[0] is not None]
        missing = [item for key, item in keyed if key is None]
        present.sort(key=lambda pair: pair[0], reverse=parameters.get("order") == "desc")
        return [item for _, item in present] + missing

    @tools.tool(
        "groupBy",
        category="aggregate",
        description="Group item names by a dotted field path",
        parameters=[items_param, ParameterSpec("field", "string", required=True)],
    )
    def group_by(parameters: dict[str, Any], context: Any) -> dict[str, list[str]]:
        groups: dict[str, list[str]] = {}
        for item in _source(parameters, catalog):
            key = str(get_path(item, parameters["field"]) or "unknown")
            groups.setdefault(key, []).append(str(get_path(item, "name") or item))
        return groups

    @tools.tool(
        "limitResults",
        category="transform",
        description="Keep the first N items",
        parameters=[items_param, ParameterSpec("limit", "integer", default=10)],
        expected_result={"type": "array"},
    )
    def limit_results(parameters: dict[str, Any], context: Any) -> list[Any]:
        return _source(parameters, catalog)[: parameters["limit"]]

    @tools.tool(
        "countItems",
        category="aggregate",
        description="Count items",
        parameters=[items_param],
    )
    def count_items(parameters: dict[str, Any], context: Any) -> int:
        return len(_source(parameters, catalog))

    return tools
