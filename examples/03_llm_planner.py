#!/usr/bin/env python3
"""Example 03: LLM planning with rules-based fallback.

Demonstrates:
- Plugging a chat model into the loop via ``use_llm_planner``
- Structured ``PlanningOutput`` proposals driving tool selection
- The plan cache serving a repeated query without running the loop

Uses ``MockStructuredChatModel`` so no API key is needed; any LangChain
chat model supporting ``with_structured_output`` can take its place.

Run:
    PYTHONPATH=src python examples/03_llm_planner.py
"""

from __future__ import annotations

import asyncio

from agentic_search.infrastructure.cache import InMemoryPlanCache
from agentic_search.infrastructure.config import LoopConfig
from agentic_search.services.llm_planning import ActionProposal, PlanningOutput
from agentic_search.services.session import SearchSession
from agentic_search.testing.mock_llm import MockStructuredChatModel
from agentic_search.testing.tools import build_sample_registry


def build_model() -> MockStructuredChatModel:
    analyze = PlanningOutput(
        action=ActionProposal(
            action_type="analyze",
            confidence=0.8,
            reasoning="Intent unknown; analyze the query first",
        ),
    )
    search = PlanningOutput(
        action=ActionProposal(
            action_type="select_tool",
            tool_name="searchByText",
            parameters={"query": "free cli", "keywords": ["free", "cli"]},
            confidence=0.85,
            reasoning="Search the catalog for the query keywords",
        ),
        alternatives=[
            ActionProposal(
                action_type="select_tool",
                tool_name="filterByPriceRange",
                parameters={"minPrice": 0, "maxPrice": 0},
                confidence=0.6,
            ),
        ],
    )
    return MockStructuredChatModel(structured_responses=[analyze, search])


async def main() -> None:
    cache = InMemoryPlanCache()
    session = SearchSession(
        build_sample_registry(),
        LoopConfig(use_llm_planner=True),
        llm_model=build_model(),
        cache=cache,
    )

    first = await session.submit_query("free cli")
    print(f"First run:  {first.status.value}, {len(first.results)} results, "
          f"{first.iterations} iterations, from_cache={first.from_cache}")
    for line in first.reasoning:
        if line.startswith("Plan"):
            print(f"  {line}")

    second = await session.submit_query("free cli")
    print(f"Second run: {second.status.value}, {len(second.results)} results, "
          f"{second.iterations} iterations, from_cache={second.from_cache}")

    print(f"\nCache metrics: {cache.get_metrics()}")


if __name__ == "__main__":
    asyncio.run(main())
