#!/usr/bin/env python3
"""Example 01: One search session end to end.

Demonstrates:
- Building a SearchSession over the sample tool catalog
- Running the detect / plan / execute / evaluate loop to completion
- Inspecting the SessionResponse and the reasoning trace

Run:
    PYTHONPATH=src python examples/01_basic_session.py
"""

from __future__ import annotations

import asyncio
import logging

from agentic_search.infrastructure.config import LoopConfig
from agentic_search.services.session import SearchSession
from agentic_search.testing.tools import build_sample_registry


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    session = SearchSession(
        build_sample_registry(),
        LoopConfig(max_iterations=5, confidence_threshold=0.7, evaluation_depth="deep"),
    )
    response = await session.submit_query("free cli")

    # -- Outcome --------------------------------------------------------------
    print(f"Status:      {response.status.value}")
    print(f"Iterations:  {response.iterations}")
    print(f"Confidence:  {response.confidence:.3f}")
    print(f"Tools used:  {', '.join(response.tools_used) or 'none'}")
    print()
    for item in response.results:
        print(f"  {item['id']}  {item['name']}")

    # -- Reasoning ------------------------------------------------------------
    print("\nReasoning trace:")
    for line in response.reasoning:
        print(f"  - {line}")

    if response.evaluation is not None:
        print("\nQuality checks:")
        for check in response.evaluation.checks:
            mark = "pass" if check.passed else "FAIL"
            print(f"  [{mark}] {check.name:<22} {check.score:.2f}")


if __name__ == "__main__":
    asyncio.run(main())
