#!/usr/bin/env python3
"""Example 02: Pausing for clarification and resuming.

Demonstrates:
- A vague query ("good tools") that pauses the session with a question
- Answering the question with free text
- Resuming the same session to a final result

Run:
    PYTHONPATH=src python examples/02_clarification_round.py
"""

from __future__ import annotations

import asyncio

from agentic_search.services.session import SearchSession
from agentic_search.testing.tools import build_sample_registry


async def main() -> None:
    session = SearchSession(build_sample_registry())

    paused = await session.submit_query("good tools")
    print(f"Status: {paused.status.value}")
    request = paused.clarification
    if request is None:
        print("No clarification needed.")
        return

    print(f"Question ({request.priority.value}): {request.question}")
    for option in request.options:
        print(f"  {option.id}: {option.text} ({option.confidence:.1f})")

    # A real client would show the options and wait for the user here.
    answer = "free cli"
    print(f"\nUser answers: {answer!r}")

    response = await session.submit_clarification(paused.session_id, free_text=answer)
    print(f"Status: {response.status.value}, {len(response.results)} results")
    for item in response.results:
        print(f"  {item['id']}  {item['name']}")
    print(f"Iterations across both runs: {response.iterations}")


if __name__ == "__main__":
    asyncio.run(main())
