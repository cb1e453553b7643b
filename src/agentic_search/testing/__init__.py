"""Public testing utilities for agentic search.

Provides a mock LLM and an in-memory sample tool catalog for writing
self-contained examples and tests without API keys or a live index.
"""

from agentic_search.testing.mock_llm import MockStructuredChatModel
from agentic_search.testing.tools import SAMPLE_CATALOG, build_sample_registry

__all__ = ["MockStructuredChatModel", "SAMPLE_CATALOG", "build_sample_registry"]
