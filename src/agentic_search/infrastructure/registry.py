"""Tool registry for the agentic search loop.

Holds ``ToolDescriptor`` objects keyed by tool name and grouped by
*category*, either via the ``@tools.tool(...)`` decorator or the imperative
``tools.register(descriptor)`` API.

There is no global singleton: each ``ToolExecutor`` is handed a registry
at construction time.  Registration may race with lookups from concurrently
running sessions, so every access goes through one lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from agentic_search.domain.exceptions import ToolNotFoundError
from agentic_search.domain.values import ParameterSpec, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name -> ``ToolDescriptor`` lookup with category grouping.

    Usage -- decorator style::

        @tools.tool("searchByText", category="search",
                    parameters=[ParameterSpec("query", "string", required=True)])
        def search_by_text(parameters, context):
            ...

    Usage -- imperative style::

        tools.register(ToolDescriptor(name="countItems", invoke=count_items))
    """

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()) -> None:
        self._lock = threading.Lock()
        self._tools: dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    # ------------------------------------------------------------------ #
    #  Registration                                                       #
    # ------------------------------------------------------------------ #

    def register(self, descriptor: ToolDescriptor, *, overwrite: bool = False) -> None:
        """Register *descriptor* under its name.

        Raises ``ValueError`` on duplicates unless ``overwrite`` is set.
        """
        with self._lock:
            if not overwrite and descriptor.name in self._tools:
                raise ValueError(
                    f"Tool '{descriptor.name}' is already registered. "
                    f"Pass overwrite=True to replace."
                )
            self._tools[descriptor.name] = descriptor
        logger.debug("Registered tool %s (category=%s)", descriptor.name, descriptor.category)

    def tool(
        self,
        name: str,
        *,
        category: str = "general",
        description: str = "",
        parameters: Iterable[ParameterSpec] = (),
        context_requirements: Iterable[str] = (),
        resource_requirements: dict[str, Any] | None = None,
        expected_result: dict[str, Any] | None = None,
        overwrite: bool = False,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator that registers the decorated callable as a tool."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(
                ToolDescriptor(
                    name=name,
                    invoke=fn,
                    parameters=tuple(parameters),
                    category=category,
                    description=description or (fn.__doc__ or "").strip(),
                    context_requirements=tuple(context_requirements),
                    resource_requirements=resource_requirements or {},
                    expected_result=expected_result or {},
                ),
                overwrite=overwrite,
            )
            return fn

        return decorator

    # ------------------------------------------------------------------ #
    #  Lookup                                                              #
    # ------------------------------------------------------------------ #

    def lookup(self, name: str) -> ToolDescriptor | None:
        """Return the descriptor or ``None`` if not found."""
        with self._lock:
            return self._tools.get(name)

    def get(self, name: str) -> ToolDescriptor:
        """Return the descriptor registered under *name*.

        Raises ``ToolNotFoundError`` if not found.
        """
        with self._lock:
            descriptor = self._tools.get(name)
            available = list(self._tools)
        if descriptor is None:
            raise ToolNotFoundError(name, available)
        return descriptor

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    # ------------------------------------------------------------------ #
    #  Introspection                                                       #
    # ------------------------------------------------------------------ #

    def list_tools(self) -> list[str]:
        """Return registered tool names in registration order."""
        with self._lock:
            return list(self._tools)

    def list_category(self, category: str) -> list[str]:
        with self._lock:
            return [n for n, d in self._tools.items() if d.category == category]

    def list_categories(self) -> list[str]:
        with self._lock:
            return sorted({d.category for d in self._tools.values()})

    def similar_tools(self, name: str) -> list[ToolDescriptor]:
        """Other tools in the same category as *name* (empty if unknown)."""
        with self._lock:
            descriptor = self._tools.get(name)
            if descriptor is None:
                return []
            return [
                d for n, d in self._tools.items()
                if n != name and d.category == descriptor.category
            ]

    # ------------------------------------------------------------------ #
    #  Removal / lifecycle                                                 #
    # ------------------------------------------------------------------ #

    def unregister(self, name: str) -> ToolDescriptor:
        """Remove and return a descriptor. Raises ``ToolNotFoundError`` if missing."""
        with self._lock:
            descriptor = self._tools.pop(name, None)
            available = list(self._tools)
        if descriptor is None:
            raise ToolNotFoundError(name, available)
        return descriptor

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()

    # ------------------------------------------------------------------ #
    #  Dunder helpers                                                      #
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __repr__(self) -> str:
        with self._lock:
            counts: dict[str, int] = {}
            for d in self._tools.values():
                counts[d.category] = counts.get(d.category, 0) + 1
        parts = [f"{cat}({n})" for cat, n in sorted(counts.items())]
        return f"<ToolRegistry [{', '.join(parts)}]>"
