"""Cooperative cancellation for search sessions.

A ``CancellationToken`` is created per session and handed to the loop and
the tool executor.  The loop checks it between nodes; the executor races
every in-flight tool call against it and cancels the call when it fires.
"""

from __future__ import annotations

import asyncio
import logging

from agentic_search.domain.exceptions import SessionCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.info("Cancellation requested: %s", reason)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, session_id: str = "") -> None:
        if self._event.is_set():
            raise SessionCancelledError(session_id)

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled}>"
