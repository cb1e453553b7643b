"""Tests for CancellationToken."""

from __future__ import annotations

import asyncio

import pytest

from agentic_search.domain.exceptions import SessionCancelledError
from agentic_search.infrastructure.cancellation import CancellationToken


class TestCancellationToken:
    def test_initially_not_cancelled(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled("session_1")

    def test_cancel_records_first_reason(self) -> None:
        token = CancellationToken()
        token.cancel("client disconnected")
        token.cancel("second call")
        assert token.cancelled
        assert token.reason == "client disconnected"

    def test_raise_if_cancelled(self) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(SessionCancelledError) as excinfo:
            token.raise_if_cancelled("session_1")
        assert excinfo.value.session_id == "session_1"

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self) -> None:
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1.0)
        assert waiter.done()
