"""Cancellation tokens for in-flight generation and tool legs."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancels the asyncio task running one leg of session work.

    A token is created for every ``send()`` stream and every
    ``run_tool()`` executor call. ``cancel()`` is idempotent; a task
    attached after cancellation is cancelled immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task) -> None:
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._event.set()
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling active task")
            self._task.cancel()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()
