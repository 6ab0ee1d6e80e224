"""
Cooperative cancellation token.

Checked at every orchestration suspend point (gateway calls, tool calls,
task dispatch). Cancelling does not interrupt a call already in flight.
"""

import asyncio
from typing import Optional

from loguru import logger

from travelmaster.errors import FlowCancelledError


class CancellationToken:
    """A one-shot cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug(f"Cancellation requested: {reason}")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FlowCancelledError(self._reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()
