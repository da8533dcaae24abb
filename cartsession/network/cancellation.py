from __future__ import annotations

import asyncio


class OperationCancelledError(Exception):
    def __init__(self, message: str = "Operation cancelled."):
        super().__init__(message)


class CancellationToken:
    """One-shot cancellation signal shared between a caller and the work it started."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()
