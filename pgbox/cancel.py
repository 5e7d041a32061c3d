"""Cooperative cancellation signal."""

import asyncio
from typing import Optional


class CancelSignal:
    """An ``asyncio.Event`` that remembers why it was set.

    Anything with ``is_set()`` and ``wait()`` is accepted where pgbox takes a
    cancel argument, so a plain ``asyncio.Event`` works too.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def set(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> bool:
        return await self._event.wait()


def cancel_reason(cancel) -> str:
    return getattr(cancel, "reason", None) or "cancelled"
