"""
Cancellation tokens shared between the orchestrator and upload sessions.

A token cancels all of its children; cancelling a child leaves the parent
untouched, so one upload can be aborted without affecting the others.
"""

import asyncio
from typing import List, Optional


class CancellationToken:
    def __init__(self, parent: Optional["CancellationToken"] = None, reason: Optional[str] = None):
        self._event = asyncio.Event()
        self._children: List["CancellationToken"] = []
        self.reason = reason
        self.parent = parent
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason or self.reason
        self._event.set()
        for child in list(self._children):
            child.cancel(self.reason)

    def create_child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def release(self) -> None:
        """Detach from the parent once the guarded operation has finished."""
        if self.parent is not None:
            try:
                self.parent._children.remove(self)
            except ValueError:
                pass
            self.parent = None

    async def wait(self) -> None:
        await self._event.wait()
