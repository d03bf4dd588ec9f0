from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque


class ExecutionGuard:
    """Single-flight lock for one agent instance.

    Waiters are served strictly in arrival order: ``release`` hands ownership
    to the oldest waiter instead of unlocking, so a newcomer can never jump
    the queue. Use it as ``async with guard:`` so every exit path releases.
    """

    def __init__(self) -> None:
        self._locked = False
        self._waiters: Deque[asyncio.Future] = deque()

    def locked(self) -> bool:
        return self._locked

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if not self._locked and not self._waiters:
            self._locked = True
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # ownership was handed over before the cancellation landed
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        if not self._locked:
            raise RuntimeError("ExecutionGuard.release() called while unlocked")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._locked = False

    async def __aenter__(self) -> "ExecutionGuard":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
