"""Interrupt channel — a broadcast generation counter for cancellation.

Every user interrupt (Ctrl-C) bumps a process-wide counter. Anything
that waits on a model or tool call races that wait against the counter
changing: whichever finishes first wins, and the losing branch is
abandoned.

Each waiter holds an ``InterruptSubscription`` that remembers the last
generation it has seen. The cancellation predicate is "has the
generation moved since I last looked", never "has it ever moved", so a
single interrupt cannot be consumed by one wait and missed by the next.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Interrupted(Exception):
    """An awaited operation lost the race against an interrupt."""

    def __init__(self, generation: int) -> None:
        self.generation = generation
        super().__init__(f"Interrupted (generation {generation})")


class InterruptChannel:
    """Monotonic interrupt counter with change notification."""

    def __init__(self) -> None:
        self._generation = 0
        self._changed = asyncio.Event()

    @property
    def generation(self) -> int:
        return self._generation

    def interrupt(self) -> int:
        """Bump the generation and wake every waiter. Returns the new value."""
        self._generation += 1
        event, self._changed = self._changed, asyncio.Event()
        event.set()
        logger.info("Interrupt generation -> %d", self._generation)
        return self._generation

    def interrupt_threadsafe(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bump the generation from a thread other than ``loop``'s."""
        loop.call_soon_threadsafe(self.interrupt)

    def subscribe(self) -> InterruptSubscription:
        """Subscribe, treating the current generation as already seen."""
        return InterruptSubscription(self, self._generation)

    async def _wait_past(self, generation: int) -> int:
        while self._generation == generation:
            event = self._changed
            await event.wait()
        return self._generation


class InterruptSubscription:
    """One observer's view of the interrupt channel."""

    def __init__(self, channel: InterruptChannel, seen: int) -> None:
        self._channel = channel
        self._seen = seen

    @property
    def seen(self) -> int:
        return self._seen

    def has_changed(self) -> bool:
        return self._channel.generation != self._seen

    def mark_seen(self) -> int:
        """Treat the current generation as observed."""
        self._seen = self._channel.generation
        return self._seen

    async def changed(self) -> int:
        """Wait until the generation differs from the last one seen.

        Returns immediately if it already does. The new generation is
        marked as seen only when this returns, so a cancelled wait does
        not consume the interrupt.
        """
        generation = await self._channel._wait_past(self._seen)
        self._seen = generation
        return generation

    def clone(self) -> InterruptSubscription:
        """A fresh subscription sharing this one's last-seen generation."""
        return InterruptSubscription(self._channel, self._seen)


async def race(
    operation: Awaitable[T], interrupt: InterruptSubscription | None
) -> T:
    """Await ``operation`` unless an interrupt arrives first.

    When the interrupt wins, the operation's task is cancelled and
    abandoned without waiting for it to unwind; its eventual outcome is
    discarded.

    Raises:
        Interrupted: If the interrupt generation changed first.
    """
    if interrupt is None:
        return await operation

    op_task = asyncio.ensure_future(operation)
    waiter = asyncio.ensure_future(interrupt.changed())
    try:
        done, _ = await asyncio.wait(
            {op_task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        abandon(op_task)
        waiter.cancel()
        raise

    if waiter in done:
        abandon(op_task)
        raise Interrupted(waiter.result())

    waiter.cancel()
    return op_task.result()


def abandon(task: asyncio.Future[Any]) -> None:
    """Cancel a task we no longer care about and discard its outcome."""
    if not task.done():
        task.cancel()
    task.add_done_callback(_discard_outcome)


def _discard_outcome(task: asyncio.Future[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned task finished with: %s", task.exception())
