"""
Change notifier for logmirror.

The ChangeNotifier turns "something changed" broadcasts into catch-up:
1. Any writer calls notify() after a durable append
2. Every listening notifier wakes its drain task
3. The drain task polls each registered pollable in registration order
4. The computation graph is stepped exactly once

State machine:

    IDLE --start()--> LISTENING --stop()--> IDLE

start() while LISTENING and stop() while IDLE are no-ops.

Invariants:
    - The subscription handler never does I/O; it marks the notifier
      dirty and wakes the drain task
    - Drains never interleave (one drain task, plus a lock shared with
      caller-triggered drain())
    - Notifications arriving before or during a drain collapse into at
      most one further drain cycle
    - A failed start() leaves the notifier IDLE
    - stop() lets an in-flight drain finish; nothing is delivered after it
    - Only the drain task of the latest start() runs; an older one exits at
      its next wake
    - A subscription that goes inactive on its own (listener connection
      lost) puts the notifier back to IDLE with last_error set

How to change safely:
    - Keep the handler synchronous and non-blocking
    - Notifications are advisory; convergence must never depend on one
      arriving (explicit poll() and fallback_poll_interval cover gaps)
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable

from ..errors import ChannelError, DrainError
from ..reactive import ComputationGraph
from .base import Channel, Subscription

logger = logging.getLogger(__name__)


class NotifierState(Enum):
    """Lifecycle of a ChangeNotifier."""

    IDLE = "idle"
    LISTENING = "listening"


@runtime_checkable
class Pollable(Protocol):
    """Anything that can catch itself up with its store."""

    async def poll(self) -> Any:
        ...


class ChangeNotifier:
    """Fans change broadcasts out to registered pollables.

    Several mirrors (different tables and record types) may share one
    notifier and one channel.

    Thread safety:
        Single event loop only. The pollable registry is owned by the
        notifier and must not be mutated from other threads.

    Example:
        >>> notifier = ChangeNotifier(channel, graph)
        >>> notifier.register(readings)
        >>> await notifier.start()
        >>> await readings.append(Reading(value=1))
        >>> await notifier.notify()   # every listener polls, then steps once
    """

    def __init__(
        self,
        channel: Channel,
        graph: ComputationGraph,
        name: str = "logmirror",
        fallback_poll_interval: Optional[float] = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            channel: Notification channel backend
            graph: Computation graph to step after each drain
            name: Channel name shared by writers and listeners
            fallback_poll_interval: If set, also drain after this many
                seconds without a notification
        """
        self.channel = channel
        self.graph = graph
        self.name = name
        self.fallback_poll_interval = fallback_poll_interval

        self._state = NotifierState.IDLE
        self._subscription: Optional[Subscription] = None
        self._pollables: List[Pollable] = []
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._dirty = False
        self._drain_lock = asyncio.Lock()
        self._draining_task: Optional[asyncio.Task] = None
        self._generation = 0

        self._notification_count = 0
        self._drain_count = 0
        self._error_count = 0
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> NotifierState:
        return self._state

    @property
    def pollables(self) -> Tuple[Pollable, ...]:
        return tuple(self._pollables)

    def register(self, pollable: Pollable) -> None:
        """Register a pollable for every later drain. Duplicates are ignored."""
        if any(p is pollable for p in self._pollables):
            return
        self._pollables.append(pollable)

    def unregister(self, pollable: Pollable) -> None:
        self._pollables = [p for p in self._pollables if p is not pollable]

    async def start(self) -> None:
        """Subscribe to the channel and start the drain task.

        Raises:
            ChannelError: If the subscription fails (state stays IDLE)
        """
        if self._state is NotifierState.LISTENING:
            logger.debug("Notifier already listening", extra={"channel": self.name})
            return

        try:
            subscription = await self.channel.subscribe(self.name, self._on_notification)
        except ChannelError:
            raise
        except Exception as e:
            raise ChannelError(f"Failed to subscribe to {self.name}: {e}", channel=self.name) from e

        self._subscription = subscription
        self._dirty = False
        self._wake.clear()
        self._state = NotifierState.LISTENING
        self._generation += 1
        self._task = asyncio.create_task(
            self._drain_loop(self._generation), name=f"logmirror-drain-{self.name}"
        )
        logger.info(
            "Notifier listening",
            extra={"channel": self.name, "pollables": len(self._pollables)},
        )

    async def stop(self) -> None:
        """Release the subscription and stop the drain task.

        An in-flight drain is allowed to finish. Safe to call from a pollable.
        """
        if self._state is NotifierState.IDLE:
            return

        self._state = NotifierState.IDLE
        subscription, self._subscription = self._subscription, None
        task, self._task = self._task, None
        try:
            if subscription is not None:
                await subscription.unsubscribe()
        finally:
            self._wake.set()
            current = asyncio.current_task()
            if task is not None and task is not current and self._draining_task is not current:
                await task
        logger.info("Notifier stopped", extra={"channel": self.name})

    async def notify(self) -> None:
        """Broadcast a change signal to every listener.

        Raises:
            ChannelError: If the publish fails
        """
        try:
            await self.channel.publish(self.name, "")
        except ChannelError:
            raise
        except Exception as e:
            raise ChannelError(f"Failed to notify {self.name}: {e}", channel=self.name) from e

    async def drain(self) -> None:
        """Poll every registered pollable, then step the graph once.

        All pollables are polled even if one fails; the graph is stepped
        so the ones that succeeded become visible.

        Raises:
            DrainError: If any pollable failed
        """
        failures: List[Tuple[Pollable, BaseException]] = []
        async with self._drain_lock:
            self._draining_task = asyncio.current_task()
            try:
                for pollable in list(self._pollables):
                    try:
                        await pollable.poll()
                    except Exception as e:
                        failures.append((pollable, e))
                self.graph.step()
                self._drain_count += 1
            finally:
                self._draining_task = None

        logger.debug(
            "Drain complete",
            extra={"channel": self.name, "pollables": len(self._pollables), "failed": len(failures)},
        )
        if failures:
            self._error_count += len(failures)
            raise DrainError(failures)

    def _on_notification(self, payload: str) -> None:
        if self._state is not NotifierState.LISTENING:
            return
        self._notification_count += 1
        self._dirty = True
        self._wake.set()

    def _is_current(self, generation: int) -> bool:
        return self._state is NotifierState.LISTENING and self._generation == generation

    async def _drain_loop(self, generation: int) -> None:
        """Background loop: wait for a notification (or the fallback timer), drain."""
        while self._is_current(generation):
            timed_out = False
            try:
                if self.fallback_poll_interval:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.fallback_poll_interval)
                else:
                    await self._wake.wait()
            except asyncio.TimeoutError:
                timed_out = True

            # A stale loop must not consume the wake meant for its successor
            if not self._is_current(generation):
                break
            self._wake.clear()

            if self._subscription is not None and not self._subscription.active:
                await self._on_subscription_lost()
                break
            if not (self._dirty or timed_out):
                continue

            self._dirty = False
            try:
                await self.drain()
            except Exception as e:
                self.last_error = e
                logger.error(f"Notification drain failed: {e}", exc_info=True, extra={"channel": self.name})

    async def _on_subscription_lost(self) -> None:
        """Go back to IDLE after the channel dropped the subscription."""
        subscription, self._subscription = self._subscription, None
        self._state = NotifierState.IDLE
        self._task = None
        self._error_count += 1
        self.last_error = ChannelError(f"Subscription to {self.name} was lost", channel=self.name)
        logger.error(
            "Notifier subscription lost; notifier is idle until start() is called again",
            extra={"channel": self.name},
        )
        try:
            await subscription.unsubscribe()
        except Exception as e:
            logger.warning(f"Error releasing lost subscription: {e}", extra={"channel": self.name})

    @property
    def stats(self) -> dict[str, Any]:
        """Get notifier statistics."""
        return {
            "state": self._state.value,
            "notifications": self._notification_count,
            "drains": self._drain_count,
            "errors": self._error_count,
            "pollables": len(self._pollables),
        }
