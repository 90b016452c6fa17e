"""
In-memory notification channel for testing.

This module provides an in-process broadcast channel for:
- Unit tests
- Integration tests with several mirrors in one process
- Local development without a database server

Invariants:
    - Delivery is asynchronous: handlers run on the event loop after
      publish() returns, as they would with a network channel
    - A handler only receives notifications published while it was subscribed
    - Nothing is queued for later subscribers

How to change safely:
    - This is test-oriented code; keep it compatible with the Channel protocol
    - Add features that help exercise failure and ordering scenarios
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from ..errors import ChannelError
from .base import NotificationHandler

logger = logging.getLogger(__name__)


class InMemorySubscription:
    """Subscription handle returned by InMemoryChannel.subscribe()."""

    def __init__(self, channel: "InMemoryChannel", name: str, sub_id: int) -> None:
        self._channel = channel
        self.name = name
        self.sub_id = sub_id
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._channel._remove(self)


class InMemoryChannel:
    """In-memory implementation of the Channel protocol.

    Example:
        >>> channel = InMemoryChannel()
        >>> await channel.connect()
        >>> sub = await channel.subscribe("changes", lambda payload: print("changed"))
        >>> await channel.publish("changes")
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Dict[int, NotificationHandler]] = defaultdict(dict)
        self._subscriptions: Dict[int, InMemorySubscription] = {}
        self._ids = itertools.count(1)
        self._connected = False
        self._failure: Optional[Exception] = None
        self.published: List[str] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        logger.debug("InMemoryChannel connected")

    async def close(self) -> None:
        """Close and drop every subscription."""
        for sub in list(self._subscriptions.values()):
            await sub.unsubscribe()
        self._connected = False
        logger.debug("InMemoryChannel closed")

    async def publish(self, name: str, payload: str = "") -> None:
        self._check()
        self.published.append(name)
        handlers = list(self._handlers.get(name, {}).items())
        loop = asyncio.get_running_loop()
        for sub_id, handler in handlers:
            loop.call_soon(self._deliver, name, sub_id, handler, payload)
        logger.debug("Notification published", extra={"channel": name, "listeners": len(handlers)})

    def _deliver(self, name: str, sub_id: int, handler: NotificationHandler, payload: str) -> None:
        # Unsubscribed between publish and delivery
        if sub_id not in self._handlers.get(name, {}):
            return
        handler(payload)

    async def subscribe(self, name: str, handler: NotificationHandler) -> InMemorySubscription:
        self._check()
        sub = InMemorySubscription(self, name, next(self._ids))
        self._handlers[name][sub.sub_id] = handler
        self._subscriptions[sub.sub_id] = sub
        logger.debug("Subscribed", extra={"channel": name, "sub_id": sub.sub_id})
        return sub

    def _remove(self, sub: InMemorySubscription) -> None:
        self._handlers.get(sub.name, {}).pop(sub.sub_id, None)
        self._subscriptions.pop(sub.sub_id, None)
        logger.debug("Unsubscribed", extra={"channel": sub.name, "sub_id": sub.sub_id})

    def _check(self) -> None:
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise ChannelError(f"Channel operation failed: {failure}") from failure
        if not self._connected:
            raise ChannelError("Not connected")

    # Testing helpers

    def inject_failure(self, exception: Exception) -> None:
        """Make the next publish() or subscribe() fail with ChannelError."""
        self._failure = exception

    def listener_count(self, name: str) -> int:
        return len(self._handlers.get(name, {}))

    def sever(self, name: str) -> None:
        """Drop every subscription on name as a lost listener connection would.

        Each subscription turns inactive and its handler is called once.
        """
        for sub_id, handler in list(self._handlers.get(name, {}).items()):
            sub = self._subscriptions.get(sub_id)
            if sub is not None:
                sub._active = False
                self._remove(sub)
            handler("")
