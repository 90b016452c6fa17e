"""
Base protocol and types for notification channels.

A channel is a named, signal-only broadcast medium:

    publish(name, payload)    deliver to every listener subscribed right now
    subscribe(name, handler)  start receiving; returns a Subscription

Delivery contract:
    - At-most-once, only to listeners subscribed at publish time
    - No replay for listeners that connect later or were disconnected
    - Payload content is not relied upon by logmirror

Handlers are plain callables invoked on the event loop. They must not
block; ChangeNotifier's handler only flips a flag and sets an event.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Callable, Protocol, runtime_checkable

NotificationHandler = Callable[[str], None]


@runtime_checkable
class Subscription(Protocol):
    """Handle for an active subscription."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """False once unsubscribed, or once the backend lost the subscription.

        A backend that loses a subscription on its own calls the handler
        one last time so the listener can notice.
        """
        ...

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery. Calling it again is a no-op."""
        ...


@runtime_checkable
class Channel(Protocol):
    """Protocol for notification channel backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            ChannelError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the backend, dropping every subscription."""
        ...

    @abstractmethod
    async def publish(self, name: str, payload: str = "") -> None:
        """Broadcast on a channel.

        Raises:
            ChannelError: If the publish fails
        """
        ...

    @abstractmethod
    async def subscribe(self, name: str, handler: NotificationHandler) -> Subscription:
        """Register a handler for a channel.

        Raises:
            ChannelError: If the subscription cannot be established
        """
        ...
