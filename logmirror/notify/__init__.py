"""
Change notification for logmirror.

This module provides:
- A pluggable signal-only Channel (in-memory, Postgres LISTEN/NOTIFY)
- ChangeNotifier, which polls registered mirrors on each broadcast and
  steps the computation graph once per drain

Notifications are advisory. Delivery is at-most-once and only to
listeners subscribed at publish time, so every consumer must also be
able to catch up with an explicit poll().
"""

from .base import Channel, NotificationHandler, Subscription
from .memory import InMemoryChannel
from .notifier import ChangeNotifier, NotifierState, Pollable
from .postgres import PostgresChannel

__all__ = [
    # Protocols and types
    "Channel",
    "Subscription",
    "NotificationHandler",
    "Pollable",
    # Notifier
    "ChangeNotifier",
    "NotifierState",
    # Implementations
    "InMemoryChannel",
    "PostgresChannel",
]
