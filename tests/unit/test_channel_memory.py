"""
Unit tests for the in-memory notification channel.

Tests cover:
- Connection lifecycle
- Delivery only to current subscribers
- Asynchronous delivery
- Failure injection
"""

import asyncio

import pytest

from logmirror.errors import ChannelError
from logmirror.notify.base import Channel, Subscription
from logmirror.notify.memory import InMemoryChannel


class TestInMemoryChannel:
    """Tests for InMemoryChannel."""

    @pytest.fixture
    def channel(self):
        return InMemoryChannel()

    def test_satisfies_protocol(self, channel):
        assert isinstance(channel, Channel)

    @pytest.mark.asyncio
    async def test_requires_connection(self, channel):
        with pytest.raises(ChannelError):
            await channel.publish("changes")
        with pytest.raises(ChannelError):
            await channel.subscribe("changes", lambda payload: None)

    @pytest.mark.asyncio
    async def test_delivers_after_publish_returns(self, channel):
        await channel.connect()
        received = []
        sub = await channel.subscribe("changes", received.append)

        await channel.publish("changes", "hello")
        assert received == []

        await asyncio.sleep(0)
        assert received == ["hello"]
        assert isinstance(sub, Subscription)

    @pytest.mark.asyncio
    async def test_delivers_to_every_subscriber(self, channel):
        await channel.connect()
        a, b = [], []
        await channel.subscribe("changes", a.append)
        await channel.subscribe("changes", b.append)

        await channel.publish("changes")
        await asyncio.sleep(0)

        assert a == [""]
        assert b == [""]

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self, channel):
        await channel.connect()
        received = []
        await channel.subscribe("orders", received.append)

        await channel.publish("payments")
        await asyncio.sleep(0)

        assert received == []

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self, channel):
        await channel.connect()
        await channel.publish("changes")
        await asyncio.sleep(0)

        received = []
        await channel.subscribe("changes", received.append)
        await asyncio.sleep(0)

        assert received == []

    @pytest.mark.asyncio
    async def test_unsubscribe_before_delivery_drops_notification(self, channel):
        await channel.connect()
        received = []
        sub = await channel.subscribe("changes", received.append)

        await channel.publish("changes")
        await sub.unsubscribe()
        await asyncio.sleep(0)

        assert received == []
        assert not sub.active
        assert channel.listener_count("changes") == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, channel):
        await channel.connect()
        sub = await channel.subscribe("changes", lambda payload: None)

        await sub.unsubscribe()
        await sub.unsubscribe()

        assert channel.listener_count("changes") == 0

    @pytest.mark.asyncio
    async def test_close_drops_subscriptions(self, channel):
        await channel.connect()
        sub = await channel.subscribe("changes", lambda payload: None)

        await channel.close()

        assert not sub.active
        assert not channel.is_connected

    @pytest.mark.asyncio
    async def test_sever_deactivates_and_wakes_once(self, channel):
        await channel.connect()
        received = []
        sub = await channel.subscribe("changes", received.append)

        channel.sever("changes")

        assert received == [""]
        assert not sub.active
        assert channel.listener_count("changes") == 0

        await channel.publish("changes")
        await asyncio.sleep(0)
        assert received == [""]

    @pytest.mark.asyncio
    async def test_inject_failure_fails_next_operation_once(self, channel):
        await channel.connect()
        channel.inject_failure(RuntimeError("broker down"))

        with pytest.raises(ChannelError):
            await channel.publish("changes")

        await channel.publish("changes")
        assert channel.published == ["changes"]
