"""
Rendezvous Channel Tests
========================

Tests for the single-slot handoff between a session and its sinks.
"""

import asyncio

import pytest

from telemetry_recorder.errors import EncoderError
from telemetry_recorder.sinks.channel import ChannelClosed, RendezvousChannel


async def spin(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


class TestRendezvousChannel:
    """Tests for RendezvousChannel."""

    def test_send_waits_for_receiver(self):
        async def run():
            channel = RendezvousChannel("test")
            sender = asyncio.create_task(channel.send("frame-1"))

            await spin()
            assert not sender.done()

            item = await channel.receive()
            await sender
            return item, channel.total_sent

        item, total = asyncio.run(run())
        assert item == "frame-1"
        assert total == 1

    def test_items_arrive_in_order(self):
        async def run():
            channel = RendezvousChannel("test")
            received = []

            async def consume():
                for _ in range(5):
                    received.append(await channel.receive())

            consumer = asyncio.create_task(consume())
            for i in range(5):
                await channel.send(i)
            await consumer
            return received

        assert asyncio.run(run()) == [0, 1, 2, 3, 4]

    def test_close_fails_pending_sender(self):
        async def run():
            channel = RendezvousChannel("video")
            sender = asyncio.create_task(channel.send("frame"))
            await spin()

            channel.close(EncoderError("broken pipe"))

            with pytest.raises(ChannelClosed) as exc_info:
                await sender
            return exc_info.value

        error = asyncio.run(run())
        assert error.name == "video"
        assert isinstance(error.reason, EncoderError)
        assert "broken pipe" in str(error)

    def test_send_after_close(self):
        async def run():
            channel = RendezvousChannel("command")
            channel.close()
            await channel.send("late")

        with pytest.raises(ChannelClosed):
            asyncio.run(run())

    def test_receive_after_close(self):
        async def run():
            channel = RendezvousChannel("command")
            channel.close()
            await channel.receive()

        with pytest.raises(ChannelClosed):
            asyncio.run(run())

    def test_close_is_idempotent(self):
        async def run():
            channel = RendezvousChannel("test")
            reason = EncoderError("first")
            channel.close(reason)
            channel.close(EncoderError("second"))
            return channel

        channel = asyncio.run(run())
        assert channel.closed
        assert channel.reason.message == "first"

    def test_metrics(self):
        async def run():
            channel = RendezvousChannel("metrics")
            consumer = asyncio.create_task(channel.receive())
            await channel.send(b"x")
            await consumer
            return channel.metrics()

        metrics = asyncio.run(run())
        assert metrics == {"name": "metrics", "closed": False, "total_sent": 1}
