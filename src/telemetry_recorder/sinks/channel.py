"""
Rendezvous Channel
==================

Single-slot synchronous handoff between a session and one of its sinks.

This module provides the RendezvousChannel class, the ONLY interface
between the dispatch loop and a sink worker.

Design Rules:
    - Holds at most one item
    - send() completes only once the receiver has taken the item
    - Never drops an item silently: if the receiver goes away, the pending
      sender gets ChannelClosed instead
    - Exposes minimal metrics for observability

Because a send blocks until the sink takes the item, a slow sink stalls the
dispatch loop, which stops reading the socket, which lets TCP flow control
push back on the device. Nothing queues up in memory.
"""

import asyncio
import logging
from typing import Generic, Optional, Set, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised to a sender or receiver once the channel has been closed."""

    def __init__(self, name: str, reason: Optional[BaseException] = None) -> None:
        message = f"Channel '{name}' is closed"
        if reason is not None:
            message += f": {reason}"
        super().__init__(message)
        self.name = name
        self.reason = reason
        self.__cause__ = reason


class RendezvousChannel(Generic[T]):
    """
    Unbuffered handoff channel for one producer and one consumer.

    Attributes:
        name: Channel name used in logs and errors
        closed: Whether close() has been called
        total_sent: Number of items the receiver has taken

    Example:
        channel = RendezvousChannel("video")

        # Producer (blocks until the consumer takes it)
        await channel.send(message)

        # Consumer
        message = await channel.receive()
    """

    def __init__(self, name: str = "channel") -> None:
        self.name = name
        self._slot: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._waiting: Set[asyncio.Future] = set()
        self._closed: bool = False
        self._reason: Optional[BaseException] = None
        self._total_sent: int = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def reason(self) -> Optional[BaseException]:
        """Why the channel was closed (None for a normal close)."""
        return self._reason

    @property
    def total_sent(self) -> int:
        return self._total_sent

    async def send(self, item: T) -> None:
        """
        Hand an item to the receiver.

        Returns once the receiver has taken the item.

        Raises:
            ChannelClosed: The channel was closed before the item was taken
        """
        if self._closed:
            raise ChannelClosed(self.name, self._reason)

        taken = asyncio.get_running_loop().create_future()
        self._waiting.add(taken)
        try:
            await self._slot.put((item, taken))
            await taken
        finally:
            self._waiting.discard(taken)

        self._total_sent += 1

    async def receive(self) -> T:
        """
        Take the next item, releasing its sender.

        Raises:
            ChannelClosed: The channel has been closed
        """
        if self._closed:
            raise ChannelClosed(self.name, self._reason)

        item, taken = await self._slot.get()
        if not taken.done():
            taken.set_result(None)
        return item

    def close(self, reason: Optional[BaseException] = None) -> None:
        """
        Close the channel, failing any sender still waiting.

        Args:
            reason: Error that caused the close, attached to ChannelClosed
        """
        if self._closed:
            return

        self._closed = True
        self._reason = reason

        for taken in self._waiting:
            if not taken.done():
                taken.set_exception(ChannelClosed(self.name, reason))

        dropped = 0
        while True:
            try:
                self._slot.get_nowait()
                dropped += 1
            except asyncio.QueueEmpty:
                break

        if reason is not None:
            logger.debug(
                f"Channel '{self.name}' closed with error: {reason} "
                f"(rejected {dropped} pending item)"
            )

    def metrics(self) -> dict:
        return {
            "name": self.name,
            "closed": self._closed,
            "total_sent": self._total_sent,
        }
