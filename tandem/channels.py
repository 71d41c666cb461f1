"""
Delivery channels: how an event reaches a waiting or subscribed peer

PullChannel  - a long-poll waiter, resolved once then discarded
PushChannel  - a persistent socket sink fed through a bounded queue
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .events import JOINED, LEFT, EmojiEvent, PresenceEvent, RelayEvent, TextUpdate

logger = logging.getLogger("tandem")

# What a pull waiter is waiting for
AWAIT_CONTENT = "content"
AWAIT_PEER = "peer"


class DeliveryChannel:
    """Capability set the relay uses to notify a peer"""

    def __init__(self, client_id: str):
        self.client_id = client_id
        self.closed = False

    def accepts(self, event: RelayEvent) -> bool:
        raise NotImplementedError

    def deliver(self, event: RelayEvent) -> bool:
        """Hand an event over without blocking. Returns True once the channel is spent."""
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


class PullChannel(DeliveryChannel):
    """
    A client blocked in a long poll

    The waiter owns a future that is resolved with the first accepted event,
    or with None when the channel is closed without content.
    """

    def __init__(self, client_id: str, timeout: float, purpose: str = AWAIT_CONTENT):
        super().__init__(client_id)
        self.purpose = purpose
        self.deadline = time.monotonic() + max(timeout, 0.0)
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()

    def accepts(self, event: RelayEvent) -> bool:
        if self.purpose == AWAIT_PEER:
            if isinstance(event, PresenceEvent):
                return event.action == JOINED
            return isinstance(event, TextUpdate)

        if isinstance(event, PresenceEvent):
            return event.action == LEFT
        return isinstance(event, (TextUpdate, EmojiEvent))

    def deliver(self, event: RelayEvent) -> bool:
        if not self.future.done():
            self.future.set_result(event)
        self.closed = True
        return True

    def close(self):
        if not self.future.done():
            self.future.set_result(None)
        self.closed = True

    async def wait(self) -> Optional[RelayEvent]:
        """Wait until resolved or the deadline passes; None means no new content"""
        remaining = self.deadline - time.monotonic()
        try:
            return await asyncio.wait_for(self.future, timeout=max(remaining, 0.0))
        except asyncio.TimeoutError:
            return None
        finally:
            self.closed = True


class PushChannel(DeliveryChannel):
    """
    A persistent connection sink

    deliver() only enqueues; a writer task drains the queue into `send`.
    A full queue or a failed send closes the channel, and the relay drops
    closed channels on its next dispatch. `on_close` runs once when the
    channel closes, so the owning connection can hang up.
    """

    def __init__(self, client_id: str, send: Callable[[dict], Awaitable], maxsize: int = 64,
                 on_close: Optional[Callable[[], None]] = None):
        super().__init__(client_id)
        self.on_close = on_close
        # set when a newer connection of the same client took over
        self.superseded = False
        self._send = send
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._writer = asyncio.get_running_loop().create_task(self._drain())

    def accepts(self, event: RelayEvent) -> bool:
        return True

    def deliver(self, event: RelayEvent) -> bool:
        if self.closed:
            return True
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Push queue full for %s, dropping sink", self.client_id)
            self.close()
            return True
        return False

    async def _drain(self):
        while True:
            event = await self._queue.get()
            try:
                await self._send(event.to_dict())
            except Exception as e:
                logger.warning(f"Failed to push {event.kind} to {self.client_id}: {e}")
                self.close()
                return

    def close(self):
        if self.closed:
            return
        self.closed = True
        if not self._writer.done() and self._writer is not asyncio.current_task():
            self._writer.cancel()
        if self.on_close is not None:
            self.on_close()
