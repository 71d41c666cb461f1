"""
Rendezvous relay - the operations transports call into

Every operation runs under the room's lock, so checks and mutations on one
room never interleave. Rooms are independent of each other.
"""
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional

from .channels import AWAIT_PEER, PullChannel, PushChannel
from .errors import InvalidArgument, RoomFull
from .events import (
    JOINED, LEFT, EmojiEvent, PresenceEvent, RelayEvent, StatusUpdate, TextUpdate,
)
from .state import RoomRegistry, RoomState

logger = logging.getLogger("tandem")

DISCONNECTED = "disconnected"
OFFLINE_STATUSES = (DISCONNECTED, "offline")


@dataclass
class JoinResult:
    room_id: str
    client_id: str
    user_count: int
    rejoined: bool = False


@dataclass
class PollResult:
    event: Optional[RelayEvent]
    timestamp: int
    user_count: int

    def to_dict(self) -> dict:
        data = self.event.to_dict() if self.event is not None else {}
        data.update({
            "hasNewContent": self.event is not None,
            "timestamp": self.timestamp,
            "userCount": self.user_count,
        })
        return data


def _require(room_id, client_id):
    if not isinstance(room_id, str) or not isinstance(client_id, str):
        raise InvalidArgument()
    if not room_id or not client_id:
        raise InvalidArgument()


class RendezvousRelay:
    """
    Pairs two peers per room and relays text, status and emoji between them

    Args:
        registry: room table; a fresh one is created when omitted
        clock: wall clock in seconds, used for heartbeats and update timestamps
        max_poll_timeout: default and upper bound for long-poll waits, in seconds
    """

    def __init__(self, registry: Optional[RoomRegistry] = None,
                 clock: Callable[[], float] = time.time,
                 max_poll_timeout: float = 10.0):
        self.registry = registry if registry is not None else RoomRegistry()
        self.max_poll_timeout = max_poll_timeout
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    @asynccontextmanager
    async def _locked(self, room_id: str, client_id: Optional[str] = None, create: bool = True):
        # A room deleted while we waited for its lock is looked up again
        while True:
            if create:
                room = self.registry.get_or_create(room_id, creator=client_id)
            else:
                room = self.registry.get(room_id)
            if room is None:
                yield None
                return
            async with room.lock:
                if room.closed:
                    continue
                yield room
                return

    # ============================================================
    # MEMBERSHIP
    # ============================================================

    def _admit(self, room: RoomState, client_id: str) -> bool:
        """Add client_id to the room or refresh it. Returns True for a new member."""
        if client_id in room.members:
            room.last_heartbeat[client_id] = self.now()
            return False
        if room.is_full:
            logger.info("🚫 Room %s is full, refusing %s", room.room_id, client_id)
            raise RoomFull(room.room_id)

        room.members.add(client_id)
        room.last_heartbeat[client_id] = self.now()
        logger.info("✅ %s joined room %s (%d/2)", client_id, room.room_id, len(room.members))
        self._dispatch(room, PresenceEvent(client_id, JOINED, len(room.members)), exclude=client_id)
        return True

    def _remove_member(self, room: RoomState, client_id: str, reason: str):
        room.status_by_client[client_id] = DISCONNECTED
        room.members.discard(client_id)
        room.last_heartbeat.pop(client_id, None)

        for channel in room.channels():
            if channel.client_id == client_id:
                channel.close()
                room.discard_channel(channel)

        logger.info("👋 %s left room %s (%s), %d remaining",
                    client_id, room.room_id, reason, len(room.members))
        self._dispatch(room, PresenceEvent(client_id, LEFT, len(room.members), reason),
                       exclude=client_id)
        room.status_by_client.pop(client_id, None)

        if not room.members:
            self.registry.delete(room.room_id)

    def _dispatch(self, room: RoomState, event: RelayEvent, exclude: str):
        """Wake every channel of the other member that takes this kind of event"""
        for channel in room.channels():
            if channel.closed:
                room.discard_channel(channel)
                continue
            if channel.client_id == exclude or not channel.accepts(event):
                continue
            if channel.deliver(event):
                room.discard_channel(channel)

    async def join(self, room_id: str, client_id: str) -> JoinResult:
        _require(room_id, client_id)
        async with self._locked(room_id, client_id) as room:
            added = self._admit(room, client_id)
            return JoinResult(room_id, client_id, len(room.members), rejoined=not added)

    async def leave(self, room_id: str, client_id: str, reason: str = "disconnect") -> bool:
        """Remove client_id from the room; unknown rooms and members are ignored"""
        _require(room_id, client_id)
        async with self._locked(room_id, create=False) as room:
            if room is None or client_id not in room.members:
                logger.debug("Leave ignored: %s not in room %s", client_id, room_id)
                return False
            self._remove_member(room, client_id, reason)
            return True

    async def heartbeat(self, room_id: str, client_id: str, status: Optional[str] = None) -> bool:
        _require(room_id, client_id)
        async with self._locked(room_id, create=False) as room:
            if room is None or client_id not in room.members:
                return False
            room.last_heartbeat[client_id] = self.now()
            if status:
                self._set_status(room, client_id, status)
            return True

    # ============================================================
    # UPDATES
    # ============================================================

    def _set_status(self, room: RoomState, client_id: str, status: str):
        room.status_by_client[client_id] = status
        self._dispatch(room, StatusUpdate(client_id, status), exclude=client_id)

    async def send_text(self, room_id: str, client_id: str, text: str,
                        status: Optional[str] = None) -> int:
        """Replace the shared text; a status given alongside rides on the same update"""
        _require(room_id, client_id)
        if not isinstance(text, str):
            raise InvalidArgument("text must be a string")
        if status is not None and not isinstance(status, str):
            raise InvalidArgument("status must be a string")

        async with self._locked(room_id, client_id) as room:
            self._admit(room, client_id)
            if status:
                self._set_status(room, client_id, status)
            room.text = text
            room.last_sender_id = client_id
            room.timestamp = room.next_timestamp(int(self.now() * 1000))
            logger.debug("✉️ %s -> room %s (%d chars)", client_id, room_id, len(text))

            update = TextUpdate(client_id, text, room.timestamp,
                                room.status_by_client.get(client_id))
            self._dispatch(room, update, exclude=client_id)
            return room.timestamp

    async def send_status(self, room_id: str, client_id: str, status: str):
        _require(room_id, client_id)
        if not status or not isinstance(status, str):
            raise InvalidArgument("status must be a non-empty string")

        async with self._locked(room_id, client_id) as room:
            self._admit(room, client_id)
            self._set_status(room, client_id, status)

    async def send_emoji(self, room_id: str, client_id: str, emoji: str) -> int:
        _require(room_id, client_id)
        if not emoji or not isinstance(emoji, str):
            raise InvalidArgument("Emoji is required")

        async with self._locked(room_id, client_id) as room:
            self._admit(room, client_id)
            room.last_emoji = emoji
            room.emoji_sender_id = client_id
            room.emoji_timestamp = room.next_timestamp(int(self.now() * 1000))

            self._dispatch(room, EmojiEvent(client_id, emoji, room.emoji_timestamp),
                           exclude=client_id)
            return room.emoji_timestamp

    # ============================================================
    # WAITING
    # ============================================================

    def _timeout(self, timeout: Optional[float]) -> float:
        if timeout is None:
            return self.max_poll_timeout
        return min(max(timeout, 0.0), self.max_poll_timeout)

    def _pending_content(self, room: RoomState, client_id: str, since: int) -> Optional[RelayEvent]:
        """Oldest update from the other side that client_id has not seen yet"""
        pending = []
        if room.text and room.last_sender_id != client_id and room.timestamp > since:
            pending.append(TextUpdate(room.last_sender_id, room.text, room.timestamp,
                                      room.peer_status(client_id)))
        if room.last_emoji and room.emoji_sender_id != client_id and room.emoji_timestamp > since:
            pending.append(EmojiEvent(room.emoji_sender_id, room.last_emoji, room.emoji_timestamp))
        return min(pending, key=lambda event: event.timestamp, default=None)

    async def _wait(self, room: RoomState, waiter: PullChannel) -> Optional[RelayEvent]:
        try:
            return await waiter.wait()
        finally:
            # also runs when the caller is cancelled
            room.discard_channel(waiter)

    async def poll_or_wait(self, room_id: str, client_id: str, since: int = 0,
                           timeout: Optional[float] = None) -> PollResult:
        """
        Return the next unseen update from the other member, waiting for one if needed

        Args:
            since: timestamp of the newest update the caller has already seen
            timeout: seconds to wait; capped at max_poll_timeout

        Returns:
            PollResult whose event is None when the wait timed out
        """
        _require(room_id, client_id)
        timeout = self._timeout(timeout)

        async with self._locked(room_id, client_id) as room:
            self._admit(room, client_id)
            event = self._pending_content(room, client_id, since)
            if event is not None or timeout <= 0:
                return self._poll_result(room, event, since)
            waiter = PullChannel(client_id, timeout)
            room.pending_waiters.append(waiter)

        event = await self._wait(room, waiter)
        return self._poll_result(room, event, since)

    def _poll_result(self, room: RoomState, event: Optional[RelayEvent], since: int) -> PollResult:
        timestamp = getattr(event, "timestamp", since)
        return PollResult(event, timestamp, len(room.members))

    async def wait_for_peer(self, room_id: str, client_id: str,
                            timeout: Optional[float] = None) -> Optional[PresenceEvent]:
        """Join, then wait until the other seat is taken. None on timeout."""
        _require(room_id, client_id)
        timeout = self._timeout(timeout)

        async with self._locked(room_id, client_id) as room:
            self._admit(room, client_id)
            others = room.members - {client_id}
            if others:
                return PresenceEvent(next(iter(others)), JOINED, len(room.members))
            waiter = PullChannel(client_id, timeout, purpose=AWAIT_PEER)
            room.pending_waiters.append(waiter)

        event = await self._wait(room, waiter)
        if event is None:
            return None
        return PresenceEvent(event.sender_id, JOINED, len(room.members))

    # ============================================================
    # PUSH SINKS
    # ============================================================

    async def attach_sink(self, room_id: str, client_id: str, channel: PushChannel) -> JoinResult:
        """Join and route this member's events to a persistent sink"""
        _require(room_id, client_id)
        async with self._locked(room_id, client_id) as room:
            added = self._admit(room, client_id)
            previous = room.push_sinks.get(client_id)
            if previous is not None and previous is not channel:
                previous.superseded = True
                previous.close()
            room.push_sinks[client_id] = channel

            # catch the new sink up with what the other side already sent
            for event in (self._pending_content(room, client_id, since=0),
                          self._peer_presence(room, client_id)):
                if event is not None:
                    channel.deliver(event)
            return JoinResult(room_id, client_id, len(room.members), rejoined=not added)

    def _peer_presence(self, room: RoomState, client_id: str) -> Optional[PresenceEvent]:
        others = room.members - {client_id}
        if not others:
            return None
        return PresenceEvent(next(iter(others)), JOINED, len(room.members))

    async def detach_sink(self, room_id: str, client_id: str, channel: Optional[PushChannel] = None):
        _require(room_id, client_id)
        async with self._locked(room_id, create=False) as room:
            if room is None:
                return
            current = room.push_sinks.get(client_id)
            if current is None or (channel is not None and current is not channel):
                return
            current.close()
            room.discard_channel(current)

    # ============================================================
    # SWEEPS
    # ============================================================

    async def expire_members(self, room_id: str, heartbeat_timeout: float) -> List[str]:
        """Evict members whose last heartbeat is older than heartbeat_timeout seconds"""
        async with self._locked(room_id, create=False) as room:
            if room is None:
                return []
            now = self.now()
            expired = [
                member for member in sorted(room.members)
                if now - room.last_heartbeat.get(member, 0) > heartbeat_timeout
            ]
            for member in expired:
                logger.info("⏱️ %s timed out in room %s", member, room_id)
                self._remove_member(room, member, "timeout")
            if not room.members and not room.closed:
                self.registry.delete(room_id)
            return expired

    async def reap_if_inactive(self, room_id: str, inactive_threshold: float) -> bool:
        """Delete the room if everyone in it is offline and nobody has beaten recently"""
        async with self._locked(room_id, create=False) as room:
            if room is None:
                return False
            now = self.now()
            all_offline = all(status in OFFLINE_STATUSES for status in room.status_by_client.values())
            quiet = all(now - beat > inactive_threshold for beat in room.last_heartbeat.values())
            if (all_offline or not room.members) and quiet:
                logger.info("🧹 Cleaning up inactive room %s", room_id)
                self.registry.delete(room_id)
                return True
            return False

    async def close_all(self) -> int:
        """Drop every room, releasing pending polls and closing push sinks"""
        closed = 0
        for room in self.registry.snapshot():
            async with self._locked(room.room_id, create=False) as current:
                if current is None:
                    continue
                self.registry.delete(current.room_id)
                closed += 1
        if closed:
            logger.info("🛑 Closed %d room(s) on shutdown", closed)
        return closed

    def room_info(self, room_id: str) -> Optional[dict]:
        room = self.registry.get(room_id)
        if room is None:
            return None
        return room.to_dict()
