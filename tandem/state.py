"""
In-memory state management for rooms
One RoomState per active room, owned by the RoomRegistry
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from .channels import DeliveryChannel, PullChannel, PushChannel

logger = logging.getLogger("tandem")

MAX_MEMBERS = 2


@dataclass
class RoomState:
    room_id: str
    text: str = ""
    last_sender_id: str = ""
    timestamp: int = 0
    status_by_client: Dict[str, str] = field(default_factory=dict)
    members: Set[str] = field(default_factory=set)
    last_heartbeat: Dict[str, float] = field(default_factory=dict)
    pending_waiters: List[PullChannel] = field(default_factory=list)
    push_sinks: Dict[str, PushChannel] = field(default_factory=dict)
    creator: Optional[str] = None
    last_emoji: Optional[str] = None
    emoji_sender_id: str = ""
    emoji_timestamp: int = 0
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= MAX_MEMBERS

    def next_timestamp(self, now_ms: int) -> int:
        """Room clock shared by text and emoji updates, never goes backwards"""
        return max(now_ms, self.timestamp + 1, self.emoji_timestamp + 1)

    def peer_status(self, client_id: str) -> Optional[str]:
        """Last-known status of anyone in the room other than client_id"""
        for other, status in self.status_by_client.items():
            if other != client_id and status:
                return status
        return None

    def channels(self) -> List[DeliveryChannel]:
        return list(self.push_sinks.values()) + list(self.pending_waiters)

    def discard_channel(self, channel: DeliveryChannel):
        if isinstance(channel, PushChannel):
            if self.push_sinks.get(channel.client_id) is channel:
                del self.push_sinks[channel.client_id]
        elif channel in self.pending_waiters:
            self.pending_waiters.remove(channel)

    def to_dict(self) -> dict:
        return {
            "room_id": self.room_id,
            "user_count": len(self.members),
            "users": sorted(self.members),
            "full": self.is_full,
            "timestamp": self.timestamp,
            "has_text": bool(self.text),
            "waiting": len(self.pending_waiters),
            "subscribers": len(self.push_sinks),
            "creator": self.creator,
        }


class RoomRegistry:
    """Maps room ids to RoomState; rooms are created on first reference"""

    def __init__(self):
        self._rooms: Dict[str, RoomState] = {}

    def get_or_create(self, room_id: str, creator: Optional[str] = None) -> RoomState:
        room = self._rooms.get(room_id)
        if room is None:
            room = RoomState(room_id=room_id, creator=creator)
            self._rooms[room_id] = room
            logger.info("🎪 Room created: %s", room_id)
        return room

    def get(self, room_id: str) -> Optional[RoomState]:
        return self._rooms.get(room_id)

    def delete(self, room_id: str):
        room = self._rooms.pop(room_id, None)
        if room is None:
            return
        room.closed = True
        for channel in room.channels():
            channel.close()
        room.pending_waiters.clear()
        room.push_sinks.clear()
        logger.info("🛑 Room deleted: %s", room_id)

    def snapshot(self) -> List[RoomState]:
        return list(self._rooms.values())

    def for_each(self, visitor: Callable[[RoomState], None]):
        for room in self.snapshot():
            visitor(room)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
