"""
Events relayed between the two peers of a room

Every delivery goes through one of these variants; transports serialize them
with to_dict().
"""
from dataclasses import dataclass
from typing import Optional, Union

JOINED = "joined"
LEFT = "left"


@dataclass(frozen=True)
class TextUpdate:
    sender_id: str
    text: str
    timestamp: int
    # Sender's last-known status, piggy-backed for pull transports
    status: Optional[str] = None

    kind = "text"

    def to_dict(self) -> dict:
        data = {"type": self.kind, "text": self.text, "timestamp": self.timestamp}
        if self.status:
            data["status"] = self.status
        return data


@dataclass(frozen=True)
class StatusUpdate:
    sender_id: str
    status: str

    kind = "status"

    def to_dict(self) -> dict:
        return {"type": self.kind, "status": self.status}


@dataclass(frozen=True)
class EmojiEvent:
    sender_id: str
    emoji: str
    timestamp: int

    kind = "emoji"

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "emoji": self.emoji,
            "emojiTimestamp": self.timestamp,
        }


@dataclass(frozen=True)
class PresenceEvent:
    """A member joined or left; user_count is the member count afterwards"""
    sender_id: str
    action: str
    user_count: int
    reason: Optional[str] = None

    kind = "presence"

    def to_dict(self) -> dict:
        data = {"type": self.kind, "event": self.action, "userCount": self.user_count}
        if self.action == JOINED:
            data["joined"] = True
        else:
            data["status"] = "disconnected"
            data["userLeft"] = True
            data["remainingUsers"] = self.user_count
            if self.reason:
                data["reason"] = self.reason
        return data


RelayEvent = Union[TextUpdate, StatusUpdate, EmojiEvent, PresenceEvent]
