"""
Relay error taxonomy
Each error knows the HTTP status the transports answer with
"""


class RelayError(Exception):
    """Base class for errors raised by relay operations"""
    status = 500
    message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message}


class InvalidArgument(RelayError):
    """Missing or malformed room/client identifiers or payloads"""
    status = 400
    message = "Room ID and Client ID are required"


class RoomFull(RelayError):
    """The room already holds two other members"""
    status = 429
    message = "Room is full"

    def __init__(self, room_id: str = ""):
        super().__init__()
        self.room_id = room_id

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message, "full": True}


class NotFound(RelayError):
    """Unknown room or member"""
    status = 404
    message = "unknown room"
