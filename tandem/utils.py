"""
Identifier and query helpers
"""
import random
import string
from typing import Optional


def generate_client_id(length: int = 9) -> str:
    """Generate a random client ID"""
    alphabet = string.ascii_lowercase + string.digits
    return "client_" + "".join(random.choice(alphabet) for _ in range(length))


def generate_room_id(length: int = 6) -> str:
    """Generate a short room code that is easy to read out to the other person"""
    alphabet = "abcdefghjkmnpqrstuvwxyz23456789"
    return "".join(random.choice(alphabet) for _ in range(length))


def parse_int(value: Optional[str], default: int = 0) -> int:
    """Lenient integer parsing for query strings; bad input falls back to default"""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
