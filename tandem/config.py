"""
Server configuration read from environment variables
"""
import os
from dataclasses import dataclass
from pathlib import Path

# Server
HOST = os.environ.get("SERVER_HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", 3000))
STATIC_DIR = Path(os.environ.get("TANDEM_STATIC_DIR", "./static"))
LOG_LEVEL = os.environ.get("TANDEM_LOG_LEVEL", "INFO")

# Relay
POLL_TIMEOUT = float(os.environ.get("TANDEM_POLL_TIMEOUT", 10))
SINK_QUEUE_SIZE = int(os.environ.get("TANDEM_SINK_QUEUE_SIZE", 64))
WS_HEARTBEAT = float(os.environ.get("TANDEM_WS_HEARTBEAT", 10))

# Presence sweeps (seconds)
SWEEP_INTERVAL = float(os.environ.get("TANDEM_SWEEP_INTERVAL", 5))
HEARTBEAT_TIMEOUT = float(os.environ.get("TANDEM_HEARTBEAT_TIMEOUT", 15))
INACTIVE_SWEEP_INTERVAL = float(os.environ.get("TANDEM_INACTIVE_SWEEP_INTERVAL", 5 * 60))
INACTIVE_THRESHOLD = float(os.environ.get("TANDEM_INACTIVE_THRESHOLD", 60))


@dataclass(frozen=True)
class PresenceConfig:
    sweep_interval: float = SWEEP_INTERVAL
    heartbeat_timeout: float = HEARTBEAT_TIMEOUT
    inactive_sweep_interval: float = INACTIVE_SWEEP_INTERVAL
    inactive_threshold: float = INACTIVE_THRESHOLD
