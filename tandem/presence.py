"""
Presence tracking: evicts silent members and reclaims abandoned rooms
"""
import asyncio
import logging
from typing import List, Optional

from .config import PresenceConfig
from .relay import RendezvousRelay

logger = logging.getLogger("tandem")


class PresenceTracker:
    """
    Runs two sweeps over the relay's rooms

    The heartbeat sweep evicts members that stopped beating. The inactivity
    sweep is a coarser safety net for rooms the first one left behind.
    """

    def __init__(self, relay: RendezvousRelay, config: Optional[PresenceConfig] = None):
        self.relay = relay
        self.config = config or PresenceConfig()
        self._tasks: List[asyncio.Task] = []

    async def sweep_heartbeats(self) -> List[str]:
        """Evict every member whose heartbeat expired; returns the evicted client ids"""
        evicted = []
        for room in self.relay.registry.snapshot():
            try:
                evicted += await self.relay.expire_members(room.room_id, self.config.heartbeat_timeout)
            except Exception:
                logger.exception("Heartbeat sweep failed for room %s", room.room_id)
        return evicted

    async def sweep_inactive(self) -> List[str]:
        """Delete rooms with nobody online; returns the deleted room ids"""
        deleted = []
        for room in self.relay.registry.snapshot():
            try:
                if await self.relay.reap_if_inactive(room.room_id, self.config.inactive_threshold):
                    deleted.append(room.room_id)
            except Exception:
                logger.exception("Inactivity sweep failed for room %s", room.room_id)
        return deleted

    async def _run(self, sweep, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                await sweep()
            except Exception as e:
                logger.error(f"Cleanup task error: {e}")

    def start(self):
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run(self.sweep_heartbeats, self.config.sweep_interval)),
            asyncio.create_task(self._run(self.sweep_inactive, self.config.inactive_sweep_interval)),
        ]
        logger.info(
            "💓 Presence tracker started (timeout %ss every %ss, inactive %ss every %ss)",
            self.config.heartbeat_timeout, self.config.sweep_interval,
            self.config.inactive_threshold, self.config.inactive_sweep_interval,
        )

    async def stop(self):
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
