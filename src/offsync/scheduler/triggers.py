"""
Sync triggers: decide *when* to ask for a pass, never *how*.

Every trigger funnels into RecordService.sync_now(); the coordinator's
single-flight guard turns overlapping triggers into no-ops.
"""
import logging
from typing import Optional

from offsync.service import RecordService
from offsync.sync.coordinator import PassResult

logger = logging.getLogger(__name__)


class SyncTriggers:
    """Host-facing hooks for connectivity, foreground, periodic and manual triggers."""

    def __init__(self, service: RecordService, online: bool = False):
        """
        Args:
            service: RecordService that owns the coordinator.
            online: Connectivity state known at start-up.
        """
        self.service = service
        self.online = online

    async def request_sync(self, trigger: str = "manual") -> PassResult:
        logger.info("Sync requested (%s)", trigger)
        return await self.service.sync_now(trigger=trigger)

    async def on_connectivity_change(self, online: bool) -> Optional[PassResult]:
        """Request a pass on the offline -> online edge only."""
        was_online = self.online
        self.online = online
        if online and not was_online:
            logger.info("Connectivity restored")
            return await self.request_sync("connectivity")
        if was_online and not online:
            logger.info("Connectivity lost")
        return None

    async def on_foreground(self) -> Optional[PassResult]:
        """Request a pass when the app returns with unsynced work."""
        stats = self.service.stats()
        if stats.pending + stats.failed > 0:
            return await self.request_sync("foreground")
        return None

    async def on_periodic(self) -> PassResult:
        return await self.request_sync("periodic")


_triggers: Optional[SyncTriggers] = None


def get_triggers() -> SyncTriggers:
    """Process-wide triggers bound to the process-wide service."""
    global _triggers
    if _triggers is None:
        from offsync.service import get_service
        _triggers = SyncTriggers(get_service())
    return _triggers
