"""
Live roster view for scanner badges and the guest list.

Listeners always receive a full replacement snapshot; counts are derived by
summarize() from the same list they describe, never patched in place.
"""

import asyncio
from typing import Callable, Optional, Protocol

from app.clients.api import ApiError, ConnectionFailure
from app.core.logging import get_logger
from app.schemas.roster import RosterSnapshot
from app.services.roster import summarize

logger = get_logger(__name__)


class RosterSource(Protocol):
    async def fetch_roster(self, event_id: int) -> dict: ...


class RosterSynchronizer:
    def __init__(self, source: RosterSource, event_id: int):
        self.source = source
        self.event_id = event_id
        self.snapshot: Optional[RosterSnapshot] = None
        self._listeners: list[Callable[[RosterSnapshot], None]] = []

    def subscribe(self, listener: Callable[[RosterSnapshot], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        if self.snapshot is not None:
            listener(self.snapshot)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def refresh(self) -> bool:
        """Pull once. True when subscribers got a new snapshot."""
        data = await self.source.fetch_roster(self.event_id)
        version = data.get("rosterVersion")

        if self.snapshot is not None and version is not None:
            # A cached read can land after a newer one; versions only move forward
            if version < self.snapshot.roster_version:
                logger.info(
                    "roster_stale_snapshot_ignored",
                    event_id=self.event_id,
                    version=version,
                    current=self.snapshot.roster_version,
                )
                return False
            if version == self.snapshot.roster_version:
                return False

        snapshot = summarize(data.get("guests") or [], event_id=self.event_id, version=version or 0)
        self.snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
        return True

    async def run(self, interval: float = 10.0, stop: Optional[asyncio.Event] = None) -> None:
        """Poll until `stop` is set. Fetch failures keep the last snapshot."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.refresh()
            except (ApiError, ConnectionFailure) as e:
                logger.warning("roster_refresh_failed", event_id=self.event_id, error=str(e))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
