"""Pending-change marker.

A single process-wide marker rather than a per-record journal: the engine
always pushes the full dataset, so it only needs to know *whether* local
data changed since the last confirmed push. The marker lives in the local
store so an interrupted session retries on next load.

The generation counter closes the race with mutations that land while a
sync is in flight: the engine clears the marker only for the generation it
snapshotted, so a newer mutation keeps it set.
"""

import logging
from typing import Any, Dict, Optional

from lifesync.storage import PENDING_CHANGES_KEY, LocalStore
from lifesync.types import utc_now

logger = logging.getLogger(__name__)


class ChangeTracker:
    """Persisted pending-change marker."""

    def __init__(self, store: LocalStore):
        self._store = store

    async def _read(self) -> Dict[str, Any]:
        return await self._store.get(PENDING_CHANGES_KEY) or {"pending": False, "generation": 0}

    async def mark_pending_changes(self) -> int:
        """Set the marker. Returns the new generation."""
        state = await self._read()
        generation = int(state.get("generation", 0)) + 1
        await self._store.put(
            PENDING_CHANGES_KEY,
            {"pending": True, "generation": generation, "marked_at": utc_now()},
        )
        return generation

    async def has_pending_changes(self) -> bool:
        return bool((await self._read()).get("pending"))

    async def generation(self) -> int:
        return int((await self._read()).get("generation", 0))

    async def clear_pending_changes(self, generation: Optional[int] = None) -> bool:
        """Clear the marker.

        Args:
            generation: If given, clear only when the marker is still at this
                generation (no mutation since the caller's snapshot).

        Returns:
            True if the marker is now clear.
        """
        state = await self._read()
        current = int(state.get("generation", 0))
        if generation is not None and generation != current:
            logger.debug(
                f"Pending marker moved during sync (gen {generation} -> {current}), keeping it set"
            )
            return False
        await self._store.put(PENDING_CHANGES_KEY, {"pending": False, "generation": current})
        return True
