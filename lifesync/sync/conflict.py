"""Record-level last-writer-wins conflict resolution.

The record with the strictly greater ``updatedAt`` wins in full. Ties go to
the remote copy so that every device converges on the same record. There is
no field-level merging: concurrent edits to different fields of the same
record lose the older writer's changes.

``updatedAt`` is the client's clock. Devices with skewed clocks can win or
lose against each other regardless of real edit order.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from lifesync.types import parse_datetime

POLICY_LAST_WRITER_WINS = "last_writer_wins"

SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one record."""

    winner: Dict[str, Any]
    source: str  # "local" or "remote"
    policy: str = POLICY_LAST_WRITER_WINS

    @property
    def local_won(self) -> bool:
        return self.source == SOURCE_LOCAL


def _timestamp(record: Dict[str, Any]) -> datetime:
    # Records without a parseable updatedAt sort before everything else
    return parse_datetime(record.get("updatedAt")) or _EPOCH


def resolve(local: Optional[Dict[str, Any]], remote: Dict[str, Any]) -> Resolution:
    """Pick the winner between a local record and its remote counterpart."""
    if local is None:
        return Resolution(winner=remote, source=SOURCE_REMOTE)
    if _timestamp(local) > _timestamp(remote):
        return Resolution(winner=local, source=SOURCE_LOCAL)
    return Resolution(winner=remote, source=SOURCE_REMOTE)


def resolve_record(local: Optional[Dict[str, Any]], remote: Dict[str, Any]) -> Dict[str, Any]:
    return resolve(local, remote).winner
