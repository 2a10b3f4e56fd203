"""
lifesync - offline-first data sync for a life-management app.

Local writes land instantly; the sync engine reconciles them with the
remote store whenever a signed-in user is online.
"""

from .core import LifeStore, LifeSync
from .types import SyncResult, SyncState, SyncStatus, User

try:
    from importlib.metadata import version

    __version__ = version("lifesync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["LifeStore", "LifeSync", "SyncResult", "SyncState", "SyncStatus", "User"]
