"""Logging helpers for the lifesync backend.

Sync and backup operations log one line each in a fixed, grep-friendly
shape: ``OPERATION | user | detail | ok`` (or ``FAILED: reason``).
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure the root lifesync logger once per process."""
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("lifesync")
    root.addHandler(handler)
    root.setLevel(level.upper())
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the lifesync namespace."""
    if not name.startswith("lifesync"):
        name = f"lifesync.{name}"
    return logging.getLogger(name)


_ops_logger = get_logger("lifesync.ops")


def log_sync_operation(
    user_id: str,
    operation: str,
    detail: str,
    success: bool,
    error: str | None = None,
) -> None:
    """Log a single sync/backup operation outcome."""
    outcome = "ok" if success else f"FAILED: {error or 'unknown error'}"
    message = f"{operation.upper()} | {user_id} | {detail} | {outcome}"
    if success:
        _ops_logger.info(message)
    else:
        _ops_logger.warning(message)
