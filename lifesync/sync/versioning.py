"""Dataset schema versioning: semver comparison, record stamping, migrations.

Migrations are an ordered list of ``(version, step)`` pairs. A step mutates
the collections dict in place and only fills values that are missing, so
applying a step twice leaves the data as after one application.

``upgrade()`` always works on a deep copy. The copy only carries the new
version once every pending step has run; a failing step raises
MigrationFailed and the caller keeps its original dataset.
"""

import copy
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from lifesync.protocols import MigrationFailed
from lifesync.types import Dataset, parse_datetime, utc_now

from .field_mapper import DATASET_COLLECTIONS

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = "2.0.0"

Collections = Dict[str, List[Dict[str, Any]]]
MigrationStep = Callable[[Collections], None]

_LEADING_INT = re.compile(r"\d+")


def _parts(version: str) -> List[int]:
    parts = []
    for piece in str(version or "0").split("."):
        match = _LEADING_INT.match(piece)
        parts.append(int(match.group(0)) if match else 0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """Compare two semver strings. Returns -1, 0 or 1. Missing parts count as 0."""
    pa, pb = _parts(a), _parts(b)
    length = max(len(pa), len(pb))
    pa += [0] * (length - len(pa))
    pb += [0] * (length - len(pb))
    if pa < pb:
        return -1
    if pa > pb:
        return 1
    return 0


def stamp_record(record: Dict[str, Any], now: Optional[str] = None) -> Dict[str, Any]:
    """Return a copy of record with updatedAt advanced and version incremented.

    updatedAt never moves backwards: if the record already carries a later
    timestamp (clock went back), that timestamp is kept.
    """
    now = now or utc_now()
    stamped = dict(record)
    previous = record.get("updatedAt")
    previous_dt = parse_datetime(previous)
    now_dt = parse_datetime(now)
    if previous_dt is not None and (now_dt is None or previous_dt > now_dt):
        stamped["updatedAt"] = previous
    else:
        stamped["updatedAt"] = now
    stamped["version"] = int(record.get("version") or 0) + 1
    return stamped


# === Migration steps ===


def _fill_defaults(collections: Collections, collection: str, defaults: Dict[str, Any]) -> None:
    for record in collections.get(collection, []):
        for key, value in defaults.items():
            if key not in record:
                record[key] = copy.deepcopy(value)


def _ensure_collections(collections: Collections) -> None:
    for name in DATASET_COLLECTIONS:
        collections.setdefault(name, [])


def _value_importance(collections: Collections) -> None:
    _fill_defaults(collections, "values", {"importance": 3})


def _area_vision(collections: Collections) -> None:
    _fill_defaults(collections, "areas", {"vision": "", "targetLevel": 10})


def _habit_tracking(collections: Collections) -> None:
    _fill_defaults(collections, "habits", {"entries": [], "bestStreak": 0, "totalCompletions": 0})


def _goal_milestones(collections: Collections) -> None:
    _fill_defaults(collections, "goals", {"milestones": []})


def _task_energy(collections: Collections) -> None:
    _fill_defaults(collections, "tasks", {"energyCost": "medium", "energyType": "mental"})


def _transaction_category(collections: Collections) -> None:
    for record in collections.get("transactions", []):
        if "category" not in record:
            record["category"] = "other_income" if record.get("type") == "income" else "other_expense"


def _skill_decay(collections: Collections) -> None:
    _fill_defaults(
        collections,
        "skills",
        {"isDecaying": False, "activities": [], "certificates": [], "decayLogs": []},
    )


MIGRATIONS: List[Tuple[str, MigrationStep]] = [
    ("1.0.0", _ensure_collections),
    ("1.1.0", _value_importance),
    ("1.2.0", _area_vision),
    ("1.5.0", _habit_tracking),
    ("1.6.0", _goal_milestones),
    ("1.7.0", _task_energy),
    ("1.8.0", _transaction_category),
    ("2.0.0", _skill_decay),
]


def pending_migrations(version: str, target: str = CURRENT_SCHEMA_VERSION) -> List[str]:
    """Versions of the steps upgrade() would run for a dataset at version."""
    return [
        step_version
        for step_version, _ in MIGRATIONS
        if compare_versions(step_version, version) > 0
        and compare_versions(step_version, target) <= 0
    ]


def upgrade(dataset: Dataset, target: str = CURRENT_SCHEMA_VERSION) -> Dataset:
    """Bring a dataset up to target.

    Returns the dataset itself when it is already at (or past) target,
    otherwise an upgraded deep copy.

    Raises:
        MigrationFailed: if a step raises. The input dataset is untouched.
    """
    if compare_versions(dataset.version, target) >= 0:
        return dataset

    steps = dict(MIGRATIONS)
    collections = copy.deepcopy(dataset.collections)
    for step_version in pending_migrations(dataset.version, target):
        try:
            steps[step_version](collections)
        except Exception as e:
            logger.error(f"Migration {step_version} failed on dataset v{dataset.version}: {e}")
            raise MigrationFailed(step_version, e) from e
        logger.debug(f"Applied migration {step_version}")

    logger.info(f"Upgraded dataset from v{dataset.version} to v{target}")
    return Dataset(collections=collections, version=target, updated_at=dataset.updated_at)
