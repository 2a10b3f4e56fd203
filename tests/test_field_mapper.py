"""Tests for local <-> remote record translation."""

import pytest

from lifesync.sync import FieldMapper
from lifesync.sync.field_mapper import (
    COLLECTION_MAPPINGS,
    DATASET_COLLECTIONS,
    CollectionMapping,
    camel_to_snake,
    snake_to_camel,
)
from lifesync.types import Dataset, RemoteDataset

OWNER = "user-1"

# A realistic record per collection, using each collection's own field names
DOMAIN_RECORDS = {
    "areas": {"id": "a1", "name": "Health", "vision": "Fit at 60", "targetLevel": 8},
    "values": {"id": "v1", "name": "Honesty", "importance": 5, "color": "#fff"},
    "roles": {"id": "r1", "name": "Parent", "areaId": "a1", "commitments": ["Bedtime stories"]},
    "goals": {
        "id": "g1",
        "title": "Run a marathon",
        "areaId": "a1",
        "targetDate": "2025-04-01",
        "relatedRoles": ["r1"],
        "milestones": [{"title": "Half marathon", "isCompleted": False}],
    },
    "projects": {"id": "p1", "goalId": "g1", "title": "Training plan", "estimatedHours": 40},
    "tasks": {
        "id": "t1",
        "projectId": "p1",
        "title": "Long run",
        "scheduledDate": "2024-05-04",
        "energyCost": "high",
    },
    "habits": {
        "id": "h1",
        "areaId": "a1",
        "targetDays": [1, 3, 5],
        "bestStreak": 12,
        "entries": [{"date": "2024-05-01", "completed": True}],
    },
    "challenges": {"id": "c1", "durationDays": 30, "targetValue": 30, "currentValue": 4},
    "skills": {
        "id": "s1",
        "name": "Piano",
        "currentLevel": 3,
        "xpNeeded": 250,
        "lastActivityDate": "2024-05-01",
        "activities": [{"xpAmount": 10}],
        "certificates": [],
        "decayLogs": [],
    },
    "journal": {"id": "j1", "timestamp": "2024-05-01T20:00:00Z", "linkedGoalId": "g1"},
    "dailyReviews": {"id": "d1", "date": "2024-05-01", "dayRating": 4, "wins": ["Ran 10k"]},
    "weeklyReviews": {"id": "w1", "weekStart": "2024-04-29", "tasksCompleted": 12},
    "rewards": {"id": "rw1", "title": "Cinema", "cost": 200, "isRedeemed": False},
    "wishes": {"id": "ws1", "title": "New shoes", "targetCoins": 500, "savedCoins": 120},
    "achievements": {"id": "ac1", "title": "First run", "unlockedAt": "2024-05-01"},
    "accounts": {"id": "acc1", "name": "Checking", "balance": 1200.5, "isArchived": False},
    "transactions": {
        "id": "x1",
        "accountId": "acc1",
        "amount": 5,
        "transactionDate": "2024-01-02",
        "relatedGoalId": "fg1",
    },
    "financialGoals": {"id": "fg1", "targetAmount": 1000, "currentAmount": 250},
    "budgets": {"id": "b1", "category": "food", "limit": 400, "period": "monthly"},
    "bodyZones": {"id": "bz1", "displayName": "Left knee", "lastCheckup": "2024-03-01"},
    "medicalDocuments": {"id": "md1", "fileUrl": "https://x/doc.pdf", "doctorName": "Dr. Lee"},
    "healthMetrics": {"id": "hm1", "metricType": "weight", "value": 72.5},
    "healthProfile": {"id": "current", "bloodType": "A+", "chronicConditions": []},
    "stats": {"id": "current", "level": 4, "xpToNext": 150, "totalCoinsEarned": 900},
}


class TestNameConversion:
    @pytest.mark.parametrize(
        "camel,snake",
        [
            ("xpToNext", "xp_to_next"),
            ("id", "id"),
            ("updatedAt", "updated_at"),
            ("_internalFlag", "_internal_flag"),
        ],
    )
    def test_round_trip(self, camel, snake):
        assert camel_to_snake(camel) == snake
        assert snake_to_camel(snake) == camel


class TestRecordMapping:
    def test_to_remote_injects_owner_and_snake_cases(self, mapper):
        row = mapper.to_remote(
            "goals", {"id": "g1", "targetDate": "2024-06-01", "title": "Run"}, OWNER
        )
        assert row == {"user_id": OWNER, "id": "g1", "target_date": "2024-06-01", "title": "Run"}

    def test_local_owner_field_is_dropped(self, mapper):
        row = mapper.to_remote("tasks", {"id": "t1", "userId": "someone-else"}, OWNER)
        assert row["user_id"] == OWNER
        assert "userId" not in row

    def test_excluded_fields_never_leave_the_device(self, mapper):
        row = mapper.to_remote(
            "skills",
            {"id": "s1", "name": "Piano", "activities": [1], "certificates": [], "decayLogs": []},
            OWNER,
        )
        assert row == {"user_id": OWNER, "id": "s1", "name": "Piano"}

    def test_excluded_fields_are_not_reconstructed(self, mapper):
        record = mapper.to_local("habits", {"id": "h1", "user_id": OWNER, "entries": [1, 2]})
        assert record == {"id": "h1"}

    def test_task_project_override(self, mapper):
        row = mapper.to_remote("tasks", {"id": "t1", "projectId": "p1"}, OWNER)
        assert row["goal_id"] == "p1"
        assert "project_id" not in row
        assert mapper.to_local("tasks", row)["projectId"] == "p1"

    def test_transaction_date_uses_the_default_column(self, mapper):
        record = {"id": "x1", "transactionDate": "2024-01-02", "amount": 5}
        row = mapper.to_remote("transactions", record, OWNER)

        assert row["transaction_date"] == "2024-01-02"
        assert mapper.to_local("transactions", row) == record

    @pytest.mark.parametrize("collection", DATASET_COLLECTIONS)
    def test_round_trip_without_excluded_fields(self, mapper, collection):
        record = {"id": "r1", "title": "Something", "createdAt": "2024-01-01T00:00:00+00:00"}
        assert mapper.to_local(collection, mapper.to_remote(collection, record, OWNER)) == record

    def test_every_collection_has_a_domain_sample(self):
        assert set(DOMAIN_RECORDS) == set(DATASET_COLLECTIONS)

    @pytest.mark.parametrize("collection", sorted(DOMAIN_RECORDS))
    def test_domain_record_round_trip(self, mapper, collection):
        record = DOMAIN_RECORDS[collection]
        excluded = mapper.excluded_fields(collection)

        restored = mapper.to_local(collection, mapper.to_remote(collection, record, OWNER))

        assert restored == {k: v for k, v in record.items() if k not in excluded}


class TestTables:
    @pytest.mark.parametrize(
        "collection,table",
        [
            ("areas", "life_areas"),
            ("values", "core_values"),
            ("dailyReviews", "daily_reviews"),
            ("financialGoals", "financial_goals"),
            ("healthMetrics", "health_metrics"),
            ("tasks", "tasks"),
            ("bodyZones", "body_zones"),
            ("medicalDocuments", "medical_documents"),
            ("healthProfile", "health_profiles"),
            ("stats", "user_stats"),
        ],
    )
    def test_remote_table_names(self, mapper, collection, table):
        assert mapper.remote_table(collection) == table
        assert mapper.collection_for_table(table) == collection

    def test_unknown_collection_raises_key_error(self, mapper):
        with pytest.raises(KeyError):
            mapper.to_remote("notes", {"id": "n1"}, OWNER)
        with pytest.raises(KeyError):
            mapper.collection_for_table("notes")


class TestValidation:
    def test_collection_without_mapping_fails_fast(self):
        with pytest.raises(ValueError, match="notes"):
            FieldMapper(collections=[*DATASET_COLLECTIONS, "notes"])

    def test_two_fields_to_one_column_rejected(self):
        mappings = {"tasks": CollectionMapping(overrides={"a": "x", "b": "x"})}
        with pytest.raises(ValueError):
            FieldMapper(collections=["tasks"], mappings=mappings)

    def test_duplicate_remote_table_rejected(self):
        mappings = {
            "areas": COLLECTION_MAPPINGS["areas"],
            "lifeAreas": CollectionMapping(),
        }
        with pytest.raises(ValueError, match="life_areas"):
            FieldMapper(collections=["areas", "lifeAreas"], mappings=mappings)


class TestDatasets:
    def test_dataset_to_remote_keys_by_table(self, mapper):
        dataset = Dataset(
            collections={"areas": [{"id": "a1", "name": "Health"}]},
            version="2.0.0",
            updated_at="2024-01-01T00:00:00+00:00",
        )
        remote = mapper.dataset_to_remote(dataset, OWNER, revision=4)

        assert remote.data == {"life_areas": [{"user_id": OWNER, "id": "a1", "name": "Health"}]}
        assert remote.version == "2.0.0"
        assert remote.revision == 4

    def test_dataset_from_remote_skips_unknown_tables(self, mapper, caplog):
        remote = RemoteDataset(
            data={"life_areas": [{"id": "a1", "user_id": OWNER}], "legacy_notes": [{"id": "n"}]},
            version="2.0.0",
        )
        dataset = mapper.dataset_from_remote(remote)

        assert dataset.collections == {"areas": [{"id": "a1"}]}
        assert "legacy_notes" in caplog.text
