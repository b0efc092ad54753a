"""Test session, event, performance and category ingestion."""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete, func, select, update
from sqlalchemy.pool import StaticPool

from analytics_server.app.main import app
from analytics_server.app.db import Store, create_store_engine, ensure_schema, get_store
from analytics_server.app.models import CategoryStat, GameEvent, GameSession, PerformanceMetric


@pytest.fixture(scope="function")
def store():
    """Create a fresh in-memory store for each test."""
    engine = create_store_engine("sqlite://", poolclass=StaticPool)
    ensure_schema(engine)
    test_store = Store(engine)

    app.dependency_overrides[get_store] = lambda: test_store
    yield test_store
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def client(store):
    """Test client with test store."""
    return TestClient(app)


def session_payload(session_id: str = "s1", **overrides):
    """Helper to create a session payload."""
    payload = {
        "session_id": session_id,
        "user_id": "u1",
        "platform": "Android",
        "resolution": "1080x1920",
    }
    payload.update(overrides)
    return payload


def count_rows(store: Store, model) -> int:
    return store.query_one(select(func.count().label("n")).select_from(model))["n"]


def get_session(store: Store, session_id: str):
    return store.query_one(select(GameSession).where(GameSession.session_id == session_id))


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TestCreateSession:

    def test_create_session_stores_row(self, client, store):
        response = client.post(
            "/api/analytics/session",
            json=session_payload(device_model="Pixel 7", os_version="Android 14"),
        )
        assert response.status_code == 201
        assert response.json() == {"status": "success"}

        row = get_session(store, "s1")
        assert row["user_id"] == "u1"
        assert row["platform"] == "Android"
        assert row["resolution"] == "1080x1920"
        assert row["device_model"] == "Pixel 7"
        assert row["os_version"] == "Android 14"
        assert row["created_at"] is not None
        assert row["ended_at"] is None

    def test_optional_fields_default_to_null(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        row = get_session(store, "s1")
        assert row["device_model"] is None
        assert row["os_version"] is None

    def test_missing_required_field_returns_400(self, client, store):
        payload = session_payload()
        del payload["resolution"]

        response = client.post("/api/analytics/session", json=payload)
        assert response.status_code == 400
        assert "resolution" in response.json()["error"]
        assert count_rows(store, GameSession) == 0

    def test_empty_session_id_returns_400(self, client, store):
        response = client.post("/api/analytics/session", json=session_payload(session_id=""))
        assert response.status_code == 400
        assert count_rows(store, GameSession) == 0

    def test_malformed_json_returns_400(self, client):
        response = client.post(
            "/api/analytics/session",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert "error" in response.json()

    def test_duplicate_session_id_returns_500_and_keeps_one_row(self, client, store):
        first = client.post("/api/analytics/session", json=session_payload())
        second = client.post(
            "/api/analytics/session",
            json=session_payload(user_id="someone-else"),
        )

        assert first.status_code == 201
        assert second.status_code == 500
        assert second.json() == {"error": "Failed to create session"}
        assert count_rows(store, GameSession) == 1
        assert get_session(store, "s1")["user_id"] == "u1"


class TestEndSession:

    def test_end_session_sets_ended_at_and_summary(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/session/end", json={
            "session_id": "s1",
            "session_duration": 312,
            "total_cards_processed": 20,
            "total_categories_completed": 2,
            "average_decision_time": 3.25,
            "success_rate": 0.85,
        })
        assert response.status_code == 200
        assert response.json() == {"status": "success"}

        row = get_session(store, "s1")
        assert row["ended_at"] is not None
        assert row["session_duration"] == 312
        assert row["total_cards_processed"] == 20
        assert row["total_categories_completed"] == 2
        assert row["average_decision_time"] == 3.25
        assert row["success_rate"] == 0.85

    def test_end_session_without_summary(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/session/end", json={"session_id": "s1"})
        assert response.status_code == 200

        row = get_session(store, "s1")
        assert row["ended_at"] is not None
        assert row["total_cards_processed"] is None

    def test_end_unknown_session_returns_404_without_write(self, client, store):
        response = client.post("/api/analytics/session/end", json={"session_id": "missing"})
        assert response.status_code == 404
        assert response.json() == {"error": "Session not found"}
        assert count_rows(store, GameSession) == 0

    def test_second_end_is_a_no_op(self, client, store):
        client.post("/api/analytics/session", json=session_payload())
        client.post("/api/analytics/session/end", json={
            "session_id": "s1",
            "total_cards_processed": 10,
        })
        first_ended_at = get_session(store, "s1")["ended_at"]

        response = client.post("/api/analytics/session/end", json={
            "session_id": "s1",
            "total_cards_processed": 99,
        })
        assert response.status_code == 200

        row = get_session(store, "s1")
        assert row["ended_at"] == first_ended_at
        assert row["total_cards_processed"] == 10

    def test_guarded_update_affects_zero_rows_once_ended(self, client, store):
        client.post("/api/analytics/session", json=session_payload())
        client.post("/api/analytics/session/end", json={"session_id": "s1"})

        affected = store.execute(
            update(GameSession)
            .where(GameSession.session_id == "s1", GameSession.ended_at.is_(None))
            .values(success_rate=1.0)
        )
        assert affected == 0


class TestRecordEvent:

    def test_record_card_swipe(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/event", json={
            "session_id": "s1",
            "event_type": "card_swipe",
            "card_id": "phish-01",
            "category": "Phishing",
            "direction": "right",
            "success": True,
            "duration": 1.5,
            "start_x": 0,
            "end_x": 300,
            "max_rotation": 12.5,
        })
        assert response.status_code == 201
        assert response.json() == {"status": "success"}

        rows = store.query(select(GameEvent))
        assert len(rows) == 1
        assert rows[0]["event_type"] == "card_swipe"
        assert rows[0]["success"] is True
        assert rows[0]["duration"] == 1.5
        assert rows[0]["start_y"] is None

    def test_event_requires_event_type(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/event", json={"session_id": "s1"})
        assert response.status_code == 400
        assert "event_type" in response.json()["error"]

    def test_direction_longer_than_column_returns_400(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/event", json={
            "session_id": "s1",
            "event_type": "card_swipe",
            "direction": "upper-left-x",
        })
        assert response.status_code == 400
        assert count_rows(store, GameEvent) == 0

    def test_non_swipe_direction_is_accepted(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/event", json={
            "session_id": "s1",
            "event_type": "menu_navigate",
            "direction": "up",
        })
        assert response.status_code == 201
        assert store.query_one(select(GameEvent))["direction"] == "up"

    def test_event_for_unknown_session_is_rejected(self, client, store):
        response = client.post("/api/analytics/event", json={
            "session_id": "ghost",
            "event_type": "card_swipe",
        })
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to record event"}
        assert count_rows(store, GameEvent) == 0


class TestRecordPerformance:

    def test_record_performance_sample(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/performance", json={
            "session_id": "s1",
            "fps": 58.5,
            "memory_usage": 512,
            "cpu_usage": 35.0,
            "gpu_usage": 20.0,
            "network_latency": 80,
        })
        assert response.status_code == 201

        row = store.query_one(select(PerformanceMetric))
        assert row["fps"] == 58.5
        assert row["memory_usage"] == 512
        assert row["timestamp"] is not None

    def test_missing_metrics_default_to_null(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/performance", json={"session_id": "s1"})
        assert response.status_code == 201

        row = store.query_one(select(PerformanceMetric))
        assert row["fps"] is None
        assert row["network_latency"] is None

    def test_offset_timestamp_is_stored_as_utc(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/performance", json={
            "session_id": "s1",
            "fps": 60,
            "timestamp": "2026-01-01T10:00:00+05:00",
        })
        assert response.status_code == 201

        stored = as_utc(store.query_one(select(PerformanceMetric))["timestamp"])
        assert stored == datetime(2026, 1, 1, 5, 0, tzinfo=timezone.utc)

    def test_naive_timestamp_is_taken_as_utc(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/performance", json={
            "session_id": "s1",
            "timestamp": "2026-01-01T10:00:00",
        })
        assert response.status_code == 201

        stored = as_utc(store.query_one(select(PerformanceMetric))["timestamp"])
        assert stored == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_negative_fps_returns_400(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/performance", json={"session_id": "s1", "fps": -1})
        assert response.status_code == 400

    def test_performance_for_unknown_session_is_rejected(self, client, store):
        response = client.post("/api/analytics/performance", json={"session_id": "ghost", "fps": 60})
        assert response.status_code == 500
        assert count_rows(store, PerformanceMetric) == 0


class TestRecordCategoryStats:

    def category_payload(self, **overrides):
        payload = {
            "session_id": "s1",
            "category_name": "Phishing",
            "total_cards": 4,
            "accepted_cards": 3,
            "rejected_cards": 1,
            "average_decision_time": 2.0,
            "completion_time": 10,
        }
        payload.update(overrides)
        return payload

    def test_record_category_stats(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/category", json=self.category_payload())
        assert response.status_code == 201

        row = store.query_one(select(CategoryStat))
        assert row["category_name"] == "Phishing"
        assert row["total_cards"] == 4
        assert row["accepted_cards"] == 3
        assert row["rejected_cards"] == 1

    def test_repeat_category_accumulates(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        client.post("/api/analytics/category", json=self.category_payload())
        response = client.post("/api/analytics/category", json=self.category_payload(
            total_cards=2,
            accepted_cards=1,
            rejected_cards=1,
            average_decision_time=5.0,
            completion_time=6,
        ))
        assert response.status_code == 201

        rows = store.query(select(CategoryStat))
        assert len(rows) == 1
        row = rows[0]
        assert row["total_cards"] == 6
        assert row["accepted_cards"] == 4
        assert row["rejected_cards"] == 2
        # (2.0 * 4 + 5.0 * 2) / 6
        assert row["average_decision_time"] == pytest.approx(3.0)
        assert row["completion_time"] == 16

    def test_same_category_in_other_session_is_separate(self, client, store):
        client.post("/api/analytics/session", json=session_payload("s1"))
        client.post("/api/analytics/session", json=session_payload("s2"))

        client.post("/api/analytics/category", json=self.category_payload(session_id="s1"))
        client.post("/api/analytics/category", json=self.category_payload(session_id="s2"))

        assert count_rows(store, CategoryStat) == 2

    def test_legacy_category_key_is_accepted(self, client, store):
        client.post("/api/analytics/session", json=session_payload())
        payload = self.category_payload()
        payload["category"] = payload.pop("category_name")

        response = client.post("/api/analytics/category", json=payload)
        assert response.status_code == 201
        assert store.query_one(select(CategoryStat))["category_name"] == "Phishing"

    def test_unknown_session_returns_404(self, client, store):
        response = client.post("/api/analytics/category", json=self.category_payload())
        assert response.status_code == 404
        assert response.json() == {"error": "Session not found"}
        assert count_rows(store, CategoryStat) == 0

    def test_counts_exceeding_total_return_400(self, client, store):
        client.post("/api/analytics/session", json=session_payload())

        response = client.post("/api/analytics/category", json=self.category_payload(
            total_cards=2, accepted_cards=2, rejected_cards=1,
        ))
        assert response.status_code == 400
        assert "total_cards" in response.json()["error"]

    def test_missing_category_name_returns_400(self, client, store):
        client.post("/api/analytics/session", json=session_payload())
        payload = self.category_payload()
        del payload["category_name"]

        response = client.post("/api/analytics/category", json=payload)
        assert response.status_code == 400


def test_deleting_session_cascades(client, store):
    """Events, samples and category stats go with their session."""
    client.post("/api/analytics/session", json=session_payload())
    client.post("/api/analytics/event", json={"session_id": "s1", "event_type": "card_swipe"})
    client.post("/api/analytics/performance", json={"session_id": "s1", "fps": 60})
    client.post("/api/analytics/category", json={"session_id": "s1", "category_name": "Phishing"})

    store.execute(delete(GameSession).where(GameSession.session_id == "s1"))

    assert count_rows(store, GameEvent) == 0
    assert count_rows(store, PerformanceMetric) == 0
    assert count_rows(store, CategoryStat) == 0


def test_unknown_route_uses_error_body(client):
    response = client.get("/api/analytics/nope")
    assert response.status_code == 404
    assert "error" in response.json()
