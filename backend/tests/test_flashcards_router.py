"""
HTTP tests for the flashcard router.

Run with:
    pytest backend/tests/test_flashcards_router.py -v
"""

import pytest
from fastapi.testclient import TestClient

from studyspark import create_app
from studyspark.config import settings
from studyspark.errors import ConcurrentModificationError
from studyspark.services import review_session


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "data_dir", tmp_path / "data")
    with TestClient(create_app()) as test_client:
        yield test_client


def _create(client: TestClient, owner_id: str = "student-1", topic: str = "Physics") -> dict:
    res = client.post(
        "/flashcards/",
        json={
            "owner_id": owner_id,
            "topic": topic,
            "question": "What is the unit of force?",
            "answer": "The newton.",
            "difficulty": "hard",
        },
    )
    assert res.status_code == 201
    return res.json()


class TestHealth:
    def test_health(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json() == {"status": "ok"}


class TestCreateAndFetch:
    def test_create_returns_due_card(self, client):
        card = _create(client)

        assert card["difficulty"] == "hard"
        assert card["version"] == 0
        assert card["schedule"]["interval_days"] == 1
        assert card["schedule"]["ease_factor"] == 2.5
        assert card["stats"]["times_studied"] == 0

        res = client.get(f"/flashcards/{card['id']}")
        assert res.status_code == 200
        assert res.json()["id"] == card["id"]

    def test_blank_question_rejected(self, client):
        res = client.post(
            "/flashcards/",
            json={"owner_id": "student-1", "topic": "Physics", "question": "  ", "answer": "x"},
        )
        assert res.status_code == 422

    def test_unknown_difficulty_rejected(self, client):
        res = client.post(
            "/flashcards/",
            json={
                "owner_id": "student-1",
                "topic": "Physics",
                "question": "q",
                "answer": "a",
                "difficulty": "brutal",
            },
        )
        assert res.status_code == 422

    @pytest.mark.parametrize("field,limit", [("question", 1000), ("answer", 2000)])
    def test_overlong_text_rejected(self, client, field, limit):
        body = {"owner_id": "student-1", "topic": "Physics", "question": "q", "answer": "a"}
        body[field] = "x" * (limit + 1)

        res = client.post("/flashcards/", json=body)
        assert res.status_code == 422

    def test_missing_card(self, client):
        assert client.get("/flashcards/nope").status_code == 404

    def test_list_for_owner(self, client):
        _create(client)
        _create(client)
        _create(client, owner_id="student-2")

        res = client.get("/flashcards/", params={"owner_id": "student-1"})
        assert res.status_code == 200
        assert res.json()["total"] == 2

    def test_list_filters(self, client):
        res = client.post(
            "/flashcards/",
            json={
                "owner_id": "student-1",
                "topic": "Physics",
                "question": "What is the unit of charge?",
                "answer": "The coulomb.",
                "category": "Science",
                "tags": ["units", "exam"],
            },
        )
        assert res.status_code == 201
        tagged = res.json()
        assert tagged["tags"] == ["exam", "units"]
        _create(client)

        def ids(**params):
            res = client.get("/flashcards/", params={"owner_id": "student-1", **params})
            assert res.status_code == 200
            return [c["id"] for c in res.json()["items"]]

        assert ids(tag="units") == [tagged["id"]]
        assert ids(category="Science") == [tagged["id"]]
        assert ids(difficulty="medium") == [tagged["id"]]
        assert len(ids(difficulty="hard")) == 1
        assert client.get(
            "/flashcards/", params={"owner_id": "student-1", "difficulty": "brutal"}
        ).status_code == 422


class TestReview:
    def test_correct_review_reschedules(self, client):
        card = _create(client)

        res = client.post(
            f"/flashcards/{card['id']}/review",
            json={"is_correct": True, "study_time_seconds": 8.5},
        )
        assert res.status_code == 200
        body = res.json()
        assert body["schedule"]["interval_days"] == pytest.approx(2.5)
        assert body["schedule"]["ease_factor"] == pytest.approx(2.6)
        assert body["schedule"]["consecutive_correct"] == 1
        assert body["stats"]["mastery_level"] == 100
        assert body["stats"]["average_study_time_seconds"] == pytest.approx(8.5)
        assert body["version"] == 1

        due = client.get("/flashcards/due", params={"owner_id": "student-1"}).json()
        assert due["total"] == 0

    def test_incorrect_review(self, client):
        card = _create(client)
        client.post(f"/flashcards/{card['id']}/review", json={"is_correct": True})

        res = client.post(f"/flashcards/{card['id']}/review", json={"is_correct": False})
        body = res.json()
        assert body["schedule"]["interval_days"] == 1
        assert body["schedule"]["ease_factor"] == pytest.approx(2.4)
        assert body["schedule"]["consecutive_correct"] == 0
        assert body["stats"]["mastery_level"] == 50

    def test_review_missing_card(self, client):
        res = client.post("/flashcards/nope/review", json={"is_correct": True})
        assert res.status_code == 404

    def test_negative_study_time(self, client):
        card = _create(client)
        res = client.post(
            f"/flashcards/{card['id']}/review",
            json={"is_correct": True, "study_time_seconds": -2},
        )
        assert res.status_code == 422
        assert client.get(f"/flashcards/{card['id']}").json()["version"] == 0

    @pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_study_time(self, client, token):
        card = _create(client)
        client.post(
            f"/flashcards/{card['id']}/review",
            json={"is_correct": True, "study_time_seconds": 10.0},
        )

        # httpx refuses to encode non-finite floats, so send the raw body
        res = client.post(
            f"/flashcards/{card['id']}/review",
            content=f'{{"is_correct": true, "study_time_seconds": {token}}}',
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 422

        stored = client.get(f"/flashcards/{card['id']}").json()
        assert stored["version"] == 1
        assert stored["stats"]["average_study_time_seconds"] == pytest.approx(10.0)

        res = client.post(
            f"/flashcards/{card['id']}/review",
            json={"is_correct": True, "study_time_seconds": 20.0},
        )
        assert res.status_code == 200
        assert res.json()["stats"]["average_study_time_seconds"] == pytest.approx(15.0)

    def test_missing_outcome(self, client):
        card = _create(client)
        res = client.post(f"/flashcards/{card['id']}/review", json={})
        assert res.status_code == 422

    def test_concurrent_modification_maps_to_conflict(self, client, monkeypatch):
        card = _create(client)

        async def lose_race(db, card_id, is_correct, study_time_seconds=None, now=None):
            raise ConcurrentModificationError(card_id, 0)

        monkeypatch.setattr(review_session, "record_outcome", lose_race)

        res = client.post(f"/flashcards/{card['id']}/review", json={"is_correct": True})
        assert res.status_code == 409


class TestDue:
    def test_due_lists_new_cards(self, client):
        first = _create(client)
        second = _create(client)
        _create(client, owner_id="student-2")

        res = client.get("/flashcards/due", params={"owner_id": "student-1"})
        assert res.status_code == 200
        ids = [c["id"] for c in res.json()["items"]]
        assert sorted(ids) == sorted([first["id"], second["id"]])

    def test_deactivated_card_not_due(self, client):
        card = _create(client)

        res = client.patch(f"/flashcards/{card['id']}/active", json={"is_active": False})
        assert res.status_code == 200
        assert res.json()["is_active"] is False

        due = client.get("/flashcards/due", params={"owner_id": "student-1"}).json()
        assert due["items"] == []

    def test_deactivate_missing_card(self, client):
        res = client.patch("/flashcards/nope/active", json={"is_active": False})
        assert res.status_code == 404

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds(self, client, limit):
        res = client.get("/flashcards/due", params={"owner_id": "student-1", "limit": limit})
        assert res.status_code == 422

    def test_limit_truncates(self, client):
        for _ in range(3):
            _create(client)
        res = client.get("/flashcards/due", params={"owner_id": "student-1", "limit": 2})
        assert res.json()["total"] == 2


class TestStats:
    def test_stats_summary(self, client):
        card = _create(client, topic="Physics")
        _create(client, topic="Maths")
        client.post(f"/flashcards/{card['id']}/review", json={"is_correct": True})

        res = client.get("/flashcards/stats", params={"owner_id": "student-1"})
        assert res.status_code == 200
        body = res.json()
        assert body["total_cards"] == 2
        assert body["due_now"] == 1
        assert body["total_correct"] == 1
        assert body["mastery"] == {
            "mastered": {"count": 1, "avg_study_time_seconds": 0.0},
            "learning": {"count": 0, "avg_study_time_seconds": 0.0},
            "needs_review": {"count": 1, "avg_study_time_seconds": 0.0},
        }
        assert body["per_topic"][0]["topic"] == "Physics"
