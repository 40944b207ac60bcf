"""
Tests for the adaptive test (CAT) session endpoints.
"""

import pytest
from sqlalchemy import update

from app.core.cat.concurrency import session_locks
from app.models.models import Item as ItemRecord

BASE = "/v1/cat"


def _start(client, user_id="user-1"):
    response = client.post(f"{BASE}/start", json={"user_id": user_id})
    assert response.status_code == 200, response.text
    return response.json()


def _answer(client, session_id, question_id, answer=("a",), time_spent=5.0):
    return client.post(
        f"{BASE}/{session_id}/answer",
        json={
            "question_id": question_id,
            "answer": list(answer),
            "time_spent": time_spent,
        },
    )


def _run_to_end(client, session_id, question_id, answer=("a",)):
    """Answer until the test stops; returns the last answer payload."""
    while True:
        response = _answer(client, session_id, question_id, answer)
        assert response.status_code == 200, response.text
        data = response.json()
        if data["should_stop"]:
            return data
        question_id = data["next_question"]["id"]


class TestStartSession:
    """Tests for POST /v1/cat/start."""

    def test_start_returns_first_question(self, client, seeded_items):
        data = _start(client)

        assert data["status"] == "active"
        assert data["resuming"] is False
        assert data["min_items"] == 5
        assert data["max_items"] == 12
        question = data["current_question"]
        assert question["item_type"] == "single_select"
        assert [o["id"] for o in question["options"]] == ["a", "b", "c", "d"]

    def test_question_does_not_leak_answer_key(self, client, seeded_items):
        question = _start(client)["current_question"]
        assert "correct_options" not in question
        assert "explanation" not in question
        assert "difficulty" not in question

    def test_second_start_resumes(self, client, seeded_items):
        first = _start(client)
        second = _start(client)
        assert second["resuming"] is True
        assert second["session_id"] == first["session_id"]
        assert second["current_question"]["id"] == first["current_question"]["id"]

    def test_empty_bank_is_404(self, client):
        response = client.post(f"{BASE}/start", json={"user_id": "user-1"})
        assert response.status_code == 404
        assert response.json()["detail"] == (
            "No questions are available for an adaptive test."
        )

    @pytest.mark.parametrize("payload", [{}, {"user_id": ""}, {"user_id": "   "}])
    def test_invalid_user_is_422(self, client, seeded_items, payload):
        response = client.post(f"{BASE}/start", json=payload)
        assert response.status_code == 422
        assert isinstance(response.json()["detail"], list)


class TestGetSession:
    """Tests for GET /v1/cat/{session_id}."""

    def test_returns_state_and_current_question(self, client, seeded_items):
        started = _start(client)
        response = client.get(f"{BASE}/{started['session_id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["questions_answered"] == 0
        assert data["current_ability"] == pytest.approx(0.0)
        assert data["passing_probability"] == pytest.approx(0.5)
        assert data["current_question"]["id"] == started["current_question"]["id"]

    def test_retired_question_still_served_and_scored(
        self, client, seeded_items, db_session
    ):
        started = _start(client)
        question_id = started["current_question"]["id"]
        db_session.execute(
            update(ItemRecord)
            .where(ItemRecord.id == question_id)
            .values(is_active=False)
        )
        db_session.commit()

        response = client.get(f"{BASE}/{started['session_id']}")
        assert response.status_code == 200
        assert response.json()["current_question"]["id"] == question_id

        answered = _answer(client, started["session_id"], question_id)
        assert answered.status_code == 200
        assert answered.json()["questions_answered"] == 1

    def test_unknown_session_is_404(self, client, seeded_items):
        response = client.get(f"{BASE}/does-not-exist")
        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]


class TestSubmitAnswer:
    """Tests for POST /v1/cat/{session_id}/answer."""

    def test_correct_answer(self, client, seeded_items):
        started = _start(client)
        response = _answer(
            client, started["session_id"], started["current_question"]["id"]
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_correct"] is True
        assert data["should_stop"] is False
        assert data["stop_reason"] is None
        assert data["updated_ability"] > 0.0
        assert data["questions_answered"] == 1
        assert data["questions_remaining"] == {"min": 4, "max": 11}
        assert data["explanation"].startswith("Rationale")
        assert data["next_question"]["id"] != started["current_question"]["id"]

    def test_incorrect_answer(self, client, seeded_items):
        started = _start(client)
        response = _answer(
            client,
            started["session_id"],
            started["current_question"]["id"],
            answer=("c",),
        )
        data = response.json()
        assert data["is_correct"] is False
        assert data["updated_ability"] < 0.0

    def test_wrong_question_is_400(self, client, seeded_items):
        started = _start(client)
        response = _answer(
            client, started["session_id"], started["current_question"]["id"] + 1
        )
        assert response.status_code == 400
        assert response.json()["detail"].startswith(
            "The submitted answer is not valid"
        )

    def test_unknown_option_is_400(self, client, seeded_items):
        started = _start(client)
        response = _answer(
            client,
            started["session_id"],
            started["current_question"]["id"],
            answer=("z",),
        )
        assert response.status_code == 400

    def test_rejected_answer_leaves_session_unchanged(self, client, seeded_items):
        started = _start(client)
        _answer(client, started["session_id"], started["current_question"]["id"], ("a", "b"))

        data = client.get(f"{BASE}/{started['session_id']}").json()
        assert data["questions_answered"] == 0
        assert data["current_question"]["id"] == started["current_question"]["id"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"question_id": 1, "answer": []},
            {"question_id": 0, "answer": ["a"]},
            {"question_id": 1, "answer": ["a"], "time_spent": -1},
            {"answer": ["a"]},
        ],
    )
    def test_malformed_payload_is_422(self, client, seeded_items, payload):
        started = _start(client)
        response = client.post(f"{BASE}/{started['session_id']}/answer", json=payload)
        assert response.status_code == 422

    def test_unknown_session_is_404(self, client, seeded_items):
        response = _answer(client, "does-not-exist", 1)
        assert response.status_code == 404

    def test_concurrent_answer_is_409_with_retry_after(self, client, seeded_items):
        started = _start(client)
        with session_locks.hold(started["session_id"]):
            response = _answer(
                client, started["session_id"], started["current_question"]["id"]
            )
        assert response.status_code == 409
        assert response.headers["Retry-After"] == "1"

    def test_answer_after_completion_is_409(self, client, seeded_items):
        started = _start(client)
        _run_to_end(client, started["session_id"], started["current_question"]["id"])
        response = _answer(client, started["session_id"], 1)
        assert response.status_code == 409
        assert "Retry-After" not in response.headers


class TestFullSession:
    """A candidate answering every question correctly passes."""

    def test_all_correct_passes(self, client, seeded_items):
        started = _start(client)
        final = _run_to_end(
            client, started["session_id"], started["current_question"]["id"]
        )

        assert final["next_question"] is None
        assert final["stop_reason"] in ("confidence_resolved", "max_items_reached")
        assert 5 <= final["questions_answered"] <= 12

        response = client.get(f"{BASE}/{started['session_id']}/result")
        assert response.status_code == 200
        result = response.json()
        assert result["result"] == "pass"
        assert result["questions_correct"] == result["questions_answered"]
        assert result["passing_probability"] > 0.5
        lower, upper = result["confidence_interval"]
        assert 0.0 < lower < upper
        assert sum(c["total"] for c in result["category_performance"]) == (
            result["questions_answered"]
        )
        assert result["report"]["weaknesses"] == []

        status = client.get(f"{BASE}/{started['session_id']}").json()
        assert status["status"] == "completed"
        assert status["current_question"] is None

    def test_all_incorrect_fails(self, client, seeded_items):
        started = _start(client)
        _run_to_end(
            client,
            started["session_id"],
            started["current_question"]["id"],
            answer=("b",),
        )
        result = client.get(f"{BASE}/{started['session_id']}/result").json()
        assert result["result"] == "fail"
        assert result["questions_correct"] == 0
        assert "Schedule additional CAT practice sessions" in (
            result["report"]["recommendations"]
        )


class TestCompleteAndResult:
    """Tests for /complete and /result."""

    def test_result_before_completion_is_409(self, client, seeded_items):
        started = _start(client)
        response = client.get(f"{BASE}/{started['session_id']}/result")
        assert response.status_code == 409

    def test_early_completion(self, client, seeded_items):
        started = _start(client)
        _answer(client, started["session_id"], started["current_question"]["id"])

        response = client.post(f"{BASE}/{started['session_id']}/complete")
        assert response.status_code == 200
        data = response.json()
        assert data["termination_reason"] == "max_items_reached"
        assert data["questions_answered"] == 1
        assert data["result"] == "undetermined"

    def test_complete_is_idempotent(self, client, seeded_items):
        started = _start(client)
        first = client.post(f"{BASE}/{started['session_id']}/complete").json()
        second = client.post(f"{BASE}/{started['session_id']}/complete").json()
        assert first == second

    def test_complete_unknown_session_is_404(self, client, seeded_items):
        response = client.post(f"{BASE}/does-not-exist/complete")
        assert response.status_code == 404


class TestHistoryAndAbility:
    """Tests for /history and /ability."""

    def test_history(self, client, seeded_items):
        ids = []
        for _ in range(2):
            started = _start(client)
            client.post(f"{BASE}/{started['session_id']}/complete")
            ids.append(started["session_id"])

        response = client.get(f"{BASE}/history", params={"user_id": "user-1"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [s["session_id"] for s in data["sessions"]] == list(reversed(ids))

    def test_history_limit_validated(self, client, seeded_items):
        response = client.get(
            f"{BASE}/history", params={"user_id": "user-1", "limit": 0}
        )
        assert response.status_code == 422
        response = client.get(
            f"{BASE}/history", params={"user_id": "user-1", "limit": 51}
        )
        assert response.status_code == 422

    def test_history_requires_user(self, client, seeded_items):
        assert client.get(f"{BASE}/history").status_code == 422

    def test_ability_without_tests(self, client, seeded_items):
        response = client.get(f"{BASE}/ability", params={"user_id": "new-user"})
        assert response.status_code == 200
        assert response.json() == {
            "ability": 0.0,
            "standard_error": None,
            "confidence": 0,
            "trend": "stable",
            "tests_completed": 0,
        }

    def test_ability_after_test(self, client, seeded_items):
        started = _start(client)
        _run_to_end(client, started["session_id"], started["current_question"]["id"])
        data = client.get(f"{BASE}/ability", params={"user_id": "user-1"}).json()
        assert data["tests_completed"] == 1
        assert data["ability"] > 0.0


class TestCATHealth:
    def test_cat_health(self, client):
        response = client.get(f"{BASE}/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "cat"
        assert data["min_items"] <= data["max_items"]
