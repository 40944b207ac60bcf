"""
Integration tests for CATService over the SQL item bank and session store.

Tests cover:
- Start / resume, persistence of state across database sessions
- Answer submission, rejection without side effects, completion
- Result, history and ability summary
- Concurrency: per-session lock and optimistic version check
"""

import pytest
from sqlalchemy import func, select, update

from app.core.cat.concurrency import session_locks
from app.core.cat.engine import CATSessionManager
from app.core.cat.errors import (
    ConcurrentModificationError,
    ExhaustedBankError,
    InvalidAnswerError,
    SessionAlreadyCompletedError,
    SessionNotCompletedError,
    SessionNotFoundError,
)
from app.core.cat.repository import CATSessionRepository, SqlItemBank
from app.models.models import CATResponseRecord, CATSessionRecord
from app.models.models import Item as ItemRecord
from libs.domain_types import AbilityTrend, CATOutcome, SessionStatus, TerminationReason


@pytest.fixture
def service(db_session, seeded_items, cat_service_factory):
    return cat_service_factory(db_session)


def _exposure(db, item_id):
    return db.scalar(select(ItemRecord.exposure_count).where(ItemRecord.id == item_id))


def _answer_until_done(service, session_id, correct=True):
    while True:
        snapshot = service.get_session(session_id)
        if snapshot.session.is_completed:
            return snapshot.session
        service.submit_answer(
            session_id,
            snapshot.current_item.id,
            ["a"] if correct else ["b"],
            time_spent=5.0,
        )


class TestStartSession:
    def test_creates_active_session_with_first_item(self, service, db_session):
        started = service.start_session("user-1")

        assert started.resuming is False
        assert started.session.status == SessionStatus.ACTIVE
        assert started.current_item is not None
        record = db_session.get(CATSessionRecord, started.session.session_id)
        assert record is not None
        assert record.current_item_id == started.current_item.id

    def test_first_item_exposure_persisted(self, service, db_session):
        started = service.start_session("user-1")
        assert _exposure(db_session, started.current_item.id) == 1

    def test_resumes_active_session(self, service):
        first = service.start_session("user-1")
        second = service.start_session("user-1")

        assert second.resuming is True
        assert second.session.session_id == first.session.session_id
        assert second.current_item.id == first.current_item.id

    def test_other_user_gets_new_session(self, service):
        first = service.start_session("user-1")
        other = service.start_session("user-2")
        assert other.session.session_id != first.session.session_id

    def test_empty_bank_raises_and_stores_nothing(self, db_session, cat_service_factory):
        service = cat_service_factory(db_session)
        with pytest.raises(ExhaustedBankError):
            service.start_session("user-1")
        count = db_session.scalar(select(func.count()).select_from(CATSessionRecord))
        assert count == 0


class TestSubmitAnswer:
    def test_answer_updates_and_persists(self, service, db_session_factory):
        started = service.start_session("user-1")
        session_id = started.session.session_id

        step = service.submit_answer(session_id, started.current_item.id, ["a"], 12.5)
        assert step.is_correct is True
        assert step.questions_answered == 1
        assert step.next_item is not None

        other_db = db_session_factory()
        try:
            reloaded = CATSessionRepository(
                other_db, service.config.category_weights
            ).get(session_id)
        finally:
            other_db.close()
        assert reloaded.theta == pytest.approx(step.theta)
        assert reloaded.se == pytest.approx(step.se)
        assert reloaded.time_spent == pytest.approx(12.5)
        assert reloaded.current_item_id == step.next_item.id
        assert [r.item_id for r in reloaded.responses] == [started.current_item.id]

    def test_invalid_answer_has_no_side_effects(self, service, db_session):
        started = service.start_session("user-1")
        session_id = started.session.session_id

        with pytest.raises(InvalidAnswerError):
            service.submit_answer(session_id, started.current_item.id + 1, ["a"])

        snapshot = service.get_session(session_id)
        assert snapshot.session.questions_answered == 0
        assert snapshot.current_item.id == started.current_item.id
        responses = db_session.scalar(
            select(func.count()).select_from(CATResponseRecord)
        )
        assert responses == 0

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.submit_answer("missing", 1, ["a"])
        with pytest.raises(SessionNotFoundError):
            service.get_session("missing")
        with pytest.raises(SessionNotFoundError):
            service.complete_session("missing")
        with pytest.raises(SessionNotFoundError):
            service.get_result("missing")

    def test_runs_to_a_pass(self, service):
        started = service.start_session("user-1")
        session = _answer_until_done(service, started.session.session_id)

        assert session.result == CATOutcome.PASS
        assert 5 <= session.questions_answered <= 12
        result = service.get_result(session.session_id)
        assert result.result == CATOutcome.PASS
        assert result.questions_correct == result.questions_answered

    def test_answer_after_completion_rejected(self, service):
        started = service.start_session("user-1")
        session = _answer_until_done(service, started.session.session_id)
        with pytest.raises(SessionAlreadyCompletedError):
            service.submit_answer(session.session_id, started.current_item.id, ["a"])

    def test_exposure_counts_match_presentations(self, service, db_session):
        started = service.start_session("user-1")
        session = _answer_until_done(service, started.session.session_id)
        total = db_session.scalar(select(func.sum(ItemRecord.exposure_count)))
        assert total == session.questions_answered


class TestCompleteSession:
    def test_early_completion(self, service):
        started = service.start_session("user-1")
        session_id = started.session.session_id
        service.submit_answer(session_id, started.current_item.id, ["a"])

        result = service.complete_session(session_id)
        assert result.termination_reason == TerminationReason.MAX_ITEMS_REACHED
        assert result.questions_answered == 1
        snapshot = service.get_session(session_id)
        assert snapshot.session.is_completed
        assert snapshot.current_item is None

    def test_idempotent(self, service):
        started = service.start_session("user-1")
        first = service.complete_session(started.session.session_id)
        second = service.complete_session(started.session.session_id)
        assert first.completed_at == second.completed_at
        assert first.result == second.result

    def test_result_of_active_session_rejected(self, service):
        started = service.start_session("user-1")
        with pytest.raises(SessionNotCompletedError):
            service.get_result(started.session.session_id)

    def test_completed_session_is_not_resumed(self, service):
        first = service.start_session("user-1")
        service.complete_session(first.session.session_id)
        second = service.start_session("user-1")
        assert second.resuming is False
        assert second.session.session_id != first.session.session_id


class TestHistoryAndAbility:
    def test_history_newest_first(self, service):
        ids = []
        for _ in range(3):
            started = service.start_session("user-1")
            service.complete_session(started.session.session_id)
            ids.append(started.session.session_id)
        service.start_session("user-1")  # active sessions are not history

        history = service.get_history("user-1")
        assert [r.session_id for r in history] == list(reversed(ids))
        assert len(service.get_history("user-1", limit=2)) == 2
        assert service.get_history("someone-else") == []

    def test_ability_summary_without_tests(self, service):
        summary = service.get_ability_summary("user-1")
        assert summary.tests_completed == 0
        assert summary.standard_error is None
        assert summary.confidence == 0
        assert summary.trend == AbilityTrend.STABLE

    def test_ability_summary_uses_latest_session(self, service):
        started = service.start_session("user-1")
        session = _answer_until_done(service, started.session.session_id)

        summary = service.get_ability_summary("user-1")
        assert summary.tests_completed == 1
        assert summary.ability == pytest.approx(session.theta)
        assert summary.standard_error == pytest.approx(session.se)
        assert 0 <= summary.confidence <= 100


class TestConcurrency:
    def test_locked_session_rejects_writes(self, service):
        started = service.start_session("user-1")
        session_id = started.session.session_id

        with session_locks.hold(session_id):
            with pytest.raises(ConcurrentModificationError) as exc_info:
                service.submit_answer(session_id, started.current_item.id, ["a"])
        assert exc_info.value.retryable is True

        # Nothing was scored; the answer can be retried
        step = service.submit_answer(session_id, started.current_item.id, ["a"])
        assert step.questions_answered == 1

    def test_stale_write_detected(self, service, db_session_factory, short_config):
        started = service.start_session("user-1")
        session_id = started.session.session_id
        weights = short_config.category_weights

        db_a = db_session_factory()
        db_b = db_session_factory()
        try:
            repo_a = CATSessionRepository(db_a, weights)
            repo_b = CATSessionRepository(db_b, weights)
            session_a = repo_a.get(session_id)
            session_b = repo_b.get(session_id)

            CATSessionManager(SqlItemBank(db_a), short_config).complete(session_a)
            repo_a.save(session_a)
            db_a.commit()

            CATSessionManager(SqlItemBank(db_b), short_config).complete(session_b)
            with pytest.raises(ConcurrentModificationError):
                repo_b.save(session_b)
            db_b.rollback()
        finally:
            db_a.close()
            db_b.close()


class TestRetiredItems:
    def _retire(self, db, item_id):
        db.execute(
            update(ItemRecord).where(ItemRecord.id == item_id).values(is_active=False)
        )
        db.commit()

    def test_presented_item_retired_mid_session(self, service, db_session):
        started = service.start_session("user-1")
        session_id = started.session.session_id
        item_id = started.current_item.id
        self._retire(db_session, item_id)

        snapshot = service.get_session(session_id)
        assert snapshot.current_item.id == item_id

        step = service.submit_answer(session_id, item_id, ["a"])
        assert step.is_correct is True
        assert step.questions_answered == 1
        assert step.next_item is not None

    def test_retired_items_not_selected(self, db_session, seeded_items):
        bank = SqlItemBank(db_session)
        retired = seeded_items[0].id
        self._retire(db_session, retired)

        assert retired not in {item.id for item in bank.list_items()}
        assert bank.get_item(retired).id == retired

    def test_unknown_item_raises_key_error(self, db_session, seeded_items):
        with pytest.raises(KeyError):
            SqlItemBank(db_session).get_item(999_999)
