"""
CAT session service: the request/response operations of the adaptive test.

Each operation is one unit of work against the database. Writes to a session
(answers, completion) hold the per-session lock from
``app.core.cat.concurrency`` so at most one scoring pipeline runs per session
id; the session row's version column catches writers in other processes.

Operations:
    start_session       create a session (or resume the user's active one)
    get_session         current state and presented item
    submit_answer       score an answer and advance the session
    complete_session    end the session early, idempotent once completed
    get_result          final result of a completed session
    get_history         recent completed sessions for a user
    get_ability_summary latest ability and trend across sessions
"""
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.cat.concurrency import SessionLockRegistry, session_locks
from app.core.cat.engine import (
    CATConfig,
    CATResult,
    CATSession,
    CATSessionManager,
    CATStepResult,
    compute_ability_trend,
)
from app.core.cat.item_bank import Item
from app.core.cat.repository import CATSessionRepository, SqlItemBank
from app.core.db_error_handling import transaction
from libs.domain_types import AbilityTrend

logger = logging.getLogger(__name__)

# Completed sessions considered for the ability trend
ABILITY_HISTORY_LIMIT = 10


@dataclass
class StartedSession:
    """Outcome of start_session."""

    session: CATSession
    current_item: Optional[Item]
    resuming: bool


@dataclass
class SessionSnapshot:
    """Outcome of get_session."""

    session: CATSession
    current_item: Optional[Item]


@dataclass
class AbilitySummary:
    """Latest ability estimate and its direction across sessions."""

    ability: float
    standard_error: Optional[float]
    confidence: int  # 0-100
    trend: AbilityTrend
    tests_completed: int


class CATService:
    """Adaptive test operations over one database session."""

    def __init__(
        self,
        db: Session,
        config: Optional[CATConfig] = None,
        locks: SessionLockRegistry = session_locks,
    ):
        self.db = db
        self.item_bank = SqlItemBank(db)
        self.manager = CATSessionManager(self.item_bank, config)
        self.config = self.manager.config
        self.repository = CATSessionRepository(db, self.config.category_weights)
        self.locks = locks

    def start_session(self, user_id: str) -> StartedSession:
        """
        Start an adaptive test, or resume the user's active one.

        Raises:
            ExhaustedBankError: If the bank has no items to present.
        """
        with self.locks.hold(f"user:{user_id}"):
            with transaction(self.db, "start session"):
                existing = self.repository.find_active_for_user(user_id)
                if existing is not None:
                    logger.info(
                        f"Resuming CAT session {existing.session_id} for user {user_id}"
                    )
                    return StartedSession(
                        session=existing,
                        current_item=self.manager.current_item(existing),
                        resuming=True,
                    )

                session = self.manager.initialize(
                    session_id=str(uuid.uuid4()), user_id=user_id
                )
                self.repository.add(session)
                return StartedSession(
                    session=session,
                    current_item=self.manager.current_item(session),
                    resuming=False,
                )

    def get_session(self, session_id: str) -> SessionSnapshot:
        """
        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        with transaction(self.db, "get session", commit=False):
            session = self.repository.get(session_id)
            return SessionSnapshot(
                session=session, current_item=self.manager.current_item(session)
            )

    def submit_answer(
        self,
        session_id: str,
        item_id: int,
        answer: Sequence[str],
        time_spent: float = 0.0,
    ) -> CATStepResult:
        """
        Score an answer to the presented item.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionAlreadyCompletedError: If the session has ended.
            InvalidAnswerError: If the answer is rejected; nothing is stored.
            ConcurrentModificationError: If another write to the session is
                in flight.
        """
        with self.locks.hold(session_id):
            with transaction(self.db, "submit answer"):
                session = self.repository.get(session_id)
                step = self.manager.process_response(
                    session, item_id, answer, time_spent
                )
                self.repository.save(session)
                return step

    def complete_session(self, session_id: str) -> CATResult:
        """
        End a session and return its result; a completed session is returned as is.

        Raises:
            SessionNotFoundError: If the session does not exist.
            ConcurrentModificationError: If another write to the session is
                in flight.
        """
        with self.locks.hold(session_id):
            with transaction(self.db, "complete session"):
                session = self.repository.get(session_id)
                if session.is_completed:
                    return self.manager.build_result(session)
                result = self.manager.complete(session)
                self.repository.save(session)
                return result

    def get_result(self, session_id: str) -> CATResult:
        """
        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionNotCompletedError: If the session is still active.
        """
        with transaction(self.db, "get result", commit=False):
            return self.manager.build_result(self.repository.get(session_id))

    def get_history(self, user_id: str, limit: int = 10) -> List[CATResult]:
        """Results of the user's most recent completed sessions, newest first."""
        with transaction(self.db, "get history", commit=False):
            return [
                self.manager.build_result(s)
                for s in self.repository.list_completed(user_id, limit=limit)
            ]

    def get_ability_summary(self, user_id: str) -> AbilitySummary:
        """Latest ability estimate and trend over recent completed sessions."""
        with transaction(self.db, "get ability summary", commit=False):
            sessions = self.repository.list_completed(
                user_id, limit=ABILITY_HISTORY_LIMIT
            )

        if not sessions:
            return AbilitySummary(
                ability=0.0,
                standard_error=None,
                confidence=0,
                trend=AbilityTrend.STABLE,
                tests_completed=0,
            )

        latest = sessions[0]
        return AbilitySummary(
            ability=latest.theta,
            standard_error=latest.se,
            confidence=max(0, min(100, round((1 - latest.se) * 100))),
            trend=compute_ability_trend([s.theta for s in sessions]),
            tests_completed=len(sessions),
        )
