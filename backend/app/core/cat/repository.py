"""
SQLAlchemy persistence for the CAT engine.

``SqlItemBank`` implements the ``ItemBank`` protocol over the ``items`` table;
exposure counts are incremented in SQL so concurrent sessions never lose an
update. ``CATSessionRepository`` maps ``CATSession`` aggregates to the
``cat_sessions`` / ``cat_responses`` tables. Responses are append-only, and
the session row is optimistically versioned: a write based on a stale read
surfaces as ``ConcurrentModificationError``.

Neither class commits; the caller owns the transaction.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.cat.engine import CATSession, CategoryTally, ItemResponse
from app.core.cat.errors import ConcurrentModificationError, SessionNotFoundError
from app.core.cat.item_bank import Item
from app.core.datetime_utils import as_utc, utc_now
from app.models.models import CATResponseRecord, CATSessionRecord
from app.models.models import Item as ItemRecord
from libs.domain_types import NclexCategory, SessionStatus

logger = logging.getLogger(__name__)


def item_from_record(record: ItemRecord) -> Item:
    """Convert an ``items`` row to an immutable engine Item."""
    return Item(
        id=record.id,
        category=NclexCategory(record.category).value,
        difficulty=record.difficulty,
        discrimination=record.discrimination,
        guessing=record.guessing,
        item_type=record.item_type,
        options=tuple((str(o["id"]), o.get("text", "")) for o in record.options),
        correct_options=frozenset(str(o) for o in record.correct_options),
        stem=record.stem or "",
        explanation=record.explanation or "",
        exposure_count=record.exposure_count or 0,
    )


class SqlItemBank:
    """
    Item bank backed by the ``items`` table.

    Only active items are offered for selection. Lookups by id also return
    retired items, since a session may still hold one as its presented
    question and needs its parameters to score the answer.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_item(self, item_id: int) -> Item:
        record = self.db.get(ItemRecord, item_id, populate_existing=True)
        if record is None:
            raise KeyError(item_id)
        return item_from_record(record)

    def list_items(self) -> List[Item]:
        records = self.db.scalars(
            select(ItemRecord)
            .where(ItemRecord.is_active.is_(True))
            .order_by(ItemRecord.id)
            .execution_options(populate_existing=True)
        ).all()
        return [item_from_record(r) for r in records]

    def record_exposure(self, item_id: int) -> int:
        result = self.db.execute(
            update(ItemRecord)
            .where(ItemRecord.id == item_id)
            .values(exposure_count=ItemRecord.exposure_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise KeyError(item_id)
        count = self.db.scalar(
            select(ItemRecord.exposure_count).where(ItemRecord.id == item_id)
        )
        return int(count or 0)


def _response_from_record(record: CATResponseRecord) -> ItemResponse:
    return ItemResponse(
        item_id=record.item_id,
        category=record.category,
        answer=tuple(record.answer),
        is_correct=record.is_correct,
        time_spent=record.time_spent,
        theta_before=record.theta_before,
        discrimination=record.discrimination,
        difficulty=record.difficulty,
        guessing=record.guessing,
        answered_at=as_utc(record.answered_at),
    )


class CATSessionRepository:
    """Load and save CATSession aggregates."""

    def __init__(self, db: Session, categories: Iterable[str]):
        """
        Args:
            db: Database session; the caller commits or rolls back.
            categories: Categories the tally is initialized with.
        """
        self.db = db
        self.categories = list(categories)

    def get(self, session_id: str) -> CATSession:
        """
        Raises:
            SessionNotFoundError: If no session has this id.
        """
        record = self.db.get(CATSessionRecord, session_id)
        if record is None:
            raise SessionNotFoundError(
                "Session not found", context={"session_id": session_id}
            )
        return self._to_domain(record)

    def find_active_for_user(self, user_id: str) -> Optional[CATSession]:
        record = self.db.scalars(
            select(CATSessionRecord)
            .where(
                CATSessionRecord.user_id == user_id,
                CATSessionRecord.status == SessionStatus.ACTIVE,
            )
            .order_by(CATSessionRecord.started_at.desc())
            .limit(1)
        ).first()
        return self._to_domain(record) if record is not None else None

    def list_completed(self, user_id: str, limit: int = 10) -> List[CATSession]:
        """Completed sessions for a user, newest first."""
        records = self.db.scalars(
            select(CATSessionRecord)
            .where(
                CATSessionRecord.user_id == user_id,
                CATSessionRecord.status == SessionStatus.COMPLETED,
            )
            .order_by(CATSessionRecord.completed_at.desc())
            .limit(limit)
        ).all()
        return [self._to_domain(r) for r in records]

    def add(self, session: CATSession) -> None:
        """Insert a new session with its responses."""
        record = CATSessionRecord(id=session.session_id, user_id=session.user_id)
        self._apply(record, session)
        self.db.add(record)
        self._flush(session.session_id)
        logger.debug(f"Persisted new CAT session {session.session_id}")

    def save(self, session: CATSession) -> None:
        """
        Write back a session loaded through this repository.

        Raises:
            SessionNotFoundError: If the row has disappeared.
            ConcurrentModificationError: If the row changed since it was read.
        """
        record = self.db.get(CATSessionRecord, session.session_id)
        if record is None:
            raise SessionNotFoundError(
                "Session not found", context={"session_id": session.session_id}
            )
        self._apply(record, session)
        self._flush(session.session_id)

    def _flush(self, session_id: str) -> None:
        try:
            self.db.flush()
        except (StaleDataError, IntegrityError) as e:
            logger.warning(f"Concurrent write detected for session {session_id}: {e}")
            raise ConcurrentModificationError(
                "Session was modified by another request",
                original_error=e,
                context={"session_id": session_id},
            ) from e

    def _apply(self, record: CATSessionRecord, session: CATSession) -> None:
        record.status = session.status
        record.theta = session.theta
        record.standard_error = session.se
        record.passing_probability = session.passing_probability
        record.ci_lower, record.ci_upper = session.confidence_interval
        record.probability_lower, record.probability_upper = (
            session.probability_interval
        )
        record.theta_history = list(session.theta_history)
        record.current_item_id = session.current_item_id
        record.time_spent = session.time_spent
        record.started_at = session.started_at
        record.completed_at = session.completed_at
        record.termination_reason = session.termination_reason
        record.result = session.result

        # Responses are append-only
        persisted = len(record.responses)
        for sequence, response in enumerate(
            session.responses[persisted:], start=persisted + 1
        ):
            record.responses.append(
                CATResponseRecord(
                    sequence=sequence,
                    item_id=response.item_id,
                    category=response.category,
                    answer=list(response.answer),
                    is_correct=response.is_correct,
                    time_spent=response.time_spent,
                    theta_before=response.theta_before,
                    discrimination=response.discrimination,
                    difficulty=response.difficulty,
                    guessing=response.guessing,
                    answered_at=response.answered_at or utc_now(),
                )
            )

    def _to_domain(self, record: CATSessionRecord) -> CATSession:
        responses = [_response_from_record(r) for r in record.responses]

        tally: Dict[str, CategoryTally] = {c: CategoryTally() for c in self.categories}
        for response in responses:
            entry = tally.setdefault(response.category, CategoryTally())
            entry.total += 1
            if response.is_correct:
                entry.correct += 1

        return CATSession(
            session_id=record.id,
            user_id=record.user_id,
            status=record.status,
            theta=record.theta,
            se=record.standard_error,
            passing_probability=record.passing_probability,
            confidence_interval=(record.ci_lower, record.ci_upper),
            probability_interval=(record.probability_lower, record.probability_upper),
            responses=responses,
            category_tally=tally,
            current_item_id=record.current_item_id,
            theta_history=list(record.theta_history or []),
            time_spent=record.time_spent,
            started_at=as_utc(record.started_at),
            completed_at=as_utc(record.completed_at),
            termination_reason=record.termination_reason,
            result=record.result,
        )
