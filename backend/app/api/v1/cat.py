"""
Adaptive test (CAT) session endpoints.

Routes are sync and run in FastAPI's threadpool; each request works on its
own database session through ``CATService``.
"""
import logging
from contextlib import contextmanager
from typing import Generator

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.cat.errors import CATError
from app.core.cat.service import CATService
from app.core.datetime_utils import utc_now
from app.core.db_error_handling import DatabaseOperationError
from app.core.error_responses import (
    ErrorMessages,
    raise_for_cat_error,
    raise_server_error,
)
from app.core.config import settings
from app.models import get_db
from app.schemas.cat_sessions import (
    AbilitySummaryResponse,
    AnswerRequest,
    AnswerResponse,
    CATResultResponse,
    QuestionsRemaining,
    SessionHistoryItem,
    SessionHistoryResponse,
    SessionStatusResponse,
    StartSessionRequest,
    StartSessionResponse,
    question_or_none,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 50


def get_cat_service(db: Session = Depends(get_db)) -> CATService:
    """Dependency providing a CATService bound to the request's session."""
    return CATService(db)


@contextmanager
def cat_errors(operation: str) -> Generator[None, None, None]:
    """Translate service errors raised inside a route into HTTP responses."""
    try:
        yield
    except CATError as e:
        if e.retryable:
            logger.warning(f"Retryable conflict during {operation}: {e}")
        raise_for_cat_error(e)
    except DatabaseOperationError as e:
        logger.error(f"Database failure during {operation}: {e.original_error}")
        raise_server_error(ErrorMessages.database_operation_failed(operation))


@router.post("/start", response_model=StartSessionResponse)
def start_session(
    request: StartSessionRequest,
    service: CATService = Depends(get_cat_service),
):
    """
    Start an adaptive test for a user.

    If the user already has an active session it is returned with
    ``resuming`` set, together with the question awaiting an answer.

    Raises:
        HTTPException 404: If the item bank has no questions.
    """
    with cat_errors("start session"):
        started = service.start_session(request.user_id)

    return StartSessionResponse(
        session_id=started.session.session_id,
        status=started.session.status,
        resuming=started.resuming,
        current_question=question_or_none(started.current_item),
        min_items=service.config.min_items,
        max_items=service.config.max_items,
    )


@router.get("/history", response_model=SessionHistoryResponse)
def get_history(
    user_id: str = Query(..., min_length=1, description="Candidate ID"),
    limit: int = Query(
        DEFAULT_HISTORY_LIMIT,
        ge=1,
        le=MAX_HISTORY_LIMIT,
        description="Maximum number of sessions to return",
    ),
    service: CATService = Depends(get_cat_service),
):
    """Recent completed sessions of a user, newest first."""
    with cat_errors("get history"):
        results = service.get_history(user_id, limit=limit)

    sessions = [
        SessionHistoryItem(
            session_id=r.session_id,
            completed_at=r.completed_at,
            questions_answered=r.questions_answered,
            questions_correct=r.questions_correct,
            ability_estimate=r.ability_estimate,
            passing_probability=r.passing_probability,
            result=r.result,
            termination_reason=r.termination_reason,
        )
        for r in results
    ]
    return SessionHistoryResponse(sessions=sessions, total=len(sessions))


@router.get("/ability", response_model=AbilitySummaryResponse)
def get_ability_summary(
    user_id: str = Query(..., min_length=1, description="Candidate ID"),
    service: CATService = Depends(get_cat_service),
):
    """Latest ability estimate and its trend across recent sessions."""
    with cat_errors("get ability summary"):
        summary = service.get_ability_summary(user_id)

    return AbilitySummaryResponse(
        ability=summary.ability,
        standard_error=summary.standard_error,
        confidence=summary.confidence,
        trend=summary.trend,
        tests_completed=summary.tests_completed,
    )


@router.get("/health")
def cat_health():
    """Status of the adaptive test service and its configured limits."""
    return {
        "status": "healthy",
        "service": "cat",
        "timestamp": utc_now().isoformat(),
        "min_items": settings.CAT_MIN_ITEMS,
        "max_items": settings.CAT_MAX_ITEMS,
    }


@router.get("/{session_id}", response_model=SessionStatusResponse)
def get_session(
    session_id: str,
    service: CATService = Depends(get_cat_service),
):
    """
    Current state of a session and the question awaiting an answer.

    Raises:
        HTTPException 404: If the session does not exist.
    """
    with cat_errors("get session"):
        snapshot = service.get_session(session_id)

    session = snapshot.session
    return SessionStatusResponse(
        session_id=session.session_id,
        status=session.status,
        questions_answered=session.questions_answered,
        questions_correct=session.questions_correct,
        current_ability=session.theta,
        standard_error=session.se,
        passing_probability=session.passing_probability,
        confidence_interval=session.confidence_interval,
        time_spent=session.time_spent,
        current_question=question_or_none(snapshot.current_item),
    )


@router.post("/{session_id}/answer", response_model=AnswerResponse)
def submit_answer(
    session_id: str,
    request: AnswerRequest,
    service: CATService = Depends(get_cat_service),
):
    """
    Answer the presented question.

    Raises:
        HTTPException 400: If the answer is not valid for the question.
        HTTPException 404: If the session does not exist.
        HTTPException 409: If the session is completed, or another answer for
            it is being processed (retry after the Retry-After delay).
    """
    with cat_errors("submit answer"):
        step = service.submit_answer(
            session_id,
            item_id=request.question_id,
            answer=request.answer,
            time_spent=request.time_spent,
        )

    config = service.config
    return AnswerResponse(
        is_correct=step.is_correct,
        should_stop=step.should_stop,
        stop_reason=step.stop_reason,
        updated_ability=step.theta,
        updated_standard_error=step.se,
        updated_passing_probability=step.passing_probability,
        explanation=step.explanation,
        questions_answered=step.questions_answered,
        questions_remaining=QuestionsRemaining(
            min=max(0, config.min_items - step.questions_answered),
            max=max(0, config.max_items - step.questions_answered),
        ),
        next_question=question_or_none(step.next_item),
    )


@router.post("/{session_id}/complete", response_model=CATResultResponse)
def complete_session(
    session_id: str,
    service: CATService = Depends(get_cat_service),
):
    """
    End a session early and return its result.

    Completing an already completed session returns the stored result.
    """
    with cat_errors("complete session"):
        result = service.complete_session(session_id)
    return CATResultResponse.from_result(result)


@router.get("/{session_id}/result", response_model=CATResultResponse)
def get_result(
    session_id: str,
    service: CATService = Depends(get_cat_service),
):
    """
    Final result of a completed session.

    Raises:
        HTTPException 409: If the session is still in progress.
    """
    with cat_errors("get result"):
        result = service.get_result(session_id)
    return CATResultResponse.from_result(result)
