"""
Pydantic schemas for request/response validation.
"""
from .cat_sessions import (
    AbilitySummaryResponse,
    AnswerRequest,
    AnswerResponse,
    CATResultResponse,
    QuestionResponse,
    SessionHistoryResponse,
    SessionStatusResponse,
    StartSessionRequest,
    StartSessionResponse,
)

__all__ = [
    "AbilitySummaryResponse",
    "AnswerRequest",
    "AnswerResponse",
    "CATResultResponse",
    "QuestionResponse",
    "SessionHistoryResponse",
    "SessionStatusResponse",
    "StartSessionRequest",
    "StartSessionResponse",
]
