"""
Pydantic schemas for adaptive test (CAT) session endpoints.
"""
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from app.core.cat.engine import CATResult
from app.core.cat.item_bank import Item
from libs.domain_types import (
    AbilityTrend,
    CATOutcome,
    ItemType,
    PerformanceLevel,
    SessionStatus,
    TerminationReason,
)


class QuestionOption(BaseModel):
    """One answer option of a question."""

    id: str = Field(..., description="Option identifier submitted in answers")
    text: str = Field(..., description="Option text")


class QuestionResponse(BaseModel):
    """A question as presented to the candidate (without the answer key)."""

    id: int = Field(..., description="Question ID")
    category: str = Field(..., description="NCLEX client-need category")
    item_type: ItemType = Field(
        ..., description="single_select (one option) or select_all (one or more)"
    )
    stem: str = Field(..., description="Question text")
    options: List[QuestionOption] = Field(..., description="Answer options")

    @classmethod
    def from_item(cls, item: Item) -> "QuestionResponse":
        return cls(
            id=item.id,
            category=item.category,
            item_type=item.item_type,
            stem=item.stem,
            options=[QuestionOption(id=oid, text=text) for oid, text in item.options],
        )


def question_or_none(item: Optional[Item]) -> Optional[QuestionResponse]:
    return QuestionResponse.from_item(item) if item is not None else None


class StartSessionRequest(BaseModel):
    """Schema for starting an adaptive test."""

    user_id: str = Field(..., min_length=1, max_length=64, description="Candidate ID")

    @field_validator("user_id")
    @classmethod
    def strip_user_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("User ID must not be blank")
        return v


class StartSessionResponse(BaseModel):
    """Schema for a started (or resumed) adaptive test."""

    session_id: str = Field(..., description="Adaptive test session ID")
    status: SessionStatus = Field(..., description="Session status")
    resuming: bool = Field(
        False, description="True when the user's active session was returned"
    )
    current_question: Optional[QuestionResponse] = Field(
        None, description="Question awaiting an answer"
    )
    min_items: int = Field(..., description="Questions before a decision is possible")
    max_items: int = Field(..., description="Maximum test length")


class SessionStatusResponse(BaseModel):
    """Schema for the current state of a session."""

    session_id: str = Field(..., description="Adaptive test session ID")
    status: SessionStatus = Field(..., description="Session status")
    questions_answered: int = Field(..., description="Questions answered so far")
    questions_correct: int = Field(..., description="Correct answers so far")
    current_ability: float = Field(..., description="Current ability estimate (theta)")
    standard_error: float = Field(..., description="Standard error of theta")
    passing_probability: float = Field(
        ..., description="Probability that ability exceeds the passing standard"
    )
    confidence_interval: Tuple[float, float] = Field(
        ..., description="Confidence interval on theta"
    )
    time_spent: float = Field(..., description="Accumulated answer time in seconds")
    current_question: Optional[QuestionResponse] = Field(
        None, description="Question awaiting an answer (null when completed)"
    )


class AnswerRequest(BaseModel):
    """Schema for answering the presented question."""

    question_id: int = Field(..., gt=0, description="ID of the question answered")
    answer: List[str] = Field(
        ...,
        min_length=1,
        description="Selected option IDs (exactly one for single_select)",
    )
    time_spent: float = Field(
        0.0, ge=0.0, description="Seconds spent on this question"
    )


class QuestionsRemaining(BaseModel):
    """Questions left before the minimum and maximum test length."""

    min: int = Field(..., description="Questions left before a decision is possible")
    max: int = Field(..., description="Questions left before the test must end")


class AnswerResponse(BaseModel):
    """Schema for the outcome of an answer."""

    is_correct: bool = Field(..., description="Whether the answer was correct")
    should_stop: bool = Field(..., description="Whether the test has ended")
    stop_reason: Optional[TerminationReason] = Field(
        None, description="Why the test ended (only when should_stop is true)"
    )
    updated_ability: float = Field(..., description="Ability estimate after scoring")
    updated_standard_error: float = Field(..., description="Standard error of theta")
    updated_passing_probability: float = Field(
        ..., description="Probability of passing after scoring"
    )
    explanation: str = Field("", description="Rationale for the answered question")
    questions_answered: int = Field(..., description="Questions answered so far")
    questions_remaining: QuestionsRemaining = Field(
        ..., description="Questions left before the length limits"
    )
    next_question: Optional[QuestionResponse] = Field(
        None, description="Next question (null when the test has ended)"
    )


class CategoryPerformanceResponse(BaseModel):
    """Per-category breakdown of a result."""

    category: str
    correct: int
    total: int
    accuracy: float
    performance: PerformanceLevel


class PerformanceReportResponse(BaseModel):
    """Strengths, weaknesses and recommendations of a result."""

    strengths: List[str]
    weaknesses: List[str]
    recommendations: List[str]


class CATResultResponse(BaseModel):
    """Schema for the final result of an adaptive test."""

    session_id: str = Field(..., description="Adaptive test session ID")
    questions_answered: int = Field(..., description="Questions answered")
    questions_correct: int = Field(..., description="Correct answers")
    time_spent: float = Field(..., description="Accumulated answer time in seconds")
    passing_probability: float = Field(..., description="Final probability of passing")
    ability_estimate: float = Field(..., description="Final ability estimate (theta)")
    standard_error: float = Field(..., description="Standard error of theta")
    confidence_interval: Tuple[float, float] = Field(
        ..., description="Confidence interval on theta"
    )
    category_performance: List[CategoryPerformanceResponse] = Field(
        ..., description="Per-category performance"
    )
    result: CATOutcome = Field(..., description="pass, fail or undetermined")
    termination_reason: TerminationReason = Field(
        ..., description="Why the test ended"
    )
    report: PerformanceReportResponse = Field(
        ..., description="Strengths, weaknesses and recommendations"
    )
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")

    @classmethod
    def from_result(cls, result: CATResult) -> "CATResultResponse":
        return cls(
            session_id=result.session_id,
            questions_answered=result.questions_answered,
            questions_correct=result.questions_correct,
            time_spent=result.time_spent,
            passing_probability=result.passing_probability,
            ability_estimate=result.ability_estimate,
            standard_error=result.standard_error,
            confidence_interval=result.confidence_interval,
            category_performance=[
                CategoryPerformanceResponse(
                    category=cp.category,
                    correct=cp.correct,
                    total=cp.total,
                    accuracy=cp.accuracy,
                    performance=cp.performance,
                )
                for cp in result.category_performance
            ],
            result=result.result,
            termination_reason=result.termination_reason,
            report=PerformanceReportResponse(
                strengths=result.report.strengths,
                weaknesses=result.report.weaknesses,
                recommendations=result.report.recommendations,
            ),
            completed_at=result.completed_at,
        )


class SessionHistoryItem(BaseModel):
    """Summary of one completed session."""

    session_id: str
    completed_at: Optional[datetime]
    questions_answered: int
    questions_correct: int
    ability_estimate: float
    passing_probability: float
    result: CATOutcome
    termination_reason: TerminationReason


class SessionHistoryResponse(BaseModel):
    """Schema for a user's recent completed sessions."""

    sessions: List[SessionHistoryItem] = Field(..., description="Newest first")
    total: int = Field(..., description="Number of sessions returned")


class AbilitySummaryResponse(BaseModel):
    """Schema for a user's latest ability and trend."""

    ability: float = Field(..., description="Latest final ability estimate")
    standard_error: Optional[float] = Field(
        None, description="Standard error of the latest estimate"
    )
    confidence: int = Field(
        ..., ge=0, le=100, description="Precision of the latest estimate (0-100)"
    )
    trend: AbilityTrend = Field(..., description="Direction across recent sessions")
    tests_completed: int = Field(..., description="Completed sessions considered")
