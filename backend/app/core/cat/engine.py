"""
CATSessionManager: state machine for NCLEX adaptive test sessions.

Manages item selection, ability estimation (MLE/EAP), the passing probability
and the confidence-interval stopping rule during a Computerized Adaptive
Testing (CAT) session. The engine is stateless between requests; all state is
stored in the CATSession object, and the only shared state it touches is the
item bank's exposure counter.

Session lifecycle:
    initializing -> active -> completed

``active -> completed`` happens exactly once, either when the stopping rule
fires, when the bank runs out of eligible items, when estimation fails, or
when the candidate ends the test early.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from app.core.cat.ability_estimation import (
    THETA_BOUND,
    estimate_ability,
    responses_to_tuples,
)
from app.core.cat.content_balancing import (
    DEFAULT_CATEGORY_SLACK,
    NCLEX_CATEGORY_NAMES,
    NCLEX_CATEGORY_WEIGHTS,
    track_category_coverage,
    validate_category_weights,
)
from app.core.cat.errors import (
    EstimationError,
    ExhaustedBankError,
    InvalidAnswerError,
    SessionAlreadyCompletedError,
    SessionNotCompletedError,
)
from app.core.cat.exposure_control import DEFAULT_OVERUSE_FACTOR
from app.core.cat.item_bank import Item, ItemBank
from app.core.cat.item_selection import select_next_item
from app.core.cat.passing_probability import (
    CONFIDENCE_LEVEL,
    PASSING_THETA,
    classify_result,
    to_pass_probability,
)
from app.core.cat.stopping_rules import (
    MAX_ITEMS,
    MIN_ITEMS,
    TIME_LIMIT_SECONDS,
    should_stop,
)
from app.core.datetime_utils import utc_now
from libs.domain_types import (
    AbilityTrend,
    CATOutcome,
    ItemType,
    PerformanceLevel,
    SessionStatus,
    TerminationReason,
)

logger = logging.getLogger(__name__)

# Category accuracy bands for the result report
ABOVE_STANDARD_ACCURACY = 0.6
AT_STANDARD_ACCURACY = 0.4
STRENGTH_ACCURACY = 0.7
WEAKNESS_ACCURACY = 0.5

# Mean theta shift between recent and older sessions that counts as a trend
TREND_THRESHOLD = 0.3
TREND_WINDOW = 3


@dataclass(frozen=True)
class CATConfig:
    """Tunable parameters of the adaptive test."""

    min_items: int = MIN_ITEMS
    max_items: int = MAX_ITEMS
    passing_theta: float = PASSING_THETA
    theta_bound: float = THETA_BOUND
    confidence_level: float = CONFIDENCE_LEVEL
    time_limit_seconds: Optional[float] = TIME_LIMIT_SECONDS
    category_weights: Dict[str, float] = field(
        default_factory=lambda: dict(NCLEX_CATEGORY_WEIGHTS)
    )
    category_slack: float = DEFAULT_CATEGORY_SLACK
    overuse_factor: float = DEFAULT_OVERUSE_FACTOR
    prior_mean: float = 0.0
    prior_sd: float = 1.0

    def __post_init__(self) -> None:
        if self.min_items < 1 or self.max_items < self.min_items:
            raise ValueError(
                f"Need 1 <= min_items <= max_items, got "
                f"min_items={self.min_items}, max_items={self.max_items}"
            )
        if self.prior_sd <= 0:
            raise ValueError(f"prior_sd must be positive, got {self.prior_sd}")
        validate_category_weights(self.category_weights)

    @classmethod
    def from_settings(cls, settings: Any) -> "CATConfig":
        return cls(
            min_items=settings.CAT_MIN_ITEMS,
            max_items=settings.CAT_MAX_ITEMS,
            passing_theta=settings.CAT_PASSING_THETA,
            theta_bound=settings.CAT_THETA_BOUND,
            confidence_level=settings.CAT_CONFIDENCE_LEVEL,
            time_limit_seconds=settings.CAT_TIME_LIMIT_SECONDS,
            category_weights=dict(settings.CAT_CATEGORY_WEIGHTS),
            category_slack=settings.CAT_CATEGORY_SLACK,
            overuse_factor=settings.CAT_EXPOSURE_OVERUSE_FACTOR,
        )


@dataclass(frozen=True)
class ItemResponse:
    """Single scored response during a CAT session."""

    item_id: int
    category: str
    answer: Tuple[str, ...]
    is_correct: bool
    time_spent: float  # seconds
    theta_before: float
    discrimination: float  # a parameter
    difficulty: float  # b parameter
    guessing: float  # c parameter
    answered_at: Optional[datetime] = None


@dataclass
class CategoryTally:
    """Correct/total counts for one category."""

    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


@dataclass
class CATSession:
    """In-memory representation of an adaptive test session."""

    session_id: str
    user_id: str
    status: SessionStatus = SessionStatus.INITIALIZING
    theta: float = 0.0  # Current ability estimate
    se: float = 1.0  # Standard error of theta
    passing_probability: float = 0.5
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    probability_interval: Tuple[float, float] = (0.0, 1.0)
    responses: List[ItemResponse] = field(default_factory=list)
    category_tally: Dict[str, CategoryTally] = field(default_factory=dict)
    current_item_id: Optional[int] = None  # Item presented and awaiting an answer
    theta_history: List[float] = field(default_factory=list)
    time_spent: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    termination_reason: Optional[TerminationReason] = None
    result: Optional[CATOutcome] = None

    @property
    def questions_answered(self) -> int:
        return len(self.responses)

    @property
    def questions_correct(self) -> int:
        return sum(1 for r in self.responses if r.is_correct)

    @property
    def administered_item_ids(self) -> Set[int]:
        ids = {r.item_id for r in self.responses}
        if self.current_item_id is not None:
            ids.add(self.current_item_id)
        return ids

    @property
    def category_coverage(self) -> Dict[str, int]:
        return track_category_coverage(self.responses)

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED


@dataclass
class CATStepResult:
    """Result after processing a single response."""

    is_correct: bool
    theta: float
    se: float
    passing_probability: float
    confidence_interval: Tuple[float, float]
    questions_answered: int
    should_stop: bool
    stop_reason: Optional[TerminationReason]
    explanation: str
    next_item: Optional[Item]


@dataclass
class CategoryPerformance:
    """Per-category breakdown on the result report."""

    category: str
    correct: int
    total: int
    accuracy: float
    performance: PerformanceLevel


@dataclass
class PerformanceReport:
    """Strengths, weaknesses and study recommendations."""

    strengths: List[str]
    weaknesses: List[str]
    recommendations: List[str]


@dataclass
class CATResult:
    """Final test result summary."""

    session_id: str
    questions_answered: int
    questions_correct: int
    time_spent: float
    passing_probability: float
    ability_estimate: float
    standard_error: float
    confidence_interval: Tuple[float, float]
    probability_interval: Tuple[float, float]
    category_performance: List[CategoryPerformance]
    result: CATOutcome
    termination_reason: TerminationReason
    report: PerformanceReport
    completed_at: Optional[datetime] = None


def performance_level(accuracy: float) -> PerformanceLevel:
    """Band a category accuracy against the passing standard."""
    if accuracy >= ABOVE_STANDARD_ACCURACY:
        return PerformanceLevel.ABOVE
    if accuracy >= AT_STANDARD_ACCURACY:
        return PerformanceLevel.AT
    return PerformanceLevel.BELOW


def build_performance_report(
    category_tally: Dict[str, CategoryTally],
    outcome: CATOutcome,
) -> PerformanceReport:
    """
    Derive strengths, weaknesses and recommendations from category accuracy.

    Categories with no administered items are left out. A failed test adds
    general practice recommendations.
    """
    strengths: List[str] = []
    weaknesses: List[str] = []
    recommendations: List[str] = []

    for category, tally in sorted(category_tally.items()):
        if tally.total == 0:
            continue
        name = NCLEX_CATEGORY_NAMES.get(category, category.replace("_", " "))
        if tally.accuracy >= STRENGTH_ACCURACY:
            strengths.append(name)
        elif tally.accuracy < WEAKNESS_ACCURACY:
            weaknesses.append(name)
            recommendations.append(f"Focus more on {name} topics")

    if outcome == CATOutcome.FAIL:
        recommendations.append("Schedule additional CAT practice sessions")
        recommendations.append("Review rationales for missed questions")

    return PerformanceReport(
        strengths=strengths,
        weaknesses=weaknesses,
        recommendations=recommendations,
    )


def compute_ability_trend(
    thetas_newest_first: Sequence[float],
    threshold: float = TREND_THRESHOLD,
    window: int = TREND_WINDOW,
) -> AbilityTrend:
    """
    Compare the mean of the most recent sessions with the oldest ones.

    Args:
        thetas_newest_first: Final theta of completed sessions, newest first.
        threshold: Minimum mean shift that counts as a trend.
        window: Number of sessions averaged at each end.

    Returns:
        STABLE when fewer than ``window`` sessions exist or the shift is
        within the threshold.
    """
    if len(thetas_newest_first) < window:
        return AbilityTrend.STABLE

    recent = list(thetas_newest_first[:window])
    older = list(thetas_newest_first[-window:])
    recent_avg = sum(recent) / len(recent)
    older_avg = sum(older) / len(older)

    if recent_avg > older_avg + threshold:
        return AbilityTrend.IMPROVING
    if recent_avg < older_avg - threshold:
        return AbilityTrend.DECLINING
    return AbilityTrend.STABLE


class CATSessionManager:
    """
    Orchestrator for Computerized Adaptive Testing sessions.

    Manages:
    - Session initialization and first-item selection at the prior
    - Answer validation, scoring and ability re-estimation
    - Passing probability and the confidence-interval stopping rule
    - Category balancing and exposure control via item selection
    - Final result and performance report
    """

    def __init__(self, item_bank: ItemBank, config: Optional[CATConfig] = None):
        """
        Args:
            item_bank: Source of calibrated items and exposure counters.
            config: Test parameters; defaults to the application settings.
        """
        if config is None:
            from app.core.config import settings

            config = CATConfig.from_settings(settings)
        self.item_bank = item_bank
        self.config = config

    def initialize(
        self,
        session_id: str,
        user_id: str,
        started_at: Optional[datetime] = None,
    ) -> CATSession:
        """
        Create a session, present its first item and mark it active.

        Raises:
            ExhaustedBankError: If the bank has no items to present.
        """
        cfg = self.config
        session = CATSession(
            session_id=session_id,
            user_id=user_id,
            theta=cfg.prior_mean,
            se=cfg.prior_sd,
            category_tally={c: CategoryTally() for c in cfg.category_weights},
            started_at=started_at or utc_now(),
        )
        self._update_passing_estimate(session)

        first_item = self._select_item(session)
        self._present(session, first_item)
        session.status = SessionStatus.ACTIVE

        logger.info(
            f"Initialized CAT session {session_id} for user {user_id}, "
            f"first item {first_item.id} ({first_item.category})"
        )
        return session

    def current_item(self, session: CATSession) -> Optional[Item]:
        """The item awaiting an answer, if any."""
        if session.current_item_id is None:
            return None
        return self.item_bank.get_item(session.current_item_id)

    def process_response(
        self,
        session: CATSession,
        item_id: int,
        answer: Sequence[str],
        time_spent: float = 0.0,
    ) -> CATStepResult:
        """
        Score an answer to the presented item and advance the session.

        This method mutates the session in-place:
        - Appends the response and updates the category tally and time
        - Re-estimates theta, SE and the passing probability
        - Evaluates the stopping rule; on stop the session is completed
        - Otherwise selects and presents the next item

        Args:
            session: The current CATSession (mutated in-place)
            item_id: ID of the item being answered
            answer: Selected option ids
            time_spent: Seconds spent on the item

        Returns:
            CATStepResult with updated estimates and stopping decision

        Raises:
            SessionAlreadyCompletedError: If the session is completed.
            InvalidAnswerError: If the answer is malformed or not for the
                presented item. The session is left unchanged.
        """
        if session.is_completed:
            raise SessionAlreadyCompletedError(
                "Session is already completed",
                context={"session_id": session.session_id},
            )

        item = self._validate_answer(session, item_id, answer, time_spent)
        selected = tuple(sorted(set(answer)))
        is_correct = item.is_correct(selected)

        session.responses.append(
            ItemResponse(
                item_id=item.id,
                category=item.category,
                answer=selected,
                is_correct=is_correct,
                time_spent=time_spent,
                theta_before=session.theta,
                discrimination=item.discrimination,
                difficulty=item.difficulty,
                guessing=item.guessing,
                answered_at=utc_now(),
            )
        )
        session.current_item_id = None
        tally = session.category_tally.setdefault(item.category, CategoryTally())
        tally.total += 1
        if is_correct:
            tally.correct += 1
        session.time_spent += time_spent

        try:
            self._reestimate(session)
        except EstimationError as e:
            logger.error(
                f"Session {session.session_id}: estimation failed after "
                f"{session.questions_answered} responses: {e}"
            )
            self._finish(session, TerminationReason.ESTIMATION_ERROR)
            return self._step_result(session, item, is_correct, next_item=None)

        cfg = self.config
        decision = should_stop(
            session,
            min_items=cfg.min_items,
            max_items=cfg.max_items,
            passing_theta=cfg.passing_theta,
            time_limit_seconds=cfg.time_limit_seconds,
        )

        next_item: Optional[Item] = None
        if decision.should_stop:
            if decision.reason is None:
                raise ValueError("Stopping decision without a termination reason")
            self._finish(session, decision.reason)
        else:
            try:
                next_item = self._select_item(session)
            except ExhaustedBankError:
                logger.warning(
                    f"Session {session.session_id}: item bank exhausted after "
                    f"{session.questions_answered} responses"
                )
                self._finish(session, TerminationReason.BANK_EXHAUSTED)
            else:
                self._present(session, next_item)

        logger.debug(
            f"Session {session.session_id}: Response #{session.questions_answered} "
            f"(item {item.id}, correct={is_correct}) -> "
            f"theta={session.theta:.3f}, SE={session.se:.3f}, "
            f"P(pass)={session.passing_probability:.3f}, "
            f"stop={session.is_completed}"
        )

        return self._step_result(session, item, is_correct, next_item)

    def complete(self, session: CATSession) -> CATResult:
        """
        End the session and return its result.

        Idempotent on a completed session. An active session is terminated
        early with reason ``max_items_reached``; the presented item, if any,
        is discarded unanswered.
        """
        if not session.is_completed:
            logger.info(
                f"Session {session.session_id} ended early by the candidate after "
                f"{session.questions_answered} responses"
            )
            session.current_item_id = None
            self._finish(session, TerminationReason.MAX_ITEMS_REACHED)
        return self.build_result(session)

    def build_result(self, session: CATSession) -> CATResult:
        """
        Final result of a completed session.

        Raises:
            SessionNotCompletedError: If the session is still active.
        """
        if not session.is_completed:
            raise SessionNotCompletedError(
                "Session is still in progress",
                context={"session_id": session.session_id},
            )
        if session.result is None or session.termination_reason is None:
            raise ValueError(
                f"Completed session {session.session_id} has no recorded outcome"
            )

        category_performance = [
            CategoryPerformance(
                category=category,
                correct=tally.correct,
                total=tally.total,
                accuracy=round(tally.accuracy, 3),
                performance=performance_level(tally.accuracy),
            )
            for category, tally in sorted(session.category_tally.items())
        ]

        return CATResult(
            session_id=session.session_id,
            questions_answered=session.questions_answered,
            questions_correct=session.questions_correct,
            time_spent=session.time_spent,
            passing_probability=session.passing_probability,
            ability_estimate=session.theta,
            standard_error=session.se,
            confidence_interval=session.confidence_interval,
            probability_interval=session.probability_interval,
            category_performance=category_performance,
            result=session.result,
            termination_reason=session.termination_reason,
            report=build_performance_report(session.category_tally, session.result),
            completed_at=session.completed_at,
        )

    def _validate_answer(
        self,
        session: CATSession,
        item_id: int,
        answer: Sequence[str],
        time_spent: float,
    ) -> Item:
        context: Dict[str, Any] = {
            "session_id": session.session_id,
            "item_id": item_id,
        }
        if session.current_item_id is None:
            raise InvalidAnswerError(
                "No question is awaiting an answer", context=context
            )
        if item_id != session.current_item_id:
            context["presented_item_id"] = session.current_item_id
            raise InvalidAnswerError(
                "Answer is not for the presented question", context=context
            )
        if not math.isfinite(time_spent) or time_spent < 0:
            context["time_spent"] = time_spent
            raise InvalidAnswerError(
                "Time spent must be a non-negative number", context=context
            )
        if isinstance(answer, str) or not answer:
            raise InvalidAnswerError(
                "Answer must select at least one option", context=context
            )

        item = self.item_bank.get_item(item_id)
        selected = set(answer)
        unknown = selected - item.option_ids
        if unknown:
            context["unknown_options"] = sorted(unknown)
            raise InvalidAnswerError(
                "Answer contains options that do not belong to the question",
                context=context,
            )
        if item.item_type == ItemType.SINGLE_SELECT and len(selected) != 1:
            raise InvalidAnswerError(
                "Single-select questions take exactly one option", context=context
            )
        return item

    def _reestimate(self, session: CATSession) -> None:
        """Recompute theta, SE and the passing estimate from all responses."""
        cfg = self.config
        estimate = estimate_ability(
            responses_to_tuples(session.responses),
            prior_mean=cfg.prior_mean,
            prior_sd=cfg.prior_sd,
            theta_bound=cfg.theta_bound,
        )
        passing = to_pass_probability(
            estimate.theta,
            estimate.se,
            passing_theta=cfg.passing_theta,
            confidence_level=cfg.confidence_level,
        )
        session.theta = estimate.theta
        session.se = estimate.se
        session.passing_probability = passing.probability
        session.confidence_interval = passing.theta_interval
        session.probability_interval = passing.probability_interval
        session.theta_history.append(estimate.theta)

    def _update_passing_estimate(self, session: CATSession) -> None:
        passing = to_pass_probability(
            session.theta,
            session.se,
            passing_theta=self.config.passing_theta,
            confidence_level=self.config.confidence_level,
        )
        session.passing_probability = passing.probability
        session.confidence_interval = passing.theta_interval
        session.probability_interval = passing.probability_interval

    def _select_item(self, session: CATSession) -> Item:
        cfg = self.config
        return select_next_item(
            self.item_bank.list_items(),
            theta_estimate=session.theta,
            administered_items=session.administered_item_ids,
            category_coverage=session.category_coverage,
            target_weights=cfg.category_weights,
            category_slack=cfg.category_slack,
            overuse_factor=cfg.overuse_factor,
        )

    def _present(self, session: CATSession, item: Item) -> None:
        if item.id in session.administered_item_ids:
            raise ValueError(
                f"Item {item.id} was already presented in session {session.session_id}"
            )
        self.item_bank.record_exposure(item.id)
        session.current_item_id = item.id

    def _finish(self, session: CATSession, reason: TerminationReason) -> None:
        if reason == TerminationReason.ESTIMATION_ERROR:
            outcome = CATOutcome.UNDETERMINED
        else:
            outcome = classify_result(
                session.confidence_interval, passing_theta=self.config.passing_theta
            )

        session.status = SessionStatus.COMPLETED
        session.termination_reason = reason
        session.result = outcome
        session.completed_at = utc_now()

        logger.info(
            f"Session {session.session_id} completed: result={outcome.value}, "
            f"reason={reason.value}, theta={session.theta:.3f}, "
            f"SE={session.se:.3f}, items={session.questions_answered}, "
            f"correct={session.questions_correct}"
        )

    def _step_result(
        self,
        session: CATSession,
        item: Item,
        is_correct: bool,
        next_item: Optional[Item],
    ) -> CATStepResult:
        return CATStepResult(
            is_correct=is_correct,
            theta=session.theta,
            se=session.se,
            passing_probability=session.passing_probability,
            confidence_interval=session.confidence_interval,
            questions_answered=session.questions_answered,
            should_stop=session.is_completed,
            stop_reason=session.termination_reason,
            explanation=item.explanation,
            next_item=next_item,
        )
