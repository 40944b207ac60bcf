"""
Stopping rules for the NCLEX Computerized Adaptive Test.

The test uses a confidence-interval rule against the passing standard
theta_0 (Kingsbury & Weiss, 1983): once enough items have been given, the
test ends as soon as the 95% confidence interval on theta lies entirely
above or entirely below theta_0.

Stopping Rules (evaluated in priority order):
    1. Completed session: the stored decision is final
    2. Maximum items: stop at MAX_ITEMS regardless of the interval
    3. Time limit: stop once accumulated answer time reaches the limit
    4. Minimum items: continue until MIN_ITEMS are administered
    5. Confidence interval: stop when the interval clears theta_0
    6. Otherwise continue

References:
    - Kingsbury, G. G., & Weiss, D. J. (1983). A comparison of IRT-based
      adaptive mastery testing and a sequential mastery testing procedure.
      In D. J. Weiss (Ed.), New horizons in testing.
    - Spray, J. A., & Reckase, M. D. (1996). Comparison of SPRT and sequential
      Bayes procedures for classifying examinees into two categories using a
      computerized test. Journal of Educational and Behavioral Statistics.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from app.core.cat.passing_probability import PASSING_THETA, interval_clears_standard
from libs.domain_types import SessionStatus, TerminationReason

logger = logging.getLogger(__name__)

# Minimum items before a pass/fail decision is allowed
MIN_ITEMS = 75

# Maximum items (hard cap, guarantees termination)
MAX_ITEMS = 150

# Accumulated answer time after which the test ends (5 hours)
TIME_LIMIT_SECONDS = 5 * 60 * 60


@dataclass
class StoppingDecision:
    """
    Result of evaluating stopping criteria for a CAT session.

    Attributes:
        should_stop: Whether the test should terminate.
        reason: Why it stops (if should_stop=True), or None.
        details: Diagnostic information including:
            - num_items: Number of items administered
            - theta_interval: Confidence interval on theta
            - min_items_met: Whether minimum items requirement is satisfied
            - at_max_items: Whether maximum items limit has been reached
            - interval_clears_standard: Whether the interval excludes theta_0
            - time_spent: Accumulated answer time in seconds
    """

    should_stop: bool
    reason: Optional[TerminationReason]
    details: Dict[str, Any]


def check_stopping_criteria(
    num_items: int,
    theta_interval: Tuple[float, float],
    time_spent: float = 0.0,
    min_items: int = MIN_ITEMS,
    max_items: int = MAX_ITEMS,
    passing_theta: float = PASSING_THETA,
    time_limit_seconds: Optional[float] = TIME_LIMIT_SECONDS,
) -> StoppingDecision:
    """
    Evaluate the stopping rule after a scored response.

    Args:
        num_items: Number of items administered so far.
        theta_interval: (lower, upper) confidence interval on theta.
        time_spent: Accumulated answer time in seconds.
        min_items: Minimum items before stopping on the interval.
        max_items: Hard cap on test length.
        passing_theta: The passing standard theta_0.
        time_limit_seconds: Time limit, or None for no limit.

    Returns:
        StoppingDecision with should_stop flag, reason, and diagnostic details.

    Raises:
        ValueError: If num_items or time_spent is negative.
    """
    if num_items < 0:
        raise ValueError(f"Number of items must be non-negative, got {num_items}")
    if time_spent < 0:
        raise ValueError(f"Time spent must be non-negative, got {time_spent}")

    lower, upper = theta_interval
    clears_standard = interval_clears_standard(theta_interval, passing_theta)

    details: Dict[str, Any] = {
        "num_items": num_items,
        "theta_interval": theta_interval,
        "min_items_met": num_items >= min_items,
        "at_max_items": num_items >= max_items,
        "interval_clears_standard": clears_standard,
        "time_spent": time_spent,
    }

    # Rule 2: Maximum items, overrides the interval
    if num_items >= max_items:
        logger.info(f"Stopping: reached maximum items ({num_items}/{max_items})")
        return StoppingDecision(
            should_stop=True,
            reason=TerminationReason.MAX_ITEMS_REACHED,
            details=details,
        )

    # Rule 3: Time limit
    if time_limit_seconds is not None and time_spent >= time_limit_seconds:
        logger.info(
            f"Stopping: time limit reached ({time_spent:.0f}s >= "
            f"{time_limit_seconds:.0f}s) after {num_items} items"
        )
        return StoppingDecision(
            should_stop=True,
            reason=TerminationReason.TIME_LIMIT_REACHED,
            details=details,
        )

    # Rule 4: Minimum items, no decision on too little evidence
    if num_items < min_items:
        logger.debug(
            f"Continuing: {num_items}/{min_items} items administered (below minimum)"
        )
        return StoppingDecision(should_stop=False, reason=None, details=details)

    # Rule 5: Confidence interval clears the passing standard
    if clears_standard:
        logger.info(
            f"Stopping: confidence interval [{lower:.3f}, {upper:.3f}] clears "
            f"theta_0={passing_theta:.2f} after {num_items} items"
        )
        return StoppingDecision(
            should_stop=True,
            reason=TerminationReason.CONFIDENCE_RESOLVED,
            details=details,
        )

    logger.debug(
        f"Continuing: interval [{lower:.3f}, {upper:.3f}] straddles "
        f"theta_0={passing_theta:.2f}, items={num_items}"
    )
    return StoppingDecision(should_stop=False, reason=None, details=details)


def should_stop(
    session: Any,
    min_items: int = MIN_ITEMS,
    max_items: int = MAX_ITEMS,
    passing_theta: float = PASSING_THETA,
    time_limit_seconds: Optional[float] = TIME_LIMIT_SECONDS,
) -> StoppingDecision:
    """
    Stopping decision for a session aggregate.

    A completed session always stops with its stored reason, so once the
    rule fires the decision never flips back to "continue".

    Args:
        session: Object with ``status``, ``termination_reason``,
            ``questions_answered``, ``confidence_interval`` and ``time_spent``.
    """
    if session.status == SessionStatus.COMPLETED:
        return StoppingDecision(
            should_stop=True,
            reason=session.termination_reason,
            details={"num_items": session.questions_answered, "completed": True},
        )

    return check_stopping_criteria(
        num_items=session.questions_answered,
        theta_interval=session.confidence_interval,
        time_spent=session.time_spent,
        min_items=min_items,
        max_items=max_items,
        passing_theta=passing_theta,
        time_limit_seconds=time_limit_seconds,
    )
