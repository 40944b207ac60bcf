"""
Passing probability and confidence interval for the CAT pass/fail decision.

The passing standard sits at theta_0 = 0 on the logit scale. The probability
of passing is the logistic CDF of the distance to the standard:

    P(pass) = 1 / (1 + exp(-(theta - theta_0)))

The confidence interval on theta is theta +/- z * SE, with z = 1.96 for the
95% level. Probability bounds apply the same logistic to the interval ends,
so they bracket P(pass) and stay inside [0, 1].
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple

from scipy.stats import norm

from app.core.cat.errors import EstimationError
from libs.domain_types import CATOutcome

logger = logging.getLogger(__name__)

# Passing standard on the theta (logit) scale
PASSING_THETA = 0.0

# Confidence level for the pass/fail interval
CONFIDENCE_LEVEL = 0.95


@dataclass(frozen=True)
class PassingEstimate:
    """P(pass) with its confidence interval on both scales."""

    probability: float
    theta_interval: Tuple[float, float]
    probability_interval: Tuple[float, float]


def _logistic(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    exp_x = math.exp(x)
    return exp_x / (1.0 + exp_x)


def z_for_confidence(confidence_level: float = CONFIDENCE_LEVEL) -> float:
    """
    Two-tailed z-score for a confidence level (1.96 for 95%).

    Raises:
        ValueError: If confidence_level is not strictly between 0 and 1.
    """
    if confidence_level <= 0 or confidence_level >= 1:
        raise ValueError(
            f"confidence_level must be strictly between 0 and 1, got {confidence_level}"
        )
    alpha = 1 - confidence_level
    return float(norm.ppf(1 - alpha / 2))


def to_pass_probability(
    theta: float,
    se: float,
    passing_theta: float = PASSING_THETA,
    confidence_level: float = CONFIDENCE_LEVEL,
) -> PassingEstimate:
    """
    Map an ability estimate and its SE to P(pass) and a confidence interval.

    Args:
        theta: Ability estimate.
        se: Standard error of the estimate.
        passing_theta: Passing standard on the theta scale.
        confidence_level: Confidence level of the interval (default 0.95).

    Returns:
        PassingEstimate with probability in [0, 1], the theta interval and
        the matching probability interval.

    Raises:
        EstimationError: If theta or se is NaN/infinite, or se is negative.
    """
    if not (math.isfinite(theta) and math.isfinite(se)) or se < 0:
        raise EstimationError(
            "Cannot compute passing probability from a non-finite estimate",
            context={"theta": theta, "se": se},
        )

    margin = z_for_confidence(confidence_level) * se
    lower = theta - margin
    upper = theta + margin

    probability = _logistic(theta - passing_theta)
    probability_interval = (
        _logistic(lower - passing_theta),
        _logistic(upper - passing_theta),
    )

    return PassingEstimate(
        probability=probability,
        theta_interval=(lower, upper),
        probability_interval=probability_interval,
    )


def interval_clears_standard(
    theta_interval: Tuple[float, float],
    passing_theta: float = PASSING_THETA,
) -> bool:
    """True when the interval lies entirely above or entirely below the standard."""
    lower, upper = theta_interval
    return lower > passing_theta or upper < passing_theta


def classify_result(
    theta_interval: Tuple[float, float],
    passing_theta: float = PASSING_THETA,
) -> CATOutcome:
    """
    Pass/fail verdict from the confidence interval.

    Returns:
        PASS if the whole interval is above the standard, FAIL if it is
        entirely below, otherwise UNDETERMINED.
    """
    if not interval_clears_standard(theta_interval, passing_theta):
        return CATOutcome.UNDETERMINED
    lower, _ = theta_interval
    return CATOutcome.PASS if lower > passing_theta else CATOutcome.FAIL
