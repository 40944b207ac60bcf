"""
Ability estimation for Computerized Adaptive Testing under the 3PL model.

The estimator is a maximum-likelihood / EAP hybrid:

    1. Mixed response patterns are scored by maximum likelihood, using
       Newton-Raphson with expected (Fisher) information on the score function.
    2. All-correct and all-incorrect patterns have no interior likelihood
       maximum (classical MLE diverges to +/- infinity), and neither do some
       mixed patterns once the guessing floor flattens the likelihood. Those
       fall back to the Expected A Posteriori (EAP) estimate under a standard
       normal prior, computed by quadrature over the bounded theta range
       (Bock & Mislevy, 1982).

Model:
    P(theta) = c + (1 - c) / (1 + exp(-a * (theta - b)))

Standard error is taken from the test information at the final estimate:
    SE = 1 / sqrt(sum_i I_i(theta_hat))

Theta is clamped to [-THETA_BOUND, THETA_BOUND] and SE is floored at MIN_SE,
so downstream probability math never divides by zero.
"""

import logging
import math
from typing import List, NamedTuple, Optional, Sequence, Tuple

from app.core.cat.errors import EstimationError

logger = logging.getLogger(__name__)

# (discrimination a, difficulty b, guessing c, is_correct)
ResponseTuple = Tuple[float, float, float, bool]

# Theta is bounded to [-THETA_BOUND, THETA_BOUND]
THETA_BOUND = 4.0

# Quadrature configuration for EAP
QUADRATURE_POINTS = 81

# Newton-Raphson configuration for MLE
MLE_MAX_ITERATIONS = 50
MLE_TOLERANCE = 1e-4

# Smallest SE ever reported
MIN_SE = 0.01

# Estimation method labels
METHOD_PRIOR = "prior"
METHOD_MLE = "mle"
METHOD_EAP = "eap"


class AbilityEstimate(NamedTuple):
    """Point estimate of ability with its standard error."""

    theta: float
    se: float
    method: str


def probability_3pl(
    theta: float,
    discrimination: float,
    difficulty: float,
    guessing: float = 0.0,
) -> float:
    """
    Probability of a correct response under the 3PL model.

    Uses a numerically stable sigmoid so extreme logits neither overflow nor
    underflow.
    """
    logit = discrimination * (theta - difficulty)
    if logit >= 0:
        sigmoid = 1.0 / (1.0 + math.exp(-logit))
    else:
        exp_logit = math.exp(logit)
        sigmoid = exp_logit / (1.0 + exp_logit)
    return guessing + (1.0 - guessing) * sigmoid


def item_information_3pl(
    theta: float,
    discrimination: float,
    difficulty: float,
    guessing: float = 0.0,
) -> float:
    """
    Fisher information of a 3PL item at a given ability level.

    I(theta) = a^2 * (Q / P) * ((P - c) / (1 - c))^2

    Which reduces to a^2 * P * Q when c = 0.

    Args:
        theta: Ability level.
        discrimination: Item discrimination (a). Must be > 0.
        difficulty: Item difficulty (b).
        guessing: Item pseudo-guessing (c), in [0, 1).

    Returns:
        Fisher information (non-negative).

    Raises:
        ValueError: If discrimination is not positive or guessing is outside [0, 1).
    """
    if discrimination <= 0:
        raise ValueError(
            f"Discrimination parameter must be positive, got {discrimination}"
        )
    if not (0.0 <= guessing < 1.0):
        raise ValueError(f"Guessing parameter must be in [0, 1), got {guessing}")

    p = probability_3pl(theta, discrimination, difficulty, guessing)
    q = 1.0 - p
    if p <= 0.0 or q <= 0.0:
        return 0.0

    ratio = (p - guessing) / (1.0 - guessing)
    return (discrimination**2) * (q / p) * ratio**2


def log_likelihood(theta: float, responses: Sequence[ResponseTuple]) -> float:
    """Joint log-likelihood of a response pattern at ``theta``."""
    total = 0.0
    for a, b, c, is_correct in responses:
        p = probability_3pl(theta, a, b, c)
        # Clamp away from 0/1 so log() stays finite for extreme logits
        p = min(max(p, 1e-300), 1.0 - 1e-16)
        total += math.log(p) if is_correct else math.log(1.0 - p)
    return total


def total_information(theta: float, responses: Sequence[ResponseTuple]) -> float:
    """Sum of item information over the administered items."""
    return sum(item_information_3pl(theta, a, b, c) for a, b, c, _ in responses)


def standard_error(
    theta: float,
    responses: Sequence[ResponseTuple],
    prior_sd: float = 1.0,
) -> float:
    """
    SE of the ability estimate from the test information at ``theta``.

    Returns the prior SD when no information has accrued.
    """
    information = total_information(theta, responses)
    if information <= 0.0:
        return prior_sd
    return max(MIN_SE, 1.0 / math.sqrt(information))


def estimate_ability_mle(
    responses: Sequence[ResponseTuple],
    theta_start: float = 0.0,
    theta_bound: float = THETA_BOUND,
    max_iterations: int = MLE_MAX_ITERATIONS,
    tolerance: float = MLE_TOLERANCE,
) -> Optional[float]:
    """
    Maximum-likelihood ability estimate by Newton-Raphson (Fisher scoring).

    Score function and expected information for the 3PL model:
        L'(theta) = sum a * (u - P) * (P - c) / (P * (1 - c))
        I(theta)  = sum a^2 * (Q / P) * ((P - c) / (1 - c))^2

    Returns:
        The estimate, or ``None`` when the likelihood has no interior maximum
        inside the bounds (the iteration stalls on a bound or fails to
        converge).
    """
    if not responses:
        return None

    theta = max(-theta_bound, min(theta_bound, theta_start))
    for iteration in range(max_iterations):
        score = 0.0
        information = 0.0
        for a, b, c, is_correct in responses:
            p = probability_3pl(theta, a, b, c)
            q = 1.0 - p
            if p <= 0.0 or q <= 0.0:
                continue
            u = 1.0 if is_correct else 0.0
            score += a * (u - p) * (p - c) / (p * (1.0 - c))
            information += item_information_3pl(theta, a, b, c)

        if information < 1e-10:
            return None

        delta = score / information
        theta = max(-theta_bound, min(theta_bound, theta + delta))

        if abs(delta) < tolerance:
            if abs(theta) >= theta_bound:
                return None
            logger.debug(f"MLE converged after {iteration + 1} iterations")
            return theta

    logger.debug(f"MLE did not converge in {max_iterations} iterations")
    return None


def estimate_ability_eap(
    responses: Sequence[ResponseTuple],
    prior_mean: float = 0.0,
    prior_sd: float = 1.0,
    theta_bound: float = THETA_BOUND,
    n_points: int = QUADRATURE_POINTS,
) -> Tuple[float, float]:
    """
    Expected A Posteriori ability estimate with numerical quadrature.

    The EAP estimate is the posterior mean over an evenly spaced grid on
    [-theta_bound, theta_bound]:
        theta_hat = sum(theta_k * L(theta_k) * prior(theta_k)) / sum(L * prior)

    Args:
        responses: (a, b, c, is_correct) tuples.
        prior_mean: Mean of the Gaussian prior on theta.
        prior_sd: Standard deviation of the Gaussian prior on theta.
        theta_bound: Half-width of the quadrature range.
        n_points: Number of quadrature points.

    Returns:
        Tuple of (posterior mean, posterior SD).
    """
    if not responses:
        return (prior_mean, prior_sd)

    step = (2.0 * theta_bound) / (n_points - 1)
    theta_points = [-theta_bound + step * k for k in range(n_points)]

    variance = prior_sd**2
    log_posteriors = [
        -((theta - prior_mean) ** 2) / (2.0 * variance)
        + log_likelihood(theta, responses)
        for theta in theta_points
    ]

    # Normalize using log-sum-exp for numerical stability
    max_log_post = max(log_posteriors)
    weights = [math.exp(lp - max_log_post) for lp in log_posteriors]
    total = sum(weights)
    if total == 0.0 or not math.isfinite(total):
        logger.warning("Posterior collapsed at all quadrature points")
        return (prior_mean, prior_sd)

    theta_hat = sum(t * w for t, w in zip(theta_points, weights)) / total
    posterior_variance = (
        sum((t - theta_hat) ** 2 * w for t, w in zip(theta_points, weights)) / total
    )
    return (theta_hat, math.sqrt(posterior_variance))


def estimate_ability(
    responses: Sequence[ResponseTuple],
    prior_mean: float = 0.0,
    prior_sd: float = 1.0,
    theta_bound: float = THETA_BOUND,
) -> AbilityEstimate:
    """
    Estimate ability and its standard error from a response pattern.

    Mixed patterns are scored by MLE; patterns without an interior likelihood
    maximum fall back to EAP. Either way the SE comes from the test
    information at the final estimate.

    Args:
        responses: (a, b, c, is_correct) tuples in administration order.
        prior_mean: Prior mean used by the EAP fallback and for no responses.
        prior_sd: Prior SD used by the EAP fallback and for no responses.
        theta_bound: Theta is clamped to [-theta_bound, theta_bound].

    Returns:
        AbilityEstimate(theta, se, method).

    Raises:
        ValueError: If any item parameter is out of range.
        EstimationError: If the estimate or its SE is not finite.
    """
    if not responses:
        return AbilityEstimate(prior_mean, prior_sd, METHOD_PRIOR)

    for i, (a, b, c, _) in enumerate(responses):
        if not all(math.isfinite(x) for x in (a, b, c)):
            raise EstimationError(
                "Item parameters are not finite",
                context={"response": i, "a": a, "b": b, "c": c},
            )
        if a <= 0:
            raise ValueError(
                f"Discrimination parameter must be positive, got {a} for response {i}"
            )
        if not (0.0 <= c < 1.0):
            raise ValueError(
                f"Guessing parameter must be in [0, 1), got {c} for response {i}"
            )

    eap_theta, _ = estimate_ability_eap(
        responses, prior_mean, prior_sd, theta_bound=theta_bound
    )

    theta: Optional[float] = None
    method = METHOD_EAP
    n_correct = sum(1 for r in responses if r[3])
    if 0 < n_correct < len(responses):
        theta = estimate_ability_mle(
            responses, theta_start=eap_theta, theta_bound=theta_bound
        )
        if theta is not None:
            method = METHOD_MLE
    if theta is None:
        theta = eap_theta

    theta = max(-theta_bound, min(theta_bound, theta))
    se = standard_error(theta, responses, prior_sd=prior_sd)

    if not (math.isfinite(theta) and math.isfinite(se)):
        raise EstimationError(
            "Ability estimate is not finite",
            context={"theta": theta, "se": se, "n_responses": len(responses)},
        )

    return AbilityEstimate(theta, se, method)


def responses_to_tuples(responses: List) -> List[ResponseTuple]:
    """Convert response records with IRT parameters to estimator tuples."""
    return [
        (r.discrimination, r.difficulty, r.guessing, r.is_correct) for r in responses
    ]
