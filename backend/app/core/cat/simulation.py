"""
CAT Simulation Engine for validating the NCLEX adaptive test.

Simulates examinees with known ability levels taking the adaptive test through
the real CATSessionManager, answering each item according to the 3PL model.
Collects metrics to validate pass/fail classification accuracy, test length
and termination behavior.

Key Features:
- Synthetic 3PL item bank across the eight NCLEX client-need categories
- Monte Carlo simulation with configurable N and theta distribution
- Classification accuracy relative to the passing standard
- Quintile-based analysis stratified by ability level

References:
    - Weiss, D. J. (2004). Computerized adaptive testing for effective and
      efficient measurement in counseling and education. Measurement and
      Evaluation in Counseling and Development, 37(2), 70-84.
    - Eggen, T. J. H. M. (1999). Item selection in adaptive testing with the
      sequential probability ratio test. Applied Psychological Measurement,
      23(3), 249-261.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from app.core.cat.ability_estimation import probability_3pl
from app.core.cat.content_balancing import NCLEX_CATEGORY_WEIGHTS, category_deviation
from app.core.cat.engine import CATConfig, CATSession, CATSessionManager
from app.core.cat.exposure_control import (
    DEFAULT_EXPOSURE_ALERT_THRESHOLD,
    ExposureMonitor,
)
from app.core.cat.item_bank import InMemoryItemBank, Item
from libs.domain_types import CATOutcome, ItemType

logger = logging.getLogger(__name__)

# Synthetic item parameter distributions (Lord, 1980)
DISCRIMINATION_LOGNORMAL_MEAN = 0.0
DISCRIMINATION_LOGNORMAL_SD = 0.3
DISCRIMINATION_MIN = 0.5
DISCRIMINATION_MAX = 2.5
DIFFICULTY_NORMAL_MEAN = 0.0
DIFFICULTY_NORMAL_SD = 1.0
DIFFICULTY_MIN = -3.0
DIFFICULTY_MAX = 3.0
GUESSING_MAX = 0.25

# Share of generated items that are select-all-that-apply
SELECT_ALL_SHARE = 0.2

OPTION_IDS = ("a", "b", "c", "d", "e")

# Ability quintiles for stratified analysis
QUINTILE_BOUNDARIES = [
    ("Very Low", -3.0, -1.2),
    ("Low", -1.2, -0.4),
    ("Average", -0.4, 0.4),
    ("High", 0.4, 1.2),
    ("Very High", 1.2, 3.0),
]


@dataclass
class SimulationConfig:
    """Configuration for a CAT simulation run."""

    n_examinees: int = 200  # Number of simulated examinees
    theta_mean: float = 0.0  # Mean of theta distribution
    theta_sd: float = 1.0  # SD of theta distribution
    items_per_category: int = 60  # Synthetic bank size per category
    seed: int = 42  # Random seed for reproducibility
    exposure_alert_threshold: float = DEFAULT_EXPOSURE_ALERT_THRESHOLD
    cat_config: CATConfig = field(default_factory=CATConfig)


@dataclass
class ExamineeResult:
    """Per-examinee simulation results."""

    true_theta: float  # True ability
    estimated_theta: float  # Final theta estimate
    final_se: float  # Final standard error
    bias: float  # estimated_theta - true_theta
    items_administered: int  # Test length
    termination_reason: str  # Why the test stopped
    outcome: CATOutcome  # Pass/fail verdict
    correctly_classified: bool  # Verdict matches the side of theta_0
    category_coverage: Dict[str, int]  # Items per category


@dataclass
class QuintileMetrics:
    """Metrics for an ability quintile."""

    label: str  # e.g., "Very Low"
    theta_range: Tuple[float, float]  # (min, max)
    n: int  # Count of examinees in this quintile
    mean_items: float
    mean_bias: float
    rmse: float
    classification_accuracy: float


@dataclass
class SimulationResult:
    """Aggregate simulation results."""

    config: SimulationConfig
    examinee_results: List[ExamineeResult]
    mean_items: float
    median_items: float
    mean_se: float
    mean_bias: float
    rmse: float
    classification_accuracy: float  # Share of examinees correctly classified
    undetermined_rate: float
    termination_reason_counts: Dict[str, int]
    quintile_metrics: List[QuintileMetrics]
    # Mean actual-minus-target share per category
    mean_category_deviation: Dict[str, float] = field(default_factory=dict)
    # (item_id, exposure share) above the alert threshold, highest first
    overexposed_items: List[Tuple[int, float]] = field(default_factory=list)


def generate_item_bank(
    items_per_category: int = 60,
    categories: Optional[Sequence[str]] = None,
    seed: int = 42,
) -> List[Item]:
    """
    Generate a synthetic item bank with realistic 3PL parameters.

    Item parameters are drawn from distributions that match typical
    operational item banks (Lord, 1980):
        - Discrimination (a) ~ LogNormal(mean=0.0, sd=0.3), clipped to [0.5, 2.5]
        - Difficulty (b) ~ Normal(0.0, 1.0), clipped to [-3.0, 3.0]
        - Guessing (c) ~ Uniform(0.0, 0.25)

    Args:
        items_per_category: Number of items to generate per category.
        categories: Category names. If None, uses the NCLEX categories.
        seed: Random seed for reproducibility.

    Returns:
        List of Items with calibrated IRT parameters.
    """
    if categories is None:
        categories = list(NCLEX_CATEGORY_WEIGHTS.keys())

    rng = np.random.default_rng(seed)
    items = []
    item_id = 1

    for category in categories:
        for _ in range(items_per_category):
            a = rng.lognormal(
                mean=DISCRIMINATION_LOGNORMAL_MEAN, sigma=DISCRIMINATION_LOGNORMAL_SD
            )
            a = float(np.clip(a, DISCRIMINATION_MIN, DISCRIMINATION_MAX))

            b = rng.normal(loc=DIFFICULTY_NORMAL_MEAN, scale=DIFFICULTY_NORMAL_SD)
            b = float(np.clip(b, DIFFICULTY_MIN, DIFFICULTY_MAX))

            c = float(rng.uniform(0.0, GUESSING_MAX))

            select_all = bool(rng.random() < SELECT_ALL_SHARE)
            if select_all:
                n_correct = int(rng.integers(2, 4))
                correct = frozenset(
                    str(o) for o in rng.choice(OPTION_IDS, n_correct, replace=False)
                )
                option_ids = OPTION_IDS
            else:
                correct = frozenset({OPTION_IDS[int(rng.integers(0, 4))]})
                option_ids = OPTION_IDS[:4]

            items.append(
                Item(
                    id=item_id,
                    category=category,
                    difficulty=b,
                    discrimination=a,
                    guessing=c,
                    item_type=(
                        ItemType.SELECT_ALL if select_all else ItemType.SINGLE_SELECT
                    ),
                    options=tuple(
                        (option_id, f"Option {option_id.upper()}")
                        for option_id in option_ids
                    ),
                    correct_options=correct,
                    stem=f"Synthetic {category.replace('_', ' ')} item {item_id}",
                    explanation=f"Rationale for item {item_id}.",
                )
            )
            item_id += 1

    logger.info(
        f"Generated item bank: {len(items)} items across {len(categories)} "
        f"categories ({items_per_category} per category)"
    )

    return items


def answer_for(item: Item, correct: bool) -> List[str]:
    """
    Build an answer that scores as requested.

    A wrong single-select answer picks the first incorrect option; a wrong
    select-all answer adds an incorrect option (or drops a correct one when
    every option is correct).
    """
    if correct:
        return sorted(item.correct_options)
    wrong = sorted(item.option_ids - item.correct_options)
    if item.item_type == ItemType.SINGLE_SELECT:
        return [wrong[0]]
    if wrong:
        return sorted(item.correct_options | {wrong[0]})
    return sorted(item.correct_options)[:-1]


def simulate_response(true_theta: float, item: Item, rng: random.Random) -> bool:
    """
    Generate a simulated response using the 3PL IRT model.

    Returns:
        True if the simulated response is correct, False otherwise.
    """
    prob = probability_3pl(true_theta, item.discrimination, item.difficulty, item.guessing)
    return rng.random() < prob


def simulate_examinee(
    manager: CATSessionManager,
    true_theta: float,
    rng: random.Random,
    session_id: str = "sim-1",
) -> CATSession:
    """
    Run one adaptive test to completion for an examinee of known ability.

    Returns:
        The completed CATSession.
    """
    session = manager.initialize(session_id=session_id, user_id=session_id)
    while not session.is_completed:
        item = manager.current_item(session)
        if item is None:
            raise ValueError(f"Active session {session_id} has no presented item")
        is_correct = simulate_response(true_theta, item, rng)
        manager.process_response(session, item.id, answer_for(item, is_correct))
    return session


def run_simulation(
    config: SimulationConfig,
    item_bank: Optional[List[Item]] = None,
) -> SimulationResult:
    """
    Run a Monte Carlo simulation through the internal CATSessionManager.

    For each simulated examinee:
    1. Draw true_theta from N(config.theta_mean, config.theta_sd)
    2. Run an adaptive test with model-generated answers
    3. Record ExamineeResult with metrics

    Exposure counts accumulate across examinees on one shared bank, as they
    would in production.

    Args:
        config: Simulation configuration.
        item_bank: Items to use; generated from the config when omitted.

    Returns:
        SimulationResult with per-examinee and aggregate metrics.
    """
    if config.n_examinees < 1:
        raise ValueError(f"n_examinees must be >= 1, got {config.n_examinees}")

    if item_bank is None:
        item_bank = generate_item_bank(
            items_per_category=config.items_per_category,
            categories=list(config.cat_config.category_weights.keys()),
            seed=config.seed,
        )

    logger.info(
        f"Starting CAT simulation: N={config.n_examinees}, "
        f"theta ~ N({config.theta_mean}, {config.theta_sd}²), "
        f"bank={len(item_bank)} items"
    )

    rng = random.Random(config.seed)
    np_rng = np.random.default_rng(config.seed)
    monitor = ExposureMonitor(alert_threshold=config.exposure_alert_threshold)
    manager = CATSessionManager(
        InMemoryItemBank(item_bank, monitor=monitor), config.cat_config
    )
    passing_theta = config.cat_config.passing_theta

    examinee_results = []
    for examinee_id in range(1, config.n_examinees + 1):
        true_theta = float(np_rng.normal(loc=config.theta_mean, scale=config.theta_sd))
        session = simulate_examinee(
            manager, true_theta, rng, session_id=f"sim-{examinee_id}"
        )

        if session.result is None or session.termination_reason is None:
            raise ValueError(
                f"Simulated session {session.session_id} did not complete"
            )
        expected = CATOutcome.PASS if true_theta > passing_theta else CATOutcome.FAIL
        examinee_results.append(
            ExamineeResult(
                true_theta=true_theta,
                estimated_theta=session.theta,
                final_se=session.se,
                bias=session.theta - true_theta,
                items_administered=session.questions_answered,
                termination_reason=session.termination_reason.value,
                outcome=session.result,
                correctly_classified=session.result == expected,
                category_coverage=session.category_coverage,
            )
        )

        if examinee_id % 100 == 0:
            logger.info(f"Completed {examinee_id}/{config.n_examinees} examinees")

    return _aggregate_results(
        config, examinee_results, overexposed_items=monitor.check_and_alert()
    )


def _aggregate_results(
    config: SimulationConfig,
    examinee_results: List[ExamineeResult],
    overexposed_items: Optional[List[Tuple[int, float]]] = None,
) -> SimulationResult:
    """Compute overall, content-balance and quintile-stratified metrics."""
    if not examinee_results:
        raise ValueError("Cannot aggregate results from empty examinee list")

    items_administered = [r.items_administered for r in examinee_results]
    biases = [r.bias for r in examinee_results]

    termination_reason_counts: Dict[str, int] = {}
    for result in examinee_results:
        reason = result.termination_reason
        termination_reason_counts[reason] = termination_reason_counts.get(reason, 0) + 1

    target_weights = config.cat_config.category_weights
    deviations = [
        category_deviation(r.category_coverage, target_weights)
        for r in examinee_results
    ]

    n = len(examinee_results)
    simulation = SimulationResult(
        config=config,
        examinee_results=examinee_results,
        mean_items=float(np.mean(items_administered)),
        median_items=float(np.median(items_administered)),
        mean_se=float(np.mean([r.final_se for r in examinee_results])),
        mean_bias=float(np.mean(biases)),
        rmse=float(np.sqrt(np.mean(np.square(biases)))),
        classification_accuracy=sum(r.correctly_classified for r in examinee_results)
        / n,
        undetermined_rate=sum(
            1 for r in examinee_results if r.outcome == CATOutcome.UNDETERMINED
        )
        / n,
        termination_reason_counts=termination_reason_counts,
        quintile_metrics=compute_quintile_metrics(examinee_results),
        mean_category_deviation={
            category: float(np.mean([d[category] for d in deviations]))
            for category in target_weights
        },
        overexposed_items=list(overexposed_items or []),
    )

    logger.info(
        f"Simulation complete: "
        f"mean_items={simulation.mean_items:.1f}, "
        f"RMSE={simulation.rmse:.3f}, "
        f"accuracy={simulation.classification_accuracy:.1%}, "
        f"undetermined={simulation.undetermined_rate:.1%}"
    )
    return simulation


def compute_quintile_metrics(
    examinee_results: List[ExamineeResult],
) -> List[QuintileMetrics]:
    """
    Compute stratified metrics for each ability quintile.

    Quintiles are defined by true_theta (not estimated theta) to avoid
    regression to the mean artifacts. The first and last quintiles are
    open-ended to capture extreme thetas.
    """
    quintile_metrics = []

    for label, theta_min, theta_max in QUINTILE_BOUNDARIES:
        quintile_results = []
        for r in examinee_results:
            if label == "Very Low" and r.true_theta < theta_max:
                quintile_results.append(r)
            elif label == "Very High" and r.true_theta >= theta_min:
                quintile_results.append(r)
            elif theta_min <= r.true_theta < theta_max:
                quintile_results.append(r)

        if not quintile_results:
            quintile_metrics.append(
                QuintileMetrics(
                    label=label,
                    theta_range=(theta_min, theta_max),
                    n=0,
                    mean_items=0.0,
                    mean_bias=0.0,
                    rmse=0.0,
                    classification_accuracy=0.0,
                )
            )
            continue

        biases = [r.bias for r in quintile_results]
        quintile_metrics.append(
            QuintileMetrics(
                label=label,
                theta_range=(theta_min, theta_max),
                n=len(quintile_results),
                mean_items=float(
                    np.mean([r.items_administered for r in quintile_results])
                ),
                mean_bias=float(np.mean(biases)),
                rmse=float(np.sqrt(np.mean(np.square(biases)))),
                classification_accuracy=sum(
                    r.correctly_classified for r in quintile_results
                )
                / len(quintile_results),
            )
        )

    return quintile_metrics


def generate_report(result: SimulationResult) -> str:
    """Markdown summary of a simulation run."""
    cfg = result.config
    lines = [
        "# CAT Simulation Report",
        "",
        "## Simulation Configuration",
        "",
        f"- **N Examinees**: {cfg.n_examinees:,}",
        f"- **Theta Distribution**: N({cfg.theta_mean}, {cfg.theta_sd}²)",
        f"- **Test Length**: {cfg.cat_config.min_items}-{cfg.cat_config.max_items} items",
        f"- **Passing Standard**: theta = {cfg.cat_config.passing_theta}",
        "",
        "## Overall Results",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Mean Items | {result.mean_items:.1f} |",
        f"| Median Items | {result.median_items:.1f} |",
        f"| Mean SE | {result.mean_se:.3f} |",
        f"| Mean Bias | {result.mean_bias:+.3f} |",
        f"| RMSE | {result.rmse:.3f} |",
        f"| Classification Accuracy | {result.classification_accuracy:.1%} |",
        f"| Undetermined | {result.undetermined_rate:.1%} |",
        "",
        "## Termination Reasons",
        "",
        "| Reason | Count |",
        "|--------|-------|",
    ]
    for reason, count in sorted(result.termination_reason_counts.items()):
        lines.append(f"| {reason} | {count} |")

    lines.extend(
        [
            "",
            "## By Ability Quintile",
            "",
            "| Quintile | N | Mean Items | Bias | RMSE | Accuracy |",
            "|----------|---|------------|------|------|----------|",
        ]
    )
    for q in result.quintile_metrics:
        lines.append(
            f"| {q.label} | {q.n} | {q.mean_items:.1f} | {q.mean_bias:+.3f} | "
            f"{q.rmse:.3f} | {q.classification_accuracy:.1%} |"
        )

    lines.extend(
        [
            "",
            "## Content Balance",
            "",
            "| Category | Mean Deviation From Target |",
            "|----------|----------------------------|",
        ]
    )
    for category, deviation in result.mean_category_deviation.items():
        lines.append(f"| {category} | {deviation:+.1%} |")

    lines.extend(["", "## Exposure Alerts", ""])
    if result.overexposed_items:
        lines.extend(["| Item | Exposure Share |", "|------|----------------|"])
        for item_id, share in result.overexposed_items:
            lines.append(f"| {item_id} | {share:.1%} |")
    else:
        lines.append(
            f"No item exceeded {cfg.exposure_alert_threshold:.1%} of all exposures."
        )

    return "\n".join(lines) + "\n"
