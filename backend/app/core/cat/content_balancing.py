"""
Content balancing for the NCLEX Computerized Adaptive Test.

The NCLEX-RN test plan fixes the share of the exam each client-need category
receives. The selector enforces it as a per-category cap: after ``n`` items
have been administered, the next item may come from a category only while
that category's count stays at or below

    max(1, floor((target + slack) * (n + 1)))

so no category runs ahead of its target share by more than ``slack``. The cap
is soft: when it would leave no eligible item the selector ignores it.

Target weights are the midpoints of the official test plan ranges.
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from libs.domain_types import NclexCategory

logger = logging.getLogger(__name__)

# Allowed overshoot of a category's target share
DEFAULT_CATEGORY_SLACK = 0.05

# Tolerance for floating-point rounding when summing weight fractions
WEIGHT_SUM_TOLERANCE = 0.01

# Official NCLEX-RN test plan ranges (percent of the exam)
NCLEX_CATEGORY_RANGES: Dict[str, tuple] = {
    NclexCategory.MANAGEMENT_OF_CARE.value: (17, 23),
    NclexCategory.SAFETY_INFECTION_CONTROL.value: (9, 15),
    NclexCategory.HEALTH_PROMOTION.value: (6, 12),
    NclexCategory.PSYCHOSOCIAL_INTEGRITY.value: (6, 12),
    NclexCategory.BASIC_CARE_COMFORT.value: (6, 12),
    NclexCategory.PHARMACOLOGICAL_THERAPIES.value: (12, 18),
    NclexCategory.REDUCTION_OF_RISK.value: (9, 15),
    NclexCategory.PHYSIOLOGICAL_ADAPTATION.value: (11, 17),
}

NCLEX_CATEGORY_WEIGHTS: Dict[str, float] = {
    category: (low + high) / 200.0
    for category, (low, high) in NCLEX_CATEGORY_RANGES.items()
}

NCLEX_CATEGORY_NAMES: Dict[str, str] = {
    NclexCategory.MANAGEMENT_OF_CARE.value: "Management of Care",
    NclexCategory.SAFETY_INFECTION_CONTROL.value: "Safety and Infection Control",
    NclexCategory.HEALTH_PROMOTION.value: "Health Promotion and Maintenance",
    NclexCategory.PSYCHOSOCIAL_INTEGRITY.value: "Psychosocial Integrity",
    NclexCategory.BASIC_CARE_COMFORT.value: "Basic Care and Comfort",
    NclexCategory.PHARMACOLOGICAL_THERAPIES.value: (
        "Pharmacological and Parenteral Therapies"
    ),
    NclexCategory.REDUCTION_OF_RISK.value: "Reduction of Risk Potential",
    NclexCategory.PHYSIOLOGICAL_ADAPTATION.value: "Physiological Adaptation",
}


def validate_category_weights(weights: Mapping[str, float]) -> None:
    """
    Check that category weights are usable as target proportions.

    Raises:
        ValueError: If the mapping is empty, names an unknown category, has a
            non-positive weight, or does not sum to ~1.0.
    """
    if not weights:
        raise ValueError("Category weights must not be empty")
    unknown = set(weights) - set(NCLEX_CATEGORY_WEIGHTS)
    if unknown:
        raise ValueError(f"Unknown categories in weights: {sorted(unknown)}")
    if any(w <= 0 for w in weights.values()):
        raise ValueError("Category weights must be positive")
    weight_sum = sum(weights.values())
    if abs(weight_sum - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValueError(f"Category weights must sum to ~1.0, got {weight_sum:.3f}")


def get_item_category(item: Any) -> Optional[str]:
    """
    Extract the category string from an item's ``category`` attribute.

    Handles both plain strings and str-Enum values.
    """
    category = getattr(item, "category", None)
    if category is None:
        return None
    return category.value if hasattr(category, "value") else category


def track_category_coverage(administered_items: Sequence[Any]) -> Dict[str, int]:
    """Count administered items per category."""
    coverage: Dict[str, int] = {}
    for item in administered_items:
        category = get_item_category(item)
        if category is not None:
            coverage[category] = coverage.get(category, 0) + 1
    return coverage


def category_cap(
    target_weight: float,
    items_administered: int,
    slack: float = DEFAULT_CATEGORY_SLACK,
) -> int:
    """
    Largest count a category may reach with the next item included.

    Args:
        target_weight: Target proportion of the category (0.0-1.0).
        items_administered: Items given so far in the session.
        slack: Allowed overshoot of the target proportion.

    Returns:
        The cap, never less than 1.
    """
    return max(1, math.floor((target_weight + slack) * (items_administered + 1)))


def capped_categories(
    coverage: Mapping[str, int],
    target_weights: Mapping[str, float],
    items_administered: int,
    slack: float = DEFAULT_CATEGORY_SLACK,
) -> List[str]:
    """Categories that cannot take another item without exceeding their cap."""
    return [
        category
        for category, weight in target_weights.items()
        if coverage.get(category, 0) + 1
        > category_cap(weight, items_administered, slack)
    ]


def filter_by_category_cap(
    pool: Sequence[Any],
    coverage: Mapping[str, int],
    target_weights: Mapping[str, float],
    items_administered: int,
    slack: float = DEFAULT_CATEGORY_SLACK,
) -> List[Any]:
    """
    Drop items whose category has reached its cap.

    Items in categories without a target weight are treated as uncapped.
    """
    blocked = set(
        capped_categories(coverage, target_weights, items_administered, slack)
    )
    if not blocked:
        return list(pool)

    kept = [item for item in pool if get_item_category(item) not in blocked]
    logger.debug(
        f"Content balancing: categories at cap {sorted(blocked)} "
        f"({len(kept)} of {len(pool)} items remain)"
    )
    return kept


def category_deviation(
    coverage: Mapping[str, int],
    target_weights: Mapping[str, float],
) -> Dict[str, float]:
    """Actual minus target proportion per category (0.0 before any item)."""
    total = sum(coverage.values())
    if total == 0:
        return {category: 0.0 for category in target_weights}
    return {
        category: coverage.get(category, 0) / total - weight
        for category, weight in target_weights.items()
    }
