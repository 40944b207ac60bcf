"""
Maximum Fisher Information (MFI) item selection for Computerized Adaptive Testing.

Selects the next item from the bank that maximizes 3PL Fisher information at
the current ability estimate (theta):

    I_i(theta) = a_i^2 * (Q_i / P_i) * ((P_i - c_i) / (1 - c_i))^2

Where P_i(theta) = c_i + (1 - c_i) / (1 + exp(-a_i * (theta - b_i)))

The selection pipeline:
1. Filter out items already administered in this session
2. Apply the category cap (content balancing), skipped if it empties the pool
3. Apply exposure control, skipped if it empties the pool
4. Compute Fisher information for each eligible item at current theta
5. Return the most informative item; ties go to the lowest exposure count,
   then the lowest item id, so selection is deterministic

References:
    - Lord, F.M. (1980). Applications of Item Response Theory to Practical
      Testing Problems.
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
"""

import logging
from dataclasses import dataclass
from typing import AbstractSet, Any, List, Mapping, Sequence

from app.core.cat.ability_estimation import item_information_3pl
from app.core.cat.content_balancing import (
    DEFAULT_CATEGORY_SLACK,
    filter_by_category_cap,
)
from app.core.cat.errors import ExhaustedBankError
from app.core.cat.exposure_control import (
    DEFAULT_OVERUSE_FACTOR,
    filter_overexposed,
    mean_exposure,
)
from app.core.cat.item_bank import Item

logger = logging.getLogger(__name__)


@dataclass
class ItemCandidate:
    """An item with its computed Fisher information value."""

    item: Item
    information: float

    @property
    def sort_key(self) -> tuple:
        return (-self.information, self.item.exposure_count, self.item.id)


def select_next_item(
    item_pool: Sequence[Item],
    theta_estimate: float,
    administered_items: AbstractSet[int],
    category_coverage: Mapping[str, int],
    target_weights: Mapping[str, float],
    category_slack: float = DEFAULT_CATEGORY_SLACK,
    overuse_factor: float = DEFAULT_OVERUSE_FACTOR,
) -> Item:
    """
    Select the next item using Maximum Fisher Information with constraints.

    Args:
        item_pool: Every active item in the bank, with exposure snapshots.
        theta_estimate: Current ability estimate.
        administered_items: IDs of items already presented in this session.
        category_coverage: Category name -> items administered so far.
        target_weights: Category name -> target proportion of the test.
        category_slack: Allowed overshoot of a category's target share.
        overuse_factor: Items exposed more than this multiple of the bank
            mean are withheld.

    Returns:
        The selected Item.

    Raises:
        ExhaustedBankError: If every item in the bank has been administered.
    """
    eligible: List[Item] = [
        item for item in item_pool if item.id not in administered_items
    ]

    if not eligible:
        logger.warning(
            "No eligible items remaining after filtering. "
            f"Pool size: {len(item_pool)}, "
            f"administered: {len(administered_items)}"
        )
        raise ExhaustedBankError(
            "No eligible items remain in the item bank",
            context={
                "pool_size": len(item_pool),
                "administered": len(administered_items),
            },
        )

    eligible = _apply_soft_filter(
        eligible,
        filter_by_category_cap(
            eligible,
            category_coverage,
            target_weights,
            items_administered=len(administered_items),
            slack=category_slack,
        ),
        constraint="category cap",
    )

    eligible = _apply_soft_filter(
        eligible,
        filter_overexposed(
            eligible,
            overuse_factor=overuse_factor,
            bank_mean=mean_exposure(item_pool),
        ),
        constraint="exposure control",
    )

    candidates = rank_candidates(eligible, theta_estimate)
    selected = candidates[0]

    logger.debug(
        f"Item selection: theta={theta_estimate:.3f}, "
        f"eligible={len(candidates)}, "
        f"selected item {selected.item.id} "
        f"(category={selected.item.category}, "
        f"a={selected.item.discrimination:.2f}, "
        f"b={selected.item.difficulty:.2f}, "
        f"c={selected.item.guessing:.2f}, "
        f"info={selected.information:.4f})"
    )

    return selected.item


def rank_candidates(
    items: Sequence[Item],
    theta_estimate: float,
) -> List[ItemCandidate]:
    """
    Compute information at ``theta_estimate`` and order items best-first.

    Ordering: information descending, then exposure count ascending, then id
    ascending.
    """
    candidates = [
        ItemCandidate(
            item=item,
            information=item_information_3pl(
                theta_estimate,
                item.discrimination,
                item.difficulty,
                item.guessing,
            ),
        )
        for item in items
    ]
    candidates.sort(key=lambda c: c.sort_key)
    return candidates


def _apply_soft_filter(
    pool: List[Any],
    filtered: List[Any],
    constraint: str,
) -> List[Any]:
    """Return ``filtered`` unless it is empty, in which case keep ``pool``."""
    if filtered:
        return filtered
    logger.warning(
        f"{constraint.capitalize()} would leave no eligible items; "
        f"ignoring it for this selection ({len(pool)} items)"
    )
    return pool
