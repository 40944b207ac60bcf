"""
Exposure control for Computerized Adaptive Testing.

Maximum-information selection alone keeps reaching for the same handful of
highly discriminating items, which overuses them across candidates and leaks
them. Two mechanisms counter that:

    - filter_overexposed(): removes items whose historical exposure count is
      disproportionately high relative to the bank mean before selection
    - ExposureMonitor: thread-safe per-item exposure counters with alerting,
      used by the in-memory item bank as its atomic counter

References:
    - Sympson, J.B., & Hetter, R.D. (1985). Controlling item-exposure rates
      in computerized adaptive testing.
    - Stocking, M.L., & Lewis, C. (1998). Controlling item exposure conditional
      on ability in computerized adaptive testing.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Items exposed more than this multiple of the bank's mean exposure are
# withheld from selection.
DEFAULT_OVERUSE_FACTOR = 3.0

# Share of all exposures above which an item is reported by check_and_alert().
DEFAULT_EXPOSURE_ALERT_THRESHOLD = 0.15


def mean_exposure(items: Sequence[Any]) -> float:
    """Mean ``exposure_count`` over the items (0.0 for an empty sequence)."""
    if not items:
        return 0.0
    return sum(item.exposure_count for item in items) / len(items)


def filter_overexposed(
    items: Sequence[Any],
    overuse_factor: float = DEFAULT_OVERUSE_FACTOR,
    bank_mean: Optional[float] = None,
) -> List[Any]:
    """
    Drop items whose exposure count exceeds ``overuse_factor`` times the mean.

    The mean is the whole bank's when ``bank_mean`` is given, otherwise it is
    taken over the items passed in, so the filter adapts as the bank accrues
    exposure. Nothing is filtered while the bank is unused.

    Args:
        items: Items with ``exposure_count`` attributes.
        overuse_factor: Multiple of the mean exposure above which an item is
            considered overused. Must be >= 1.
        bank_mean: Mean exposure of the full bank.

    Returns:
        The items that are not overexposed, in their original order.

    Raises:
        ValueError: If overuse_factor is below 1.
    """
    if overuse_factor < 1.0:
        raise ValueError(f"overuse_factor must be >= 1, got {overuse_factor}")
    if not items:
        return []

    mean = bank_mean if bank_mean is not None else mean_exposure(items)
    if mean <= 0:
        return list(items)

    ceiling = overuse_factor * mean
    kept = [item for item in items if item.exposure_count <= ceiling]

    withheld = len(items) - len(kept)
    if withheld:
        logger.debug(
            f"Exposure control: withheld {withheld} items above "
            f"{ceiling:.1f} exposures (mean={mean:.2f})"
        )
    return kept


class ExposureMonitor:
    """
    Thread-safe per-item exposure counters.

    Increments happen under a lock so concurrent sessions sharing one bank
    never lose an update. Exposure share is defined as:
        share_i = exposures_i / total_exposures

    Example usage:
        monitor = ExposureMonitor(alert_threshold=0.15)
        monitor.record_selection(item.id)
        overexposed = monitor.check_and_alert()

    Attributes:
        alert_threshold: Exposure share above which items are flagged (0.0-1.0).
    """

    def __init__(self, alert_threshold: float = DEFAULT_EXPOSURE_ALERT_THRESHOLD):
        """
        Initialize the exposure monitor.

        Args:
            alert_threshold: Exposure share threshold for alerts (default 0.15).

        Raises:
            ValueError: If alert_threshold is not in range [0.0, 1.0].
        """
        if not (0.0 <= alert_threshold <= 1.0):
            raise ValueError(
                f"alert_threshold must be in [0.0, 1.0], got {alert_threshold}"
            )

        self._lock = threading.Lock()
        self._item_counts: Dict[int, int] = {}
        self._total_selections = 0
        self.alert_threshold = alert_threshold

    def seed(self, item_id: int, count: int) -> None:
        """Load a historical exposure count (e.g. when a bank is restored)."""
        if count < 0:
            raise ValueError(f"Exposure count must be non-negative, got {count}")
        with self._lock:
            previous = self._item_counts.get(item_id, 0)
            self._item_counts[item_id] = count
            self._total_selections += count - previous

    def record_selection(self, item_id: int) -> int:
        """
        Record that an item was presented to a candidate.

        Returns:
            The item's exposure count after the increment.
        """
        with self._lock:
            count = self._item_counts.get(item_id, 0) + 1
            self._item_counts[item_id] = count
            self._total_selections += 1
            return count

    def get_count(self, item_id: int) -> int:
        with self._lock:
            return self._item_counts.get(item_id, 0)

    def get_counts(self) -> Dict[int, int]:
        """Snapshot of all exposure counts."""
        with self._lock:
            return dict(self._item_counts)

    def get_exposure_rates(self) -> Dict[int, float]:
        """Exposure share per item, for items presented at least once."""
        with self._lock:
            if self._total_selections == 0:
                return {}
            return {
                item_id: count / self._total_selections
                for item_id, count in self._item_counts.items()
            }

    def check_and_alert(self) -> List[Tuple[int, float]]:
        """
        Log and return items whose exposure share exceeds the alert threshold.

        Counts are snapshotted under the lock; logging happens outside it.

        Returns:
            (item_id, share) tuples sorted by share, highest first.
        """
        rates = self.get_exposure_rates()
        overexposed = sorted(
            (
                (item_id, rate)
                for item_id, rate in rates.items()
                if rate > self.alert_threshold
            ),
            key=lambda x: x[1],
            reverse=True,
        )

        if overexposed:
            logger.warning(
                f"Exposure alert: {len(overexposed)} items exceed "
                f"{self.alert_threshold:.1%} of all exposures"
            )
            for item_id, rate in overexposed[:10]:
                logger.warning(f"  Item {item_id}: {rate:.1%} exposure")

        return overexposed

    @property
    def total_selections(self) -> int:
        with self._lock:
            return self._total_selections
