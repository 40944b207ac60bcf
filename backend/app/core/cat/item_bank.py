"""
Item bank access for Computerized Adaptive Testing.

The engine reads calibrated items through the ``ItemBank`` protocol and never
mutates them, except for the per-item exposure counter, which every bank must
increment atomically. ``InMemoryItemBank`` backs simulations and tests; the
SQL-backed bank lives in ``app.core.cat.repository``.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Protocol,
    Tuple,
    runtime_checkable,
)

from app.core.cat.exposure_control import ExposureMonitor
from libs.domain_types import ItemType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Item:
    """An immutable calibrated question (3PL parameters)."""

    id: int
    category: str
    difficulty: float  # b parameter
    discrimination: float  # a parameter
    guessing: float  # c parameter
    item_type: ItemType
    options: Tuple[Tuple[str, str], ...]  # (option_id, text) in display order
    correct_options: FrozenSet[str]
    stem: str = ""
    explanation: str = ""
    exposure_count: int = 0  # Snapshot; the bank owns the live counter
    option_ids: FrozenSet[str] = field(init=False)

    def __post_init__(self) -> None:
        params = {
            "discrimination": self.discrimination,
            "difficulty": self.difficulty,
            "guessing": self.guessing,
        }
        for name, value in params.items():
            if not math.isfinite(value):
                raise ValueError(
                    f"{name.capitalize()} must be finite, got {value} "
                    f"for item {self.id}"
                )
        if self.discrimination <= 0:
            raise ValueError(
                f"Discrimination must be positive, got {self.discrimination} "
                f"for item {self.id}"
            )
        if not (0.0 <= self.guessing < 1.0):
            raise ValueError(
                f"Guessing must be in [0, 1), got {self.guessing} for item {self.id}"
            )
        option_ids = frozenset(option_id for option_id, _ in self.options)
        if not self.correct_options or not self.correct_options <= option_ids:
            raise ValueError(
                f"Correct options {sorted(self.correct_options)} must be a "
                f"non-empty subset of the options of item {self.id}"
            )
        object.__setattr__(self, "option_ids", option_ids)

    def is_correct(self, answer: Iterable[str]) -> bool:
        """Exact-match scoring against the correct-answer set."""
        return frozenset(answer) == self.correct_options


@runtime_checkable
class ItemBank(Protocol):
    """Read-mostly access to calibrated items."""

    def get_item(self, item_id: int) -> Item:
        """Return the item, raising ``KeyError`` for unknown ids."""
        ...

    def list_items(self) -> List[Item]:
        """Return every active item with its current exposure snapshot."""
        ...

    def record_exposure(self, item_id: int) -> int:
        """Atomically increment and return the item's exposure count."""
        ...


class InMemoryItemBank:
    """
    Process-local item bank.

    Items are stored once and never replaced; exposure counts are tracked by
    an ``ExposureMonitor`` so concurrent sessions can increment them without
    serializing against each other.
    """

    def __init__(
        self,
        items: Iterable[Item],
        monitor: ExposureMonitor | None = None,
    ):
        self._items: Dict[int, Item] = {}
        for item in items:
            if item.id in self._items:
                raise ValueError(f"Duplicate item id {item.id} in item bank")
            self._items[item.id] = item
        self.monitor = monitor or ExposureMonitor()
        for item in self._items.values():
            if item.exposure_count:
                self.monitor.seed(item.id, item.exposure_count)

        logger.debug(f"In-memory item bank loaded with {len(self._items)} items")

    def __len__(self) -> int:
        return len(self._items)

    def get_item(self, item_id: int) -> Item:
        item = self._items[item_id]
        return replace(item, exposure_count=self.monitor.get_count(item_id))

    def list_items(self) -> List[Item]:
        counts: Mapping[int, int] = self.monitor.get_counts()
        return [
            replace(item, exposure_count=counts.get(item_id, 0))
            for item_id, item in sorted(self._items.items())
        ]

    def record_exposure(self, item_id: int) -> int:
        if item_id not in self._items:
            raise KeyError(item_id)
        return self.monitor.record_selection(item_id)
