"""
CAT (Computerized Adaptive Testing) engine for NCLEX practice exams.

This module provides 3PL ability estimation, item selection with category
balancing and exposure control, the passing-probability stopping rule and the
session state machine.
"""

from .ability_estimation import (
    AbilityEstimate,
    estimate_ability,
    estimate_ability_eap,
    estimate_ability_mle,
    item_information_3pl,
    probability_3pl,
)
from .content_balancing import (
    NCLEX_CATEGORY_WEIGHTS,
    filter_by_category_cap,
    track_category_coverage,
)
from .engine import (
    CATConfig,
    CATResult,
    CATSession,
    CATSessionManager,
    CATStepResult,
    ItemResponse,
)
from .errors import (
    CATError,
    ConcurrentModificationError,
    EstimationError,
    ExhaustedBankError,
    InvalidAnswerError,
    SessionAlreadyCompletedError,
    SessionNotCompletedError,
    SessionNotFoundError,
)
from .item_bank import InMemoryItemBank, Item, ItemBank
from .item_selection import select_next_item
from .passing_probability import to_pass_probability
from .stopping_rules import check_stopping_criteria

__all__ = [
    "AbilityEstimate",
    "estimate_ability",
    "estimate_ability_eap",
    "estimate_ability_mle",
    "item_information_3pl",
    "probability_3pl",
    "NCLEX_CATEGORY_WEIGHTS",
    "filter_by_category_cap",
    "track_category_coverage",
    "CATConfig",
    "CATSessionManager",
    "CATSession",
    "CATStepResult",
    "CATResult",
    "ItemResponse",
    "CATError",
    "ConcurrentModificationError",
    "EstimationError",
    "ExhaustedBankError",
    "InvalidAnswerError",
    "SessionAlreadyCompletedError",
    "SessionNotCompletedError",
    "SessionNotFoundError",
    "InMemoryItemBank",
    "Item",
    "ItemBank",
    "select_next_item",
    "to_pass_probability",
    "check_stopping_criteria",
]
