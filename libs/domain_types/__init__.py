"""Shared domain types for the NCLEX CAT services.

This package is the single source of truth for domain enums used across
the CAT engine, the persistence layer and (via OpenAPI) the web client.

Usage:
    from libs.domain_types import NclexCategory, SessionStatus
"""

import enum


class NclexCategory(str, enum.Enum):
    """NCLEX-RN test plan client-need categories."""

    MANAGEMENT_OF_CARE = "management_of_care"
    SAFETY_INFECTION_CONTROL = "safety_infection_control"
    HEALTH_PROMOTION = "health_promotion"
    PSYCHOSOCIAL_INTEGRITY = "psychosocial_integrity"
    BASIC_CARE_COMFORT = "basic_care_comfort"
    PHARMACOLOGICAL_THERAPIES = "pharmacological_therapies"
    REDUCTION_OF_RISK = "reduction_of_risk"
    PHYSIOLOGICAL_ADAPTATION = "physiological_adaptation"


class ItemType(str, enum.Enum):
    """How an item is answered."""

    SINGLE_SELECT = "single_select"
    SELECT_ALL = "select_all"


class SessionStatus(str, enum.Enum):
    """Adaptive test session status."""

    INITIALIZING = "initializing"
    ACTIVE = "active"
    COMPLETED = "completed"


class TerminationReason(str, enum.Enum):
    """Why an adaptive session ended."""

    CONFIDENCE_RESOLVED = "confidence_resolved"
    MAX_ITEMS_REACHED = "max_items_reached"
    BANK_EXHAUSTED = "bank_exhausted"
    ESTIMATION_ERROR = "estimation_error"
    TIME_LIMIT_REACHED = "time_limit_reached"


class CATOutcome(str, enum.Enum):
    """Pass/fail verdict relative to the passing standard."""

    PASS = "pass"
    FAIL = "fail"
    UNDETERMINED = "undetermined"


class PerformanceLevel(str, enum.Enum):
    """Per-category performance band shown on the result report."""

    ABOVE = "above"
    AT = "at"
    BELOW = "below"


class AbilityTrend(str, enum.Enum):
    """Direction of a user's ability across recent completed sessions."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


__all__ = [
    "NclexCategory",
    "ItemType",
    "SessionStatus",
    "TerminationReason",
    "CATOutcome",
    "PerformanceLevel",
    "AbilityTrend",
]
