"""
Application configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Literal, Self

from libs.domain_types import NclexCategory


# Tolerance for floating-point weight summation checks
_WEIGHT_SUM_TOLERANCE = 1e-6


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "NCLEX CAT API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = Field(
        default="sqlite:///./nclex_cat.db",
        description="SQLAlchemy database URL",
    )

    # CAT (Computerized Adaptive Testing)
    # Test length follows the NCLEX-RN rules: no pass/fail decision before
    # CAT_MIN_ITEMS, hard stop at CAT_MAX_ITEMS.
    CAT_MIN_ITEMS: int = Field(default=75, ge=1)
    CAT_MAX_ITEMS: int = Field(default=150, ge=1)
    # Passing standard on the logit scale
    CAT_PASSING_THETA: float = 0.0
    CAT_THETA_BOUND: float = Field(default=4.0, gt=0.0)
    CAT_CONFIDENCE_LEVEL: float = Field(
        default=0.95,
        gt=0.0,
        lt=1.0,
        description="Confidence level of the pass/fail interval on theta",
    )
    CAT_TIME_LIMIT_SECONDS: int = Field(
        default=5 * 60 * 60,
        gt=0,
        description="Accumulated answer time after which a session ends",
    )
    # Midpoints of the NCLEX-RN test plan ranges.
    # Keys must match NclexCategory enum values in libs/domain_types.
    CAT_CATEGORY_WEIGHTS: Dict[str, float] = {
        "management_of_care": 0.20,  # 17-23%
        "safety_infection_control": 0.12,  # 9-15%
        "health_promotion": 0.09,  # 6-12%
        "psychosocial_integrity": 0.09,  # 6-12%
        "basic_care_comfort": 0.09,  # 6-12%
        "pharmacological_therapies": 0.15,  # 12-18%
        "reduction_of_risk": 0.12,  # 9-15%
        "physiological_adaptation": 0.14,  # 11-17%
    }
    CAT_CATEGORY_SLACK: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Allowed overshoot of a category's target share",
    )
    CAT_EXPOSURE_OVERUSE_FACTOR: float = Field(
        default=3.0,
        ge=1.0,
        description="Items exposed more than this multiple of the bank mean are withheld",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_test_length(self) -> Self:
        """Validate CAT_MIN_ITEMS <= CAT_MAX_ITEMS."""
        if self.CAT_MIN_ITEMS > self.CAT_MAX_ITEMS:
            raise ValueError(
                f"CAT_MIN_ITEMS ({self.CAT_MIN_ITEMS}) must not exceed "
                f"CAT_MAX_ITEMS ({self.CAT_MAX_ITEMS})"
            )
        return self

    @model_validator(mode="after")
    def validate_category_weights(self) -> Self:
        """Validate CAT_CATEGORY_WEIGHTS: positive values summing to 1.0."""
        weights = self.CAT_CATEGORY_WEIGHTS
        expected_categories = {c.value for c in NclexCategory}
        if set(weights.keys()) != expected_categories:
            raise ValueError(
                f"CAT_CATEGORY_WEIGHTS keys must be {sorted(expected_categories)}, "
                f"got {sorted(weights.keys())}"
            )
        non_positive = [k for k, v in weights.items() if v <= 0]
        if non_positive:
            raise ValueError(
                f"All category weights must be positive, got non-positive: {non_positive}"
            )
        total = sum(weights.values())
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"CAT_CATEGORY_WEIGHTS must sum to 1.0, got {total}")
        return self


settings = Settings()
