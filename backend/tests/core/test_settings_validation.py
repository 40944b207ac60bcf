"""
Tests for Settings configuration validation in config.py.
"""
import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestDefaults:
    """The defaults follow the NCLEX-RN rules."""

    def test_test_length(self):
        settings = Settings()
        assert settings.CAT_MIN_ITEMS == 75
        assert settings.CAT_MAX_ITEMS == 150

    def test_passing_standard_and_confidence(self):
        settings = Settings()
        assert settings.CAT_PASSING_THETA == pytest.approx(0.0)
        assert settings.CAT_CONFIDENCE_LEVEL == pytest.approx(0.95)

    def test_default_weights_sum_to_one(self):
        assert sum(Settings().CAT_CATEGORY_WEIGHTS.values()) == pytest.approx(1.0)


class TestTestLengthValidation:
    """Tests for CAT_MIN_ITEMS / CAT_MAX_ITEMS validation."""

    def test_min_equal_to_max_is_valid(self):
        settings = Settings(CAT_MIN_ITEMS=60, CAT_MAX_ITEMS=60)
        assert settings.CAT_MIN_ITEMS == 60

    def test_min_above_max_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(CAT_MIN_ITEMS=100, CAT_MAX_ITEMS=50)
        assert "must not exceed" in str(exc_info.value)

    def test_zero_min_items_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CAT_MIN_ITEMS=0)


class TestConfidenceLevelValidation:
    @pytest.mark.parametrize("level", [0.0, 1.0, 1.5])
    def test_out_of_range_rejected(self, level):
        with pytest.raises(ValidationError):
            Settings(CAT_CONFIDENCE_LEVEL=level)

    def test_ninety_percent_valid(self):
        assert Settings(CAT_CONFIDENCE_LEVEL=0.9).CAT_CONFIDENCE_LEVEL == 0.9


class TestCategoryWeightsValidation:
    """Tests for CAT_CATEGORY_WEIGHTS validation."""

    def _weights(self, **overrides):
        weights = dict(Settings().CAT_CATEGORY_WEIGHTS)
        weights.update(overrides)
        return weights

    def test_missing_category_rejected(self):
        weights = self._weights()
        del weights["management_of_care"]
        with pytest.raises(ValidationError) as exc_info:
            Settings(CAT_CATEGORY_WEIGHTS=weights)
        assert "keys must be" in str(exc_info.value)

    def test_non_positive_weight_rejected(self):
        weights = self._weights(management_of_care=0.0, safety_infection_control=0.32)
        with pytest.raises(ValidationError) as exc_info:
            Settings(CAT_CATEGORY_WEIGHTS=weights)
        assert "positive" in str(exc_info.value)

    def test_bad_sum_rejected(self):
        weights = self._weights(management_of_care=0.5)
        with pytest.raises(ValidationError) as exc_info:
            Settings(CAT_CATEGORY_WEIGHTS=weights)
        assert "sum to 1.0" in str(exc_info.value)


class TestOtherBounds:
    def test_overuse_factor_below_one_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CAT_EXPOSURE_OVERUSE_FACTOR=0.5)

    def test_non_positive_time_limit_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CAT_TIME_LIMIT_SECONDS=0)

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="VERBOSE")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CAT_MAX_ITEMS", "120")
        assert Settings().CAT_MAX_ITEMS == 120
