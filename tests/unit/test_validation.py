"""Unit tests for NAV series validation."""

import logging

import pandas as pd
import pytest

from fundledger.data.prices import empty_series
from fundledger.data.validation import PriceSeriesValidator
from fundledger.utils.exceptions import DataQualityError


def make_series(values, dates) -> pd.Series:
    return pd.Series(values, index=pd.DatetimeIndex(pd.to_datetime(dates), name="date"), name="nav")


class TestPriceSeriesValidator:
    """Test cases for PriceSeriesValidator."""

    def test_valid_series_passes(self) -> None:
        """Test a clean series is returned unchanged."""
        series = make_series([1.0, 1.01, 1.02], ["2024-03-11", "2024-03-12", "2024-03-13"])

        result = PriceSeriesValidator.validate(series, "000216")

        pd.testing.assert_series_equal(result, series)

    def test_empty_series_is_valid(self) -> None:
        """Test an empty series passes validation."""
        assert PriceSeriesValidator.validate(empty_series(), "000216").empty

    def test_missing_values(self) -> None:
        """Test NaN values raise DataQualityError."""
        series = make_series([1.0, None], ["2024-03-11", "2024-03-12"])

        with pytest.raises(DataQualityError, match="missing NAV values"):
            PriceSeriesValidator.validate(series, "000216")

    def test_non_positive_values(self) -> None:
        """Test zero NAV raises DataQualityError."""
        series = make_series([1.0, 0.0], ["2024-03-11", "2024-03-12"])

        with pytest.raises(DataQualityError, match="non-positive"):
            PriceSeriesValidator.validate(series, "000216")

    def test_non_datetime_index(self) -> None:
        """Test a series not indexed by dates is rejected."""
        with pytest.raises(DataQualityError, match="not indexed by date"):
            PriceSeriesValidator.validate(pd.Series([1.0, 1.1]), "000216")

    def test_out_of_order_is_sorted(self) -> None:
        """Test unsorted dates are sorted with duplicates dropped."""
        series = make_series(
            [1.02, 1.0, 1.01, 1.011],
            ["2024-03-13", "2024-03-11", "2024-03-12", "2024-03-12"],
        )

        result = PriceSeriesValidator.validate(series, "000216")

        assert result.index.is_monotonic_increasing
        assert len(result) == 3
        assert result[pd.Timestamp("2024-03-12")] == pytest.approx(1.011)

    def test_spike_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test a >20% single-day move logs a warning but passes."""
        series = make_series([1.0, 1.5], ["2024-03-11", "2024-03-12"])

        with caplog.at_level(logging.WARNING):
            result = PriceSeriesValidator.validate(series, "000216")

        assert len(result) == 2
        assert "NAV spikes" in caplog.text
