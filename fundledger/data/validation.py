"""Quality checks for fetched NAV series."""

import pandas as pd

from fundledger.utils.exceptions import DataQualityError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)


class PriceSeriesValidator:
    """Validator for NAV series returned by price providers."""

    # Single-day NAV move above this is logged as a possible data error
    SPIKE_THRESHOLD = 0.20

    @classmethod
    def validate(cls, series: pd.Series, code: str) -> pd.Series:
        """Run all checks and return the normalized series.

        An empty series is valid: it means the provider knows no history.

        Args:
            series: NAV series to validate
            code: Instrument code for logging

        Returns:
            Series sorted by date with duplicate timestamps removed

        Raises:
            DataQualityError: If the series has missing or non-positive values
        """
        if series.empty:
            return series

        cls.validate_integrity(series, code)
        series = cls.normalize_order(series, code)
        cls.detect_anomalies(series, code)
        return series

    @classmethod
    def validate_integrity(cls, series: pd.Series, code: str) -> None:
        if not isinstance(series.index, pd.DatetimeIndex):
            raise DataQualityError(f"NAV series for {code} is not indexed by date")

        if series.isna().any():
            raise DataQualityError(
                f"Found {int(series.isna().sum())} missing NAV values for {code}"
            )

        if (series <= 0).any():
            raise DataQualityError(f"Found non-positive NAV values for {code}")

    @classmethod
    def normalize_order(cls, series: pd.Series, code: str) -> pd.Series:
        """Sort by date and drop repeated timestamps (last one wins)."""
        duplicated = series.index.duplicated(keep="last")
        if duplicated.any():
            logger.warning(
                "Dropping %d duplicate NAV timestamps for %s", int(duplicated.sum()), code
            )
            series = series[~duplicated]

        if not series.index.is_monotonic_increasing:
            logger.warning("NAV series for %s was out of order, sorting", code)
            series = series.sort_index(kind="stable")

        return series

    @classmethod
    def detect_anomalies(cls, series: pd.Series, code: str) -> None:
        """Log suspicious single-day moves (warnings only)."""
        moves = series.pct_change().abs()
        spikes = moves[moves > cls.SPIKE_THRESHOLD]

        if not spikes.empty:
            logger.warning(
                "Detected NAV spikes (>20%%) for %s at dates: %s",
                code,
                [ts.date().isoformat() for ts in spikes.index],
            )
