"""NAV price points and series helpers.

A price series is a pandas Series of NAV floats indexed by a sorted, naive
``DatetimeIndex`` named ``date``. Timestamps are market-local (Asia/Shanghai)
wall-clock times; on the wire they are epoch milliseconds.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

MARKET_TZ = "Asia/Shanghai"

CASH_CODE = "CASH"
CASH_CODES = frozenset({CASH_CODE})


@dataclass(frozen=True)
class PricePoint:
    """Single NAV observation.

    Attributes:
        timestamp: Market-local time of the observation
        nav: Net asset value per unit
    """

    timestamp: datetime
    nav: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": to_epoch_ms(self.timestamp), "nav": self.nav}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricePoint":
        return cls(timestamp=from_epoch_ms(int(data["timestamp"])), nav=float(data["nav"]))


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to a naive market-local datetime."""
    ts = pd.Timestamp(value, unit="ms", tz="UTC").tz_convert(MARKET_TZ)
    return ts.tz_localize(None).to_pydatetime()


def to_epoch_ms(value: datetime) -> int:
    """Convert a naive market-local datetime to epoch milliseconds."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(MARKET_TZ)
    return int(ts.tz_convert("UTC").value // 1_000_000)


def empty_series() -> pd.Series:
    series = pd.Series(dtype=float, name="nav")
    series.index = pd.DatetimeIndex([], name="date")
    return series


def points_to_series(points: Iterable[PricePoint]) -> pd.Series:
    """Build a sorted NAV series from price points.

    Later duplicates of the same timestamp win.
    """
    points = list(points)
    if not points:
        return empty_series()

    series = pd.Series(
        [p.nav for p in points],
        index=pd.DatetimeIndex([p.timestamp for p in points], name="date"),
        name="nav",
        dtype=float,
    )
    series = series[~series.index.duplicated(keep="last")]
    return series.sort_index(kind="stable")


def series_to_points(series: pd.Series) -> List[PricePoint]:
    return [
        PricePoint(timestamp=ts.to_pydatetime(), nav=float(nav))
        for ts, nav in series.items()
    ]


def latest_price(series: Optional[pd.Series]) -> Optional[float]:
    """Last NAV in the series, or None when there is no history."""
    if series is None or series.empty:
        return None
    return float(series.iloc[-1])
