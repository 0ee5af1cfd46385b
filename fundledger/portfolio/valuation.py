"""Category valuation and portfolio statistics.

Pure reductions over aggregated holdings: market value per category, the
current allocation percentages, portfolio profit, and the week-to-date
gains measured against the Monday baseline.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from fundledger.data.prices import PricePoint
from fundledger.portfolio.models import CATEGORY_ORDER, Category, Holding, Reinvest
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PortfolioSummary:
    """Valuation of the whole portfolio.

    Attributes:
        market_value: Sum of priced holdings' market value
        cost_value: Sum of holdings' cost (holdings with pending cost
            basis are excluded)
        profit: market_value - cost_value
        category_values: Market value per category
        category_weights: Share of market_value per category (0..1)
        unpriced_codes: Active holdings with no known price
        pending_cost_codes: Active holdings whose cost basis is pending
    """

    market_value: float
    cost_value: float
    profit: float
    category_values: Dict[Category, float]
    category_weights: Dict[Category, float]
    unpriced_codes: Tuple[str, ...] = ()
    pending_cost_codes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WeeklyGains:
    """Week-to-date gains against the Monday baseline.

    Attributes:
        week_start: Monday of the current week
        total: Sum of all category gains
        by_category: Gain per category
    """

    week_start: date
    total: float
    by_category: Dict[Category, float] = field(default_factory=dict)


def week_start(now: Optional[datetime] = None) -> datetime:
    """Most recent Monday 00:00 (today if today is Monday)."""
    now = now or datetime.now()
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def find_monday_baseline(
    series: Optional[pd.Series],
    now: Optional[datetime] = None,
) -> Optional[PricePoint]:
    """Reference NAV for the current week.

    The latest point strictly before the most recent Monday 00:00. Falls
    back to the earliest point when the whole history is from this week.

    Returns:
        PricePoint, or None for an empty series
    """
    if series is None or series.empty:
        return None

    before = series[series.index < pd.Timestamp(week_start(now))]
    point = before if not before.empty else series.iloc[:1]
    ts = point.index[-1]
    return PricePoint(timestamp=ts.to_pydatetime(), nav=float(point.iloc[-1]))


def summarize_categories(holdings: Sequence[Holding]) -> Dict[Category, float]:
    """Market value per category over non-liquidated holdings.

    Holdings without a known price are left out (an unknown price is not a
    zero price) and logged.

    Returns:
        Dict with an entry for each of the four categories
    """
    values = {category: 0.0 for category in CATEGORY_ORDER}
    for holding in holdings:
        if holding.liquidated:
            continue
        market = holding.market_value
        if market is None:
            logger.warning("No price for %s, left out of category values", holding.code)
            continue
        values[holding.category] += market
    return values


def allocation_percentages(values: Mapping[Category, float]) -> Dict[Category, float]:
    """Share of the total per category, in percent."""
    total = sum(values.values())
    if total <= 0:
        return {category: 0.0 for category in values}
    return {category: value / total * 100 for category, value in values.items()}


def portfolio_summary(holdings: Sequence[Holding]) -> PortfolioSummary:
    """Market value, cost and profit of the portfolio."""
    category_values = summarize_categories(holdings)
    market_value = sum(category_values.values())

    cost_value = 0.0
    unpriced: List[str] = []
    pending: List[str] = []
    for holding in holdings:
        if holding.liquidated:
            continue
        if holding.current_price is None:
            unpriced.append(holding.code)
            continue
        cost = holding.cost_value
        if cost is None:
            pending.append(holding.code)
            continue
        cost_value += cost

    # Profit covers holdings with a known cost basis only
    pending_market = sum(
        h.market_value or 0.0 for h in holdings if h.code in pending
    )

    weights = {
        category: (value / market_value if market_value > 0 else 0.0)
        for category, value in category_values.items()
    }
    return PortfolioSummary(
        market_value=market_value,
        cost_value=cost_value,
        profit=market_value - pending_market - cost_value,
        category_values=category_values,
        category_weights=weights,
        unpriced_codes=tuple(unpriced),
        pending_cost_codes=tuple(pending),
    )


def weekly_gains(holdings: Sequence[Holding], now: Optional[datetime] = None) -> WeeklyGains:
    """Week-to-date gains per category.

    Non-cash holdings gain ``units * (current - monday_baseline)``. Cash
    holdings gain the dividends reinvested since Monday.
    """
    monday = week_start(now).date()
    gains = {category: 0.0 for category in CATEGORY_ORDER}

    for holding in holdings:
        if holding.category is Category.CASH:
            for entry in holding.transactions:
                t = entry.transaction
                if isinstance(t, Reinvest) and t.settlement_date >= monday:
                    amount = t.recorded_cash_amount
                    gains[Category.CASH] += t.units if amount is None else amount
            continue

        if holding.liquidated or holding.current_price is None:
            continue
        baseline = find_monday_baseline(holding.history, now)
        baseline_price = baseline.nav if baseline else holding.current_price
        gains[holding.category] += holding.total_units * (holding.current_price - baseline_price)

    return WeeklyGains(week_start=monday, total=sum(gains.values()), by_category=gains)


def cash_balance_history(holding: Holding) -> List[Tuple[date, float]]:
    """Running balance of a cash holding after each transaction.

    Cash amounts are taken from the recorded amount when present, else the
    units (one unit of a money-market fund is one currency unit).
    """
    balance = 0.0
    history = []
    for entry in holding.transactions:
        t = entry.transaction
        change = t.units if t.recorded_cash_amount is None else t.recorded_cash_amount
        balance += t.sign * change
        history.append((t.settlement_date, round(balance, 2)))
    return history
