"""Holding aggregation: ledger + NAV history -> one Holding per instrument.

Algorithm (per instrument):
1. Sort the instrument's transactions by settlement date (stable, so equal
   dates keep ledger order)
2. Resolve an executed price for every transaction
3. Walk the sorted list keeping units held and cash cost of those units:
   buys and reinvestments add ``units * price`` to cost, sells remove cost
   in proportion to the units sold (weighted-average-cost disposal)
4. Weighted-average cost = cost / units while units are held

Executed price priority:
    recorded cash amount  ->  cash category (1.0)  ->  T-day NAV lookback
    ->  unresolved (no history at all)

T-day lookback: find the earliest NAV point dated on or after the
settlement date and use the point immediately before it, since an order
placed on day T executes at T's close and confirms on T+1. With no earlier
point the first point is used. A settlement date beyond the cached history
falls back to the latest point and is flagged stale.
"""

from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from fundledger.data.prices import empty_series, latest_price
from fundledger.portfolio.models import (
    EPSILON,
    Category,
    CostBasisStatus,
    Holding,
    PriceSource,
    ResolvedTransaction,
    Sell,
    Transaction,
)
from fundledger.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


def lookup_t_day_price(
    series: Optional[pd.Series],
    settlement_date: date,
) -> Tuple[Optional[float], Optional[date], PriceSource]:
    """Find the T-day NAV for a settlement date.

    Args:
        series: NAV series of the instrument (may be None or empty)
        settlement_date: Confirmation date of the transaction

    Returns:
        Tuple of (price, date of the NAV point used, source). Price and date
        are None when the series is empty.

    Example:
        >>> # NAV on Mon 10.0, Tue 10.5, Wed 9.8
        >>> lookup_t_day_price(series, wednesday)
        (10.5, tuesday, PriceSource.T_DAY)
    """
    if series is None or series.empty:
        return None, None, PriceSource.UNRESOLVED

    days = series.index.normalize()
    match = int(days.searchsorted(pd.Timestamp(settlement_date), side="left"))

    if match >= len(series):
        position, source = len(series) - 1, PriceSource.STALE
    elif match == 0:
        position, source = 0, PriceSource.FIRST_POINT
    else:
        position, source = match - 1, PriceSource.T_DAY

    return float(series.iloc[position]), days[position].date(), source


def resolve_transaction(
    transaction: Transaction,
    series: Optional[pd.Series],
) -> ResolvedTransaction:
    """Annotate a transaction with its executed price."""
    if transaction.recorded_cash_amount is not None:
        return ResolvedTransaction(
            transaction=transaction,
            executed_price=transaction.recorded_cash_amount / transaction.units,
            executed_value=transaction.recorded_cash_amount,
            price_date=None,
            price_source=PriceSource.RECORDED,
        )

    if transaction.category is Category.CASH:
        return ResolvedTransaction(
            transaction=transaction,
            executed_price=1.0,
            executed_value=transaction.units,
            price_date=transaction.settlement_date,
            price_source=PriceSource.CASH,
        )

    price, price_date, source = lookup_t_day_price(series, transaction.settlement_date)
    return ResolvedTransaction(
        transaction=transaction,
        executed_price=price,
        executed_value=None if price is None else transaction.units * price,
        price_date=price_date,
        price_source=source,
    )


def _current_price(
    code: str,
    category: Category,
    series: pd.Series,
    realtime: Mapping[str, float],
) -> Tuple[Optional[float], bool]:
    if category is Category.CASH:
        return 1.0, False
    quote = realtime.get(code)
    if quote is not None:
        return float(quote), True
    return latest_price(series), False


def build_holding(
    transactions: Sequence[Transaction],
    series: Optional[pd.Series] = None,
    realtime: Optional[Mapping[str, float]] = None,
    epsilon: float = EPSILON,
) -> Holding:
    """Fold the transactions of a single instrument into a Holding.

    Args:
        transactions: Ledger entries of one instrument, in ledger order
        series: NAV history of the instrument
        realtime: Live quotes by code, overriding the latest NAV point
        epsilon: Units at or below this count as liquidated

    Returns:
        Holding with units, weighted-average cost and valuation

    Raises:
        ValueError: If transactions is empty or mixes instrument codes
    """
    if not transactions:
        raise ValueError("Cannot build a holding without transactions")
    first = transactions[0]
    if any(t.code != first.code for t in transactions):
        raise ValueError("All transactions of a holding must share one code")

    series = series if series is not None else empty_series()
    if first.category is Category.CASH:
        series = empty_series()

    ordered = sorted(transactions, key=lambda t: t.settlement_date)
    resolved: List[ResolvedTransaction] = []

    units_so_far = 0.0
    cash_cost_so_far = 0.0
    pending = False
    stale = False

    for transaction in ordered:
        entry = resolve_transaction(transaction, series)
        resolved.append(entry)

        if isinstance(transaction, Sell):
            if units_so_far > 0:
                reduction = (transaction.units / units_so_far) * cash_cost_so_far
                cash_cost_so_far = max(0.0, cash_cost_so_far - reduction)
            units_so_far -= transaction.units
            if units_so_far <= epsilon:
                pending = stale = False
            continue

        if entry.executed_value is None:
            pending = True
        else:
            cash_cost_so_far += entry.executed_value
            stale = stale or entry.is_price_stale
        units_so_far += transaction.units

    if units_so_far > epsilon:
        if pending:
            status, average_cost = CostBasisStatus.PENDING, None
        else:
            status = CostBasisStatus.STALE if stale else CostBasisStatus.CONFIRMED
            average_cost = cash_cost_so_far / units_so_far
    else:
        status, average_cost = CostBasisStatus.CONFIRMED, 0.0

    current_price, is_live = _current_price(first.code, first.category, series, realtime or {})

    if status is not CostBasisStatus.CONFIRMED:
        log_with_context(
            logger,
            "info",
            "Cost basis is provisional",
            code=first.code,
            status=status.value,
        )

    return Holding(
        code=first.code,
        name=first.name,
        category=first.category,
        total_units=units_so_far,
        weighted_average_cost=average_cost,
        current_price=current_price,
        price_is_live=is_live,
        cost_basis_status=status,
        history=series,
        transactions=tuple(resolved),
    )


def _sort_key(holding: Holding):
    market = holding.market_value or 0.0
    return (holding.liquidated, -market, holding.code)


def aggregate_holdings(
    transactions: Sequence[Transaction],
    price_history: Mapping[str, pd.Series],
    realtime: Optional[Mapping[str, float]] = None,
    epsilon: float = EPSILON,
) -> List[Holding]:
    """Build one Holding per distinct instrument code in the ledger.

    Pure and deterministic: the same ledger and price history always give
    the same holdings. Liquidated holdings are kept (after the active ones).

    Args:
        transactions: Full ledger in insertion order
        price_history: NAV series by instrument code
        realtime: Optional live quotes by instrument code
        epsilon: Units at or below this count as liquidated

    Returns:
        Holdings, active first, then by market value descending
    """
    groups: Dict[str, List[Transaction]] = {}
    for transaction in transactions:
        groups.setdefault(transaction.code, []).append(transaction)

    holdings = [
        build_holding(group, price_history.get(code), realtime, epsilon)
        for code, group in groups.items()
    ]
    holdings.sort(key=_sort_key)

    logger.debug(
        "Aggregated %d transactions into %d holdings (%d active)",
        len(transactions),
        len(holdings),
        sum(1 for h in holdings if not h.liquidated),
    )
    return holdings


def active_holdings(holdings: Sequence[Holding]) -> List[Holding]:
    return [h for h in holdings if not h.liquidated]
