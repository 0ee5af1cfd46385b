"""Strategy decisions: turn an allocation into confirmable buy orders.

A decision is working memory. It records how much cash goes to which
instrument, at what price, for how many units, and on which settlement
date. The user may edit units, cash or date before confirming; changing
the date re-resolves the price with the T-day rule so date, price and units
always stay consistent. Confirming converts every decision into a ``Buy``
for the ledger.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from fundledger.data.prices import latest_price
from fundledger.portfolio.allocator import GapAllocation, InflowAllocation
from fundledger.portfolio.holdings import lookup_t_day_price
from fundledger.portfolio.models import CATEGORY_ORDER, Buy, Category, Holding, PriceSource
from fundledger.portfolio.valuation import find_monday_baseline
from fundledger.utils.exceptions import DecisionError
from fundledger.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


class TimingSignal(Enum):
    """Week-to-date timing read of the equity and gold decisions."""

    HIGH = "high"  # strong dip: deploy the larger budget
    GOOD = "good"  # below the Monday baseline
    WARNING = "warning"  # above the Monday baseline


@dataclass
class StrategyDecision:
    """One pending buy.

    Attributes:
        code: Instrument code
        name: Display name
        category: Asset category
        suggested_cash_amount: Cash the allocator assigned
        cash_amount: Cash the user intends to spend (editable)
        settlement_units: Units expected at confirmation (editable)
        settlement_date: Confirmation date (editable)
        reference_baseline_price: NAV at the start of the week
        current_price: NAV used to convert cash into units
        price_source: Where current_price came from
    """

    code: str
    name: str
    category: Category
    suggested_cash_amount: float
    cash_amount: float
    settlement_units: float
    settlement_date: date
    reference_baseline_price: float
    current_price: float
    price_source: PriceSource = PriceSource.LATEST

    @property
    def is_price_stale(self) -> bool:
        """True when the settlement date lies beyond the cached NAV history."""
        return self.price_source is PriceSource.STALE

    @property
    def timing_gap(self) -> float:
        """Relative move of the current price against the baseline."""
        if self.category is Category.CASH or not self.reference_baseline_price:
            return 0.0
        return (self.current_price - self.reference_baseline_price) / self.reference_baseline_price

    @property
    def timing_alpha(self) -> float:
        """Value of the units at the baseline minus the cash paid."""
        return self.reference_baseline_price * self.settlement_units - self.cash_amount


def select_representatives(
    holdings: Sequence[Holding],
    preferred: Optional[Mapping[Category, str]] = None,
) -> Dict[Category, Holding]:
    """Pick the instrument that receives each category's cash.

    Only active holdings with a known price are eligible. A preferred code
    wins when it is eligible; otherwise the holding with the most units.
    """
    preferred = preferred or {}
    chosen: Dict[Category, Holding] = {}

    for holding in holdings:
        if holding.liquidated or holding.current_price is None:
            continue
        current = chosen.get(holding.category)
        if current is None or holding.total_units > current.total_units:
            chosen[holding.category] = holding

    for category, code in preferred.items():
        match = next(
            (
                h
                for h in holdings
                if h.code == code
                and h.category is category
                and not h.liquidated
                and h.current_price is not None
            ),
            None,
        )
        if match is not None:
            chosen[category] = match
        else:
            logger.info("Preferred %s instrument %s is not held, ignoring", category.value, code)

    return chosen


def settlement_units(cash: float, price: float, precision: int) -> float:
    """Units bought by ``cash`` at ``price``, rounded.

    Raises:
        DecisionError: If the cash buys less than the smallest unit step
    """
    units = round(cash / price, precision)
    if units <= 0:
        raise DecisionError(
            f"{cash:.2f} at {price:g} buys less than {10 ** -precision:g} units"
        )
    return units


class DecisionSet:
    """Editable list of decisions for one planning session.

    Example:
        >>> plan = builder.build_category_plan(allocation, representatives)
        >>> plan.override_settlement_date("000216", date(2024, 3, 12))
        >>> transactions = plan.confirm()
    """

    def __init__(
        self,
        decisions: Sequence[StrategyDecision],
        price_history: Mapping[str, pd.Series],
        unit_precision: int = 2,
    ):
        self._decisions: List[StrategyDecision] = list(decisions)
        self._price_history = price_history
        self.unit_precision = unit_precision

    def __iter__(self) -> Iterator[StrategyDecision]:
        return iter(self._decisions)

    def __len__(self) -> int:
        return len(self._decisions)

    @property
    def decisions(self) -> Tuple[StrategyDecision, ...]:
        return tuple(self._decisions)

    def get(self, code: str) -> StrategyDecision:
        for decision in self._decisions:
            if decision.code == code:
                return decision
        raise DecisionError(f"No decision for {code} in this plan")

    def total_cash(self) -> float:
        return sum(d.cash_amount for d in self._decisions)

    def override_units(self, code: str, units: float) -> StrategyDecision:
        """Set the confirmed units (e.g. once the T+1 confirmation arrives)."""
        if units <= 0:
            raise DecisionError(f"units must be positive, got {units}")
        decision = self.get(code)
        decision.settlement_units = units
        return decision

    def override_cash_amount(self, code: str, amount: float) -> StrategyDecision:
        """Change the cash spent; units follow at the current price."""
        if amount <= 0:
            raise DecisionError(f"cash amount must be positive, got {amount}")
        decision = self.get(code)
        units = settlement_units(amount, decision.current_price, self.unit_precision)
        decision.cash_amount = amount
        decision.settlement_units = units
        return decision

    def override_settlement_date(self, code: str, settlement_date: date) -> StrategyDecision:
        """Move the settlement date, re-resolving price and units.

        A date beyond the cached history prices at the latest NAV and marks
        the decision stale. The decision is left untouched on error.

        Raises:
            DecisionError: If the instrument has no NAV history to resolve
                the new date against, or the cash buys no units
        """
        decision = self.get(code)
        if decision.category is Category.CASH:
            decision.settlement_date = settlement_date
            return decision

        price, price_date, source = lookup_t_day_price(
            self._price_history.get(code), settlement_date
        )
        if price is None:
            raise DecisionError(f"No NAV history for {code}; sync prices before editing dates")
        if source is PriceSource.STALE:
            logger.warning(
                "Settlement %s for %s is beyond cached NAV history, using %s",
                settlement_date,
                code,
                price_date,
            )

        units = settlement_units(decision.cash_amount, price, self.unit_precision)
        decision.settlement_date = settlement_date
        decision.current_price = price
        decision.price_source = source
        decision.settlement_units = units
        return decision

    def timing_signal(self, strong_dip_threshold: float = -0.015) -> TimingSignal:
        """Read the equity and gold timing gaps.

        HIGH when either fell at least ``strong_dip_threshold`` since the
        Monday baseline, GOOD when either is below it, WARNING otherwise.
        """
        gaps = [
            next((d.timing_gap for d in self._decisions if d.category is category), 0.0)
            for category in (Category.EQUITY, Category.GOLD)
        ]
        if any(gap <= strong_dip_threshold for gap in gaps):
            return TimingSignal.HIGH
        if any(gap < 0 for gap in gaps):
            return TimingSignal.GOOD
        return TimingSignal.WARNING

    def projected_weights(
        self,
        category_values: Mapping[Category, float],
    ) -> Dict[Category, Tuple[float, float]]:
        """Current and post-plan allocation percentage per category."""
        total = sum(category_values.values())
        added_total = self.total_cash()
        projected = {}
        for category in CATEGORY_ORDER:
            value = category_values.get(category, 0.0)
            added = sum(d.cash_amount for d in self._decisions if d.category is category)
            current_pct = value / total * 100 if total > 0 else 0.0
            new_total = total + added_total
            projected_pct = (value + added) / new_total * 100 if new_total > 0 else 25.0
            projected[category] = (current_pct, projected_pct)
        return projected

    def confirm(self) -> List[Buy]:
        """Convert every decision into a Buy and clear the set.

        The cash amount is recorded on the transaction, so its cost basis is
        the cash actually paid.

        Raises:
            DecisionError: If any decision has no units; nothing is
                confirmed in that case
        """
        empty = [d.code for d in self._decisions if d.settlement_units <= 0]
        if empty:
            raise DecisionError(f"Decisions without units cannot be confirmed: {empty}")

        transactions = []
        for decision in self._decisions:
            transaction = Buy(
                code=decision.code,
                name=decision.name,
                category=decision.category,
                units=decision.settlement_units,
                settlement_date=decision.settlement_date,
                recorded_cash_amount=decision.cash_amount,
                timing_alpha=round(decision.timing_alpha, 2),
            )
            transactions.append(transaction)
            log_with_context(
                logger,
                "info",
                "Decision confirmed",
                code=decision.code,
                units=decision.settlement_units,
                cash=decision.cash_amount,
                alpha=transaction.timing_alpha,
            )

        self._decisions = []
        return transactions


class StrategyDecisionBuilder:
    """Builds DecisionSets from allocator output.

    Args:
        price_history: NAV series by instrument code (snapshot)
        realtime: Live quotes by instrument code
        now: Clock used for the Monday baseline and default settlement date
        unit_precision: Decimal places of settlement units
    """

    def __init__(
        self,
        price_history: Mapping[str, pd.Series],
        realtime: Optional[Mapping[str, float]] = None,
        now: Optional[datetime] = None,
        unit_precision: int = 2,
    ):
        self.price_history = price_history
        self.realtime = realtime or {}
        self.now = now or datetime.now()
        self.unit_precision = unit_precision

    def _resolve_prices(self, holding: Holding) -> Tuple[float, float, PriceSource]:
        if holding.category is Category.CASH:
            return 1.0, 1.0, PriceSource.CASH

        series = self.price_history.get(holding.code, holding.history)
        baseline_point = find_monday_baseline(series, self.now)
        baseline = baseline_point.nav if baseline_point else None

        current, source = self.realtime.get(holding.code), PriceSource.REALTIME
        if current is None:
            current, source = latest_price(series), PriceSource.LATEST
        if current is None:
            current = baseline
        if current is None:
            raise DecisionError(f"No price known for {holding.code}; sync prices first")

        return (current if baseline is None else baseline), current, source

    def reference_prices(self, holding: Holding) -> Tuple[float, float]:
        """Monday baseline and current price of an instrument.

        Raises:
            DecisionError: If no price at all is known for the instrument
        """
        baseline, current, _ = self._resolve_prices(holding)
        return baseline, current

    def decide(
        self,
        holding: Holding,
        amount: float,
        settlement_date: Optional[date] = None,
    ) -> StrategyDecision:
        """Convert cash for one instrument into a decision.

        Raises:
            DecisionError: If no price is known or the cash buys no units
        """
        baseline, current, source = self._resolve_prices(holding)
        return StrategyDecision(
            code=holding.code,
            name=holding.name,
            category=holding.category,
            suggested_cash_amount=amount,
            cash_amount=amount,
            settlement_units=settlement_units(amount, current, self.unit_precision),
            settlement_date=settlement_date or self.now.date(),
            reference_baseline_price=baseline,
            current_price=current,
            price_source=source,
        )

    def _buyable(self, holding: Holding, amount: float) -> bool:
        if amount <= 0:
            return False
        _, current, _ = self._resolve_prices(holding)
        if round(amount / current, self.unit_precision) <= 0:
            logger.warning(
                "Dropping %.2f for %s: too little to buy a unit at %g",
                amount,
                holding.code,
                current,
            )
            return False
        return True

    def build_category_plan(
        self,
        allocation: GapAllocation,
        representatives: Mapping[Category, Holding],
        settlement_date: Optional[date] = None,
    ) -> DecisionSet:
        """One decision per category that received cash.

        Amounts too small to buy a single unit step are dropped, so the
        plan total can fall a few cents short of the budget.
        """
        decisions = []
        for category, amount in allocation.amounts.items():
            if amount <= 0:
                continue
            holding = representatives.get(category)
            if holding is None:
                raise DecisionError(f"No instrument selected for {category.value}")
            if self._buyable(holding, amount):
                decisions.append(self.decide(holding, amount, settlement_date))
        return DecisionSet(decisions, self.price_history, self.unit_precision)

    def build_inflow_plan(
        self,
        allocation: InflowAllocation,
        holdings: Sequence[Holding],
        settlement_date: Optional[date] = None,
    ) -> DecisionSet:
        """One decision per instrument with a top-up large enough to buy units."""
        by_code = {h.code: h for h in holdings}
        decisions = [
            self.decide(by_code[code], amount, settlement_date)
            for code, amount in allocation.amounts.items()
            if self._buyable(by_code[code], amount)
        ]
        return DecisionSet(decisions, self.price_history, self.unit_precision)
