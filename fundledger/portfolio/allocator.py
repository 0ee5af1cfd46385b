"""Gap-driven cash allocation toward an equal-weight portfolio.

Two allocation rules steer new cash toward equal weighting:

Category gap allocation (split a fixed budget across the four categories):
1. target = (current total + budget) / 4
2. gap = max(0, target - category value)
3. Walk categories from the largest gap down, giving each
   min(remaining budget, gap); categories without an eligible holding are
   skipped
4. Any budget left once all gaps are filled goes entirely to the first
   category that received money

Instrument inflow equalization (spread an inflow over instruments of one
category):
1. target = (sum of active values + inflow) / number of active instruments
2. Instruments already above the target are excluded (they get 0) and the
   target is recomputed over the rest
3. Repeat until no active instrument exceeds the target; each remaining
   instrument receives target - value

Both rules round amounts to the configured precision and put the rounding
residue on the first-processed recipient (for inflows, the one with the
largest top-up), so amounts always sum to the budget exactly and never go
below zero.
"""

from dataclasses import dataclass, field
from typing import Collection, Dict, Hashable, List, Mapping, Optional, Sequence

from fundledger.portfolio.models import CATEGORY_ORDER, Category
from fundledger.utils.exceptions import AllocationError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)

# Relative slack when comparing a value with the inflow target
EXCLUSION_TOLERANCE = 1e-9


@dataclass
class GapAllocation:
    """Result of category gap allocation.

    Attributes:
        budget: Cash that was distributed
        target_value: Equal-weight target value per category
        gaps: Shortfall to target per category
        amounts: Cash assigned per category, in processing order
        unallocated: Budget nobody could receive (no eligible category)
    """

    budget: float
    target_value: float
    gaps: Dict[Category, float]
    amounts: Dict[Category, float] = field(default_factory=dict)
    unallocated: float = 0.0


@dataclass
class InflowAllocation:
    """Result of instrument inflow equalization.

    Attributes:
        inflow: Cash that was distributed
        target_per_instrument: Final equal-weight target of the active set
        amounts: Top-up per instrument (0 for excluded ones), input order
        excluded: Instruments already above the target
        unallocated: Inflow nobody could receive (no instruments)
    """

    inflow: float
    target_per_instrument: float
    amounts: Dict[str, float] = field(default_factory=dict)
    excluded: List[str] = field(default_factory=list)
    unallocated: float = 0.0


def reconcile_amounts(
    amounts: Dict[Hashable, float],
    total: float,
    precision: int,
    anchor: Hashable,
) -> Dict[Hashable, float]:
    """Round amounts and move the rounding residue onto ``anchor``.

    A negative residue never takes an amount below zero: whatever the
    anchor cannot give up is taken from the other keys, largest first.

    Args:
        amounts: Raw amounts by key (insertion order is kept)
        total: The amount the result must sum to
        precision: Decimal places to round to
        anchor: Key that absorbs the residue

    Returns:
        Rounded amounts summing to ``round(total, precision)``
    """
    rounded = {key: round(value, precision) for key, value in amounts.items()}
    residue = round(round(total, precision) - sum(rounded.values()), precision)
    if residue > 0:
        rounded[anchor] = round(rounded[anchor] + residue, precision)
        return rounded

    others = sorted((key for key in rounded if key != anchor), key=lambda key: -rounded[key])
    for key in [anchor, *others]:
        if not residue:
            break
        take = min(-residue, rounded[key])
        rounded[key] = round(rounded[key] - take, precision)
        residue = round(residue + take, precision)
    return rounded


def allocate_by_gap(
    category_values: Mapping[Category, float],
    budget: float,
    eligible: Optional[Collection[Category]] = None,
    precision: int = 2,
) -> GapAllocation:
    """Split a budget across categories, largest shortfall first.

    Args:
        category_values: Current market value per category (missing
            categories count as 0)
        budget: Cash to deploy (>= 0)
        eligible: Categories that have an instrument to receive cash;
            defaults to all four
        precision: Decimal places of the assigned amounts

    Returns:
        GapAllocation with amounts in processing order

    Raises:
        AllocationError: If the budget or a category value is negative

    Example:
        >>> values = {Category.EQUITY: 1000, Category.BOND: 1000,
        ...           Category.GOLD: 0, Category.CASH: 1000}
        >>> allocate_by_gap(values, 1000).amounts
        {<Category.GOLD: 'gold'>: 1000.0}
    """
    if budget < 0:
        raise AllocationError(f"budget must be non-negative, got {budget}")

    values = {category: float(category_values.get(category, 0.0)) for category in CATEGORY_ORDER}
    negative = [c.value for c, v in values.items() if v < 0]
    if negative:
        raise AllocationError(f"category values must be non-negative: {negative}")

    eligible = set(CATEGORY_ORDER if eligible is None else eligible)
    target = (sum(values.values()) + budget) / len(CATEGORY_ORDER)
    gaps = {category: max(0.0, target - value) for category, value in values.items()}

    # sorted() is stable, so equal gaps keep CATEGORY_ORDER
    order = sorted(CATEGORY_ORDER, key=lambda category: -gaps[category])

    raw: Dict[Category, float] = {}
    remaining = float(budget)
    for category in order:
        if remaining <= 0:
            break
        if category not in eligible:
            if gaps[category] > 0:
                logger.info("No eligible instrument for %s, gap left unfilled", category.value)
            continue
        give = min(remaining, gaps[category])
        if give > 0:
            raw[category] = give
            remaining -= give

    if remaining > 0:
        recipients = list(raw) or [c for c in order if c in eligible]
        if recipients:
            overflow_to = recipients[0]
            raw[overflow_to] = raw.get(overflow_to, 0.0) + remaining
            logger.debug("Budget overflow %.2f assigned to %s", remaining, overflow_to.value)
            remaining = 0.0

    result = GapAllocation(budget=float(budget), target_value=target, gaps=gaps)
    if raw:
        result.amounts = reconcile_amounts(raw, budget, precision, next(iter(raw)))
    else:
        result.unallocated = float(budget)
        if budget > 0:
            logger.warning("No eligible category for budget %.2f", budget)

    return result


def allocate_inflow(
    instrument_values: Mapping[str, float],
    inflow: float,
    precision: int = 2,
) -> InflowAllocation:
    """Top up instruments toward an equal value, excluding overfunded ones.

    The active set shrinks at most once per instrument, so the loop runs at
    most ``len(instrument_values) + 1`` times.

    Args:
        instrument_values: Current market value per instrument code
        inflow: New cash to distribute (>= 0)
        precision: Decimal places of the assigned amounts

    Returns:
        InflowAllocation; every amount is >= 0 and they sum to the inflow

    Raises:
        AllocationError: If the inflow or a value is negative

    Example:
        >>> allocate_inflow({"A": 300, "B": 100, "C": 50}, 150).amounts
        {'A': 0.0, 'B': 50.0, 'C': 100.0}
    """
    if inflow < 0:
        raise AllocationError(f"inflow must be non-negative, got {inflow}")

    codes = list(instrument_values)
    values = [float(instrument_values[code]) for code in codes]
    if any(v < 0 for v in values):
        raise AllocationError("instrument values must be non-negative")

    if not codes:
        logger.warning("No instruments to receive inflow %.2f", inflow)
        return InflowAllocation(
            inflow=float(inflow),
            target_per_instrument=0.0,
            unallocated=float(inflow),
        )

    if inflow == 0:
        return InflowAllocation(
            inflow=0.0,
            target_per_instrument=sum(values) / len(values),
            amounts={code: 0.0 for code in codes},
        )

    active = [True] * len(codes)
    target = 0.0
    for _ in range(len(codes) + 1):
        members = [i for i, is_active in enumerate(active) if is_active]
        target = (sum(values[i] for i in members) + inflow) / len(members)
        slack = EXCLUSION_TOLERANCE * max(1.0, abs(target))
        overfunded = [i for i in members if values[i] - target > slack]
        if not overfunded:
            break
        for i in overfunded:
            active[i] = False

    raw = {
        code: (max(0.0, target - values[i]) if active[i] else 0.0)
        for i, code in enumerate(codes)
    }
    # Largest top-up absorbs the rounding residue
    anchor = max((code for i, code in enumerate(codes) if active[i]), key=lambda code: raw[code])

    return InflowAllocation(
        inflow=float(inflow),
        target_per_instrument=target,
        amounts=reconcile_amounts(raw, inflow, precision, anchor),
        excluded=[code for i, code in enumerate(codes) if not active[i]],
    )


class RebalanceAllocator:
    """Configured entry point for both allocation rules.

    Configuration Parameters:
        precision: Decimal places of assigned cash (default 2)
        budget_presets: Budgets offered to the user (default [200, 300, 500])
        default_budget: Budget used when none is given (default 200)

    Example:
        >>> allocator = RebalanceAllocator({"precision": 0})
        >>> plan = allocator.allocate_categories(values, budget=300)
    """

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}

        self.precision = config.get("precision", 2)
        self.budget_presets = list(config.get("budget_presets", [200, 300, 500]))
        self.default_budget = config.get("default_budget", 200)

        self._validate_config()

    def _validate_config(self) -> None:
        """Validate configuration parameters."""
        if not isinstance(self.precision, int) or self.precision < 0:
            raise ValueError(f"precision must be a non-negative int, got {self.precision}")
        if any(b <= 0 for b in self.budget_presets):
            raise ValueError(f"budget_presets must be positive, got {self.budget_presets}")
        if self.default_budget <= 0:
            raise ValueError(f"default_budget must be positive, got {self.default_budget}")

    def allocate_categories(
        self,
        category_values: Mapping[Category, float],
        budget: Optional[float] = None,
        eligible: Optional[Collection[Category]] = None,
    ) -> GapAllocation:
        budget = self.default_budget if budget is None else budget
        result = allocate_by_gap(category_values, budget, eligible, self.precision)
        logger.info(
            "Category plan for budget %.2f: %s",
            budget,
            {c.value: a for c, a in result.amounts.items()},
        )
        return result

    def allocate_instruments(
        self,
        instrument_values: Mapping[str, float],
        inflow: float,
    ) -> InflowAllocation:
        result = allocate_inflow(instrument_values, inflow, self.precision)
        logger.info(
            "Inflow plan for %.2f over %d instruments (%d excluded)",
            inflow,
            len(instrument_values),
            len(result.excluded),
        )
        return result

    @staticmethod
    def eligible_categories(codes_by_category: Mapping[Category, Sequence[str]]) -> List[Category]:
        """Categories that have at least one instrument to receive cash."""
        return [c for c in CATEGORY_ORDER if codes_by_category.get(c)]
