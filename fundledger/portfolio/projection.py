"""Compound growth projection for a savings plan.

Projects an initial principal plus a fixed monthly contribution at an
annual rate compounded monthly:

1. Each month, interest = balance * (annual_rate / 100 / 12) is credited
   first, then the contribution is added
2. At every 12th month a yearly row is recorded (figures rounded to whole
   currency units, halves rounding up)
3. The crossover year is the first year-end at which cumulative interest
   exceeds cumulative principal

The effective annual rate is ``(1 + monthly_rate) ** 12 - 1`` in percent.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

from fundledger.utils.logging import get_logger

logger = get_logger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class YearlyProjection:
    """Position at the end of one projection year.

    Attributes:
        year: Years since the start (0 is the starting point)
        total_principal: Cumulative money put in
        total_interest: Cumulative interest earned
        balance: Balance at year end
        yearly_interest: Interest earned during this year alone
    """

    year: int
    total_principal: int
    total_interest: int
    balance: int
    yearly_interest: int


@dataclass
class ProjectionResult:
    """Outcome of a compound growth projection.

    Attributes:
        yearly: One row per year, starting with year 0
        final_balance: Balance after the last month
        total_principal: Principal plus all contributions
        total_interest: All interest earned
        effective_annual_rate: Annual rate after monthly compounding, percent
        crossover_year: First year whose cumulative interest exceeds the
            cumulative principal, or None if that never happens
    """

    final_balance: int
    total_principal: int
    total_interest: int
    effective_annual_rate: float
    crossover_year: Optional[int] = None
    yearly: List[YearlyProjection] = field(default_factory=list)


def project_compound_growth(
    initial: float,
    monthly: float,
    annual_rate: float,
    years: int,
) -> ProjectionResult:
    """Project a savings plan with monthly compounding.

    Args:
        initial: Starting principal
        monthly: Contribution added at the end of every month
        annual_rate: Nominal annual interest rate in percent (8.0 = 8%)
        years: Whole years to project

    Returns:
        ProjectionResult

    Raises:
        ValueError: If an amount or the duration is negative, or years is
            not a whole number

    Example:
        >>> result = project_compound_growth(10000, 0, 12.0, 10)
        >>> result.crossover_year
        6
    """
    if initial < 0 or monthly < 0:
        raise ValueError("initial and monthly amounts must be non-negative")
    if int(years) != years or years < 0:
        raise ValueError(f"years must be a non-negative whole number, got {years}")
    years = int(years)

    monthly_rate = annual_rate / 100 / 12
    effective_annual_rate = ((1 + monthly_rate) ** 12 - 1) * 100

    balance = float(initial)
    contributed = float(initial)
    interest_earned = 0.0
    crossover_year: Optional[int] = None

    yearly = [
        YearlyProjection(
            year=0,
            total_principal=round_half_up(initial),
            total_interest=0,
            balance=round_half_up(initial),
            yearly_interest=0,
        )
    ]
    previous_balance = balance

    for month in range(1, years * 12 + 1):
        interest = balance * monthly_rate
        balance += interest + monthly
        contributed += monthly
        interest_earned += interest

        if month % 12:
            continue

        year = month // 12
        if crossover_year is None and interest_earned > contributed:
            crossover_year = year

        yearly.append(
            YearlyProjection(
                year=year,
                total_principal=round_half_up(contributed),
                total_interest=round_half_up(interest_earned),
                balance=round_half_up(balance),
                yearly_interest=round_half_up(balance - previous_balance - monthly * 12),
            )
        )
        previous_balance = balance

    logger.debug(
        "Projected %d years at %.2f%%: balance %.0f, crossover %s",
        years,
        annual_rate,
        balance,
        crossover_year,
    )

    return ProjectionResult(
        final_balance=round_half_up(balance),
        total_principal=round_half_up(contributed),
        total_interest=round_half_up(interest_earned),
        effective_annual_rate=effective_annual_rate,
        crossover_year=crossover_year,
        yearly=yearly,
    )
