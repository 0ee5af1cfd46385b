"""Portfolio Layer.

This layer derives holdings from the transaction ledger and turns new cash
into equal-weight buy decisions.

Components:
- Transaction / Buy / Sell / Reinvest: Ledger entries
- Holding: Aggregated position per instrument
- RebalanceAllocator: Category gap and instrument inflow allocation
- StrategyDecisionBuilder / DecisionSet: Editable buy plans
- project_compound_growth: Savings plan projection with monthly compounding
"""

from fundledger.portfolio.allocator import (
    GapAllocation,
    InflowAllocation,
    RebalanceAllocator,
    allocate_by_gap,
    allocate_inflow,
)
from fundledger.portfolio.decisions import (
    DecisionSet,
    StrategyDecision,
    StrategyDecisionBuilder,
    TimingSignal,
)
from fundledger.portfolio.holdings import aggregate_holdings
from fundledger.portfolio.models import (
    Buy,
    Category,
    Holding,
    Reinvest,
    Sell,
    Transaction,
)
from fundledger.portfolio.projection import ProjectionResult, project_compound_growth

__all__ = [
    "Transaction",
    "Buy",
    "Sell",
    "Reinvest",
    "Category",
    "Holding",
    "aggregate_holdings",
    "allocate_by_gap",
    "allocate_inflow",
    "GapAllocation",
    "InflowAllocation",
    "RebalanceAllocator",
    "StrategyDecision",
    "StrategyDecisionBuilder",
    "DecisionSet",
    "TimingSignal",
    "ProjectionResult",
    "project_compound_growth",
]
