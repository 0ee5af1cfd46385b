"""Fund Ledger - personal fund portfolio ledger and rebalancing planner."""

__version__ = "0.1.0"
