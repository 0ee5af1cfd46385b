"""User-friendly APIs for Fund Ledger.

Components:
- PortfolioAPI: Ledger, valuation, planning and backup in one facade
"""

from fundledger.api.portfolio_api import PortfolioAPI

__all__ = [
    "PortfolioAPI",
]
