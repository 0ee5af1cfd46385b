"""Price Providers - NAV sources.

This module provides price provider implementations for fetching fund NAV
history and intraday valuations.
"""

from fundledger.data.providers.eastmoney_provider import EastMoneyProvider

__all__ = [
    "EastMoneyProvider",
]
