"""Abstract base class for NAV price providers.

This module defines the PriceProvider interface that all concrete price
sources must implement. The portfolio core only ever talks to this
interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

import pandas as pd


class PriceProvider(ABC):
    """Abstract interface for fund NAV sources.

    Example:
        >>> class MyProvider(PriceProvider):
        ...     def get_price_history(self, code):
        ...         ...
        ...     def get_realtime_valuation(self, code):
        ...         ...
    """

    @abstractmethod
    def get_price_history(self, code: str) -> pd.Series:
        """Fetch the full NAV history of an instrument.

        Args:
            code: Instrument code (e.g. "000216")

        Returns:
            Series of NAV floats indexed by a sorted DatetimeIndex named
            "date". Empty for unknown instruments and the cash
            pseudo-instrument.

        Raises:
            DataProviderError: If the fetch or parse fails
            DataQualityError: If the returned data fails quality checks
        """
        pass

    @abstractmethod
    def get_realtime_valuation(self, code: str) -> Optional[float]:
        """Fetch an intraday valuation of an instrument.

        Args:
            code: Instrument code

        Returns:
            Estimated NAV per unit, or None on any failure
        """
        pass
