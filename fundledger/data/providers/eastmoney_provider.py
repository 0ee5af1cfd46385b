"""EastMoney fund data provider implementation.

This module implements the PriceProvider interface against the public
EastMoney endpoints used by Chinese mutual fund apps:

- ``pingzhongdata/<code>.js``: a JavaScript file assigning the NAV history
  to ``Data_netWorthTrend`` (unit NAV) and ``Data_ACWorthTrend``
  (accumulated NAV).
- ``fundgz/<code>.js``: a JSONP payload ``jsonpgz({...})`` whose ``gsz``
  field is the intraday valuation.
"""

import json
import re
import time
from typing import Any, List, Optional

import pandas as pd
import requests

from fundledger.data.base import PriceProvider
from fundledger.data.prices import (
    CASH_CODES,
    PricePoint,
    empty_series,
    from_epoch_ms,
    points_to_series,
)
from fundledger.data.validation import PriceSeriesValidator
from fundledger.utils.exceptions import DataProviderError, DataQualityError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)

_NET_WORTH_RE = re.compile(r"Data_netWorthTrend\s*=\s*(\[.*?\]);", re.DOTALL)
_AC_WORTH_RE = re.compile(r"Data_ACWorthTrend\s*=\s*(\[.*?\]);", re.DOTALL)
_JSONP_RE = re.compile(r"jsonpgz\((.*)\)", re.DOTALL)


class EastMoneyProvider(PriceProvider):
    """EastMoney NAV provider.

    Example:
        >>> provider = EastMoneyProvider()
        >>> history = provider.get_price_history("000216")
        >>> quote = provider.get_realtime_valuation("000216")
    """

    HISTORY_URL = "https://fund.eastmoney.com/pingzhongdata/{code}.js"
    REALTIME_URL = "https://fundgz.1234567.com.cn/js/{code}.js"

    def __init__(
        self,
        history_url: str = HISTORY_URL,
        realtime_url: str = REALTIME_URL,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize EastMoney provider.

        Args:
            history_url: URL template for the NAV history script
            realtime_url: URL template for the realtime valuation JSONP
            timeout: Request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.history_url = history_url
        self.realtime_url = realtime_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_price_history(self, code: str) -> pd.Series:
        if not code or code.upper() in CASH_CODES:
            return empty_series()

        url = self.history_url.format(code=code)
        logger.info("Fetching NAV history for %s", code)

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            error_msg = f"Failed to fetch NAV history for {code}: {e}"
            logger.error(error_msg)
            raise DataProviderError(error_msg) from e

        points = self._parse_history_script(response.text, code)
        series = PriceSeriesValidator.validate(points_to_series(points), code)

        if series.empty:
            logger.warning("No NAV history returned for %s", code)
        else:
            logger.info(
                "Fetched %d NAV points for %s from %s to %s",
                len(series),
                code,
                series.index[0].date(),
                series.index[-1].date(),
            )
        return series

    def get_realtime_valuation(self, code: str) -> Optional[float]:
        if not code or code.upper() in CASH_CODES:
            return 1.0

        url = self.realtime_url.format(code=code)
        try:
            response = self.session.get(
                url, params={"rt": int(time.time() * 1000)}, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Realtime valuation request failed for %s: %s", code, e)
            return None

        match = _JSONP_RE.search(response.text)
        if not match:
            logger.warning("Unexpected realtime payload for %s", code)
            return None

        try:
            payload = json.loads(match.group(1))
            value = float(payload["gsz"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Could not parse realtime valuation for %s: %s", code, e)
            return None

        if value <= 0:
            logger.warning("Ignoring non-positive realtime valuation %s for %s", value, code)
            return None
        return value

    def _parse_history_script(self, text: str, code: str) -> List[PricePoint]:
        """Extract NAV points from the pingzhongdata script.

        Unit NAV is preferred; accumulated NAV is the fallback.

        Raises:
            DataQualityError: If the arrays exist but cannot be decoded
        """
        match = _NET_WORTH_RE.search(text)
        if match:
            rows = self._decode(match.group(1), code)
            try:
                return [self._point(row["x"], row["y"], code) for row in rows]
            except (KeyError, TypeError) as e:
                raise DataQualityError(f"Malformed NAV point for {code}: {e}") from e

        match = _AC_WORTH_RE.search(text)
        if match:
            rows = self._decode(match.group(1), code)
            try:
                return [self._point(row[0], row[1], code) for row in rows]
            except (IndexError, KeyError, TypeError) as e:
                raise DataQualityError(f"Malformed NAV point for {code}: {e}") from e

        return []

    @staticmethod
    def _decode(raw: str, code: str) -> List[Any]:
        try:
            rows = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DataQualityError(f"Malformed NAV array for {code}: {e}") from e
        if not isinstance(rows, list):
            raise DataQualityError(f"NAV data for {code} is not a list")
        return rows

    @staticmethod
    def _point(timestamp: Any, nav: Any, code: str) -> PricePoint:
        try:
            return PricePoint(timestamp=from_epoch_ms(int(timestamp)), nav=float(nav))
        except (TypeError, ValueError) as e:
            raise DataQualityError(f"Malformed NAV point for {code}: {e}") from e
