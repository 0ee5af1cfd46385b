"""Unit tests for EastMoneyProvider."""

from unittest.mock import MagicMock

import pandas as pd
import pytest
import requests

from fundledger.data.providers.eastmoney_provider import EastMoneyProvider
from fundledger.utils.exceptions import DataProviderError, DataQualityError

# 2024-03-11 00:00 in Asia/Shanghai
MONDAY_MS = 1710086400000
DAY_MS = 86_400_000

HISTORY_SCRIPT = (
    'var fS_name = "Gold ETF Link";'
    "var Data_netWorthTrend = ["
    f'{{"x":{MONDAY_MS},"y":1.0,"equityReturn":0,"unitMoney":""}},'
    f'{{"x":{MONDAY_MS + DAY_MS},"y":1.05,"equityReturn":5,"unitMoney":""}},'
    f'{{"x":{MONDAY_MS + 2 * DAY_MS},"y":0.98,"equityReturn":-6.67,"unitMoney":""}}'
    "];"
    f"var Data_ACWorthTrend = [[{MONDAY_MS},2.0]];"
)


def make_response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.raise_for_status.return_value = None
    return response


class TestEastMoneyProvider:
    """Test cases for EastMoneyProvider."""

    @pytest.fixture
    def session(self) -> MagicMock:
        """Create a mocked requests session."""
        return MagicMock(spec=requests.Session)

    @pytest.fixture
    def provider(self, session: MagicMock) -> EastMoneyProvider:
        """Create provider bound to the mocked session."""
        return EastMoneyProvider(session=session)

    def test_get_price_history_success(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test unit NAV history is parsed into a series."""
        session.get.return_value = make_response(HISTORY_SCRIPT)

        result = provider.get_price_history("000216")

        assert isinstance(result, pd.Series)
        assert result.index.name == "date"
        assert list(result.index) == [
            pd.Timestamp("2024-03-11"),
            pd.Timestamp("2024-03-12"),
            pd.Timestamp("2024-03-13"),
        ]
        assert list(result) == [1.0, 1.05, 0.98]
        session.get.assert_called_once_with(
            "https://fund.eastmoney.com/pingzhongdata/000216.js", timeout=15.0
        )

    def test_accumulated_nav_fallback(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test accumulated NAV is used when unit NAV is absent."""
        session.get.return_value = make_response(
            f"var Data_ACWorthTrend = [[{MONDAY_MS},2.0],[{MONDAY_MS + DAY_MS},2.1]];"
        )

        result = provider.get_price_history("000216")

        assert list(result) == [2.0, 2.1]

    def test_no_history_arrays(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test a script without NAV arrays yields an empty series."""
        session.get.return_value = make_response("var fS_name = 'x';")

        assert provider.get_price_history("000216").empty

    def test_cash_code_is_not_fetched(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test the cash pseudo-instrument never hits the network."""
        assert provider.get_price_history("CASH").empty
        assert provider.get_realtime_valuation("cash") == 1.0
        session.get.assert_not_called()

    def test_request_failure(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test network errors raise DataProviderError."""
        session.get.side_effect = requests.ConnectionError("down")

        with pytest.raises(DataProviderError, match="000216"):
            provider.get_price_history("000216")

    def test_malformed_array(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test an undecodable NAV array raises DataQualityError."""
        session.get.return_value = make_response("var Data_netWorthTrend = [{x: 1}];")

        with pytest.raises(DataQualityError, match="Malformed NAV array"):
            provider.get_price_history("000216")

    def test_malformed_point(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test a point without a value raises DataQualityError."""
        session.get.return_value = make_response(
            f'var Data_netWorthTrend = [{{"x":{MONDAY_MS}}}];'
        )

        with pytest.raises(DataQualityError, match="Malformed NAV point"):
            provider.get_price_history("000216")

    def test_realtime_valuation(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test the JSONP gsz field is returned as a float."""
        session.get.return_value = make_response(
            'jsonpgz({"fundcode":"000216","name":"Gold","gsz":"1.2345","gszzl":"0.52"});'
        )

        assert provider.get_realtime_valuation("000216") == pytest.approx(1.2345)
        _, kwargs = session.get.call_args
        assert "rt" in kwargs["params"]

    @pytest.mark.parametrize(
        "text",
        [
            "jsonpgz();",
            'jsonpgz({"fundcode":"000216"});',
            'jsonpgz({"gsz":"0"});',
            "<html>not found</html>",
        ],
    )
    def test_realtime_unusable_payload(
        self, provider: EastMoneyProvider, session: MagicMock, text: str
    ) -> None:
        """Test unusable realtime payloads return None."""
        session.get.return_value = make_response(text)

        assert provider.get_realtime_valuation("000216") is None

    def test_realtime_request_failure(self, provider: EastMoneyProvider, session: MagicMock) -> None:
        """Test realtime network errors return None instead of raising."""
        session.get.side_effect = requests.Timeout("slow")

        assert provider.get_realtime_valuation("000216") is None
