"""Unit tests for PortfolioAPI."""

from datetime import date, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pandas as pd
import pytest

from fundledger.api.portfolio_api import PortfolioAPI
from fundledger.backup.transport import BackupTransport
from fundledger.data.base import PriceProvider
from fundledger.data.prices import PricePoint, points_to_series
from fundledger.data.repository import NAV_CACHE_PREFIX, PortfolioRepository
from fundledger.data.storage.database import KeyValueStore
from fundledger.portfolio.allocator import RebalanceAllocator
from fundledger.portfolio.models import Buy, Category, CostBasisStatus
from fundledger.utils.config import Config

# Wednesday noon; the week started Monday 2024-03-11
NOW = datetime(2024, 3, 13, 12, 0)


def flat_series(nav: float = 1.0) -> pd.Series:
    return points_to_series(
        PricePoint(datetime(2024, 3, day), nav) for day in (7, 8, 11, 12)
    )


@pytest.fixture
def store(tmp_path: Path) -> KeyValueStore:
    """Temporary key-value store."""
    store = KeyValueStore(str(tmp_path / "api.db"))
    yield store
    store.close()


@pytest.fixture
def provider() -> MagicMock:
    """Mock price provider."""
    return MagicMock(spec=PriceProvider)


@pytest.fixture
def api(store: KeyValueStore, provider: MagicMock) -> PortfolioAPI:
    """PortfolioAPI over a temporary store and a mock provider."""
    return PortfolioAPI(
        repository=PortfolioRepository(store),
        provider=provider,
        config=Config({"strategy": {"default_budget": 400}}),
    )


@pytest.fixture
def balanced(api: PortfolioAPI) -> PortfolioAPI:
    """Portfolio of equity 1000, bond 1000, cash 1000 and gold 600."""
    for code, category, units in (
        ("EQ1", "equity", 1000),
        ("BD1", "bond", 1000),
        ("GD1", "gold", 600),
    ):
        api.repository.save_price_history(code, flat_series())
        api.record_transaction("buy", code, f"Fund {code}", category, units, "2024-03-08", cash_amount=units)
    api.record_transaction("buy", "CASH", "Money Market", "cash", 1000, "2024-03-08")
    return api


class TestPortfolioAPIInit:
    """Test cases for PortfolioAPI initialization."""

    def test_config_is_applied(self, api: PortfolioAPI) -> None:
        """Test strategy settings reach the allocator."""
        assert isinstance(api.allocator, RebalanceAllocator)
        assert api.allocator.default_budget == 400
        assert api.unit_precision == 2
        assert api.strong_dip_threshold == -0.015

    def test_custom_allocator(self, store: KeyValueStore, provider: MagicMock) -> None:
        """Test PortfolioAPI with custom allocator."""
        allocator = RebalanceAllocator({"precision": 0})
        api = PortfolioAPI(
            repository=PortfolioRepository(store), provider=provider, allocator=allocator, config=Config({})
        )

        assert api.allocator is allocator


class TestLedger:
    """Test cases for recording transactions."""

    def test_record_transaction(self, api: PortfolioAPI) -> None:
        """Test a user entry is appended to the ledger."""
        transaction = api.record_transaction("buy", "110020", "CSI 300", "stock", 10, "2024-03-11", 20.5)

        assert isinstance(transaction, Buy)
        assert transaction.category is Category.EQUITY
        assert transaction.settlement_date == date(2024, 3, 11)
        assert api.transactions() == [transaction]

    def test_record_invalid_transaction(self, api: PortfolioAPI) -> None:
        """Test invalid entries are rejected and not stored."""
        with pytest.raises(ValueError):
            api.record_transaction("buy", "110020", "CSI 300", "equity", 0, date(2024, 3, 11))
        assert api.transactions() == []

    def test_remove_transaction(self, api: PortfolioAPI) -> None:
        """Test removing a recorded transaction."""
        transaction = api.record_transaction("buy", "CASH", "MMF", "cash", 10, date(2024, 3, 11))

        assert api.remove_transaction(transaction.id)
        assert api.transactions() == []


class TestValuation:
    """Test cases for holdings and summaries."""

    def test_holdings_and_summary(self, balanced: PortfolioAPI) -> None:
        """Test holdings are valued from the cached history."""
        holdings = balanced.get_holdings()
        summary = balanced.get_summary()

        assert {h.code for h in holdings} == {"EQ1", "BD1", "GD1", "CASH"}
        assert summary.market_value == pytest.approx(3600.0)
        assert summary.category_values[Category.GOLD] == pytest.approx(600.0)
        assert summary.profit == pytest.approx(0.0)

    def test_weekly_gains(self, balanced: PortfolioAPI) -> None:
        """Test a flat week has no gains."""
        assert balanced.get_weekly_gains(NOW).total == pytest.approx(0.0)

    def test_corrupt_cache_is_reported(self, balanced: PortfolioAPI, store: KeyValueStore) -> None:
        """Test a damaged NAV entry leaves the holding unpriced and is reported."""
        store.set_raw(NAV_CACHE_PREFIX + "EQ1", "not json")

        holdings = {h.code: h for h in balanced.get_holdings()}

        assert holdings["EQ1"].current_price is None
        assert [e.key for e in balanced.load_errors] == [NAV_CACHE_PREFIX + "EQ1"]
        assert balanced.get_summary().unpriced_codes == ("EQ1",)


class TestMarketData:
    """Test cases for price refresh."""

    def test_sync_prices_skips_cash(self, balanced: PortfolioAPI, provider: MagicMock) -> None:
        """Test every non-cash instrument is refreshed."""
        provider.get_price_history.return_value = flat_series(1.1)

        report = balanced.sync_prices()

        assert set(report.updated) == {"EQ1", "BD1", "GD1"}
        assert balanced.get_summary().category_values[Category.EQUITY] == pytest.approx(1100.0)

    def test_refresh_realtime(self, balanced: PortfolioAPI, provider: MagicMock) -> None:
        """Test live quotes value the holdings."""
        provider.get_realtime_valuation.return_value = 1.05

        quotes = balanced.refresh_realtime()

        assert quotes == {"EQ1": 1.05, "BD1": 1.05, "GD1": 1.05}
        gold = next(h for h in balanced.get_holdings() if h.code == "GD1")
        assert gold.price_is_live
        assert gold.market_value == pytest.approx(630.0)

    def test_pending_cost_until_synced(self, api: PortfolioAPI, provider: MagicMock) -> None:
        """Test a buy without history becomes confirmed after a sync."""
        api.record_transaction("buy", "NEW", "New Fund", "bond", 100, "2024-03-12")
        assert api.get_holdings()[0].cost_basis_status is CostBasisStatus.PENDING

        provider.get_price_history.return_value = flat_series(2.0)
        api.sync_prices()

        holding = api.get_holdings()[0]
        assert holding.cost_basis_status is CostBasisStatus.CONFIRMED
        assert holding.weighted_average_cost == pytest.approx(2.0)


class TestPlanning:
    """Test cases for building and confirming plans."""

    def test_category_plan_fills_gold_gap(self, balanced: PortfolioAPI) -> None:
        """Test the default budget goes to the under-weight category."""
        plan = balanced.plan_category_budget(now=NOW)

        assert [d.code for d in plan] == ["GD1"]
        decision = plan.get("GD1")
        assert decision.cash_amount == 400.0
        assert decision.settlement_units == 400.0
        assert decision.settlement_date == NOW.date()

    def test_confirm_decisions_appends_buys(self, balanced: PortfolioAPI) -> None:
        """Test confirming a plan is reflected in holdings."""
        plan = balanced.plan_category_budget(400, now=NOW)

        transactions = balanced.confirm_decisions(plan)

        assert len(transactions) == 1
        assert len(balanced.transactions()) == 5
        summary = balanced.get_summary()
        assert summary.category_values[Category.GOLD] == pytest.approx(1000.0)
        assert summary.cost_value == pytest.approx(4000.0)

    def test_confirm_empty_plan(self, balanced: PortfolioAPI) -> None:
        """Test confirming an empty plan writes nothing."""
        plan = balanced.plan_category_budget(0, now=NOW)

        assert balanced.confirm_decisions(plan) == []
        assert len(balanced.transactions()) == 4

    def test_preferred_instrument(self, api: PortfolioAPI) -> None:
        """Test the preferred instrument receives the category's cash."""
        for code, units in (("EQ1", 100), ("EQ2", 10)):
            api.repository.save_price_history(code, flat_series())
            api.record_transaction("buy", code, code, "equity", units, "2024-03-08", cash_amount=units)

        assert [d.code for d in api.plan_category_budget(200, now=NOW)] == ["EQ1"]

        api.set_preferred_instrument("equity", "EQ2")

        assert [d.code for d in api.plan_category_budget(200, now=NOW)] == ["EQ2"]
        assert api.get_preferences().selected == {Category.EQUITY: "EQ2"}

    def test_inflow_plan(self, api: PortfolioAPI) -> None:
        """Test an inflow tops up the under-weight instrument only."""
        for code, units in (("EQ1", 100), ("EQ2", 10)):
            api.repository.save_price_history(code, flat_series())
            api.record_transaction("buy", code, code, "equity", units, "2024-03-08", cash_amount=units)

        plan = api.plan_inflow("equity", 100, now=NOW)

        assert [d.code for d in plan] == ["EQ2"]
        assert plan.get("EQ2").cash_amount == 100.0

    def test_edit_date_then_confirm(self, balanced: PortfolioAPI) -> None:
        """Test an edited settlement date is what gets recorded."""
        plan = balanced.plan_category_budget(400, now=NOW)
        plan.override_settlement_date("GD1", date(2024, 3, 12))

        transactions = balanced.confirm_decisions(plan)

        assert transactions[0].settlement_date == date(2024, 3, 12)


class TestBackup:
    """Test cases for backup and restore."""

    def test_backup_uploads_store(self, balanced: PortfolioAPI) -> None:
        """Test the whole store is uploaded."""
        transport = MagicMock(spec=BackupTransport)
        transport.upload.return_value = "2024-03-13"

        assert balanced.backup(transport) == "2024-03-13"
        snapshot = transport.upload.call_args[0][0]
        assert len(snapshot["fund_transactions"]) == 4
        assert NAV_CACHE_PREFIX + "GD1" in snapshot

    def test_restore_migrates_legacy_cache(self, api: PortfolioAPI) -> None:
        """Test restoring an old single-key cache splits it per instrument."""
        transport = MagicMock(spec=BackupTransport)
        transport.download.return_value = {
            "fund_transactions": [
                {"id": "t1", "code": "GD1", "name": "Gold", "type": "buy",
                 "category": "gold", "units": 10, "date": "2024-03-11", "amount": 10},
            ],
            "fund_nav_cache": {"GD1": [{"timestamp": 1710086400000, "nav": 1.0}]},
        }

        assert api.restore(transport, "2024-03-11") == 2
        assert api.repository.cached_codes() == ["GD1"]
        assert api.get_holdings()[0].current_price == 1.0


class TestProjection:
    """Test cases for the savings projection."""

    def test_project_growth_uses_config_defaults(
        self, store: KeyValueStore, provider: MagicMock
    ) -> None:
        """Test omitted inputs come from the projection config section."""
        api = PortfolioAPI(
            repository=PortfolioRepository(store),
            provider=provider,
            config=Config(
                {
                    "projection": {
                        "initial_principal": 10000,
                        "monthly_contribution": 0,
                        "annual_rate": 12.0,
                        "years": 10,
                    }
                }
            ),
        )

        result = api.project_growth()

        assert result.crossover_year == 6
        assert len(result.yearly) == 11

    def test_project_growth_arguments_override(self, api: PortfolioAPI) -> None:
        """Test explicit inputs win over configuration."""
        result = api.project_growth(initial=1000, monthly=100, annual_rate=0.0, years=2)

        assert result.final_balance == 3400
