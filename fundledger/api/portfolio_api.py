"""User-friendly Portfolio API.

This module wires the repository, price provider, aggregator, allocator and
decision builder into one high-level interface for scripts and notebooks.
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from fundledger.backup.transport import BackupTransport
from fundledger.data.base import PriceProvider
from fundledger.data.providers.eastmoney_provider import EastMoneyProvider
from fundledger.data.repository import LedgerSnapshot, PortfolioRepository, Preferences
from fundledger.data.storage.database import KeyValueStore
from fundledger.data.sync import PriceSync, SyncReport
from fundledger.portfolio.allocator import RebalanceAllocator
from fundledger.portfolio.decisions import DecisionSet, StrategyDecisionBuilder, select_representatives
from fundledger.portfolio.holdings import active_holdings, aggregate_holdings
from fundledger.portfolio.models import (
    EPSILON,
    TRANSACTION_TYPES,
    Category,
    Holding,
    Transaction,
    TransactionKind,
)
from fundledger.portfolio.projection import ProjectionResult, project_compound_growth
from fundledger.portfolio.valuation import (
    PortfolioSummary,
    WeeklyGains,
    portfolio_summary,
    summarize_categories,
    weekly_gains,
)
from fundledger.utils.config import Config, load_config
from fundledger.utils.exceptions import PersistedDataError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)


class PortfolioAPI:
    """High-level API for the fund ledger.

    Example:
        >>> api = PortfolioAPI()
        >>> api.record_transaction("buy", "000216", "Gold ETF Link", "gold",
        ...                        units=100, settlement_date="2024-03-11")
        >>> api.sync_prices()
        >>> plan = api.plan_category_budget(300)
        >>> api.confirm_decisions(plan)
    """

    def __init__(
        self,
        repository: Optional[PortfolioRepository] = None,
        provider: Optional[PriceProvider] = None,
        allocator: Optional[RebalanceAllocator] = None,
        config: Optional[Config] = None,
    ):
        """Initialize PortfolioAPI.

        Args:
            repository: Ledger repository (defaults to the configured SQLite store)
            provider: PriceProvider (defaults to EastMoneyProvider)
            allocator: RebalanceAllocator (defaults to the configured strategy)
            config: Application config (defaults to config/default.yaml)
        """
        self.config = config or load_config()

        if repository is None:
            db_path = self.config.get("storage.db_path", "data/fundledger.db")
            repository = PortfolioRepository(KeyValueStore(db_path))
        self.repository = repository

        self.provider = provider or EastMoneyProvider(
            history_url=self.config.get("provider.history_url", EastMoneyProvider.HISTORY_URL),
            realtime_url=self.config.get("provider.realtime_url", EastMoneyProvider.REALTIME_URL),
            timeout=self.config.get("provider.timeout", 15),
        )
        self.price_sync = PriceSync(
            self.provider, self.repository, max_workers=self.config.get("provider.max_workers", 4)
        )
        self.allocator = allocator or RebalanceAllocator(self.config.get("strategy", {}))

        self.epsilon = self.config.get("holdings.epsilon", EPSILON)
        self.unit_precision = self.config.get("strategy.unit_precision", 2)
        self.strong_dip_threshold = self.config.get("strategy.strong_dip_threshold", -0.015)

        self.realtime: Dict[str, float] = {}
        self.load_errors: List[PersistedDataError] = []

        logger.debug("PortfolioAPI initialized with %s", type(self.provider).__name__)

    # Ledger

    def record_transaction(
        self,
        kind: str | TransactionKind,
        code: str,
        name: str,
        category: str | Category,
        units: float,
        settlement_date: str | date,
        cash_amount: Optional[float] = None,
    ) -> Transaction:
        """Append a user-entered transaction to the ledger."""
        if isinstance(settlement_date, str):
            settlement_date = date.fromisoformat(settlement_date)
        transaction = TRANSACTION_TYPES[TransactionKind(kind)](
            code=code,
            name=name,
            category=Category(category),
            units=units,
            settlement_date=settlement_date,
            recorded_cash_amount=cash_amount,
        )
        self.repository.add_transactions([transaction])
        return transaction

    def remove_transaction(self, transaction_id: str) -> bool:
        return self.repository.remove_transaction(transaction_id)

    def transactions(self) -> List[Transaction]:
        return self.repository.load_transactions()

    # Valuation

    def snapshot(self) -> LedgerSnapshot:
        """Take a repository snapshot, remembering keys that failed to load."""
        snapshot = self.repository.snapshot()
        self.load_errors = list(snapshot.errors)
        for error in snapshot.errors:
            logger.error("Stored data could not be loaded: %s", error)
        return snapshot

    def get_holdings(self, include_liquidated: bool = True) -> List[Holding]:
        snapshot = self.snapshot()
        holdings = aggregate_holdings(
            snapshot.transactions, snapshot.price_history, self.realtime, self.epsilon
        )
        return holdings if include_liquidated else active_holdings(holdings)

    def get_summary(self) -> PortfolioSummary:
        return portfolio_summary(self.get_holdings())

    def get_weekly_gains(self, now: Optional[datetime] = None) -> WeeklyGains:
        return weekly_gains(self.get_holdings(), now)

    # Market data

    def _market_codes(self, holdings: Sequence[Holding]) -> List[str]:
        return [h.code for h in holdings if h.category is not Category.CASH]

    def sync_prices(self, codes: Optional[Sequence[str]] = None) -> SyncReport:
        """Refresh cached NAV history (all non-cash instruments by default)."""
        if codes is None:
            codes = self._market_codes(self.get_holdings())
        return self.price_sync.sync_history(codes)

    def refresh_realtime(self) -> Dict[str, float]:
        """Fetch live quotes for active non-cash holdings."""
        codes = self._market_codes(self.get_holdings(include_liquidated=False))
        self.realtime = self.price_sync.fetch_realtime(codes)
        return dict(self.realtime)

    # Planning

    def get_preferences(self) -> Preferences:
        return self.repository.load_preferences()

    def set_preferred_instrument(self, category: str | Category, code: str) -> Preferences:
        current = self.repository.load_preferences()
        selected = dict(current.selected)
        selected[Category(category)] = code
        preferences = Preferences(selected=selected, default_budget=current.default_budget)
        self.repository.save_preferences(preferences)
        return preferences

    def _builder(self, snapshot: LedgerSnapshot, now: Optional[datetime]) -> StrategyDecisionBuilder:
        return StrategyDecisionBuilder(
            snapshot.price_history, self.realtime, now, unit_precision=self.unit_precision
        )

    def plan_category_budget(
        self,
        budget: Optional[float] = None,
        now: Optional[datetime] = None,
        settlement_date: Optional[date] = None,
    ) -> DecisionSet:
        """Split a budget across categories toward equal weight.

        Args:
            budget: Cash to deploy (defaults to the saved or configured budget)
            now: Clock for the Monday baseline (defaults to now)
            settlement_date: Settlement date of the decisions (defaults to today)

        Returns:
            Editable DecisionSet
        """
        snapshot = self.snapshot()
        holdings = aggregate_holdings(
            snapshot.transactions, snapshot.price_history, self.realtime, self.epsilon
        )
        preferences = self.repository.load_preferences()
        if budget is None:
            budget = preferences.default_budget

        representatives = select_representatives(holdings, preferences.selected)
        allocation = self.allocator.allocate_categories(
            summarize_categories(holdings), budget, eligible=list(representatives)
        )
        if allocation.unallocated:
            logger.warning("%.2f of the budget has no instrument to go to", allocation.unallocated)

        return self._builder(snapshot, now).build_category_plan(
            allocation, representatives, settlement_date
        )

    def plan_inflow(
        self,
        category: str | Category,
        inflow: float,
        now: Optional[datetime] = None,
        settlement_date: Optional[date] = None,
    ) -> DecisionSet:
        """Spread an inflow over all held instruments of one category."""
        category = Category(category)
        snapshot = self.snapshot()
        holdings = [
            h
            for h in aggregate_holdings(
                snapshot.transactions, snapshot.price_history, self.realtime, self.epsilon
            )
            if h.category is category and not h.liquidated and h.current_price is not None
        ]
        allocation = self.allocator.allocate_instruments(
            {h.code: h.market_value for h in holdings}, inflow
        )
        return self._builder(snapshot, now).build_inflow_plan(
            allocation, holdings, settlement_date
        )

    def confirm_decisions(self, plan: DecisionSet) -> List[Transaction]:
        """Append every decision of a plan to the ledger as a buy."""
        transactions = plan.confirm()
        if transactions:
            self.repository.add_transactions(transactions)
        logger.info("Confirmed %d decisions into the ledger", len(transactions))
        return list(transactions)

    # Projection

    def project_growth(
        self,
        initial: Optional[float] = None,
        monthly: Optional[float] = None,
        annual_rate: Optional[float] = None,
        years: Optional[int] = None,
    ) -> ProjectionResult:
        """Project a savings plan; omitted inputs come from ``projection.*`` config."""
        if initial is None:
            initial = self.config.get("projection.initial_principal", 10000)
        if monthly is None:
            monthly = self.config.get("projection.monthly_contribution", 2000)
        if annual_rate is None:
            annual_rate = self.config.get("projection.annual_rate", 8.0)
        if years is None:
            years = self.config.get("projection.years", 20)
        return project_compound_growth(initial, monthly, annual_rate, years)

    # Backup

    def backup(self, transport: BackupTransport) -> str:
        return transport.upload(self.repository.store.export_snapshot())

    def restore(self, transport: BackupTransport, backup_date: str) -> int:
        """Replace local keys with a remote snapshot.

        Returns:
            Number of keys restored
        """
        count = self.repository.store.import_snapshot(transport.download(backup_date))
        self.repository.migrate_legacy_price_cache()
        return count
