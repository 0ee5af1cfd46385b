"""Core data structures for the portfolio ledger.

The ledger is an append-only list of transactions. Every other portfolio
structure (holdings, category values, plans) is derived from it together
with the cached NAV history.

Transactions are a tagged variant: ``Buy``, ``Sell`` and ``Reinvest`` share
the fields of ``Transaction`` and differ only in the sign their units carry.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple

import pandas as pd

# Units at or below this are a fully liquidated position
EPSILON = 0.0001


class Category(Enum):
    """Top-level asset classes used for the equal-weight target."""

    EQUITY = "equity"
    BOND = "bond"
    GOLD = "gold"
    CASH = "cash"

    @classmethod
    def _missing_(cls, value):
        # Older ledgers call equity funds "stock"
        if isinstance(value, str):
            lowered = value.lower()
            if lowered == "stock":
                return cls.EQUITY
            for member in cls:
                if member.value == lowered:
                    return member
        return None


# Ties in gap ordering fall back to this order
CATEGORY_ORDER: Tuple[Category, ...] = (
    Category.EQUITY,
    Category.GOLD,
    Category.BOND,
    Category.CASH,
)


class TransactionKind(Enum):
    """Transaction types as persisted in the ledger."""

    BUY = "buy"
    SELL = "sell"
    REINVEST = "reinvest"


class PriceSource(Enum):
    """How the price of a transaction or decision was obtained."""

    RECORDED = "recorded"
    CASH = "cash"
    T_DAY = "t_day"
    FIRST_POINT = "first_point"
    STALE = "stale"
    UNRESOLVED = "unresolved"
    # Decision pricing only
    REALTIME = "realtime"
    LATEST = "latest"


class CostBasisStatus(Enum):
    """Confidence of a holding's weighted-average cost."""

    CONFIRMED = "confirmed"
    STALE = "stale"
    PENDING = "pending"


@dataclass(frozen=True)
class Transaction:
    """A single ledger event.

    Use one of the concrete variants (``Buy``, ``Sell``, ``Reinvest``).
    ``units`` is always positive; ``signed_units`` applies the variant's sign.

    Attributes:
        code: Instrument code (``CASH`` for the cash pseudo-instrument)
        name: Display name
        category: Asset category
        units: Number of units moved (> 0)
        settlement_date: Confirmation date of the event
        recorded_cash_amount: Cash actually settled, if known. Overrides any
            price-derived valuation of the event.
        id: Unique identifier
        timing_alpha: Gain versus the Monday baseline, recorded when the
            transaction came from a confirmed strategy decision
    """

    code: str
    name: str
    category: Category
    units: float
    settlement_date: date
    recorded_cash_amount: Optional[float] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timing_alpha: Optional[float] = None

    kind: ClassVar[TransactionKind]
    sign: ClassVar[int] = 1

    def __post_init__(self):
        """Validate transaction fields."""
        if type(self) is Transaction:
            raise TypeError("Transaction is abstract; use Buy, Sell or Reinvest")
        if not self.code:
            raise ValueError("code must not be empty")
        if not isinstance(self.category, Category):
            object.__setattr__(self, "category", Category(self.category))
        if not self.units > 0:
            raise ValueError(f"units must be positive, got {self.units}")
        if self.recorded_cash_amount is not None and self.recorded_cash_amount < 0:
            raise ValueError(
                f"recorded_cash_amount must be non-negative, got {self.recorded_cash_amount}"
            )

    @property
    def signed_units(self) -> float:
        return self.sign * self.units

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        data: Dict[str, Any] = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.kind.value,
            "category": self.category.value,
            "units": self.units,
            "date": self.settlement_date.isoformat(),
        }
        if self.recorded_cash_amount is not None:
            data["amount"] = self.recorded_cash_amount
        if self.timing_alpha is not None:
            data["timingAlpha"] = self.timing_alpha
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Transaction":
        """Build the right variant from a persisted record.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        kind = TransactionKind(data["type"])
        amount = data.get("amount")
        alpha = data.get("timingAlpha")
        return TRANSACTION_TYPES[kind](
            id=str(data["id"]),
            code=str(data["code"]),
            name=str(data.get("name") or data["code"]),
            category=Category(data["category"]),
            units=float(data["units"]),
            settlement_date=date.fromisoformat(str(data["date"])[:10]),
            recorded_cash_amount=None if amount is None else float(amount),
            timing_alpha=None if alpha is None else float(alpha),
        )


@dataclass(frozen=True)
class Buy(Transaction):
    kind: ClassVar[TransactionKind] = TransactionKind.BUY
    sign: ClassVar[int] = 1


@dataclass(frozen=True)
class Sell(Transaction):
    kind: ClassVar[TransactionKind] = TransactionKind.SELL
    sign: ClassVar[int] = -1


@dataclass(frozen=True)
class Reinvest(Transaction):
    """Dividend reinvestment: adds units like a buy."""

    kind: ClassVar[TransactionKind] = TransactionKind.REINVEST
    sign: ClassVar[int] = 1


TRANSACTION_TYPES = {
    TransactionKind.BUY: Buy,
    TransactionKind.SELL: Sell,
    TransactionKind.REINVEST: Reinvest,
}


@dataclass(frozen=True)
class ResolvedTransaction:
    """A ledger entry annotated with the price it was valued at.

    Attributes:
        transaction: The original ledger entry
        executed_price: Per-unit price used for cost accounting (None when
            no price could be resolved)
        executed_value: Cash value of the event (recorded amount, or
            units * executed_price)
        price_date: Date of the NAV point used, if any
        price_source: How the price was obtained
    """

    transaction: Transaction
    executed_price: Optional[float]
    executed_value: Optional[float]
    price_date: Optional[date]
    price_source: PriceSource

    @property
    def is_price_stale(self) -> bool:
        return self.price_source is PriceSource.STALE

    @property
    def is_resolved(self) -> bool:
        return self.price_source is not PriceSource.UNRESOLVED


@dataclass(frozen=True)
class Holding:
    """Aggregated position in one instrument.

    Derived from the ledger and price history on every change; never
    persisted.

    Attributes:
        code: Instrument code
        name: Display name
        category: Asset category
        total_units: Signed sum of all transaction units
        weighted_average_cost: Cost per held unit; 0 when liquidated, None
            while the cost basis is pending a price sync
        current_price: Latest valuation per unit, None when unknown
        price_is_live: True when current_price came from a realtime quote
        cost_basis_status: Confidence of weighted_average_cost
        history: NAV series the holding was valued against
        transactions: Price-annotated ledger entries, settlement order
    """

    code: str
    name: str
    category: Category
    total_units: float
    weighted_average_cost: Optional[float]
    current_price: Optional[float]
    price_is_live: bool = False
    cost_basis_status: CostBasisStatus = CostBasisStatus.CONFIRMED
    history: pd.Series = field(
        default_factory=lambda: pd.Series(dtype=float), repr=False, compare=False
    )
    transactions: Tuple[ResolvedTransaction, ...] = field(default=(), repr=False)

    @property
    def liquidated(self) -> bool:
        return self.total_units <= EPSILON

    @property
    def market_value(self) -> Optional[float]:
        if self.liquidated:
            return 0.0
        if self.current_price is None:
            return None
        return self.total_units * self.current_price

    @property
    def cost_value(self) -> Optional[float]:
        if self.liquidated:
            return 0.0
        if self.weighted_average_cost is None:
            return None
        return self.total_units * self.weighted_average_cost

    @property
    def profit(self) -> Optional[float]:
        market, cost = self.market_value, self.cost_value
        if market is None or cost is None:
            return None
        return market - cost
