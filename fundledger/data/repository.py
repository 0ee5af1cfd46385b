"""Repository for the ledger, the NAV cache and user preferences.

The repository is the single writer of persisted portfolio state. Readers
take an immutable ``LedgerSnapshot`` before every aggregation pass, so the
pure portfolio functions never see a half-updated cache.

Store layout:
    fund_transactions         list of transaction records
    fund_nav_cache:<code>     list of {timestamp, nav} points, one key per
                              instrument so each entry updates atomically
    preferences               {selected: {category: code}, default_budget}
"""

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from fundledger.data.prices import PricePoint, points_to_series, series_to_points
from fundledger.data.storage.database import KeyValueStore
from fundledger.portfolio.models import Category, Transaction
from fundledger.utils.exceptions import PersistedDataError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)

TRANSACTIONS_KEY = "fund_transactions"
NAV_CACHE_PREFIX = "fund_nav_cache:"
LEGACY_NAV_CACHE_KEY = "fund_nav_cache"
PREFERENCES_KEY = "preferences"


@dataclass(frozen=True)
class Preferences:
    """User choices that steer plan building.

    Attributes:
        selected: Preferred instrument code per category
        default_budget: Budget used when none is given
    """

    selected: Mapping[Category, str] = field(default_factory=dict)
    default_budget: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": {cat.value: code for cat, code in self.selected.items()},
            "default_budget": self.default_budget,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Preferences":
        selected = {Category(cat): str(code) for cat, code in data.get("selected", {}).items()}
        budget = data.get("default_budget")
        return cls(selected=selected, default_budget=None if budget is None else float(budget))


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of the ledger and NAV cache at one instant.

    Attributes:
        transactions: Ledger entries in insertion order
        price_history: NAV series per instrument code (copies)
        errors: Keys that failed to load; their instruments have no history
            in this snapshot
    """

    transactions: Tuple[Transaction, ...]
    price_history: Mapping[str, pd.Series]
    errors: Tuple[PersistedDataError, ...] = ()

    @property
    def codes(self) -> List[str]:
        """Distinct instrument codes in ledger order."""
        return list(dict.fromkeys(t.code for t in self.transactions))


class PortfolioRepository:
    """Reads and writes portfolio state in a KeyValueStore.

    Example:
        >>> repo = PortfolioRepository(KeyValueStore("data/fundledger.db"))
        >>> repo.add_transactions([buy])
        >>> snapshot = repo.snapshot()
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._write_lock = threading.Lock()

    # Ledger

    def load_transactions(self) -> List[Transaction]:
        """Load the ledger.

        Raises:
            PersistedDataError: If the stored ledger is not a list of valid
                transaction records
        """
        records = self.store.get(TRANSACTIONS_KEY, default=[])
        if not isinstance(records, list):
            raise PersistedDataError(
                TRANSACTIONS_KEY, f"expected a list, got {type(records).__name__}"
            )

        transactions = []
        for position, record in enumerate(records):
            try:
                transactions.append(Transaction.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                raise PersistedDataError(
                    TRANSACTIONS_KEY, f"record {position} is invalid: {e!r}"
                ) from e
        return transactions

    def save_transactions(self, transactions: Sequence[Transaction]) -> None:
        with self._write_lock:
            self.store.set(TRANSACTIONS_KEY, [t.to_dict() for t in transactions])

    def add_transactions(self, transactions: Sequence[Transaction]) -> None:
        """Append transactions to the ledger."""
        with self._write_lock:
            current = self.load_transactions()
            known = {t.id for t in current}
            duplicates = [t.id for t in transactions if t.id in known]
            if duplicates:
                raise ValueError(f"Transaction ids already in ledger: {duplicates}")
            current.extend(transactions)
            self.store.set(TRANSACTIONS_KEY, [t.to_dict() for t in current])
        logger.info("Appended %d transactions to ledger", len(transactions))

    def remove_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction by id.

        Returns:
            True if a transaction was removed
        """
        with self._write_lock:
            current = self.load_transactions()
            remaining = [t for t in current if t.id != transaction_id]
            if len(remaining) == len(current):
                return False
            self.store.set(TRANSACTIONS_KEY, [t.to_dict() for t in remaining])
        logger.info("Removed transaction %s", transaction_id)
        return True

    # NAV cache

    def load_price_history(self, code: str) -> pd.Series:
        """Load the cached NAV series of one instrument (empty if none).

        Raises:
            PersistedDataError: If the cached entry is malformed
        """
        key = NAV_CACHE_PREFIX + code
        records = self.store.get(key, default=[])
        try:
            if not isinstance(records, list):
                raise TypeError(f"expected a list, got {type(records).__name__}")
            return points_to_series(PricePoint.from_dict(r) for r in records)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistedDataError(key, repr(e)) from e

    def save_price_history(self, code: str, series: pd.Series) -> None:
        """Replace the cached NAV series of one instrument."""
        with self._write_lock:
            self.store.set(
                NAV_CACHE_PREFIX + code, [p.to_dict() for p in series_to_points(series)]
            )
        logger.debug("Cached %d NAV points for %s", len(series), code)

    def cached_codes(self) -> List[str]:
        return [key[len(NAV_CACHE_PREFIX):] for key in self.store.keys(NAV_CACHE_PREFIX)]

    def migrate_legacy_price_cache(self) -> int:
        """Split a single-key NAV cache (older backups) into per-instrument keys.

        Returns:
            Number of instruments migrated
        """
        legacy = self.store.get(LEGACY_NAV_CACHE_KEY)
        if legacy is None:
            return 0
        if not isinstance(legacy, dict):
            raise PersistedDataError(LEGACY_NAV_CACHE_KEY, "expected an object of code -> points")

        with self._write_lock:
            for code, points in legacy.items():
                self.store.set(NAV_CACHE_PREFIX + code, points)
            self.store.delete(LEGACY_NAV_CACHE_KEY)
        logger.info("Migrated legacy NAV cache for %d instruments", len(legacy))
        return len(legacy)

    # Preferences

    def load_preferences(self) -> Preferences:
        data = self.store.get(PREFERENCES_KEY)
        if data is None:
            return Preferences()
        try:
            return Preferences.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise PersistedDataError(PREFERENCES_KEY, repr(e)) from e

    def save_preferences(self, preferences: Preferences) -> None:
        with self._write_lock:
            self.store.set(PREFERENCES_KEY, preferences.to_dict())

    # Snapshots

    def snapshot(self) -> LedgerSnapshot:
        """Take an immutable snapshot of ledger and NAV cache.

        A malformed NAV entry is reported in ``errors`` and its instrument
        is left without history; a malformed ledger raises.

        Raises:
            PersistedDataError: If the ledger itself cannot be loaded
        """
        with self._write_lock:
            transactions = tuple(self.load_transactions())
            history: Dict[str, pd.Series] = {}
            errors: List[PersistedDataError] = []

            for code in dict.fromkeys(t.code for t in transactions):
                try:
                    history[code] = self.load_price_history(code)
                except PersistedDataError as e:
                    logger.error("Skipping NAV cache for %s: %s", code, e)
                    errors.append(e)

        return LedgerSnapshot(
            transactions=transactions,
            price_history=MappingProxyType(history),
            errors=tuple(errors),
        )
