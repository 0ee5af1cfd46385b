"""Concurrent NAV refresh into the repository.

Fetches are fanned out per instrument over a thread pool. Each finished
fetch is written to its own cache key right away, so abandoning a batch
half way never leaves a partially written entry. Aggregation should only
run after ``sync_history`` returns, on a fresh repository snapshot.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from fundledger.data.base import PriceProvider
from fundledger.data.prices import CASH_CODES
from fundledger.data.repository import PortfolioRepository
from fundledger.utils.exceptions import DataError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SyncReport:
    """Outcome of a history refresh.

    Attributes:
        updated: Points cached per refreshed instrument
        failed: Error message per instrument whose cache was left as is
    """

    updated: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class PriceSync:
    """Refreshes cached NAV history and fetches live quotes.

    The sync never retries; failed instruments keep their previous cache
    and are listed in the report.

    Example:
        >>> sync = PriceSync(EastMoneyProvider(), repository)
        >>> report = sync.sync_history(["000216", "110020"])
        >>> quotes = sync.fetch_realtime(["000216"])
    """

    def __init__(
        self,
        provider: PriceProvider,
        repository: PortfolioRepository,
        max_workers: int = 4,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.provider = provider
        self.repository = repository
        self.max_workers = max_workers

    @staticmethod
    def _fetchable(codes: Iterable[str]) -> List[str]:
        return [c for c in dict.fromkeys(codes) if c and c.upper() not in CASH_CODES]

    def sync_history(self, codes: Iterable[str]) -> SyncReport:
        """Fetch and cache the NAV history of each instrument."""
        report = SyncReport()
        targets = self._fetchable(codes)
        if not targets:
            return report

        logger.info("Syncing NAV history for %d instruments", len(targets))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self.provider.get_price_history, code): code for code in targets}
            for future in as_completed(futures):
                code = futures[future]
                try:
                    series = future.result()
                except DataError as e:
                    logger.warning("NAV sync failed for %s: %s", code, e)
                    report.failed[code] = str(e)
                    continue

                if series.empty:
                    logger.warning("No NAV data for %s, keeping cached history", code)
                    report.failed[code] = "no data returned"
                    continue

                self.repository.save_price_history(code, series)
                report.updated[code] = len(series)

        logger.info(
            "NAV sync finished: %d updated, %d failed", len(report.updated), len(report.failed)
        )
        return report

    def fetch_realtime(self, codes: Iterable[str]) -> Dict[str, float]:
        """Fetch live quotes; instruments without a quote are left out."""
        targets = self._fetchable(codes)
        quotes: Dict[str, float] = {}
        if not targets:
            return quotes

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self.provider.get_realtime_valuation, code): code for code in targets
            }
            for future in as_completed(futures):
                code = futures[future]
                value = future.result()
                if value is not None:
                    quotes[code] = value

        logger.info("Fetched %d/%d realtime valuations", len(quotes), len(targets))
        return quotes
