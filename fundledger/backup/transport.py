"""Remote backup of the whole key-value store.

Backups are opaque blobs keyed by date. The transport only moves them; what
goes into a blob is decided by ``KeyValueStore.export_snapshot``.

HTTP protocol (JSON envelopes with a ``success`` flag):
    GET    {base}/backup/list       -> {"success", "backups": [dates]}
    POST   {base}/save              -> {"success", "date"}
    GET    {base}/backup?date=D     -> {"success", "data"}
    DELETE {base}/backup?date=D     -> {"success"}
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from fundledger.utils.exceptions import BackupError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)


class BackupTransport(ABC):
    """Abstract interface for moving store snapshots to remote storage."""

    @abstractmethod
    def upload(self, snapshot: Dict[str, Any]) -> str:
        """Upload a snapshot, returning the date key it was stored under."""
        pass

    @abstractmethod
    def download(self, backup_date: str) -> Dict[str, Any]:
        """Fetch the snapshot stored under a date key."""
        pass

    @abstractmethod
    def list_snapshots(self, month: Optional[str] = None) -> List[str]:
        """List stored date keys, optionally only those in a month (YYYY-MM)."""
        pass

    @abstractmethod
    def delete(self, backup_date: str) -> None:
        pass


class HttpBackupTransport(BackupTransport):
    """Backup transport for the JSON backup worker.

    Example:
        >>> creds = load_backup_config()
        >>> transport = HttpBackupTransport(creds["base_url"], creds["token"])
        >>> transport.upload(store.export_snapshot())
        '2024-03-11'
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            raise BackupError(f"Backup request {method} {path} failed: {e}") from e
        except ValueError as e:
            raise BackupError(f"Backup endpoint returned invalid JSON: {e}") from e

        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            raise BackupError(f"Backup endpoint rejected {method} {path}: {error or 'unknown error'}")
        return result

    def upload(self, snapshot: Dict[str, Any]) -> str:
        result = self._request("POST", "/save", json=snapshot)
        backup_date = str(result.get("date", ""))
        logger.info("Uploaded backup %s (%d keys)", backup_date, len(snapshot))
        return backup_date

    def download(self, backup_date: str) -> Dict[str, Any]:
        result = self._request("GET", "/backup", params={"date": backup_date})
        data = result.get("data")
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise BackupError(f"Backup {backup_date} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise BackupError(f"Backup {backup_date} has no snapshot data")
        return data

    def list_snapshots(self, month: Optional[str] = None) -> List[str]:
        backups = [str(d) for d in self._request("GET", "/backup/list").get("backups", [])]
        if month:
            backups = [d for d in backups if d.startswith(month)]
        return backups

    def delete(self, backup_date: str) -> None:
        self._request("DELETE", "/backup", params={"date": backup_date})
        logger.info("Deleted backup %s", backup_date)
