"""Remote backup of the key-value store."""

from fundledger.backup.transport import BackupTransport, HttpBackupTransport

__all__ = [
    "BackupTransport",
    "HttpBackupTransport",
]
