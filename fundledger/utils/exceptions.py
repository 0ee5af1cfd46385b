"""Custom exceptions for Fund Ledger.

This module defines the exception hierarchy for the application.
"""


class FundLedgerError(Exception):
    """Base exception for all Fund Ledger errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(FundLedgerError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing required configuration keys
        - Invalid configuration values
        - Configuration file not found
    """

    pass


class DataError(FundLedgerError):
    """Base exception for data layer errors.

    Parent class for all data-related exceptions.
    """

    pass


class DataProviderError(DataError):
    """Raised when a price provider fails to fetch data.

    Examples:
        - Network connection failed
        - Remote endpoint returned an error status
        - Response body could not be parsed
    """

    pass


class DataQualityError(DataError):
    """Raised when price data quality checks fail.

    Examples:
        - Non-positive net asset values
        - Unparseable timestamps
    """

    pass


class StorageError(DataError):
    """Raised when key-value store operations fail.

    Examples:
        - Database connection failed
        - SQL statement failed
    """

    pass


class PersistedDataError(StorageError):
    """Raised when a persisted value cannot be decoded.

    Only the load of the failing key is affected. The key is kept on the
    exception so callers can report which part of the store is damaged.

    Examples:
        - Corrupt JSON under the ledger key
        - A transaction record missing required fields
    """

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"Failed to parse stored value for '{key}': {message}")


class PortfolioError(FundLedgerError):
    """Base exception for portfolio layer errors.

    Parent class for all portfolio-related exceptions.
    """

    pass


class AllocationError(PortfolioError):
    """Raised when a cash allocation cannot be computed.

    Examples:
        - Negative budget or inflow
        - Unknown category in the input values
    """

    pass


class DecisionError(PortfolioError):
    """Raised when a strategy decision cannot be built or edited.

    Examples:
        - Override for an instrument that is not in the plan
        - Non-positive units or price
    """

    pass


class BackupError(FundLedgerError):
    """Raised when a remote backup operation fails.

    Examples:
        - Backup endpoint unreachable
        - Snapshot for the requested date does not exist
    """

    pass
