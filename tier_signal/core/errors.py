"""
TIER SIGNAL — Error Taxonomy

Recoverable errors are isolated to the unit of work that raised them (one
asset, one record, one delivery); none of them may corrupt a committed record.
"""


class TierSignalError(Exception):
    """Base class for all pipeline exceptions."""
    pass


class TransientFetchError(TierSignalError):
    """Network or 5xx failure from a market data source. Retried with backoff."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class DataUnavailableError(TierSignalError):
    """Missing or insufficient price history for an asset."""

    def __init__(self, asset: str, reason: str):
        super().__init__(f"{asset}: {reason}")
        self.asset = asset
        self.reason = reason


class StoreConflictError(TierSignalError):
    """
    A put_if_absent lost the race for its key.

    Not a failure: the store converts it to committed=False and the caller
    treats the existing record as authoritative.
    """

    def __init__(self, key: str):
        super().__init__(f"record already exists: {key}")
        self.key = key


class SummarizationError(TierSignalError):
    """The reasoning model failed or returned an invalid payload."""
    pass


class DeliveryError(TierSignalError):
    """A downstream push to a consumer channel failed."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class ConfigurationError(TierSignalError):
    """Invalid settings, policy table or stake table."""
    pass


class TierLookupError(TierSignalError):
    """The tier source could not answer; the consumer is served as free."""
    pass
