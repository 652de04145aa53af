"""Exception types raised by the reconciliation engine"""


class FinanceReconError(Exception):
    """Base class for reconciliation engine errors"""


class ConfigurationError(FinanceReconError):
    """A required setting (such as the FEC API key) is missing"""


class FinanceAPITransportError(FinanceReconError):
    """Network or timeout failure talking to the FEC API"""


class RateLimitedError(FinanceReconError):
    """The FEC API answered 429; retried internally by the client"""


class CursorError(FinanceReconError):
    """A stored pagination cursor could not be decoded"""


class LedgerStoreError(FinanceReconError):
    """The ledger store could not be reached or rejected a query"""


class CommitteeLinkError(FinanceReconError):
    """Committees could not be linked for a candidate"""
