"""
Utility modules for the coin ledger.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    internal_error,
    ledger_error_response,
)
from .exceptions import (
    CoinLedgerError,
    ValidationError,
    NotFoundError,
    MerchantNotFoundError,
    NoBalanceError,
    InsufficientBalanceError,
    DuplicateError,
    PersistenceError,
    ConcurrentUpdateError,
)
