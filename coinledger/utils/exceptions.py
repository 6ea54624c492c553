"""
Custom exceptions for coin ledger business logic.

These exceptions carry a stable error code so that callers (HTTP handlers,
CLI commands) can map them to user-facing messages and status codes.
"""


class CoinLedgerError(Exception):
    """Base exception for all coin ledger business logic errors."""

    def __init__(self, message: str, code: str = "COIN_LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(CoinLedgerError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class NotFoundError(CoinLedgerError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None, code: str = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} {identifier} not found"
        super().__init__(message, code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class MerchantNotFoundError(NotFoundError):
    """No coin program configured for the merchant."""

    def __init__(self, merchant_id=None):
        super().__init__("Coin program for merchant", merchant_id, code="MERCHANT_NOT_FOUND")


class NoBalanceError(NotFoundError):
    """Holder has no coin balance with the merchant."""

    def __init__(self, holder_id=None, merchant_id=None):
        self.holder_id = holder_id
        self.merchant_id = merchant_id
        CoinLedgerError.__init__(
            self,
            f"No coin balance found for holder {holder_id} with merchant {merchant_id}",
            "NO_BALANCE",
        )


class InsufficientBalanceError(CoinLedgerError):
    """Not enough coins for the operation."""

    def __init__(self, current, required, currency: str = "coins"):
        self.current = current
        self.required = required
        message = f"Insufficient {currency}. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_BALANCE")


class DuplicateError(CoinLedgerError):
    """Resource already exists."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class PersistenceError(CoinLedgerError):
    """The backing store failed; nothing from the operation was committed."""

    def __init__(self, message: str, original_error: Exception = None, code: str = "PERSISTENCE_ERROR"):
        self.original_error = original_error
        super().__init__(message, code)


class ConcurrentUpdateError(PersistenceError):
    """Balance kept changing under the writer; safe to retry after re-reading."""

    def __init__(self, balance_id, attempts: int):
        self.balance_id = balance_id
        self.attempts = attempts
        super().__init__(
            f"Balance {balance_id} was modified concurrently ({attempts} attempts)",
            code="CONCURRENT_UPDATE",
        )
