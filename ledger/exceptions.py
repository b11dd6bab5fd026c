# ==========================================================
#                  LEDGER EXCEPTIONS
# ==========================================================


class LedgerError(Exception):
    """Base ledger exception; status_code is what the HTTP layer answers with."""
    status_code = 400
    default_message = "Ledger operation rejected"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)

    @property
    def code(self):
        return type(self).__name__

    @property
    def message(self):
        return str(self)


class InsufficientFunds(LedgerError):
    default_message = "Insufficient balance"


class TradeLimitReached(LedgerError):
    status_code = 409
    default_message = "Concurrent trade limit reached for your VIP level"


class KycRequired(LedgerError):
    status_code = 403
    default_message = "Identity verification is required"


class AuthFailed(LedgerError):
    status_code = 401
    default_message = "Incorrect password"


class Unauthorized(LedgerError):
    status_code = 403
    default_message = "You are not allowed to perform this action"


class ContractNotFound(LedgerError):
    status_code = 404
    default_message = "Contract not found"


class TransactionNotFound(LedgerError):
    status_code = 404
    default_message = "Transaction not found"


class AccountNotFound(LedgerError):
    status_code = 404
    default_message = "Account not found"


class InvalidAmount(LedgerError):
    default_message = "Amount must be a positive number"


class InvalidRequest(LedgerError):
    default_message = "Invalid request"


class TransactionNotPending(LedgerError):
    status_code = 409
    default_message = "Transaction has already been resolved"


class AccountExists(LedgerError):
    status_code = 409
    default_message = "Email already registered"
