"""Error taxonomy for the settlement core.

Every error carries a human-readable ``message`` that is safe to show to an
operator or end user, separate from its ``kind``.
"""

from datetime import datetime


class CoinEdgeError(Exception):
    """Base class for all settlement core errors."""

    kind = "ERROR"
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidAmount(CoinEdgeError):
    kind = "INVALID_AMOUNT"
    default_message = "Amount must be greater than zero"


class AssetMismatch(CoinEdgeError):
    kind = "ASSET_MISMATCH"
    default_message = "Amounts in different assets cannot be combined"


class UnsupportedTransferType(CoinEdgeError):
    kind = "UNSUPPORTED_TRANSFER_TYPE"
    default_message = "Invalid transfer type"


class QuoteExpired(CoinEdgeError):
    kind = "QUOTE_EXPIRED"
    default_message = "Quote has expired, please request a new one"


class AllSourcesUnavailable(CoinEdgeError):
    kind = "ALL_SOURCES_UNAVAILABLE"
    default_message = "BTC price is currently unavailable"


class RateLimited(CoinEdgeError):
    """Raised when a client exceeds its request window."""

    kind = "RATE_LIMITED"
    default_message = "Too many requests. Please try again later."

    def __init__(self, limit: int, remaining: int, reset_at: datetime, retry_after: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__()


class NotAuthenticated(CoinEdgeError):
    kind = "NOT_AUTHENTICATED"
    default_message = "Please sign in first"


class NotConfigured(CoinEdgeError):
    kind = "NOT_CONFIGURED"
    default_message = "Integration is not configured. Contact an administrator."


class InvalidStateTransition(CoinEdgeError):
    kind = "INVALID_STATE_TRANSITION"
    default_message = "Operation is not allowed in the current state"


class RecordNotFound(CoinEdgeError):
    kind = "RECORD_NOT_FOUND"
    default_message = "Record not found"


class ExternalServiceError(CoinEdgeError):
    """Raised when an upstream provider fails or returns an error payload."""

    kind = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, status_code: int, detail: str | None = None):
        self.service = service
        self.status_code = status_code
        self.detail = detail
        message = f"{service} error {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
