"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Every exception carries a stable machine-readable ``code`` that the HTTP
boundary returns as the ``error`` field.
"""

from uuid import UUID


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "LEDGER_ERROR"


class InvalidAmountError(LedgerError):
    """Raised when an amount is zero, negative or above the per-operation cap."""

    code = "INVALID_AMOUNT"

    def __init__(self, amount: int, maximum: int | None = None) -> None:
        self.amount = amount
        self.maximum = maximum
        if maximum is not None and amount > maximum:
            message = f"Invalid amount: {amount}. Amount must not exceed {maximum}"
        else:
            message = f"Invalid amount: {amount}. Amount must be positive"
        super().__init__(message)


class MissingFieldError(LedgerError):
    """Raised when a required field is empty or absent."""

    code = "MISSING_FIELD"

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Missing required field: {field_name}")


class InvalidTransactionTypeError(LedgerError):
    """Raised when a debit-type transaction is used to award points."""

    code = "INVALID_TRANSACTION_TYPE"

    def __init__(self, transaction_type: str) -> None:
        self.transaction_type = transaction_type
        super().__init__(f"Transaction type {transaction_type} cannot be used to award points")


class InvalidMetadataError(LedgerError):
    """Raised when transaction metadata carries a malformed or reserved key."""

    code = "INVALID_METADATA"

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"Invalid metadata key {key}: {message}")


class UnknownFeatureError(LedgerError):
    """Raised when a feature key is not in the feature cost table."""

    code = "UNKNOWN_FEATURE"

    def __init__(self, feature_key: str) -> None:
        self.feature_key = feature_key
        super().__init__(f"Unknown feature: {feature_key}")


class BelowMinimumThresholdError(LedgerError):
    """Raised when a conversion request is smaller than the minimum block."""

    code = "BELOW_MINIMUM_THRESHOLD"

    def __init__(self, points: int, minimum: int) -> None:
        self.points = points
        self.minimum = minimum
        super().__init__(
            f"Minimum {minimum} points required for conversion, requested {points}"
        )


class InsufficientBalanceError(LedgerError):
    """Raised when a sub-ledger cannot cover a debit."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, current_balance: int, required: int, currency: str = "points") -> None:
        self.current_balance = current_balance
        self.required = required
        self.currency = currency
        super().__init__(
            f"Insufficient {currency}. Balance: {current_balance}, Required: {required}"
        )

    @property
    def shortfall(self) -> int:
        """How much more the user needs to earn."""
        return max(self.required - self.current_balance, 0)


class IdempotencyConflictError(LedgerError):
    """Raised when an idempotency key was already used for this user."""

    code = "IDEMPOTENCY_CONFLICT"

    def __init__(self, existing_id: UUID) -> None:
        self.existing_id = existing_id
        super().__init__(f"Idempotency conflict: existing ID {existing_id}")


class StorageError(LedgerError):
    """Raised when a database operation fails unexpectedly."""

    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Storage error: {message}")


class WriteVerificationError(StorageError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(StorageError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Data integrity error: {message}")
