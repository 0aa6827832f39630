"""
Domain Models - Internal business logic models using dataclasses.

Intents validate themselves on construction so that a malformed request is
rejected before the ledger touches storage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from points_ledger.exceptions import (
    InvalidAmountError,
    InvalidMetadataError,
    InvalidTransactionTypeError,
    MissingFieldError,
)
from points_ledger.models.api import Currency, TransactionType

XP_PER_LEVEL = 100


def derive_level(xp: int, xp_per_level: int = XP_PER_LEVEL) -> int:
    """Level is a pure function of XP: floor(xp / xp_per_level) + 1."""
    return xp // xp_per_level + 1


def require_user_id(user_id: str) -> None:
    """Reject blank user ids before any storage access."""
    if not user_id or not user_id.strip():
        raise MissingFieldError("userId")


# Largest single movement; running totals stay well inside BIGINT.
MAX_AMOUNT = 1_000_000_000


def require_valid_amount(amount: int) -> None:
    """Reject zero, negative and oversized amounts before any storage access."""
    if amount <= 0 or amount > MAX_AMOUNT:
        raise InvalidAmountError(amount, MAX_AMOUNT)


# Keys the ledger itself writes; callers may not supply them.
RESERVED_METADATA_KEYS = frozenset({"conversion", "creditsReceived", "pointsSpent", "conversionId"})


def validate_metadata(metadata: dict[str, Any]) -> None:
    """Check the known metadata keys at the call site."""
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise InvalidMetadataError(str(key), "keys must be non-empty strings")
        if key in RESERVED_METADATA_KEYS:
            raise InvalidMetadataError(key, "reserved for conversions")
        if key == "featureKey" and (not isinstance(value, str) or not value.strip()):
            raise InvalidMetadataError(key, "must be a non-empty string")


@dataclass(frozen=True)
class CreditIntent:
    """Domain model for a points award before persistence."""

    user_id: str
    amount: int
    reason: str | None
    transaction_type: TransactionType | None
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        """Validate credit constraints."""
        require_user_id(self.user_id)
        require_valid_amount(self.amount)
        if not self.reason or not self.reason.strip():
            raise MissingFieldError("reason")
        if self.transaction_type is None:
            raise MissingFieldError("transactionType")
        if self.transaction_type.is_debit:
            raise InvalidTransactionTypeError(self.transaction_type.value)
        validate_metadata(self.metadata)


@dataclass(frozen=True)
class DebitIntent:
    """Domain model for a debit against one sub-ledger before persistence."""

    user_id: str
    amount: int
    reason: str | None
    feature_key: str | None = None
    currency: Currency = Currency.POINTS
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        """Validate debit constraints."""
        require_user_id(self.user_id)
        require_valid_amount(self.amount)
        if not self.reason or not self.reason.strip():
            raise MissingFieldError("reason")
        if self.feature_key is not None and not self.feature_key.strip():
            raise MissingFieldError("featureKey")

    @property
    def transaction_type(self) -> TransactionType:
        """Points debits are deductions; credits debits are debits."""
        if self.currency == Currency.CREDITS:
            return TransactionType.DEBIT
        return TransactionType.DEDUCTION

    def to_metadata(self) -> dict[str, Any]:
        """Transaction metadata for this debit."""
        if self.feature_key is None:
            return {}
        if self.currency == Currency.CREDITS:
            return {"feature": self.feature_key}
        return {"featureKey": self.feature_key}


@dataclass(frozen=True)
class AccountData:
    """Immutable account snapshot."""

    account_id: UUID
    user_id: str
    balance: int
    xp: int
    level: int
    credits: int
    created_at: datetime
    updated_at: datetime

    def balance_of(self, currency: Currency) -> int:
        """Current value of a named sub-ledger."""
        if currency == Currency.CREDITS:
            return self.credits
        return self.balance


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a successful points award."""

    balance: int
    xp: int
    level: int
    previous_balance: int
    transaction_id: UUID


@dataclass(frozen=True)
class DebitResult:
    """Outcome of a successful debit."""

    currency: Currency
    balance: int
    previous_balance: int
    deducted: int
    transaction_id: UUID


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of a successful points to credits conversion."""

    points_deducted: int
    credits_added: int
    new_points_balance: int
    new_credits_balance: int
    transaction_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class TransactionData:
    """Immutable transaction log row."""

    transaction_id: UUID
    user_id: str
    transaction_type: TransactionType
    currency: Currency
    amount: int
    balance_after: int
    reason: str
    metadata: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class LeaderboardEntryData:
    """One ranked account with its profile decoration."""

    user_id: str
    rank: int
    name: str
    avatar: str | None
    xp: int
    level: int
    balance: int
