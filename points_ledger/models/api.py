"""
API Models - Pydantic models for request/response validation.

Request and response bodies use camelCase field names on the wire; the
balance, transaction and leaderboard payloads keep the snake_case row
shape their clients already consume.
"""

from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TransactionType(str, Enum):
    """Ledger transaction type enumeration."""

    CREDIT = "credit"
    BONUS = "bonus"
    REFERRAL = "referral"
    LOGIN = "login"
    ACHIEVEMENT = "achievement"
    TASK = "task"
    ACTIVITY = "activity"
    STREAK = "streak"
    GOAL = "goal"
    QUIZ = "quiz"
    DEDUCTION = "deduction"
    DEBIT = "debit"

    @property
    def is_debit(self) -> bool:
        """Whether this type records money leaving a sub-ledger."""
        return self in (TransactionType.DEDUCTION, TransactionType.DEBIT)


class Currency(str, Enum):
    """Named sub-ledgers of an account."""

    POINTS = "points"
    CREDITS = "credits"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Points Models
# ============================================================================


class AddPointsRequest(CamelModel):
    """POST /v1/points/add request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    amount: int
    reason: str | None = None
    transaction_type: TransactionType | None = None
    metadata: dict[str, Any] | None = None
    idempotency_key: str | None = Field(None, max_length=255)


class AddPointsResponse(CamelModel):
    """POST /v1/points/add response."""

    success: bool = True
    balance: int
    xp: int
    level: int
    previous_balance: int


class DeductPointsRequest(CamelModel):
    """POST /v1/points/deduct request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    feature_key: str | None = Field(None, max_length=100)
    amount: int
    reason: str | None = None
    idempotency_key: str | None = Field(None, max_length=255)


class DeductPointsResponse(CamelModel):
    """POST /v1/points/deduct and /v1/features/use response."""

    success: bool = True
    balance: int
    previous_balance: int
    deducted: int


class BalanceRequest(CamelModel):
    """POST /v1/points/balance request body."""

    user_id: str = Field(..., min_length=1, max_length=255)


class BalanceResponse(BaseModel):
    """POST /v1/points/balance response."""

    balance: int
    xp: int
    level: int
    credits: int
    created_at: str  # ISO 8601 timestamp
    updated_at: str  # ISO 8601 timestamp


class ConvertPointsRequest(CamelModel):
    """POST /v1/points/convert request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    points: int


class ConvertPointsResponse(CamelModel):
    """POST /v1/points/convert response."""

    success: bool = True
    points_deducted: int
    credits_added: int
    new_points_balance: int
    new_credits_balance: int


# ============================================================================
# Transaction Log Models
# ============================================================================


class TransactionListRequest(CamelModel):
    """POST /v1/points/transactions request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    limit: int | None = Field(None, ge=1)


class TransactionItem(BaseModel):
    """Single row of the transaction log."""

    id: UUID
    user_id: str
    transaction_type: TransactionType
    currency: Currency
    amount: int  # Negative for deductions/debits
    balance_after: int
    reason: str
    metadata: dict[str, Any]
    created_at: str  # ISO 8601 timestamp


class TransactionListResponse(BaseModel):
    """POST /v1/points/transactions response."""

    success: bool = True
    transactions: list[TransactionItem]


# ============================================================================
# Leaderboard Models
# ============================================================================


class LeaderboardRequest(CamelModel):
    """POST /v1/leaderboard request body."""

    limit: int | None = Field(None, ge=1)


class LeaderboardEntry(BaseModel):
    """Single ranked leaderboard row."""

    id: str
    rank: int
    name: str
    avatar: str | None = None
    xp: int
    level: int
    balance: int


class LeaderboardResponse(BaseModel):
    """POST /v1/leaderboard response."""

    leaderboard: list[LeaderboardEntry]


# ============================================================================
# Feature Gate Models
# ============================================================================


class FeatureRequest(CamelModel):
    """POST /v1/features/use and /v1/features/can-afford request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    feature_key: str = Field(..., min_length=1, max_length=100)


class CanAffordResponse(CamelModel):
    """POST /v1/features/can-afford response."""

    can_afford: bool
    cost: int
    balance: int


class FeatureItem(CamelModel):
    """Single entry of the feature cost table."""

    feature_key: str
    name: str
    cost: int
    description: str


class FeatureListResponse(CamelModel):
    """GET /v1/features response."""

    features: list[FeatureItem]


# ============================================================================
# Credits Models
# ============================================================================


class SpendCreditsRequest(CamelModel):
    """POST /v1/credits/deduct request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    credits: int
    feature: str | None = Field(None, max_length=100)
    description: str | None = None


class SpendCreditsResponse(CamelModel):
    """POST /v1/credits/deduct response."""

    success: bool = True
    credits: int
    deducted: int


# ============================================================================
# Health / Error Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str


class ErrorResponse(CamelModel):
    """Structured failure body returned for every ledger error."""

    success: Literal[False] = False
    error: str
    message: str
    current_balance: int | None = None
    required: int | None = None
    shortfall: int | None = None
    minimum: int | None = None
    feature_key: str | None = None
