"""
API Routes - FastAPI endpoints for points, credits and feature access.

NO DICTIONARIES - All requests/responses use Pydantic models.
Ledger exceptions propagate to the handler in ``points_ledger.api.errors``.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from points_ledger.db.session import get_read_db, get_write_db
from points_ledger.models.api import (
    AddPointsRequest,
    AddPointsResponse,
    BalanceRequest,
    BalanceResponse,
    CanAffordResponse,
    ConvertPointsRequest,
    ConvertPointsResponse,
    DeductPointsRequest,
    DeductPointsResponse,
    FeatureItem,
    FeatureListResponse,
    FeatureRequest,
    HealthResponse,
    LeaderboardEntry,
    LeaderboardRequest,
    LeaderboardResponse,
    SpendCreditsRequest,
    SpendCreditsResponse,
    TransactionItem,
    TransactionListRequest,
    TransactionListResponse,
)
from points_ledger.models.domain import CreditIntent, DebitIntent
from points_ledger.services.feature_gate import FeatureGate
from points_ledger.services.leaderboard import LeaderboardService
from points_ledger.services.ledger import LedgerService

router = APIRouter()


# =============================================================================
# Points
# =============================================================================


@router.post("/v1/points/add", response_model=AddPointsResponse)
async def add_points(
    request: AddPointsRequest,
    db: AsyncSession = Depends(get_write_db),
) -> AddPointsResponse:
    """
    Award points. Balance and XP grow by the amount; level is re-derived.

    Write operation - requires primary database.
    """
    intent = CreditIntent(
        user_id=request.user_id,
        amount=request.amount,
        reason=request.reason,
        transaction_type=request.transaction_type,
        metadata=request.metadata or {},
        idempotency_key=request.idempotency_key,
    )
    result = await LedgerService(db).credit(intent)
    return AddPointsResponse(
        balance=result.balance,
        xp=result.xp,
        level=result.level,
        previous_balance=result.previous_balance,
    )


@router.post("/v1/points/deduct", response_model=DeductPointsResponse)
async def deduct_points(
    request: DeductPointsRequest,
    db: AsyncSession = Depends(get_write_db),
) -> DeductPointsResponse:
    """
    Spend points. Fails with 402 and no mutation when the balance is short.

    Write operation - requires primary database.
    """
    intent = DebitIntent(
        user_id=request.user_id,
        amount=request.amount,
        reason=request.reason,
        feature_key=request.feature_key,
        idempotency_key=request.idempotency_key,
    )
    result = await LedgerService(db).debit(intent)
    return DeductPointsResponse(
        balance=result.balance,
        previous_balance=result.previous_balance,
        deducted=result.deducted,
    )


@router.post("/v1/points/balance", response_model=BalanceResponse)
async def get_balance(
    request: BalanceRequest,
    db: AsyncSession = Depends(get_write_db),
) -> BalanceResponse:
    """
    Current balance, XP, level and credits.

    Creates a zeroed account on first sight, so it uses the primary database.
    """
    account = await LedgerService(db).get_balance(request.user_id)
    return BalanceResponse(
        balance=account.balance,
        xp=account.xp,
        level=account.level,
        credits=account.credits,
        created_at=account.created_at.isoformat(),
        updated_at=account.updated_at.isoformat(),
    )


@router.post("/v1/points/convert", response_model=ConvertPointsResponse)
async def convert_points(
    request: ConvertPointsRequest,
    db: AsyncSession = Depends(get_write_db),
) -> ConvertPointsResponse:
    """Convert a block of points into credits at the fixed rate."""
    result = await LedgerService(db).convert_points_to_credits(request.user_id, request.points)
    return ConvertPointsResponse(
        points_deducted=result.points_deducted,
        credits_added=result.credits_added,
        new_points_balance=result.new_points_balance,
        new_credits_balance=result.new_credits_balance,
    )


@router.post("/v1/points/transactions", response_model=TransactionListResponse)
async def list_transactions(
    request: TransactionListRequest,
    db: AsyncSession = Depends(get_read_db),
) -> TransactionListResponse:
    """
    Transaction history, newest first.

    Read-only operation - uses replica database.
    """
    transactions = await LedgerService(db).list_transactions(request.user_id, request.limit)
    return TransactionListResponse(
        transactions=[
            TransactionItem(
                id=tx.transaction_id,
                user_id=tx.user_id,
                transaction_type=tx.transaction_type,
                currency=tx.currency,
                amount=tx.amount,
                balance_after=tx.balance_after,
                reason=tx.reason,
                metadata=tx.metadata,
                created_at=tx.created_at.isoformat(),
            )
            for tx in transactions
        ]
    )


# =============================================================================
# Leaderboard
# =============================================================================


@router.post("/v1/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    request: LeaderboardRequest,
    db: AsyncSession = Depends(get_read_db),
) -> LeaderboardResponse:
    """Accounts ranked by XP. Read-only operation - uses replica database."""
    entries = await LeaderboardService(db).get_leaderboard(request.limit)
    return LeaderboardResponse(
        leaderboard=[
            LeaderboardEntry(
                id=entry.user_id,
                rank=entry.rank,
                name=entry.name,
                avatar=entry.avatar,
                xp=entry.xp,
                level=entry.level,
                balance=entry.balance,
            )
            for entry in entries
        ]
    )


# =============================================================================
# Feature Gate
# =============================================================================


@router.post("/v1/features/use", response_model=DeductPointsResponse)
async def use_feature(
    request: FeatureRequest,
    db: AsyncSession = Depends(get_write_db),
) -> DeductPointsResponse:
    """Charge the feature's point cost before the caller grants access."""
    gate = FeatureGate(LedgerService(db))
    result = await gate.use_feature(request.user_id, request.feature_key)
    return DeductPointsResponse(
        balance=result.balance,
        previous_balance=result.previous_balance,
        deducted=result.deducted,
    )


@router.post("/v1/features/can-afford", response_model=CanAffordResponse)
async def can_afford_feature(
    request: FeatureRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CanAffordResponse:
    """Whether the balance covers the feature cost. Never debits."""
    gate = FeatureGate(LedgerService(db))
    can_afford, cost, balance = await gate.can_afford(request.user_id, request.feature_key)
    return CanAffordResponse(can_afford=can_afford, cost=cost, balance=balance)


@router.get("/v1/features", response_model=FeatureListResponse)
async def get_features() -> FeatureListResponse:
    """Static feature cost table for display."""
    return FeatureListResponse(
        features=[
            FeatureItem(
                feature_key=feature.feature_key,
                name=feature.name,
                cost=feature.cost,
                description=feature.description,
            )
            for feature in FeatureGate.list_features()
        ]
    )


# =============================================================================
# Credits
# =============================================================================


@router.post("/v1/credits/deduct", response_model=SpendCreditsResponse)
async def spend_credits(
    request: SpendCreditsRequest,
    db: AsyncSession = Depends(get_write_db),
) -> SpendCreditsResponse:
    """Spend credits obtained through conversion."""
    result = await LedgerService(db).spend_credits(
        request.user_id,
        request.credits,
        reason=request.description,
        feature=request.feature,
    )
    return SpendCreditsResponse(credits=result.balance, deducted=result.deducted)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=HealthResponse(
                status="unhealthy",
                database="disconnected",
                timestamp=datetime.now(UTC).isoformat(),
            ).model_dump(),
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
