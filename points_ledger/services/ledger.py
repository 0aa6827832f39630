"""
Ledger Service - Points, XP and credits accounting with write verification.

Every mutation runs as one database transaction:
1. Validate the intent (before any I/O)
2. Ensure the account row exists (INSERT ... ON CONFLICT DO NOTHING)
3. Lock the account row (SELECT FOR UPDATE)
4. Apply the change to the named sub-ledger and append transaction rows
5. Flush, read back and verify
6. Commit

Any failure rolls the whole unit back, so an account is never updated
without its transaction row or vice versa.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from points_ledger.config import Settings
from points_ledger.config import settings as default_settings
from points_ledger.db.models import PointsTransaction, UserPoints
from points_ledger.exceptions import (
    BelowMinimumThresholdError,
    DataIntegrityError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    LedgerError,
    StorageError,
    WriteVerificationError,
)
from points_ledger.models.api import Currency, TransactionType
from points_ledger.models.domain import (
    AccountData,
    ConversionResult,
    CreditIntent,
    CreditResult,
    DebitIntent,
    DebitResult,
    TransactionData,
    derive_level,
    require_user_id,
    require_valid_amount,
)
from points_ledger.observability.metrics import metrics
from points_ledger.observability.tracing import trace_operation

logger = get_logger(__name__)

T = TypeVar("T")

# Account column backing each named sub-ledger
SUB_LEDGER_COLUMNS: dict[Currency, str] = {
    Currency.POINTS: "balance",
    Currency.CREDITS: "credits",
}


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    """Resolve an optional page size into [1, maximum]."""
    if limit is None:
        return default
    return max(1, min(limit, maximum))


def calculate_conversion(points: int, rate: int) -> tuple[int, int]:
    """
    Split a block of points into credits granted and points lost.

    The remainder below one credit's worth is spent but not converted.
    """
    return points // rate, points % rate


class LedgerService:
    """
    The only component allowed to mutate accounts or append transactions.

    Balances are never cached: every operation re-reads the locked row.
    """

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        """Initialize ledger service with database session."""
        self.session = session
        self.settings = config or default_settings

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_or_create_account(self, user_id: str) -> AccountData:
        """
        Get an account snapshot, creating a zeroed account on first sight.

        Raises:
            MissingFieldError: Blank user id
            StorageError: Database unavailable
        """
        require_user_id(user_id)
        try:
            account = await self._find_account(user_id)
            if account is None:
                await self._insert_account_if_missing(user_id)
                await self.session.commit()
                account = await self._find_account(user_id)
                if account is None:
                    raise WriteVerificationError(f"Account {user_id} not found after insert")
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("account_read_failed", user_id=user_id, error=str(exc))
            metrics.record_error(type(exc).__name__, "get_balance")
            raise StorageError("account read failed") from exc

        return self._account_to_domain(account)

    async def find_account(self, user_id: str) -> AccountData | None:
        """Account snapshot if one exists. Never creates."""
        require_user_id(user_id)
        try:
            account = await self._find_account(user_id)
        except SQLAlchemyError as exc:
            logger.error("account_read_failed", user_id=user_id, error=str(exc))
            metrics.record_error(type(exc).__name__, "find_account")
            raise StorageError("account read failed") from exc

        return self._account_to_domain(account) if account is not None else None

    async def get_balance(self, user_id: str) -> AccountData:
        """Read-only projection of the account; never 404s for a valid user."""
        return await self.get_or_create_account(user_id)

    async def list_transactions(
        self, user_id: str, limit: int | None = None
    ) -> list[TransactionData]:
        """Transactions for a user, newest first, bounded by limit."""
        require_user_id(user_id)
        resolved_limit = clamp_limit(
            limit,
            self.settings.default_transactions_limit,
            self.settings.max_transactions_limit,
        )
        stmt = (
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
            .limit(resolved_limit)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("transactions_read_failed", user_id=user_id, error=str(exc))
            metrics.record_error(type(exc).__name__, "list_transactions")
            raise StorageError("transaction read failed") from exc

        return [self._transaction_to_domain(row) for row in result.scalars().all()]

    # ========================================================================
    # Mutations
    # ========================================================================

    async def credit(self, intent: CreditIntent) -> CreditResult:
        """
        Award points: balance and XP grow together, level is re-derived.

        Raises:
            IdempotencyConflictError: Key already recorded for this user
            StorageError: Database failure (nothing committed)
        """
        assert intent.transaction_type is not None  # enforced by CreditIntent

        async def work() -> CreditResult:
            await self._check_idempotency(intent.user_id, intent.idempotency_key)
            account = await self._lock_account_for_update(intent.user_id)

            previous_balance = account.balance
            new_balance = self._apply_delta(account, Currency.POINTS, intent.amount)
            account.xp = account.xp + intent.amount
            account.level = derive_level(account.xp, self.settings.xp_per_level)
            account.updated_at = _utc_now()

            transaction = self._append_transaction(
                user_id=intent.user_id,
                transaction_type=intent.transaction_type,
                currency=Currency.POINTS,
                amount=intent.amount,
                balance_after=new_balance,
                reason=intent.reason or "",
                metadata=dict(intent.metadata),
                idempotency_key=intent.idempotency_key,
            )
            await self.session.flush()
            await self._verify_account(account, {Currency.POINTS: new_balance})

            return CreditResult(
                balance=new_balance,
                xp=account.xp,
                level=account.level,
                previous_balance=previous_balance,
                transaction_id=transaction.id,
            )

        result = await self._run_mutation(
            "credit", intent.user_id, work, idempotency_key=intent.idempotency_key
        )
        metrics.record_ledger_operation("credit", "success", intent.amount)
        logger.info(
            "points_credited",
            user_id=intent.user_id,
            amount=intent.amount,
            transaction_type=intent.transaction_type.value,
            balance=result.balance,
            level=result.level,
        )
        return result

    async def debit(self, intent: DebitIntent) -> DebitResult:
        """
        Spend from one sub-ledger. XP and level are never touched.

        Raises:
            InsufficientBalanceError: Balance cannot cover the amount (no mutation)
            IdempotencyConflictError: Key already recorded for this user
            StorageError: Database failure (nothing committed)
        """
        column = SUB_LEDGER_COLUMNS[intent.currency]

        async def work() -> DebitResult:
            await self._check_idempotency(intent.user_id, intent.idempotency_key)
            account = await self._lock_account_for_update(intent.user_id)

            previous_balance = getattr(account, column)
            new_balance = self._apply_delta(account, intent.currency, -intent.amount)
            account.updated_at = _utc_now()

            transaction = self._append_transaction(
                user_id=intent.user_id,
                transaction_type=intent.transaction_type,
                currency=intent.currency,
                amount=-intent.amount,
                balance_after=new_balance,
                reason=intent.reason or "",
                metadata=intent.to_metadata(),
                idempotency_key=intent.idempotency_key,
            )
            await self.session.flush()
            await self._verify_account(account, {intent.currency: new_balance})

            return DebitResult(
                currency=intent.currency,
                balance=new_balance,
                previous_balance=previous_balance,
                deducted=intent.amount,
                transaction_id=transaction.id,
            )

        try:
            result = await self._run_mutation(
                "debit", intent.user_id, work, idempotency_key=intent.idempotency_key
            )
        except InsufficientBalanceError as exc:
            metrics.record_ledger_operation("debit", "insufficient_balance")
            logger.info(
                "debit_rejected_insufficient_balance",
                user_id=intent.user_id,
                currency=intent.currency.value,
                current_balance=exc.current_balance,
                required=exc.required,
                feature_key=intent.feature_key,
            )
            raise

        metrics.record_ledger_operation(
            "debit", "success", intent.amount, currency=intent.currency.value
        )
        logger.info(
            "balance_debited",
            user_id=intent.user_id,
            currency=intent.currency.value,
            amount=intent.amount,
            balance=result.balance,
            feature_key=intent.feature_key,
        )
        return result

    async def spend_credits(
        self,
        user_id: str,
        amount: int,
        reason: str | None = None,
        feature: str | None = None,
    ) -> DebitResult:
        """Debit the credits sub-ledger, e.g. to pay for a gated feature."""
        if not reason:
            reason = f"Credits used for {feature}" if feature else "Credits used"
        intent = DebitIntent(
            user_id=user_id,
            amount=amount,
            reason=reason,
            feature_key=feature,
            currency=Currency.CREDITS,
        )
        return await self.debit(intent)

    async def convert_points_to_credits(self, user_id: str, points: int) -> ConversionResult:
        """
        Convert a block of points into credits at the fixed rate.

        Both sub-ledgers change in one locked transaction and get one
        transaction row each, cross-referenced by ``conversionId``.

        Raises:
            BelowMinimumThresholdError: points below the minimum block
            InvalidAmountError: points above the per-operation cap
            InsufficientBalanceError: balance below points (no mutation)
            StorageError: Database failure (nothing committed)
        """
        require_user_id(user_id)
        minimum = self.settings.minimum_conversion_block
        if points < minimum:
            metrics.record_ledger_operation("convert", "below_minimum")
            raise BelowMinimumThresholdError(points, minimum)
        require_valid_amount(points)

        credits_gained, remainder = calculate_conversion(points, self.settings.conversion_rate)
        conversion_id = str(uuid4())

        async def work() -> ConversionResult:
            account = await self._lock_account_for_update(user_id)

            new_points = self._apply_delta(account, Currency.POINTS, -points)
            new_credits = account.credits
            if credits_gained > 0:
                new_credits = self._apply_delta(account, Currency.CREDITS, credits_gained)
            account.updated_at = _utc_now()

            debit_leg = self._append_transaction(
                user_id=user_id,
                transaction_type=TransactionType.DEBIT,
                currency=Currency.POINTS,
                amount=-points,
                balance_after=new_points,
                reason=f"Converted {points} points to {credits_gained} credits",
                metadata={
                    "conversion": True,
                    "conversionId": conversion_id,
                    "creditsReceived": credits_gained,
                },
            )
            transaction_ids = [debit_leg.id]
            if credits_gained > 0:
                credit_leg = self._append_transaction(
                    user_id=user_id,
                    transaction_type=TransactionType.CREDIT,
                    currency=Currency.CREDITS,
                    amount=credits_gained,
                    balance_after=new_credits,
                    reason=f"Received {credits_gained} credits from {points} points conversion",
                    metadata={
                        "conversion": True,
                        "conversionId": conversion_id,
                        "pointsSpent": points,
                    },
                )
                transaction_ids.append(credit_leg.id)

            await self.session.flush()
            await self._verify_account(
                account, {Currency.POINTS: new_points, Currency.CREDITS: new_credits}
            )

            return ConversionResult(
                points_deducted=points,
                credits_added=credits_gained,
                new_points_balance=new_points,
                new_credits_balance=new_credits,
                transaction_ids=tuple(transaction_ids),
            )

        try:
            result = await self._run_mutation("convert", user_id, work)
        except InsufficientBalanceError:
            metrics.record_ledger_operation("convert", "insufficient_balance")
            raise

        metrics.record_ledger_operation("convert", "success", points)
        logger.info(
            "points_converted",
            user_id=user_id,
            points=points,
            credits_added=credits_gained,
            points_lost_to_rounding=remainder,
            conversion_id=conversion_id,
        )
        return result

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _run_mutation(
        self,
        operation: str,
        user_id: str,
        work: Callable[[], Awaitable[T]],
        idempotency_key: str | None = None,
    ) -> T:
        """Run work in one transaction; commit on success, roll back on any error."""
        try:
            with trace_operation(f"ledger.{operation}", user_id=user_id):
                result = await work()
                await self.session.commit()
            return result
        except LedgerError:
            await self.session.rollback()
            raise
        except IntegrityError as exc:
            await self.session.rollback()
            if idempotency_key:
                # A concurrent request with the same key won the unique constraint
                existing = await self._find_transaction_by_idempotency_safe(
                    user_id, idempotency_key
                )
                if existing is not None:
                    raise IdempotencyConflictError(existing.id) from exc
            logger.error(
                "ledger_integrity_error", operation=operation, user_id=user_id, error=str(exc)
            )
            metrics.record_error("IntegrityError", operation)
            raise DataIntegrityError(f"{operation} violated a constraint") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "ledger_storage_failure", operation=operation, user_id=user_id, error=str(exc)
            )
            metrics.record_error(type(exc).__name__, operation)
            raise StorageError(f"{operation} failed") from exc

    async def _check_idempotency(self, user_id: str, idempotency_key: str | None) -> None:
        """Reject a key that already produced a transaction for this user."""
        if not idempotency_key:
            return
        existing = await self._find_transaction_by_idempotency(user_id, idempotency_key)
        if existing is not None:
            metrics.record_ledger_operation("idempotency", "conflict")
            raise IdempotencyConflictError(existing.id)

    async def _find_transaction_by_idempotency(
        self, user_id: str, idempotency_key: str
    ) -> PointsTransaction | None:
        """Find transaction by idempotency key."""
        stmt = select(PointsTransaction).where(
            PointsTransaction.user_id == user_id,
            PointsTransaction.idempotency_key == idempotency_key,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_transaction_by_idempotency_safe(
        self, user_id: str, idempotency_key: str
    ) -> PointsTransaction | None:
        try:
            return await self._find_transaction_by_idempotency(user_id, idempotency_key)
        except SQLAlchemyError as exc:
            raise StorageError("idempotency lookup failed") from exc

    async def _find_account(self, user_id: str) -> UserPoints | None:
        """Find account by user id (no lock)."""
        stmt = select(UserPoints).where(UserPoints.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _insert_account_if_missing(self, user_id: str) -> None:
        """Create a zeroed account unless one exists; safe under concurrency."""
        now = _utc_now()
        stmt = (
            pg_insert(UserPoints)
            .values(
                id=uuid4(),
                user_id=user_id,
                balance=0,
                xp=0,
                level=1,
                credits=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[UserPoints.user_id])
            .returning(UserPoints.id)
        )
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is not None:
            metrics.accounts_created_total.inc()
            logger.info("points_account_created", user_id=user_id)

    async def _lock_account_for_update(self, user_id: str) -> UserPoints:
        """
        Lock account row for update (SELECT FOR UPDATE), creating it if needed.

        populate_existing makes the locked read overwrite any stale copy
        already held in the session identity map.
        """
        await self._insert_account_if_missing(user_id)
        stmt = (
            select(UserPoints)
            .where(UserPoints.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            raise WriteVerificationError(f"Account {user_id} missing after upsert")
        return account

    def _apply_delta(self, account: UserPoints, currency: Currency, delta: int) -> int:
        """Apply a signed change to a named sub-ledger, refusing to go negative."""
        column = SUB_LEDGER_COLUMNS[currency]
        current = getattr(account, column)
        new_value = current + delta
        if new_value < 0:
            raise InsufficientBalanceError(current, -delta, currency.value)
        setattr(account, column, new_value)
        return new_value

    def _append_transaction(
        self,
        *,
        user_id: str,
        transaction_type: TransactionType,
        currency: Currency,
        amount: int,
        balance_after: int,
        reason: str,
        metadata: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> PointsTransaction:
        """Stage one immutable transaction row in the current unit of work."""
        transaction = PointsTransaction(
            id=uuid4(),
            user_id=user_id,
            transaction_type=transaction_type,
            currency=currency,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
            metadata_=metadata,
            idempotency_key=idempotency_key,
            created_at=_utc_now(),
        )
        self.session.add(transaction)
        return transaction

    async def _verify_account(self, account: UserPoints, expected: dict[Currency, int]) -> None:
        """Read the account back and check balances and the level invariant."""
        verified = await self.session.get(UserPoints, account.id)
        if verified is None:
            metrics.record_write_verification(False)
            raise WriteVerificationError(f"Account {account.user_id} disappeared after update")

        for currency, value in expected.items():
            actual = getattr(verified, SUB_LEDGER_COLUMNS[currency])
            if actual != value:
                metrics.record_write_verification(False)
                raise DataIntegrityError(
                    f"{currency.value} mismatch: expected {value}, got {actual}"
                )

        if verified.level != derive_level(verified.xp, self.settings.xp_per_level):
            metrics.record_write_verification(False)
            raise DataIntegrityError(
                f"Level mismatch: level {verified.level} for xp {verified.xp}"
            )

        metrics.record_write_verification(True)

    def _account_to_domain(self, account: UserPoints) -> AccountData:
        """Convert ORM account to domain model."""
        return AccountData(
            account_id=account.id,
            user_id=account.user_id,
            balance=account.balance,
            xp=account.xp,
            level=account.level,
            credits=account.credits,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )

    def _transaction_to_domain(self, transaction: PointsTransaction) -> TransactionData:
        """Convert ORM transaction to domain model."""
        return TransactionData(
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            transaction_type=TransactionType(transaction.transaction_type),
            currency=Currency(transaction.currency),
            amount=transaction.amount,
            balance_after=transaction.balance_after,
            reason=transaction.reason,
            metadata=dict(transaction.metadata_ or {}),
            created_at=transaction.created_at,
        )
