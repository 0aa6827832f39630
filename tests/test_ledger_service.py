"""
Tests for LedgerService.

Unit tests for credit, debit, conversion and read operations against a
mocked async session.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from points_ledger.db.models import PointsTransaction
from points_ledger.exceptions import (
    BelowMinimumThresholdError,
    DataIntegrityError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    MissingFieldError,
    StorageError,
    WriteVerificationError,
)
from points_ledger.models.api import Currency, TransactionType
from points_ledger.models.domain import MAX_AMOUNT, CreditIntent, DebitIntent
from points_ledger.services.ledger import LedgerService, calculate_conversion, clamp_limit


def added_transactions(db_session: AsyncMock) -> list[PointsTransaction]:
    """Transaction rows staged with session.add()."""
    return [call.args[0] for call in db_session.add.call_args_list]


def compile_pg(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


# ============================================================================
# Helper Function Tests
# ============================================================================


class TestClampLimit:
    """Tests for clamp_limit helper."""

    def test_none_uses_default(self):
        assert clamp_limit(None, 50, 200) == 50

    def test_above_maximum_is_clamped(self):
        assert clamp_limit(1000, 50, 200) == 200

    def test_below_one_is_clamped(self):
        assert clamp_limit(0, 50, 200) == 1
        assert clamp_limit(-5, 50, 200) == 1

    def test_in_range_unchanged(self):
        assert clamp_limit(20, 50, 200) == 20


class TestCalculateConversion:
    """Tests for calculate_conversion helper."""

    def test_exact_block(self):
        assert calculate_conversion(5000, 50) == (100, 0)

    def test_remainder_is_lost(self):
        """5049 points buy 100 credits; 49 points are spent without conversion."""
        assert calculate_conversion(5049, 50) == (100, 49)


# ============================================================================
# Credit Tests
# ============================================================================


class TestCredit:
    """Tests for awarding points."""

    async def test_first_award_levels_up(
        self, db_session: AsyncMock, new_account: MagicMock, ledger_for_account
    ) -> None:
        """Crediting 150 to a new account: balance 150, xp 150, level 2."""
        service = ledger_for_account(new_account)
        intent = CreditIntent(
            user_id="user-1",
            amount=150,
            reason="Quiz completed",
            transaction_type=TransactionType.QUIZ,
        )

        result = await service.credit(intent)

        assert result.balance == 150
        assert result.xp == 150
        assert result.level == 2
        assert result.previous_balance == 0

        transactions = added_transactions(db_session)
        assert len(transactions) == 1
        tx = transactions[0]
        assert tx.transaction_type == TransactionType.QUIZ
        assert tx.currency == Currency.POINTS
        assert tx.amount == 150
        assert tx.balance_after == 150
        assert tx.reason == "Quiz completed"
        assert result.transaction_id == tx.id
        db_session.commit.assert_called_once()

    async def test_credit_keeps_metadata(
        self, db_session: AsyncMock, funded_account: MagicMock, ledger_for_account
    ) -> None:
        service = ledger_for_account(funded_account)
        intent = CreditIntent(
            user_id="user-1",
            amount=5,
            reason="Daily login",
            transaction_type=TransactionType.LOGIN,
            metadata={"streakDays": 3},
            idempotency_key="login-2026-10-19",
        )
        service._find_transaction_by_idempotency = AsyncMock(return_value=None)

        await service.credit(intent)

        tx = added_transactions(db_session)[0]
        assert tx.metadata_ == {"streakDays": 3}
        assert tx.idempotency_key == "login-2026-10-19"

    async def test_existing_idempotency_key_conflicts(
        self,
        db_session: AsyncMock,
        funded_account: MagicMock,
        ledger_for_account,
        transaction_factory,
    ) -> None:
        """A reused key is rejected before any mutation."""
        existing = transaction_factory(idempotency_key="key-1")
        service = ledger_for_account(funded_account)
        service._find_transaction_by_idempotency = AsyncMock(return_value=existing)
        intent = CreditIntent(
            user_id="user-1",
            amount=10,
            reason="Bonus",
            transaction_type=TransactionType.BONUS,
            idempotency_key="key-1",
        )

        with pytest.raises(IdempotencyConflictError) as exc_info:
            await service.credit(intent)

        assert exc_info.value.existing_id == existing.id
        assert funded_account.balance == 100
        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()
        db_session.rollback.assert_called_once()

    async def test_concurrent_duplicate_key_maps_to_conflict(
        self,
        db_session: AsyncMock,
        funded_account: MagicMock,
        ledger_for_account,
        transaction_factory,
        result_factory,
    ) -> None:
        """Losing the unique-constraint race surfaces as an idempotency conflict."""
        existing = transaction_factory(idempotency_key="key-2")
        service = ledger_for_account(funded_account)
        db_session.execute = AsyncMock(
            side_effect=[result_factory(scalar=None), result_factory(scalar=existing)]
        )
        db_session.flush = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("duplicate key"))
        )
        intent = CreditIntent(
            user_id="user-1",
            amount=10,
            reason="Bonus",
            transaction_type=TransactionType.BONUS,
            idempotency_key="key-2",
        )

        with pytest.raises(IdempotencyConflictError):
            await service.credit(intent)

        db_session.commit.assert_not_called()

    async def test_integrity_error_without_key_is_storage_error(
        self, db_session: AsyncMock, funded_account: MagicMock, ledger_for_account
    ) -> None:
        service = ledger_for_account(funded_account)
        db_session.flush = AsyncMock(
            side_effect=IntegrityError("UPDATE", {}, Exception("check constraint"))
        )
        intent = CreditIntent(
            user_id="user-1", amount=10, reason="Bonus", transaction_type=TransactionType.BONUS
        )

        with pytest.raises(DataIntegrityError):
            await service.credit(intent)

        db_session.rollback.assert_called_once()

    async def test_storage_failure_rolls_back(
        self, db_session: AsyncMock, funded_account: MagicMock, ledger_for_account
    ) -> None:
        """Database errors become StorageError and nothing is committed."""
        service = ledger_for_account(funded_account)
        db_session.flush = AsyncMock(side_effect=SQLAlchemyError("connection lost"))
        intent = CreditIntent(
            user_id="user-1", amount=10, reason="Task", transaction_type=TransactionType.TASK
        )

        with pytest.raises(StorageError) as exc_info:
            await service.credit(intent)

        assert exc_info.value.code == "SERVICE_UNAVAILABLE"
        db_session.rollback.assert_called_once()
        db_session.commit.assert_not_called()

    async def test_write_verification_missing_row(
        self, db_session: AsyncMock, funded_account: MagicMock, ledger_for_account
    ) -> None:
        service = ledger_for_account(funded_account)
        db_session.get = AsyncMock(return_value=None)
        intent = CreditIntent(
            user_id="user-1", amount=10, reason="Task", transaction_type=TransactionType.TASK
        )

        with pytest.raises(WriteVerificationError):
            await service.credit(intent)

        db_session.commit.assert_not_called()


# ============================================================================
# Debit Tests
# ============================================================================


class TestDebit:
    """Tests for spending points."""

    async def test_debit_leaves_xp_untouched(
        self, db_session: AsyncMock, funded_account: MagicMock, ledger_for_account
    ) -> None:
        """Debiting 30 from 100: balance 70, xp and level unchanged."""
        service = ledger_for_account(funded_account)
        intent = DebitIntent(user_id="user-1", amount=30, reason="Teacher mode access")

        result = await service.debit(intent)

        assert result.balance == 70
        assert result.previous_balance == 100
        assert result.deducted == 30
        assert funded_account.xp == 150
        assert funded_account.level == 2

        tx = added_transactions(db_session)[0]
        assert tx.transaction_type == TransactionType.DEDUCTION
        assert tx.amount == -30
        assert tx.balance_after == 70
        assert tx.metadata_ == {}

    async def test_debit_records_feature_key(
        self, db_session: AsyncMock, funded_account: MagicMock, ledger_for_account
    ) -> None:
        service = ledger_for_account(funded_account)
        intent = DebitIntent(
            user_id="user-1", amount=20, reason="Teacher mode access", feature_key="teacher_mode"
        )

        await service.debit(intent)

        assert added_transactions(db_session)[0].metadata_ == {"featureKey": "teacher_mode"}

    async def test_debit_exact_balance_reaches_zero(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        account = account_factory(balance=10, xp=10)
        service = ledger_for_account(account)

        result = await service.debit(DebitIntent(user_id="user-1", amount=10, reason="Homework"))

        assert result.balance == 0

    async def test_insufficient_balance_mutates_nothing(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        """Debiting 20 from a balance of 10 fails with no transaction."""
        account = account_factory(balance=10, xp=10)
        service = ledger_for_account(account)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await service.debit(DebitIntent(user_id="user-1", amount=20, reason="Study plan"))

        assert exc_info.value.current_balance == 10
        assert exc_info.value.required == 20
        assert exc_info.value.shortfall == 10
        assert account.balance == 10
        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()
        db_session.rollback.assert_called_once()

    async def test_invalid_amount_rejected_before_io(self, db_session: AsyncMock) -> None:
        with pytest.raises(InvalidAmountError):
            DebitIntent(user_id="user-1", amount=0, reason="Nothing")
        db_session.execute.assert_not_called()


# ============================================================================
# Credits Sub-Ledger Tests
# ============================================================================


class TestSpendCredits:
    """Tests for debiting the credits sub-ledger."""

    async def test_spend_credits(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        account = account_factory(balance=40, xp=500, credits=100)
        service = ledger_for_account(account)

        result = await service.spend_credits("user-1", 30, feature="notes_generation")

        assert result.currency == Currency.CREDITS
        assert result.balance == 70
        assert result.deducted == 30
        assert account.balance == 40

        tx = added_transactions(db_session)[0]
        assert tx.transaction_type == TransactionType.DEBIT
        assert tx.currency == Currency.CREDITS
        assert tx.amount == -30
        assert tx.balance_after == 70
        assert tx.reason == "Credits used for notes_generation"
        assert tx.metadata_ == {"feature": "notes_generation"}

    async def test_spend_credits_insufficient(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        account = account_factory(balance=9999, credits=5)
        service = ledger_for_account(account)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await service.spend_credits("user-1", 6, reason="Premium export")

        assert exc_info.value.currency == "credits"
        assert account.credits == 5

    async def test_spend_credits_without_reason_or_feature(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        account = account_factory(credits=20)
        service = ledger_for_account(account)

        result = await service.spend_credits("user-1", 5)

        assert result.balance == 15
        tx = added_transactions(db_session)[0]
        assert tx.reason == "Credits used"
        assert tx.metadata_ == {}

    async def test_spend_credits_above_cap(self, ledger_service: LedgerService):
        with pytest.raises(InvalidAmountError):
            await ledger_service.spend_credits("user-1", MAX_AMOUNT + 1, reason="Export")


# ============================================================================
# Conversion Tests
# ============================================================================


class TestConvertPointsToCredits:
    """Tests for the points to credits conversion."""

    async def test_conversion_rounds_down(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        """5049 points at rate 50: 100 credits, all 5049 points deducted."""
        account = account_factory(balance=6000, xp=6000, credits=0)
        service = ledger_for_account(account)

        result = await service.convert_points_to_credits("user-1", 5049)

        assert result.points_deducted == 5049
        assert result.credits_added == 100
        assert result.new_points_balance == 951
        assert result.new_credits_balance == 100
        assert account.xp == 6000

        debit_leg, credit_leg = added_transactions(db_session)
        assert debit_leg.transaction_type == TransactionType.DEBIT
        assert debit_leg.currency == Currency.POINTS
        assert debit_leg.amount == -5049
        assert debit_leg.balance_after == 951
        assert debit_leg.metadata_["conversion"] is True
        assert debit_leg.metadata_["creditsReceived"] == 100
        assert debit_leg.reason == "Converted 5049 points to 100 credits"

        assert credit_leg.transaction_type == TransactionType.CREDIT
        assert credit_leg.currency == Currency.CREDITS
        assert credit_leg.amount == 100
        assert credit_leg.balance_after == 100
        assert credit_leg.metadata_["pointsSpent"] == 5049
        assert credit_leg.metadata_["conversionId"] == debit_leg.metadata_["conversionId"]
        assert result.transaction_ids == (debit_leg.id, credit_leg.id)
        db_session.commit.assert_called_once()

    async def test_below_minimum_rejected_before_io(self, db_session: AsyncMock) -> None:
        service = LedgerService(db_session)

        with pytest.raises(BelowMinimumThresholdError) as exc_info:
            await service.convert_points_to_credits("user-1", 4999)

        assert exc_info.value.minimum == 5000
        db_session.execute.assert_not_called()

    async def test_conversion_insufficient_balance(
        self, db_session: AsyncMock, account_factory, ledger_for_account
    ) -> None:
        account = account_factory(balance=5500, xp=5500)
        service = ledger_for_account(account)

        with pytest.raises(InsufficientBalanceError):
            await service.convert_points_to_credits("user-1", 6000)

        assert account.balance == 5500
        assert account.credits == 0
        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()


# ============================================================================
# Read Tests
# ============================================================================


class TestGetOrCreateAccount:
    """Tests for the lazy-creating balance read."""

    async def test_existing_account_is_returned(
        self, db_session: AsyncMock, funded_account: MagicMock, result_factory
    ) -> None:
        db_session.execute = AsyncMock(return_value=result_factory(scalar=funded_account))
        service = LedgerService(db_session)

        account = await service.get_balance("user-1")

        assert account.balance == 100
        assert account.xp == 150
        assert account.level == 2
        db_session.commit.assert_not_called()

    async def test_missing_account_is_created_zeroed(
        self, db_session: AsyncMock, new_account: MagicMock, result_factory
    ) -> None:
        db_session.execute = AsyncMock(
            side_effect=[
                result_factory(scalar=None),
                result_factory(scalar=new_account.id),
                result_factory(scalar=new_account),
            ]
        )
        service = LedgerService(db_session)

        account = await service.get_or_create_account("user-1")

        assert account.balance == 0
        assert account.xp == 0
        assert account.level == 1
        assert account.credits == 0
        db_session.commit.assert_called_once()

        insert_sql = compile_pg(db_session.execute.call_args_list[1].args[0])
        assert "ON CONFLICT (user_id) DO NOTHING" in insert_sql

    async def test_account_missing_after_insert(
        self, db_session: AsyncMock, result_factory
    ) -> None:
        db_session.execute = AsyncMock(return_value=result_factory(scalar=None))

        with pytest.raises(WriteVerificationError):
            await LedgerService(db_session).get_or_create_account("user-1")

    async def test_database_down(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(side_effect=SQLAlchemyError("refused"))

        with pytest.raises(StorageError):
            await LedgerService(db_session).get_balance("user-1")

        db_session.rollback.assert_called_once()

    async def test_blank_user_id(self, ledger_service: LedgerService) -> None:
        with pytest.raises(MissingFieldError):
            await ledger_service.get_balance("  ")


class TestLockAccount:
    """Tests for the row lock used by every mutation."""

    async def test_lock_inserts_then_selects_for_update(
        self, db_session: AsyncMock, funded_account: MagicMock, result_factory
    ) -> None:
        db_session.execute = AsyncMock(
            side_effect=[result_factory(scalar=None), result_factory(scalar=funded_account)]
        )
        service = LedgerService(db_session)

        account = await service._lock_account_for_update("user-1")

        assert account is funded_account
        insert_stmt, select_stmt = (c.args[0] for c in db_session.execute.call_args_list)
        assert "ON CONFLICT" in compile_pg(insert_stmt)
        assert "FOR UPDATE" in compile_pg(select_stmt)


class TestListTransactions:
    """Tests for transaction history."""

    async def test_returns_domain_rows(
        self, db_session: AsyncMock, transaction_factory, result_factory
    ) -> None:
        rows = [
            transaction_factory(
                transaction_type=TransactionType.DEDUCTION,
                amount=-20,
                balance_after=80,
                metadata={"featureKey": "teacher_mode"},
            ),
            transaction_factory(amount=100, balance_after=100),
        ]
        db_session.execute = AsyncMock(return_value=result_factory(rows=rows))

        transactions = await LedgerService(db_session).list_transactions("user-1")

        assert [tx.amount for tx in transactions] == [-20, 100]
        assert transactions[0].transaction_type == TransactionType.DEDUCTION
        assert transactions[0].metadata == {"featureKey": "teacher_mode"}
        assert isinstance(transactions[0].transaction_id, UUID)

    async def test_limit_is_clamped_and_newest_first(self, db_session: AsyncMock) -> None:
        await LedgerService(db_session).list_transactions("user-1", limit=10_000)

        stmt = db_session.execute.call_args.args[0]
        compiled = stmt.compile(dialect=postgresql.dialect())
        assert 200 in compiled.params.values()
        assert "ORDER BY points_transactions.created_at DESC" in str(compiled)

    async def test_read_does_not_create_account(self, db_session: AsyncMock) -> None:
        await LedgerService(db_session).list_transactions("unknown-user")

        db_session.execute.assert_called_once()
        db_session.commit.assert_not_called()

    async def test_storage_error(self, db_session: AsyncMock) -> None:
        db_session.execute = AsyncMock(side_effect=SQLAlchemyError("timeout"))

        with pytest.raises(StorageError):
            await LedgerService(db_session).list_transactions(str(uuid4()))
