"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. ``points_transactions`` is an
append-only audit log: rows are inserted by the ledger service and never
updated or deleted.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from points_ledger.models.api import Currency, TransactionType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UserPoints(Base):
    """
    ORM model for user_points table.

    One row per user: spendable points, lifetime XP, derived level and
    the separately spendable credits sub-ledger.
    """

    __tablename__ = "user_points"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity (owned by the external auth system)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Sub-ledgers
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Progression
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_points_balance_non_negative"),
        CheckConstraint("credits >= 0", name="ck_user_points_credits_non_negative"),
        CheckConstraint("xp >= 0", name="ck_user_points_xp_non_negative"),
        CheckConstraint("level >= 1", name="ck_user_points_level_positive"),
        UniqueConstraint("user_id", name="uq_user_points_user_id"),
        Index("idx_user_points_xp", "xp"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserPoints(user_id={self.user_id}, balance={self.balance}, "
            f"xp={self.xp}, level={self.level}, credits={self.credits})>"
        )


class PointsTransaction(Base):
    """
    ORM model for points_transactions table.

    Immutable ledger of every balance/credits mutation. ``balance_after``
    refers to the sub-ledger named by ``currency``.
    """

    __tablename__ = "points_transactions"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Owning account
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(
            TransactionType,
            name="points_transaction_type",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    currency: Mapped[Currency] = mapped_column(
        SQLEnum(
            Currency,
            name="points_currency",
            native_enum=False,
            length=10,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=Currency.POINTS,
    )

    # Signed amount: positive for credit-type, negative for deduction/debit
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    # Idempotency
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_points_transaction_amount_non_zero"),
        CheckConstraint("balance_after >= 0", name="ck_points_transaction_balance_non_negative"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_points_transaction_idempotency"),
        Index("idx_points_transactions_user_created", "user_id", "created_at"),
        Index("idx_points_transactions_type", "transaction_type"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PointsTransaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.transaction_type}, amount={self.amount}, "
            f"balance_after={self.balance_after})>"
        )


class Profile(Base):
    """
    ORM model for profiles table.

    Owned by the profile component; the ledger only reads it to decorate
    leaderboard entries.
    """

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
