"""
Leaderboard Projection - Read-only ranking of accounts by XP.
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from points_ledger.config import Settings
from points_ledger.config import settings as default_settings
from points_ledger.db.models import Profile, UserPoints
from points_ledger.exceptions import StorageError
from points_ledger.models.domain import LeaderboardEntryData
from points_ledger.observability.metrics import metrics
from points_ledger.services.ledger import clamp_limit

logger = get_logger(__name__)

# Shown when the user has no profile or no display name
PLACEHOLDER_NAME = "Student"


class LeaderboardService:
    """Ranks accounts by XP, decorated with profile data."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.settings = config or default_settings

    async def get_leaderboard(self, limit: int | None = None) -> list[LeaderboardEntryData]:
        """
        Top accounts by XP, highest first.

        Ties are broken by account age so the read order is stable.

        Raises:
            StorageError: Database unavailable
        """
        resolved_limit = clamp_limit(
            limit,
            self.settings.default_leaderboard_limit,
            self.settings.max_leaderboard_limit,
        )
        stmt = (
            select(UserPoints, Profile.display_name, Profile.avatar_url)
            .outerjoin(Profile, Profile.user_id == UserPoints.user_id)
            .order_by(UserPoints.xp.desc(), UserPoints.created_at.asc())
            .limit(resolved_limit)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("leaderboard_read_failed", error=str(exc))
            metrics.record_error(type(exc).__name__, "leaderboard")
            raise StorageError("leaderboard read failed") from exc

        return [
            LeaderboardEntryData(
                user_id=account.user_id,
                rank=rank,
                name=display_name or PLACEHOLDER_NAME,
                avatar=avatar_url,
                xp=account.xp,
                level=account.level,
                balance=account.balance,
            )
            for rank, (account, display_name, avatar_url) in enumerate(result.all(), start=1)
        ]
