"""
Feature Gate - Debit-before-access for paid features.
"""

from structlog import get_logger

from points_ledger.exceptions import UnknownFeatureError
from points_ledger.models.api import Currency
from points_ledger.models.domain import DebitIntent, DebitResult
from points_ledger.services.feature_catalog import FeatureCost, get_feature, list_features
from points_ledger.services.ledger import LedgerService

logger = get_logger(__name__)


class FeatureGate:
    """Checks and charges feature costs through the ledger."""

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger

    async def can_afford(self, user_id: str, feature_key: str) -> tuple[bool, int, int]:
        """
        Whether the user's balance covers the feature cost.

        Returns (can_afford, cost, balance). Unknown features are never
        affordable, report a cost of 0 and do not create an account.
        """
        try:
            feature = get_feature(feature_key)
        except UnknownFeatureError:
            existing = await self.ledger.find_account(user_id)
            balance = existing.balance_of(Currency.POINTS) if existing else 0
            logger.info("feature_affordability_unknown_feature", feature_key=feature_key)
            return False, 0, balance

        account = await self.ledger.get_balance(user_id)
        balance = account.balance_of(Currency.POINTS)
        return balance >= feature.cost, feature.cost, balance

    async def use_feature(self, user_id: str, feature_key: str) -> DebitResult:
        """
        Charge the feature cost before granting access.

        Raises:
            UnknownFeatureError: Feature not in the catalog (no debit)
            InsufficientBalanceError: Balance below cost (no debit)
        """
        feature = get_feature(feature_key)
        intent = DebitIntent(
            user_id=user_id,
            amount=feature.cost,
            reason=feature.description,
            feature_key=feature.feature_key,
        )
        result = await self.ledger.debit(intent)
        logger.info(
            "feature_used",
            user_id=user_id,
            feature_key=feature_key,
            cost=feature.cost,
            balance=result.balance,
        )
        return result

    @staticmethod
    def list_features() -> list[FeatureCost]:
        """Catalog entries for display; needs no account."""
        return list_features()
