"""
Feature cost catalog.

Maps gated feature keys to their point cost. Loaded once at import time and
never mutated.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from points_ledger.exceptions import UnknownFeatureError


@dataclass(frozen=True)
class FeatureCost:
    """Gated feature configuration."""

    feature_key: str
    name: str
    cost: int
    description: str

    def __post_init__(self) -> None:
        """Validate feature configuration."""
        if self.cost <= 0:
            raise ValueError(f"Cost must be positive: {self.cost}")
        if not self.feature_key:
            raise ValueError("Feature key required")
        if not self.name:
            raise ValueError("Name required")


FEATURE_COSTS: Mapping[str, FeatureCost] = MappingProxyType(
    {
        "teacher_mode": FeatureCost(
            feature_key="teacher_mode",
            name="Teacher Mode",
            cost=20,
            description="Teacher mode access",
        ),
        "notes_generation": FeatureCost(
            feature_key="notes_generation",
            name="Notes Generation",
            cost=15,
            description="Notes generation",
        ),
        "quiz_generation": FeatureCost(
            feature_key="quiz_generation",
            name="Quiz Generation",
            cost=15,
            description="Quiz generation",
        ),
        "homework": FeatureCost(
            feature_key="homework",
            name="Homework",
            cost=10,
            description="Homework help",
        ),
        "motivation": FeatureCost(
            feature_key="motivation",
            name="Motivation",
            cost=5,
            description="Motivation message",
        ),
        "study_plan": FeatureCost(
            feature_key="study_plan",
            name="Study Plan",
            cost=25,
            description="Study plan",
        ),
    }
)


def get_feature(feature_key: str) -> FeatureCost:
    """
    Get feature configuration by key.

    Raises:
        UnknownFeatureError: If the key is not in the catalog
    """
    feature = FEATURE_COSTS.get(feature_key)
    if feature is None:
        raise UnknownFeatureError(feature_key)
    return feature


def list_features() -> list[FeatureCost]:
    """All gated features, cheapest first."""
    return sorted(FEATURE_COSTS.values(), key=lambda f: (f.cost, f.feature_key))
