"""Recommended retention thresholds per data classification."""

from __future__ import annotations

from dataclasses import dataclass

from services.state.event_store.domain import DataClassification


@dataclass(frozen=True)
class RecommendedRetention:
    """Default policy name and day thresholds for one classification."""

    policy_name: str
    retention_days: int
    archive_after_days: int
    delete_after_days: int


_DEFAULT = RecommendedRetention(
    policy_name="default",
    retention_days=365,
    archive_after_days=90,
    delete_after_days=365,
)

_RECOMMENDED: dict[DataClassification, RecommendedRetention] = {
    # HIPAA: six years plus current.
    DataClassification.PHI: RecommendedRetention(
        policy_name="healthcare_phi",
        retention_days=2555,
        archive_after_days=365,
        delete_after_days=2555,
    ),
    DataClassification.CONFIDENTIAL: RecommendedRetention(
        policy_name="confidential_data",
        retention_days=1095,
        archive_after_days=365,
        delete_after_days=1095,
    ),
}


def recommended_retention(classification: DataClassification) -> RecommendedRetention:
    """Return recommended thresholds, falling back to the default policy."""
    return _RECOMMENDED.get(classification, _DEFAULT)
