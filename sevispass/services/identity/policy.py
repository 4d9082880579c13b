"""
Decision Policy
===============
Maps a face-similarity confidence (0-100) to an outcome.

Registration and login use separate tables. Thresholds come from
configuration; nothing here hard-codes a cut-off.
"""
from dataclasses import dataclass
from typing import Optional

from sevispass.config import POLICY_CONFIG
from sevispass.services.identity.models import Outcome


@dataclass(frozen=True)
class PolicyThresholds:
    auto_approve: float = 70.0
    manual_review: float = 50.0
    login: float = 60.0
    compare_floor: float = 50.0

    def __post_init__(self):
        if not 0 <= self.manual_review <= self.auto_approve <= 100:
            raise ValueError(
                "thresholds must satisfy 0 <= manual_review <= auto_approve <= 100 "
                f"(got manual_review={self.manual_review}, auto_approve={self.auto_approve})"
            )
        if not 0 <= self.login <= 100:
            raise ValueError(f"login threshold out of range: {self.login}")
        if not 0 <= self.compare_floor <= 100:
            raise ValueError(f"compare floor out of range: {self.compare_floor}")


def load_thresholds() -> PolicyThresholds:
    """Build thresholds from POLICY_CONFIG."""
    return PolicyThresholds(
        auto_approve=POLICY_CONFIG["auto_approve_threshold"],
        manual_review=POLICY_CONFIG["manual_review_threshold"],
        login=POLICY_CONFIG["login_threshold"],
        compare_floor=POLICY_CONFIG["compare_similarity_floor"],
    )


class DecisionPolicy:
    """Pure threshold tables for registration and login."""

    def __init__(self, thresholds: Optional[PolicyThresholds] = None):
        self.thresholds = thresholds or load_thresholds()

    def registration_outcome(self, confidence: float) -> Outcome:
        """
        Registration table.

        Args:
            confidence: Similarity between selfie and document photo (0-100)

        Returns:
            AUTO_APPROVE, MANUAL_REVIEW or REJECT
        """
        if confidence >= self.thresholds.auto_approve:
            return Outcome.AUTO_APPROVE
        if confidence >= self.thresholds.manual_review:
            return Outcome.MANUAL_REVIEW
        return Outcome.REJECT

    def login_succeeds(self, confidence: float) -> bool:
        return confidence >= self.thresholds.login
