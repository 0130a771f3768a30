"""Security scoring for pull request scans.

Aggregates the per-file added/fixed/unchanged vulnerability buckets into a
summary with before/after scores and a merge recommendation.
"""

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any

from app.services.normalization_service import normalize_severity

PENALTY_PER_VULNERABILITY = 10
MAX_SCORE = 100

RECOMMEND_APPROVE = "approve"
RECOMMEND_REVIEW = "review"
RECOMMEND_BLOCK = "block"


@dataclass
class FileBuckets:
    """Vulnerabilities for one file, split by how the diff affected them."""

    added: list[dict[str, Any]]
    fixed: list[dict[str, Any]]
    unchanged: list[dict[str, Any]]


@dataclass
class SecurityScore:
    """Aggregate verdict for one PR scan."""

    total_added: int
    total_fixed: int
    total_unchanged: int
    critical_added: int
    critical_fixed: int
    high_added: int
    high_fixed: int
    score_before: int
    score_after: int
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _count_severity(vulnerabilities: list[dict[str, Any]], severity: str) -> int:
    return sum(1 for v in vulnerabilities if normalize_severity(v.get("severity")) == severity)


class ScoringService:
    """Computes security scores. Pure; no I/O."""

    def score(self, files: Iterable[FileBuckets]) -> SecurityScore:
        added: list[dict[str, Any]] = []
        fixed: list[dict[str, Any]] = []
        unchanged: list[dict[str, Any]] = []
        for buckets in files:
            added.extend(buckets.added)
            fixed.extend(buckets.fixed)
            unchanged.extend(buckets.unchanged)

        total_added = len(added)
        total_fixed = len(fixed)
        total_unchanged = len(unchanged)
        critical_added = _count_severity(added, "critical")
        high_added = _count_severity(added, "high")

        score_before = max(0, MAX_SCORE - PENALTY_PER_VULNERABILITY * total_unchanged)
        remaining = total_unchanged + total_added - total_fixed
        score_after = max(0, MAX_SCORE - PENALTY_PER_VULNERABILITY * remaining)

        return SecurityScore(
            total_added=total_added,
            total_fixed=total_fixed,
            total_unchanged=total_unchanged,
            critical_added=critical_added,
            critical_fixed=_count_severity(fixed, "critical"),
            high_added=high_added,
            high_fixed=_count_severity(fixed, "high"),
            score_before=score_before,
            score_after=score_after,
            recommendation=self.recommend(critical_added, high_added, total_added),
        )

    @staticmethod
    def recommend(critical_added: int, high_added: int, total_added: int) -> str:
        """Block on any new critical or more than two new highs; review on any new high or more than five new issues."""
        if critical_added > 0 or high_added > 2:
            return RECOMMEND_BLOCK
        if high_added > 0 or total_added > 5:
            return RECOMMEND_REVIEW
        return RECOMMEND_APPROVE
