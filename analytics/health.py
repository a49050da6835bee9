"""
Health scoring primitives shared by the analytics strategies.

A health score starts at 100 and loses a fixed penalty for every
threshold rule that fires. The final score is floored at 0 and mapped
onto a coarse status label.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MAX_SCORE = 100


@dataclass(frozen=True)
class HealthIssue:
    """One fired threshold rule."""

    type: str
    severity: str
    message: str
    penalty: int
    timestamp: float
    recommendation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "penalty": self.penalty,
            "timestamp": self.timestamp,
        }
        if self.recommendation is not None:
            data["recommendation"] = self.recommendation
        return data


@dataclass
class HealthAssessment:
    """Result of scoring a window of events."""

    score: int
    status: str
    issues: list[HealthIssue] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "status": self.status,
            "issues": [issue.to_dict() for issue in self.issues],
            **self.extra,
        }


class HealthScorer:
    """Accumulates penalties and issues, then produces an assessment.

    Usage::

        scorer = HealthScorer(now_ms)
        if avg > 2000:
            scorer.penalize("performance", "high", 20, "High response time")
        assessment = scorer.result(labels=("healthy", "warning", "critical"))
    """

    def __init__(self, now_ms: float) -> None:
        self._now_ms = now_ms
        self._score = MAX_SCORE
        self._issues: list[HealthIssue] = []

    def penalize(
        self,
        issue_type: str,
        severity: str,
        penalty: int,
        message: str,
        *,
        recommendation: str | None = None,
    ) -> None:
        self._score -= penalty
        self._issues.append(
            HealthIssue(
                type=issue_type,
                severity=severity,
                message=message,
                penalty=penalty,
                timestamp=self._now_ms,
                recommendation=recommendation,
            )
        )

    @property
    def raw_score(self) -> int:
        return self._score

    def result(self, labels: tuple[str, str, str]) -> HealthAssessment:
        score = max(0, self._score)
        return HealthAssessment(
            score=score,
            status=status_for_score(score, labels),
            issues=list(self._issues),
        )


def status_for_score(score: int, labels: tuple[str, str, str]) -> str:
    """Map a score onto ``(good, warning, critical)`` labels: ≥80, ≥60, else."""
    good, warning, critical = labels
    if score >= 80:
        return good
    if score >= 60:
        return warning
    return critical
