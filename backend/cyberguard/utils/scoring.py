# File: cyberguard/utils/scoring.py
# =============================================================================
# Centralized Risk Score Calculator
# =============================================================================
# Single source of truth for the tenant risk score.
# Used by: scan orchestrator, weekly digest, historical backfill.
#
# Scale (inclusive lower bounds):
#   0–24    = Low
#   25–49   = Medium
#   50–74   = High
#   75–100  = Critical
#
# Pure functions only; nothing here touches the database.
# =============================================================================

from __future__ import annotations

from typing import Iterable, Mapping

SEVERITY_WEIGHTS = {
    "low": 2,
    "medium": 8,
    "high": 20,
    "critical": 35,
}

CATEGORY_THRESHOLDS = (
    (75, "Critical"),
    (50, "High"),
    (25, "Medium"),
)

TREND_BAND = 5


def _severity_of(finding) -> str:
    if isinstance(finding, Mapping):
        sev = finding.get("severity")
    else:
        sev = getattr(finding, "severity", None)
    return (sev or "").strip().lower()


def calc_risk_score(findings: Iterable) -> int:
    """
    Sum the severity weights of ``findings`` and clamp to 0–100.

    Findings may be dicts or objects with a ``severity`` attribute.
    Unknown severities (including "info") contribute nothing.
    """
    raw = sum(SEVERITY_WEIGHTS.get(_severity_of(f), 0) for f in findings)
    return min(100, int(round(raw)))


def risk_category(score: float) -> str:
    for threshold, label in CATEGORY_THRESHOLDS:
        if score >= threshold:
            return label
    return "Low"


def score_findings(findings: Iterable) -> tuple[int, str]:
    """Return ``(score, category)`` for a list of findings."""
    score = calc_risk_score(findings)
    return score, risk_category(score)


def risk_trend(current: float | None, previous: float | None, band: int = TREND_BAND) -> str:
    """
    Compare two scores: "up" when current exceeds previous by more than
    ``band`` points, "down" when it is lower by more than ``band``,
    otherwise "stable". Missing either side is "stable".
    """
    if current is None or previous is None:
        return "stable"
    if current > previous + band:
        return "up"
    if current < previous - band:
        return "down"
    return "stable"
