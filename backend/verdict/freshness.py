"""
freshness.py — Review freshness of products and ingredients.

  never reviewed             → needs_review
  older than threshold       → stale
  older than threshold / 2   → needs_review
  otherwise                  → fresh
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from intake.store import record_audit_event
from .constants import FreshnessStatus, DEFAULT_FRESHNESS_THRESHOLD_DAYS

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24


@dataclass
class FreshnessResult:
    status: FreshnessStatus
    days_since_last_review: Optional[int]
    message: str


@dataclass
class FreshnessSummary:
    threshold_days: int
    counts: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in FreshnessStatus})
    stale_ids: List = field(default_factory=list)
    needs_review_ids: List = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _as_datetime(value: Union[str, date, datetime]) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        dt = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def calculate_freshness(
    last_reviewed: Union[str, date, datetime, None],
    threshold_days: int = DEFAULT_FRESHNESS_THRESHOLD_DAYS,
    now: Optional[datetime] = None,
) -> FreshnessResult:
    """
    Classify a record by days since its last review (whole days, floored).
    Strings must be ISO-8601; naive timestamps are taken as UTC.
    """
    if not last_reviewed:
        return FreshnessResult(
            status=FreshnessStatus.NEEDS_REVIEW,
            days_since_last_review=None,
            message='Never reviewed',
        )

    now = _as_datetime(now) if now is not None else datetime.now(timezone.utc)
    days_since = int((now - _as_datetime(last_reviewed)).total_seconds() // SECONDS_PER_DAY)

    if days_since > threshold_days:
        return FreshnessResult(
            status=FreshnessStatus.STALE,
            days_since_last_review=days_since,
            message=f"Last reviewed {days_since} days ago",
        )

    if days_since > threshold_days / 2:
        return FreshnessResult(
            status=FreshnessStatus.NEEDS_REVIEW,
            days_since_last_review=days_since,
            message=f"Review recommended ({days_since} days since last review)",
        )

    return FreshnessResult(
        status=FreshnessStatus.FRESH,
        days_since_last_review=days_since,
        message=f"Reviewed {days_since} days ago",
    )


def summarize_freshness(
    records: Iterable[dict],
    threshold_days: int = DEFAULT_FRESHNESS_THRESHOLD_DAYS,
    now: Optional[datetime] = None,
    audit_sink=None,
) -> FreshnessSummary:
    """
    Tally freshness over records shaped like {'id': ..., 'last_reviewed': ...}.
    With an audit sink, one 'freshness_check' event records the tally.
    """
    summary = FreshnessSummary(threshold_days=threshold_days)
    for record in records:
        result = calculate_freshness(record.get('last_reviewed'), threshold_days, now=now)
        summary.counts[result.status.value] += 1
        if result.status == FreshnessStatus.STALE:
            summary.stale_ids.append(record.get('id'))
        elif result.status == FreshnessStatus.NEEDS_REVIEW:
            summary.needs_review_ids.append(record.get('id'))

    logger.info(
        f"Freshness check: {summary.total} records, "
        f"stale={summary.counts['stale']}, needs_review={summary.counts['needs_review']}"
    )
    record_audit_event(audit_sink, {
        'action': 'freshness_check',
        'metadata': {
            'threshold_days': threshold_days,
            'counts': summary.counts,
            'stale_ids': summary.stale_ids,
        },
    })
    return summary
