"""
Expiry status classification

The only place where an expiry date is turned into a status. Dashboard
stats, reports, profile pages, "my training", course details and the
record listing all call classify().
"""

from datetime import date, timedelta
from enum import Enum
from typing import Optional

DEFAULT_LOOKAHEAD_DAYS = 90


class ExpiryStatus(str, Enum):
    CURRENT = "current"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class ReportType(str, Enum):
    """Report filters accepted by /api/reports"""
    ALL = "all"
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"


def classify(
    expiry_date: Optional[date],
    today: date,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
) -> ExpiryStatus:
    """Classify an expiry date relative to today

    Both ends of the expiring window are inclusive:
    today <= expiry <= today + lookahead_days is expiring_soon.

    Args:
        expiry_date: Expiry date, None for credentials that never expire
        today: Reference date
        lookahead_days: Size of the expiring-soon window

    Returns:
        ExpiryStatus
    """
    if expiry_date is None:
        return ExpiryStatus.CURRENT
    if expiry_date < today:
        return ExpiryStatus.EXPIRED
    if expiry_date <= today + timedelta(days=lookahead_days):
        return ExpiryStatus.EXPIRING_SOON
    return ExpiryStatus.CURRENT


def derive_expiry(completion_date: date, validity_days: Optional[int]) -> Optional[date]:
    """Expiry of a training record at the moment it is created

    The result is stored on the record and never recomputed from the
    course afterwards.
    """
    if validity_days is None:
        return None
    return completion_date + timedelta(days=validity_days)


def parse_report_type(value: Optional[str]) -> ReportType:
    """Parse a report filter, treating empty input as 'all'

    Raises:
        ValueError: Unknown report type
    """
    if value is None or str(value).strip() == "":
        return ReportType.ALL
    try:
        return ReportType(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(t.value for t in ReportType)
        raise ValueError(f"Invalid report type '{value}'. Must be one of: {valid}")


def matches_report_type(
    report_type: ReportType,
    expiry_date: Optional[date],
    today: date,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
) -> bool:
    """Apply a report filter using the classifier's boundaries

    'valid' means not yet expired, so it includes expiring_soon and
    records that never expire.
    """
    if report_type == ReportType.ALL:
        return True
    status = classify(expiry_date, today, lookahead_days)
    if report_type == ReportType.VALID:
        return status != ExpiryStatus.EXPIRED
    if report_type == ReportType.EXPIRING:
        return status == ExpiryStatus.EXPIRING_SOON
    return status == ExpiryStatus.EXPIRED
