"""
Aggregation and reporting

Works on plain ReportRow values so it can be used by the service layer
and tested without a database. Internal training records and third-party
certificates are always merged before counting or sorting.
"""

import csv
import io
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from status_classifier import (
    DEFAULT_LOOKAHEAD_DAYS,
    ExpiryStatus,
    ReportType,
    classify,
    matches_report_type,
)

KIND_TRAINING = "training"
KIND_THIRD_PARTY = "thirdparty"

CSV_HEADERS = ['Staff Name', 'Email', 'Course', 'Completed', 'Expires', 'Assessor', 'Status']

STATUS_LABELS = {
    ExpiryStatus.CURRENT: 'Current',
    ExpiryStatus.EXPIRING_SOON: 'Expiring Soon',
    ExpiryStatus.EXPIRED: 'Expired',
}


@dataclass
class StatusCounts:
    """Per-scope status totals"""
    total: int = 0
    current: int = 0
    expiring_soon: int = 0
    expired: int = 0

    def add(self, status: ExpiryStatus) -> None:
        self.total += 1
        if status == ExpiryStatus.CURRENT:
            self.current += 1
        elif status == ExpiryStatus.EXPIRING_SOON:
            self.expiring_soon += 1
        else:
            self.expired += 1

    def __add__(self, other: 'StatusCounts') -> 'StatusCounts':
        return StatusCounts(
            total=self.total + other.total,
            current=self.current + other.current,
            expiring_soon=self.expiring_soon + other.expiring_soon,
            expired=self.expired + other.expired,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            'total': self.total,
            'current': self.current,
            'expiring_soon': self.expiring_soon,
            'expired': self.expired,
        }


@dataclass
class ReportRow:
    """One training record or third-party certificate, flattened"""
    kind: str
    record_id: int
    person_id: int
    person_name: str
    email: str
    title: str
    completion_date: date
    expiry_date: Optional[date] = None
    provider: Optional[str] = None
    assessor: Optional[str] = None
    notes: Optional[str] = None
    course_id: Optional[int] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    status: Optional[ExpiryStatus] = None

    def with_status(self, today: date, lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS) -> 'ReportRow':
        self.status = classify(self.expiry_date, today, lookahead_days)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'id': self.record_id,
            'person_id': self.person_id,
            'person_name': self.person_name,
            'email': self.email,
            'title': self.title,
            'course_id': self.course_id,
            'provider': self.provider,
            'assessor': self.assessor,
            'notes': self.notes,
            'completion_date': self.completion_date.isoformat(),
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
            'status': self.status.value if self.status else None,
            'attachments': list(self.attachments),
        }


def count_statuses(
    expiries: Iterable[Optional[date]],
    today: date,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
) -> StatusCounts:
    """Classify every expiry date and sum by bucket"""
    counts = StatusCounts()
    for expiry in expiries:
        counts.add(classify(expiry, today, lookahead_days))
    return counts


def count_rows(
    rows: Iterable[ReportRow],
    today: date,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
) -> StatusCounts:
    return count_statuses((row.expiry_date for row in rows), today, lookahead_days)


def report_sort_key(row: ReportRow):
    return (row.person_name.casefold(), row.title.casefold(), row.kind, row.record_id)


def build_report(
    internal_rows: Iterable[ReportRow],
    third_party_rows: Iterable[ReportRow],
    report_type: ReportType,
    today: date,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
    person_id: Optional[int] = None
) -> List[ReportRow]:
    """Filter both collections with the same boundaries, merge and sort

    Args:
        internal_rows: Training record rows
        third_party_rows: Third-party certificate rows
        report_type: all | valid | expiring | expired
        today: Reference date
        lookahead_days: Size of the expiring-soon window
        person_id: Optional person filter

    Returns:
        Rows sorted by (person name, title), each with its status set
    """
    selected = []
    for source in (internal_rows, third_party_rows):
        for row in source:
            if person_id is not None and row.person_id != person_id:
                continue
            if matches_report_type(report_type, row.expiry_date, today, lookahead_days):
                selected.append(row.with_status(today, lookahead_days))
    selected.sort(key=report_sort_key)
    return selected


def sort_by_completion_desc(rows: Iterable[ReportRow]) -> List[ReportRow]:
    """Newest completions first, title as tie-breaker"""
    ordered = sorted(rows, key=lambda r: r.title.casefold())
    ordered.sort(key=lambda r: r.completion_date, reverse=True)
    return ordered


def report_to_csv(rows: Iterable[ReportRow]) -> str:
    """Render report rows as CSV text with a header line"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    for row in rows:
        status = row.status
        writer.writerow([
            row.person_name,
            row.email,
            row.title,
            row.completion_date.isoformat(),
            row.expiry_date.isoformat() if row.expiry_date else '',
            row.assessor or '',
            STATUS_LABELS.get(status, '') if status else '',
        ])
    return buffer.getvalue()
