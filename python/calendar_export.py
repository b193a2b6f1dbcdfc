"""
iCalendar export

Builds VCALENDAR text for certificate expiries. Every export path (the
subscribable feed, the download and the single-certificate file) uses
event_uid(), so re-importing a calendar updates events instead of
duplicating them.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

CRLF = "\r\n"
MAX_LINE_OCTETS = 75


@dataclass
class CalendarEvent:
    """One all-day expiry event"""
    kind: str
    record_id: int
    person_id: int
    title: str
    expiry_date: date
    description: Optional[str] = None


def event_uid(kind: str, record_id: int, person_id: int, domain: str) -> str:
    """Stable event identity derived from (kind, record id, person id)"""
    return f"{kind}-{record_id}-person-{person_id}@{domain}"


def escape_text(value: str) -> str:
    """Escape a TEXT property value"""
    return (
        str(value)
        .replace('\\', '\\\\')
        .replace(';', '\\;')
        .replace(',', '\\,')
        .replace('\r\n', '\\n')
        .replace('\n', '\\n')
        .replace('\r', '\\n')
    )


def fold_line(line: str) -> str:
    """Fold a content line at 75 octets, continuation lines start with a space"""
    encoded = line.encode('utf-8')
    if len(encoded) <= MAX_LINE_OCTETS:
        return line

    parts = []
    current = ""
    limit = MAX_LINE_OCTETS
    for char in line:
        if len((current + char).encode('utf-8')) > limit:
            parts.append(current)
            current = char
            limit = MAX_LINE_OCTETS - 1
        else:
            current += char
    parts.append(current)
    return (CRLF + " ").join(parts)


def format_date(value: date) -> str:
    return value.strftime('%Y%m%d')


def format_stamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime('%Y%m%dT%H%M%SZ')


def _event_lines(
    event: CalendarEvent,
    stamp: str,
    uid_domain: str,
    alarm_days_before: int
) -> List[str]:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{event_uid(event.kind, event.record_id, event.person_id, uid_domain)}",
        f"DTSTAMP:{stamp}",
        f"DTSTART;VALUE=DATE:{format_date(event.expiry_date)}",
        f"DTEND;VALUE=DATE:{format_date(event.expiry_date + timedelta(days=1))}",
        f"SUMMARY:{escape_text('Certificate expiry - ' + event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{escape_text(event.description)}")
    lines.extend([
        "BEGIN:VALARM",
        "ACTION:DISPLAY",
        "DESCRIPTION:Certificate expiring soon",
        f"TRIGGER:-P{alarm_days_before}D",
        "END:VALARM",
        "END:VEVENT",
    ])
    return lines


def build_calendar(
    events: Iterable[CalendarEvent],
    now: Optional[datetime] = None,
    prodid: str = "-//Training Manager//EN",
    uid_domain: str = "training-manager",
    alarm_days_before: int = 14
) -> str:
    """Render events into a VCALENDAR document

    Args:
        events: Events to include; all must carry an expiry date
        now: Generation time used for DTSTAMP (defaults to current UTC time)
        prodid: PRODID property value
        uid_domain: Right-hand side of every UID
        alarm_days_before: Days before expiry the reminder fires

    Returns:
        iCalendar text with CRLF line endings
    """
    stamp = format_stamp(now or datetime.now(timezone.utc))
    lines = [
        "BEGIN:VCALENDAR",
        f"PRODID:{prodid}",
        "VERSION:2.0",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    for event in events:
        lines.extend(_event_lines(event, stamp, uid_domain, alarm_days_before))
    lines.append("END:VCALENDAR")
    return CRLF.join(fold_line(line) for line in lines) + CRLF
