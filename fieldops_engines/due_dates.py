"""
Due-Date Resolver -- payment term to due date.

Terms are matched case-insensitively. Recognised terms add whole
calendar days (weekends and holidays count); anything else, including
"Due Today" and "Due on receipt", leaves the due date equal to the
issue date.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from fieldops_engines.tracer import traced_engine

# Terms offered when creating an invoice, in display order
PAYMENT_TERMS: tuple[str, ...] = (
    "Due Today",
    "Due on receipt",
    "Net 7",
    "Net 9",
    "Net 14",
    "Net 15",
    "Net 30",
    "Net 60",
    "7 calendar days",
    "14 calendar days",
    "30 calendar days",
)

_TERM_DAYS: dict[str, int] = {
    "net 7": 7,
    "7 calendar days": 7,
    "net 9": 9,
    "net 14": 14,
    "14 calendar days": 14,
    "net 15": 15,
    "net 30": 30,
    "30 calendar days": 30,
    "net 60": 60,
}


def term_days(term: str | None) -> int:
    """Days a term adds to the issue date; 0 for unrecognised terms."""
    return _TERM_DAYS.get((term or "").strip().lower(), 0)


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp. A trailing ``Z`` and naive values mean UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_iso_datetime(value: datetime) -> str:
    """UTC ISO-8601 with a ``Z`` suffix, e.g. ``2024-01-31T00:00:00Z``."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _is_date_only(value: str) -> bool:
    text = value.strip()
    return "T" not in text.upper() and " " not in text and ":" not in text


@traced_engine("due_date", "1.0", fingerprint_fields=("issue_date", "term"))
def resolve_due_date(issue_date: str | date, term: str | None) -> str | date:
    """
    Resolve the due date for ``issue_date`` under ``term``.

    Accepts and returns the same kind: a date or datetime gives the
    same type, an ISO string gives an ISO string. A date-only string
    (``2024-01-01``) comes back date-only. Strings ending in ``Z`` come
    back with ``Z``; strings with an explicit offset keep that offset.

    >>> resolve_due_date("2024-01-01T00:00:00Z", "Net 30")
    '2024-01-31T00:00:00Z'
    """
    days = term_days(term)
    if isinstance(issue_date, date):
        return issue_date + timedelta(days=days)

    parsed = parse_iso_datetime(issue_date)
    due = parsed + timedelta(days=days)
    if _is_date_only(issue_date):
        return due.date().isoformat()
    if issue_date.strip().endswith(("Z", "z")):
        return format_iso_datetime(due)
    return due.isoformat()
