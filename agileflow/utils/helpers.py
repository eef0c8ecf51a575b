"""Shared utility functions for services.

as_utc:          timezone handling (SQLite returns naive datetimes)
parse_date:      returns None on empty input, raises ValidationError on junk
require_fields:  payload presence check, string values only
check_text:      optional payload fields must be strings when present
text_or_none:    single optional string field
coerce_int:      integer payload fields with an optional lower bound
"""
from datetime import date, datetime, timezone

from agileflow.core.exceptions import ValidationError


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date(value, field: str = "date"):
    """Parse an ISO date (or datetime) string to a date object.

    Returns None for empty input. Raises ValidationError on bad input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD.", details={field: "invalid date"},
        ) from exc


def check_text(data: dict, *fields: str) -> None:
    """Raise ValidationError for every present, non-null field that is not a string."""
    wrong = [f for f in fields if data.get(f) is not None and not isinstance(data.get(f), str)]
    if wrong:
        raise ValidationError(
            f"Expected text for: {', '.join(wrong)}",
            details={f: "must be a string" for f in wrong},
        )


def text_or_none(data: dict, field: str) -> str | None:
    check_text(data, field)
    return data.get(field) or None


def require_fields(data: dict, *fields: str) -> None:
    """Raise ValidationError naming every missing, blank or non-string field."""
    check_text(data, *fields)
    missing = [f for f in fields if not (data.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={f: "required" for f in missing},
        )


def coerce_int(value, field: str, *, minimum: int | None = None) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: "integer"}) from exc
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: f">= {minimum}"})
    return result
