from __future__ import annotations

import re
from datetime import UTC, date, datetime, time

from leadtrack.domain.rules import ValidationError, as_utc

CURRENCY_JUNK_RE = re.compile(r"[^0-9,.\-]")
# A lone separator followed by exactly three digits groups thousands.
THOUSANDS_RE = re.compile(r"-?\d{1,3}[.,]\d{3}")


def utc_now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def to_iso(value: datetime) -> str:
    return as_utc(value).replace(microsecond=0).isoformat()


def day_range(start: date, end: date) -> tuple[str, str]:
    """Inclusive UTC bounds covering every day from start to end."""
    if end < start:
        raise ValidationError("end date must not be before start date.")
    lower = datetime.combine(start, time.min, tzinfo=UTC)
    upper = datetime.combine(end, time(23, 59, 59), tzinfo=UTC)
    return lower.isoformat(), upper.isoformat()


def parse_currency(value: str | float | int | None) -> float | None:
    """Parse amounts such as ``R$ 1.234,56`` or ``1234.56``."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = CURRENCY_JUNK_RE.sub("", value)
    if not cleaned:
        return None
    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    elif cleaned.count(",") > 1:
        cleaned = cleaned.replace(",", "")
    elif THOUSANDS_RE.fullmatch(cleaned):
        cleaned = cleaned.replace(".", "").replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    try:
        return float(cleaned)
    except ValueError as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc
