"""Entry weighting used when a client omits explicit scores."""
from datetime import date, datetime
from typing import Optional, Union

DEFAULT_HALF_LIFE_MONTHS = 18.0

# Entry types that never decay unless the client says otherwise
EVERGREEN_TYPES = frozenset({"skill", "certification"})


def parse_entry_date(value: Union[str, date, None]) -> Optional[date]:
    """Accept YYYY-MM-DD or YYYY-MM; 'present' and empty values mean ongoing."""
    if value is None or isinstance(value, date):
        return value
    text = str(value).strip()
    if not text or text.lower() in ("present", "current", "now"):
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def months_between(start: date, end: date) -> float:
    total = (end.year - start.year) * 12 + (end.month - start.month)
    return max(0.0, total + (end.day - start.day) / 30.0)


def compute_recency_score(
    end_date: Optional[date],
    flagged_evergreen: bool = False,
    half_life_months: float = DEFAULT_HALF_LIFE_MONTHS,
    today: Optional[date] = None,
) -> float:
    """
    Exponential decay with the given half-life, in [0, 1].

    Ongoing roles (no end date) and evergreen entries score 1.0.
    """
    if flagged_evergreen or end_date is None:
        return 1.0
    today = today or date.today()
    months_since = months_between(end_date, today)
    if months_since <= 0:
        return 1.0
    return max(0.0, min(1.0, 0.5 ** (months_since / half_life_months)))
