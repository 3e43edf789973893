"""
Trip date-range maintenance.

All trip bounds are normalized to a fixed time of day (noon) before being
compared or stored, so an item recorded late in the evening in one timezone
does not shift a trip's range by a day.
"""
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Tuple

ANCHOR_TIME = time(12, 0)


def anchor(value: datetime) -> datetime:
    """Same calendar day, at the anchor time, without tzinfo."""
    return datetime.combine(value.date(), ANCHOR_TIME)


def span_days(start: datetime, end: datetime) -> int:
    """Inclusive number of calendar days covered: same day → 1."""
    return (end.date() - start.date()).days + 1


def expand_range(
    start: datetime,
    end: datetime,
    item_date: datetime,
) -> Tuple[datetime, datetime, bool]:
    """
    Grow (start, end) to include item_date.

    Returns:
        (new_start, new_end, changed)
    """
    day = anchor(item_date)
    new_start, new_end = anchor(start), anchor(end)
    changed = False
    if day < new_start:
        new_start, changed = day, True
    if day > new_end:
        new_end, changed = day, True
    return new_start, new_end, changed


def recompute_range(dates: Iterable[datetime]) -> Optional[Tuple[datetime, datetime]]:
    """Anchored (min, max) of the given dates, or None if there are none."""
    anchored = [anchor(d) for d in dates if d is not None]
    if not anchored:
        return None
    return min(anchored), max(anchored)


def within_window(
    value: datetime,
    start: datetime,
    end: datetime,
    window_days: int,
) -> bool:
    """True when value falls in [start - window, end + window], comparing anchored days."""
    delta = timedelta(days=window_days)
    day = anchor(value)
    return anchor(start) - delta <= day <= anchor(end) + delta
