"""Sums and averages over one patient's exchanges.

All functions are pure; records are any objects exposing ``timestamp`` and
``uf`` (normally :class:`careassist.records.PDExchange`).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from careassist.civil import CivilValue, civil_date_key, to_civil_date, window_start
from careassist.uf import uf_or_zero


def daily_total(records: Iterable, day: CivilValue) -> float:
    """Sum of UF for every record whose civil date is ``day``."""
    day_key = to_civil_date(day).isoformat()
    return sum(uf_or_zero(r.uf) for r in records if civil_date_key(r.timestamp) == day_key)


def records_for_day(records: Iterable, day: CivilValue) -> List:
    day_key = to_civil_date(day).isoformat()
    selected = [r for r in records if civil_date_key(r.timestamp) == day_key]
    return sorted(selected, key=lambda r: r.timestamp)


def records_in_window(records: Iterable, window_days: int, now: Optional[datetime] = None) -> List:
    cutoff = window_start(window_days, now)
    return [r for r in records if r.timestamp is not None and r.timestamp >= cutoff]


def rolling_average(records: Iterable, window_days: int, now: Optional[datetime] = None) -> float:
    """Mean UF over the trailing window; 0 when nothing falls inside it."""
    window = records_in_window(records, window_days, now)
    if not window:
        return 0.0
    return sum(uf_or_zero(r.uf) for r in window) / len(window)


@dataclass
class DayGroup:
    date: str
    records: List = field(default_factory=list)

    @property
    def total_uf(self) -> float:
        return sum(uf_or_zero(r.uf) for r in self.records)

    def __len__(self) -> int:
        return len(self.records)


def group_by_civil_date(records: Iterable) -> Dict[str, DayGroup]:
    """Partition records by civil date, keeping first-seen order of days and
    the original order of records inside each day."""
    groups: Dict[str, DayGroup] = {}
    for record in records:
        key = civil_date_key(record.timestamp)
        groups.setdefault(key, DayGroup(date=key)).records.append(record)
    return groups
