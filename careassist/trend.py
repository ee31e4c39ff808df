# careassist/trend.py

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Tuple

from careassist.aggregate import records_in_window
from careassist.civil import short_date_label
from careassist.uf import uf_or_zero


class TrendWindow(str, Enum):
    SEVEN_DAYS = "7days"
    THIRTY_DAYS = "30days"

    @property
    def days(self) -> int:
        return 7 if self is TrendWindow.SEVEN_DAYS else 30


@dataclass(frozen=True)
class TrendPoint:
    label: str
    value: float


@dataclass(frozen=True)
class TrendSeries:
    window: TrendWindow
    points: Tuple[TrendPoint, ...]

    @property
    def labels(self) -> list:
        return [p.label for p in self.points]

    @property
    def values(self) -> list:
        return [p.value for p in self.points]

    @property
    def retention(self) -> bool:
        """True when any point shows net retention (drawn in the warning colour)."""
        return any(p.value > 0 for p in self.points)

    def __len__(self) -> int:
        return len(self.points)


def build_trend(
    records: Iterable, window: TrendWindow, now: Optional[datetime] = None
) -> Optional[TrendSeries]:
    """Chart points for the records inside ``window``, oldest first.

    Returns ``None`` when the window holds no records, so callers can tell
    "nothing to draw" apart from a series that is still loading.
    """
    window = TrendWindow(window)
    selected = sorted(records_in_window(records, window.days, now), key=lambda r: r.timestamp)
    if not selected:
        return None
    points = tuple(TrendPoint(short_date_label(r.timestamp), uf_or_zero(r.uf)) for r in selected)
    return TrendSeries(window=window, points=points)
