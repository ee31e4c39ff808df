"""Ultrafiltration arithmetic.

Sign convention used everywhere in Care-Assist:

* ``uf < 0`` -- the patient drained more than was filled, fluid was removed.
* ``uf > 0`` -- less came out than went in, fluid was retained.

Every display, colour hint and filter goes through the helpers below so the
convention lives in exactly one place.
"""

import math
from enum import Enum
from typing import Any, Optional

UNKNOWN_DISPLAY = "--"


class UFDirection(str, Enum):
    REMOVED = "removed"
    RETAINED = "retained"
    BALANCED = "balanced"


def to_number(value: Any) -> Optional[float]:
    """Lenient numeric read: empty or unparsable values give ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def fill_volume(bag_volume: float, leftover_volume: Optional[float] = 0) -> float:
    """Volume that actually went in: bag minus what was left in it."""
    return bag_volume - (leftover_volume or 0)


def ultrafiltration(drain_volume: Any, fill: Any) -> Optional[float]:
    """``drain - fill``, or ``None`` (unknown) when either side is missing."""
    drain = to_number(drain_volume)
    fill = to_number(fill)
    if drain is None or fill is None:
        return None
    return drain - fill


def hd_ultrafiltration(pre_weight: float, post_weight: float) -> float:
    """Weight lost over a hemodialysis session (kg)."""
    return pre_weight - post_weight


def uf_or_zero(uf: Any) -> float:
    """UF contribution to sums and charts; unknown counts as 0."""
    number = to_number(uf)
    return number if number is not None else 0.0


def classify_uf(uf: Any) -> Optional[UFDirection]:
    number = to_number(uf)
    if number is None:
        return None
    if number < 0:
        return UFDirection.REMOVED
    if number > 0:
        return UFDirection.RETAINED
    return UFDirection.BALANCED


def is_retention(uf: Any) -> bool:
    return classify_uf(uf) is UFDirection.RETAINED


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_uf(uf: Any, unit: str = "mL") -> str:
    """Signed UF for display: ``+200 mL``, ``-80 mL``, ``-- mL`` when unknown."""
    number = to_number(uf)
    if number is None:
        text = UNKNOWN_DISPLAY
    elif number > 0:
        text = "+" + format_number(number)
    else:
        text = format_number(number)
    return f"{text} {unit}" if unit else text


def round_half_up(value: float) -> int:
    """Nearest integer, halves rounding towards +inf (``-2.5 -> -2``)."""
    return math.floor(value + 0.5)
