"""History filtering.

A :class:`FilterConfig` is a plain value; :func:`apply_filters` derives a new
list from it and never touches the source records.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Iterable, List, Optional

from careassist.civil import civil_date_key
from careassist.errors import InvalidInputError
from careassist.uf import to_number

# Half-width of the "average" weight band (kg)
WEIGHT_BAND = 0.5


class WeightCategory(str, Enum):
    NONE = "none"
    BELOW = "below"
    AVERAGE = "average"
    ABOVE = "above"

    @classmethod
    def from_label(cls, label: Optional[str]) -> "WeightCategory":
        if isinstance(label, cls):
            return label
        if label is None or not str(label).strip():
            return cls.NONE
        try:
            return cls(str(label).strip().lower())
        except ValueError:
            raise InvalidInputError(f"Unknown weight category: {label}") from None


@dataclass(frozen=True)
class FilterConfig:
    weight_category: WeightCategory = WeightCategory.NONE
    uf_min: Optional[float] = None
    uf_max: Optional[float] = None
    strength: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD

    @classmethod
    def from_inputs(
        cls,
        weight_category: Any = "",
        uf_min: Any = "",
        uf_max: Any = "",
        strength: Any = "",
        date: Any = "",
    ) -> "FilterConfig":
        """Build a config from raw form values; blanks mean "no constraint"."""
        return cls(
            weight_category=WeightCategory.from_label(weight_category),
            uf_min=_parse_bound(uf_min, "UF min"),
            uf_max=_parse_bound(uf_max, "UF max"),
            strength=_parse_strength(strength),
            date=_parse_date(date),
        )

    def is_empty(self) -> bool:
        return self == FilterConfig()


def _parse_bound(value: Any, label: str) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = to_number(value)
    if number is None:
        raise InvalidInputError(f"{label} must be a number")
    return number


def _parse_strength(value: Any) -> Optional[str]:
    if isinstance(value, Enum):
        return value.value
    if value is None:
        return None
    return str(value).strip() or None


def _parse_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError:
        raise InvalidInputError(f"Invalid date filter: {value}") from None


def mean_weight(records: Iterable) -> Optional[float]:
    """Mean of the numeric weights; records without one are left out."""
    weights = [w for w in (to_number(r.weight) for r in records) if w is not None]
    if not weights:
        return None
    return sum(weights) / len(weights)


def classify_weight(weight: Any, mean: Optional[float]) -> Optional[WeightCategory]:
    value = to_number(weight)
    if value is None or mean is None:
        return None
    if abs(value - mean) <= WEIGHT_BAND:
        return WeightCategory.AVERAGE
    return WeightCategory.BELOW if value < mean else WeightCategory.ABOVE


def matches(record, config: FilterConfig, mean: Optional[float]) -> bool:
    if config.weight_category is not WeightCategory.NONE:
        if classify_weight(record.weight, mean) is not config.weight_category:
            return False

    if config.uf_min is not None or config.uf_max is not None:
        uf = to_number(record.uf)
        if uf is None:
            return False
        if config.uf_min is not None and uf < config.uf_min:
            return False
        if config.uf_max is not None and uf > config.uf_max:
            return False

    if config.strength and getattr(record, "baxter_strength", None) != config.strength:
        return False

    if config.date and civil_date_key(record.timestamp) != config.date:
        return False

    return True


def apply_filters(records: Iterable, config: FilterConfig) -> List:
    """Records passing every active predicate, in their original order.

    The weight mean is taken over the full input, not the filtered output.
    """
    records = list(records)
    mean = mean_weight(records) if config.weight_category is not WeightCategory.NONE else None
    return [r for r in records if matches(r, config, mean)]
