# analytics_service/models/schemas.py
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel
from pydantic import Field as PydField

from careassist.civil import format_clock, format_clock_12h
from careassist.records import PDExchange
from careassist.trend import TrendWindow
from careassist.uf import UFDirection, format_uf


# --- Exchanges as shown on the dashboard / history ---
class ExchangeSummary(BaseModel):
    id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None
    time: str
    time_12h: str
    baxter_strength: Optional[str] = None
    fill_volume: Optional[float] = None
    drain_volume: Optional[float] = None
    uf: Optional[float] = None
    uf_display: str
    weight: Optional[float] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_record(cls, record: PDExchange) -> "ExchangeSummary":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            time=format_clock(record.timestamp),
            time_12h=format_clock_12h(record.timestamp),
            baxter_strength=record.baxter_strength,
            fill_volume=record.fill_volume,
            drain_volume=record.drain_volume,
            uf=record.uf,
            uf_display=format_uf(record.uf),
            weight=record.weight,
            notes=record.notes,
            image_url=record.image_url,
        )


# --- Dashboard ---
class TodaySummary(BaseModel):
    patient_id: uuid.UUID
    day: date
    total_uf: float
    total_display: str
    # None only when there is nothing to classify
    direction: Optional[UFDirection] = None
    exchanges: List[ExchangeSummary] = PydField(default_factory=list)


class AverageSummary(BaseModel):
    patient_id: uuid.UUID
    window_days: int
    average_uf: float
    # whole mL, halves rounded up
    average_display: str
    count: int


# --- Trend chart ---
class TrendPointOut(BaseModel):
    label: str
    value: float


class TrendResponse(BaseModel):
    patient_id: uuid.UUID
    window: TrendWindow
    state: str  # "loaded" | "empty"
    points: List[TrendPointOut] = PydField(default_factory=list)
    retention: bool = False


# --- History ---
class HistoryGroup(BaseModel):
    date: str
    total_uf: float
    exchanges: List[ExchangeSummary]


class HistoryResponse(BaseModel):
    patient_id: uuid.UUID
    total: int
    visible: int
    summary: str
    groups: List[HistoryGroup] = PydField(default_factory=list)


class DependencyStatus(BaseModel):
    """Standardized dependency health model used across services."""

    status: str
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


class HealthCheckResponse(BaseModel):
    service: str
    status: str
    dependencies: Dict[str, DependencyStatus] = PydField(default_factory=dict)
