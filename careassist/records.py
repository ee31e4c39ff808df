# careassist/records.py

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from careassist.civil import parse_civil
from careassist.uf import to_number


# --- Enums (shared with the services) ---
class BaxterStrength(str, Enum):
    """Dextrose concentration of a PD bag."""

    LOW = "1.5%"  # yellow
    MEDIUM = "2.5%"  # green
    HIGH = "7.5%"  # purple


class DialysisType(str, Enum):
    PD = "PD"
    HD = "HD"


def _lenient_number(value):
    # Rows come straight from the store; a bad cell should not drop the row
    return to_number(value)


def _lenient_timestamp(value):
    try:
        return parse_civil(value)
    except ValueError:
        return None


class PDExchange(BaseModel):
    """A peritoneal dialysis exchange as returned by the record store."""

    id: Optional[uuid.UUID] = None
    patient_id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None
    baxter_strength: Optional[str] = None
    fill_volume: Optional[float] = None
    drain_volume: Optional[float] = None
    uf: Optional[float] = None
    weight: Optional[float] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("fill_volume", "drain_volume", "uf", "weight", mode="before")
    def _coerce_numbers(cls, v):
        return _lenient_number(v)

    @field_validator("timestamp", mode="before")
    def _coerce_timestamp(cls, v):
        return _lenient_timestamp(v)


class HDExchange(BaseModel):
    """A hemodialysis session. ``uf`` is always the store's value."""

    id: Optional[uuid.UUID] = None
    patient_id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None
    pre_weight: Optional[float] = None
    post_weight: Optional[float] = None
    uf: Optional[float] = None
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("pre_weight", "post_weight", "uf", mode="before")
    def _coerce_numbers(cls, v):
        return _lenient_number(v)

    @field_validator("timestamp", mode="before")
    def _coerce_timestamp(cls, v):
        return _lenient_timestamp(v)


class PatientProfile(BaseModel):
    id: uuid.UUID
    auth_id: uuid.UUID
    username: str
    dialysis_type: DialysisType = DialysisType.PD
    hospital_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @property
    def first_name(self) -> str:
        parts = (self.username or "").split()
        return parts[0] if parts else "Patient"
