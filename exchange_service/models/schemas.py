# exchange_service/models/schemas.py

from datetime import datetime
from typing import Optional

from pydantic import UUID4, BaseModel, ConfigDict, Field, field_validator

from careassist.civil import parse_civil
from careassist.records import BaxterStrength


def _as_civil(value):
    # Keep the wall-clock reading; never convert between zones
    if isinstance(value, str) and not value.strip():
        return None
    try:
        return parse_civil(value) if isinstance(value, (str, datetime)) else value
    except ValueError:
        # Let pydantic report the malformed value
        return value


# --- PD Input Schemas ---
class PDExchangeIn(BaseModel):
    # Server defaults to clinic "now" when omitted
    timestamp: Optional[datetime] = None

    baxter_strength: BaxterStrength
    fill_volume: float = Field(..., ge=0, le=10000, description="mL")
    drain_volume: float = Field(..., ge=0, le=10000, description="mL")
    weight: Optional[float] = Field(None, gt=0, le=400, description="Weight in kg")
    notes: Optional[str] = None
    image_url: Optional[str] = None

    # uf is derived; sending it is rejected
    model_config = ConfigDict(extra="forbid")

    @field_validator("timestamp", mode="before")
    def _civil_timestamp(cls, v):
        return _as_civil(v)


class PDExchangeUpdate(BaseModel):
    """Partial edit. Explicit nulls clear a value; omitted fields stay as they are."""

    timestamp: Optional[datetime] = None
    baxter_strength: Optional[BaxterStrength] = None
    fill_volume: Optional[float] = Field(None, ge=0, le=10000)
    drain_volume: Optional[float] = Field(None, ge=0, le=10000)
    weight: Optional[float] = Field(None, gt=0, le=400)
    notes: Optional[str] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("timestamp", mode="before")
    def _civil_timestamp(cls, v):
        return _as_civil(v)


# --- PD Output Schema ---
class PDExchangeOut(BaseModel):
    id: UUID4
    patient_id: UUID4
    timestamp: datetime
    baxter_strength: BaxterStrength
    fill_volume: Optional[float] = None
    drain_volume: Optional[float] = None
    uf: Optional[float] = None
    weight: Optional[float] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# --- HD Schemas ---
class HDExchangeIn(BaseModel):
    timestamp: Optional[datetime] = None
    pre_weight: float = Field(..., gt=0, le=400, description="kg")
    post_weight: float = Field(..., gt=0, le=400, description="kg")
    note: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("timestamp", mode="before")
    def _civil_timestamp(cls, v):
        return _as_civil(v)


class HDExchangeOut(BaseModel):
    id: UUID4
    patient_id: UUID4
    timestamp: datetime
    pre_weight: float
    post_weight: float
    uf: float
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# --- Blob storage ---
class ImageUploadOut(BaseModel):
    name: str
    url: str
