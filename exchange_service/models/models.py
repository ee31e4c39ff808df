# exchange_service/models/models.py

import uuid
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel
from pydantic import Field as PydField
from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from careassist.civil import utc_now
from careassist.records import BaxterStrength


# Timestamps are naive wall-clock values; timezone=False keeps them that way
def _naive_column(name: str, index: bool = False, nullable: bool = True) -> Column:
    return Column(name, DateTime(timezone=False), index=index, nullable=nullable)


class PDExchange(SQLModel, table=True):
    """One peritoneal dialysis exchange.

    ``uf`` is derived from fill and drain on every write; it is never taken
    from the client.
    """

    __tablename__ = "pd_exchanges"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    patient_id: uuid.UUID = Field(index=True, nullable=False)

    # Civil time, exactly as the patient entered it
    timestamp: datetime = Field(sa_column=_naive_column("timestamp", index=True, nullable=False))

    baxter_strength: BaxterStrength = Field(nullable=False)
    fill_volume: Optional[float] = Field(default=None)
    drain_volume: Optional[float] = Field(default=None)
    uf: Optional[float] = Field(default=None)

    weight: Optional[float] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    image_url: Optional[str] = Field(default=None)

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=_naive_column("created_at", nullable=False)
    )
    updated_at: Optional[datetime] = Field(default=None, sa_column=_naive_column("updated_at"))


class HDExchange(SQLModel, table=True):
    """One hemodialysis session. No edit path; ``uf`` = pre - post (kg)."""

    __tablename__ = "hd_exchanges"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    patient_id: uuid.UUID = Field(index=True, nullable=False)
    timestamp: datetime = Field(sa_column=_naive_column("timestamp", index=True, nullable=False))

    pre_weight: float = Field(nullable=False)
    post_weight: float = Field(nullable=False)
    uf: float = Field(nullable=False)

    note: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=_naive_column("created_at", nullable=False)
    )


# Health check models (kept local to this service)
class Dependency(BaseModel):
    status: str
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


class HealthCheckResponse(BaseModel):
    service: str
    status: str
    dependencies: Dict[str, Dependency] = PydField(default_factory=dict)
