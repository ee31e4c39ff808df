# This file contains the SQLModel table for the Patient Service database

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from careassist.civil import utc_now
from careassist.records import DialysisType


class Patient(SQLModel, table=True):
    """
    A patient profile, linked one-to-one to an authenticated user.
    Every record in the other services is scoped by ``Patient.id``, never by ``auth_id``.
    """

    __tablename__ = "patients"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    auth_id: uuid.UUID = Field(unique=True, index=True, nullable=False)

    username: str = Field(nullable=False)
    dialysis_type: DialysisType = Field(default=DialysisType.PD, nullable=False)
    hospital_id: Optional[str] = Field(default=None)

    # Naive UTC audit columns
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column("created_at", DateTime(timezone=False), nullable=False),
    )
    updated_at: Optional[datetime] = Field(
        default_factory=utc_now,
        sa_column=Column("updated_at", DateTime(timezone=False)),
    )
