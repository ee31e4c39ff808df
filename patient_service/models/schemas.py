# This file contains Pydantic models (schemas) for the Patient Service API

from datetime import datetime
from typing import Dict, Optional

from pydantic import UUID4, BaseModel, ConfigDict, Field

from careassist.records import DialysisType


# --- Health Check Models ---
class Dependency(BaseModel):
    """
    Represents the health status of a dependency service.
    """

    status: str
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


class HealthCheckResponse(BaseModel):
    service: str
    status: str
    dependencies: Dict[str, Dependency] = Field(default_factory=dict)


# --- INPUT: Registration Request ---
class PatientCreate(BaseModel):
    """
    Schema for creating a patient profile for an authenticated user.
    """

    auth_id: UUID4
    username: str = Field(min_length=1)
    dialysis_type: DialysisType = DialysisType.PD
    hospital_id: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


# --- INPUT: Update Request ---
class PatientUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1)
    dialysis_type: Optional[DialysisType] = None
    hospital_id: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


# --- OUTPUT: API Response ---
class PatientResponse(BaseModel):
    """
    Schema for patient data returned in API responses.
    """

    id: UUID4
    auth_id: UUID4
    username: str
    dialysis_type: DialysisType
    hospital_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    # Read straight from SQLModel objects
    model_config = ConfigDict(from_attributes=True)
