# careassist/context.py

import uuid
from dataclasses import dataclass
from typing import Optional

from careassist.errors import NotAuthenticatedError
from careassist.records import DialysisType, PatientProfile
from careassist.stores import IdentityResolver


@dataclass(frozen=True)
class PatientContext:
    """Who the current session acts for. Passed explicitly into every view."""

    user_id: uuid.UUID
    patient_id: uuid.UUID
    dialysis_type: DialysisType = DialysisType.PD
    username: Optional[str] = None

    @classmethod
    def from_profile(cls, user_id: uuid.UUID, profile: PatientProfile) -> "PatientContext":
        return cls(
            user_id=user_id,
            patient_id=profile.id,
            dialysis_type=profile.dialysis_type,
            username=profile.username,
        )

    @property
    def first_name(self) -> str:
        parts = (self.username or "").split()
        return parts[0] if parts else "Patient"

    @property
    def log_action_label(self) -> str:
        return "Log HD" if self.dialysis_type is DialysisType.HD else "Log PD"


async def resolve_context(identity: IdentityResolver) -> PatientContext:
    user_id = identity.current_user()
    if user_id is None:
        raise NotAuthenticatedError("No logged-in user")
    profile = await identity.resolve_patient(user_id)
    return PatientContext.from_profile(user_id, profile)
