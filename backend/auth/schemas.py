"""Auth Pydantic schemas."""


import uuid

from pydantic import BaseModel, ConfigDict

from backend.common.constants import UserRole


class AuthContext(BaseModel):
    """Caller identity threaded explicitly into every leave operation."""

    model_config = ConfigDict(frozen=True)

    employee_id: uuid.UUID
    organization_id: uuid.UUID
    role: UserRole
