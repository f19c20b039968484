"""Auth dependencies: JWT validation, role enforcement.

Tokens are issued by the upstream identity service; this service only
verifies them.  ``sub`` carries the employee id.
"""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.schemas import AuthContext
from backend.common.constants import UserRole, has_role_at_least
from backend.common.exceptions import ForbiddenException
from backend.config import settings
from backend.core_hr.models import Employee
from backend.database import get_db


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Validate JWT and return the caller's organization-scoped context."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    try:
        employee_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    # Role and organization come from the employee row, not the token
    result = await db.execute(
        select(Employee).where(Employee.id == employee_id, Employee.is_active.is_(True)),
    )
    employee = result.scalars().first()
    if employee is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    return AuthContext(
        employee_id=employee.id,
        organization_id=employee.organization_id,
        role=employee.role,
    )


# ── Role-based dependency ───────────────────────────────────────────

def require_role(minimum: UserRole) -> Callable:
    """Return a FastAPI dependency admitting ``minimum`` and every higher role."""

    async def _check(user: AuthContext = Depends(get_current_user)) -> AuthContext:
        if not has_role_at_least(user.role, minimum):
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: '{minimum.value}' or above.",
            )
        return user

    return _check
