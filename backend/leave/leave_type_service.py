"""Leave type management: organization-scoped CRUD with a usage guard.

Only HR admins and super admins may create, edit or delete leave types.
Deletion is refused while any leave request, balance or policy still
references the type.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole, has_role_at_least
from backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    wrap_persistence_errors,
)
from backend.common.pagination import PaginatedResponse, paginate
from backend.leave.models import LeaveBalance, LeavePolicy, LeaveRequest, LeaveType
from backend.leave.schemas import (
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeSimple,
    LeaveTypeUpdate,
)

logger = logging.getLogger(__name__)

DUPLICATE_NAME_MESSAGE = "A leave type with this name already exists in your organization"


# ═════════════════════════════════════════════════════════════════════
# LeaveTypeService
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeService:
    """Async leave type operations, scoped to the caller's organization."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _require_hr_admin(role: UserRole) -> None:
        if not has_role_at_least(role, UserRole.hr_admin):
            raise ForbiddenException(
                "Only HR admins can manage leave types."
            )

    @staticmethod
    async def get_in_organization(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> LeaveType:
        """Load a leave type, raising NotFound when it belongs to another organization."""
        result = await db.execute(
            select(LeaveType).where(
                LeaveType.id == leave_type_id,
                LeaveType.organization_id == organization_id,
            )
        )
        leave_type = result.scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession,
        organization_id: uuid.UUID,
        name: str,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(LeaveType.id).where(
            LeaveType.organization_id == organization_id,
            LeaveType.name == name,
        )
        if exclude_id is not None:
            query = query.where(LeaveType.id != exclude_id)
        if (await db.execute(query)).first() is not None:
            raise ConflictError("name", name, detail=DUPLICATE_NAME_MESSAGE)

    @staticmethod
    async def _usage_counts(
        db: AsyncSession,
        leave_type_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, dict[str, int]]:
        """Return ``{leave_type_id: {requests, balances, policies}}``."""
        counts: dict[uuid.UUID, dict[str, int]] = {
            lt_id: {"requests": 0, "balances": 0, "policies": 0}
            for lt_id in leave_type_ids
        }
        if not leave_type_ids:
            return counts

        for key, model in (
            ("requests", LeaveRequest),
            ("balances", LeaveBalance),
            ("policies", LeavePolicy),
        ):
            result = await db.execute(
                select(model.leave_type_id, func.count())
                .where(model.leave_type_id.in_(leave_type_ids))
                .group_by(model.leave_type_id)
            )
            for lt_id, count in result.all():
                counts[lt_id][key] = count
        return counts

    @staticmethod
    def _build_out(lt: LeaveType, usage: dict[str, int]) -> LeaveTypeOut:
        out = LeaveTypeOut.model_validate(lt)
        out.request_count = usage["requests"]
        out.balance_count = usage["balances"]
        out.policy_count = usage["policies"]
        return out

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_leave_types(
        db: AsyncSession,
        organization_id: uuid.UUID,
        *,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> PaginatedResponse[LeaveTypeOut]:
        """List leave types ordered by name, with optional name/description search."""
        query = (
            select(LeaveType)
            .where(LeaveType.organization_id == organization_id)
            .order_by(LeaveType.name)
        )
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    LeaveType.name.ilike(pattern),
                    LeaveType.description.ilike(pattern),
                )
            )

        rows, meta = await paginate(db, query, page=page, page_size=page_size)
        usage = await LeaveTypeService._usage_counts(db, [lt.id for lt in rows])
        return PaginatedResponse[LeaveTypeOut](
            data=[LeaveTypeService._build_out(lt, usage[lt.id]) for lt in rows],
            meta=meta,
        )

    @staticmethod
    async def list_simple_leave_types(
        db: AsyncSession,
        organization_id: uuid.UUID,
    ) -> list[LeaveTypeSimple]:
        result = await db.execute(
            select(LeaveType)
            .where(LeaveType.organization_id == organization_id)
            .order_by(LeaveType.name)
        )
        return [LeaveTypeSimple.model_validate(lt) for lt in result.scalars().all()]

    @staticmethod
    async def get_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> LeaveTypeOut:
        lt = await LeaveTypeService.get_in_organization(db, leave_type_id, organization_id)
        usage = await LeaveTypeService._usage_counts(db, [lt.id])
        return LeaveTypeService._build_out(lt, usage[lt.id])

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to create leave type")
    async def create_leave_type(
        db: AsyncSession,
        organization_id: uuid.UUID,
        role: UserRole,
        data: LeaveTypeCreate,
    ) -> LeaveTypeOut:
        LeaveTypeService._require_hr_admin(role)
        await LeaveTypeService._ensure_unique_name(db, organization_id, data.name)

        lt = LeaveType(
            organization_id=organization_id,
            name=data.name,
            description=data.description,
            max_days_per_year=data.max_days_per_year,
        )
        try:
            async with db.begin_nested():
                db.add(lt)
                await db.flush()
        except IntegrityError:
            raise ConflictError("name", data.name, detail=DUPLICATE_NAME_MESSAGE)

        logger.info("Leave type %s (%s) created in organization %s", lt.id, lt.name, organization_id)
        return LeaveTypeService._build_out(
            lt, {"requests": 0, "balances": 0, "policies": 0},
        )

    @staticmethod
    @wrap_persistence_errors("Failed to update leave type")
    async def update_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
        data: LeaveTypeUpdate,
    ) -> LeaveTypeOut:
        LeaveTypeService._require_hr_admin(role)
        lt = await LeaveTypeService.get_in_organization(db, leave_type_id, organization_id)

        updates = data.model_dump(exclude_unset=True)
        if updates.get("name") is not None and updates["name"] != lt.name:
            await LeaveTypeService._ensure_unique_name(
                db, organization_id, updates["name"], exclude_id=lt.id,
            )

        try:
            async with db.begin_nested():
                for field, value in updates.items():
                    if field in ("name", "max_days_per_year") and value is None:
                        continue
                    setattr(lt, field, value)
                await db.flush()
        except IntegrityError:
            raise ConflictError("name", updates.get("name"), detail=DUPLICATE_NAME_MESSAGE)
        await db.refresh(lt)

        logger.info("Leave type %s updated: %s", lt.id, sorted(updates))
        usage = await LeaveTypeService._usage_counts(db, [lt.id])
        return LeaveTypeService._build_out(lt, usage[lt.id])

    @staticmethod
    @wrap_persistence_errors("Failed to delete leave type")
    async def delete_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
    ) -> None:
        """Delete a leave type nothing references any more."""
        LeaveTypeService._require_hr_admin(role)
        lt = await LeaveTypeService.get_in_organization(db, leave_type_id, organization_id)

        usage = (await LeaveTypeService._usage_counts(db, [lt.id]))[lt.id]
        if any(usage.values()):
            raise InvalidStateException(
                "Cannot delete leave type that is in use. "
                f"It is referenced by {usage['requests']} leave request(s), "
                f"{usage['balances']} leave balance(s) and "
                f"{usage['policies']} leave policy(ies).",
                details={"usage": usage},
            )

        await db.delete(lt)
        await db.flush()
        logger.info("Leave type %s deleted from organization %s", leave_type_id, organization_id)
