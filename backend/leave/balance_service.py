"""Leave balance store and leave-type assignment workflow.

Business logic:
  - Balances are unique per (employee, leave type, year)
  - available_days is recomputed from total_days and used_days on every write
  - Assignment is an upsert by that natural key; re-running it never touches used days
  - Bulk assignment isolates each employee in its own SAVEPOINT and reports
    successes and failures side by side
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.constants import UNKNOWN_EMPLOYEE_NAME, UserRole, has_role_at_least
from backend.common.exceptions import (
    AppException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    wrap_persistence_errors,
)
from backend.core_hr.models import Employee
from backend.leave.leave_type_service import LeaveTypeService
from backend.leave.models import LeaveBalance, LeaveType
from backend.leave.schemas import (
    AssignedEmployeesOut,
    AssignmentFailure,
    AssignmentRemoval,
    AssignmentSuccess,
    AssignmentSummary,
    AssignmentSyncResult,
    BulkAssignmentResult,
    BulkAssignRequest,
    LeaveBalanceAssign,
    LeaveBalanceOut,
    LeaveBalanceUpdate,
)

logger = logging.getLogger(__name__)

EMPLOYEE_NOT_FOUND_MESSAGE = "Employee not found or not active in this organization"


# ═════════════════════════════════════════════════════════════════════
# LeaveBalanceService
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceService:
    """Async balance store and assignment operations."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _require_hr_admin(role: UserRole, action: str) -> None:
        if not has_role_at_least(role, UserRole.hr_admin):
            raise ForbiddenException(f"Only HR admins can {action}.")

    @staticmethod
    async def _get_employee_in_org(
        db: AsyncSession,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> Employee:
        query = select(Employee).where(
            Employee.id == employee_id,
            Employee.organization_id == organization_id,
        )
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            if active_only:
                raise NotFoundException("Employee", detail=EMPLOYEE_NOT_FOUND_MESSAGE)
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _get_balance_in_org(
        db: AsyncSession,
        balance_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveBalance:
        """Load a balance whose owning employee is in the organization."""
        query = (
            select(LeaveBalance)
            .join(Employee, LeaveBalance.employee_id == Employee.id)
            .where(
                LeaveBalance.id == balance_id,
                Employee.organization_id == organization_id,
            )
        )
        if for_update:
            query = query.with_for_update(of=LeaveBalance)
        balance = (await db.execute(query)).scalars().first()
        if balance is None:
            raise NotFoundException("LeaveBalance", str(balance_id))
        return balance

    @staticmethod
    async def _fetch_out(db: AsyncSession, balance_id: uuid.UUID) -> LeaveBalanceOut:
        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.id == balance_id)
            .options(selectinload(LeaveBalance.leave_type))
            .execution_options(populate_existing=True)
        )
        return LeaveBalanceOut.model_validate(result.scalars().one())

    @staticmethod
    async def find_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        """Look up a balance by its natural key."""
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        if for_update:
            query = query.with_for_update()
        return (await db.execute(query)).scalars().first()

    @staticmethod
    async def _create_balance(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        total_days: int,
        carried_over: int = 0,
    ) -> LeaveBalance:
        """Insert a fresh balance. Callers check for an existing record first."""
        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            total_days=total_days,
            used_days=0,
            available_days=max(0, total_days - 0),
            carried_over=carried_over,
        )
        db.add(balance)
        await db.flush()
        return balance

    @staticmethod
    def _apply_allocation(balance: LeaveBalance, total_days: int, carried_over: int) -> None:
        balance.total_days = total_days
        balance.carried_over = carried_over
        balance.recompute_available()

    @staticmethod
    async def _upsert_balance(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        total_days: int,
        carried_over: int,
    ) -> LeaveBalance:
        """Create or update the balance for (employee, leave type, year).

        The existing row is locked before update.  A concurrent insert of
        the same key trips ``uq_leave_balance``; the insert runs in a
        SAVEPOINT so that case falls back to updating the winner's row.
        """
        existing = await LeaveBalanceService.find_balance(
            db, employee_id, leave_type_id, year, for_update=True,
        )
        if existing is not None:
            LeaveBalanceService._apply_allocation(existing, total_days, carried_over)
            await db.flush()
            return existing

        try:
            async with db.begin_nested():
                return await LeaveBalanceService._create_balance(
                    db,
                    employee_id=employee_id,
                    leave_type_id=leave_type_id,
                    year=year,
                    total_days=total_days,
                    carried_over=carried_over,
                )
        except IntegrityError:
            logger.info(
                "Balance for employee %s / leave type %s / %s created concurrently; updating",
                employee_id, leave_type_id, year,
            )
            existing = await LeaveBalanceService.find_balance(
                db, employee_id, leave_type_id, year, for_update=True,
            )
            if existing is None:
                raise
            LeaveBalanceService._apply_allocation(existing, total_days, carried_over)
            await db.flush()
            return existing

    @staticmethod
    async def _assign_each(
        db: AsyncSession,
        organization_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        employee_ids: Sequence[uuid.UUID],
        data: LeaveBalanceAssign,
    ) -> tuple[list[AssignmentSuccess], list[AssignmentFailure]]:
        """Assign to every employee independently, one SAVEPOINT per employee."""
        name_rows = await db.execute(
            select(Employee).where(
                Employee.id.in_(employee_ids),
                Employee.organization_id == organization_id,
            )
        )
        names = {emp.id: emp.full_name for emp in name_rows.scalars().all()}

        successful: list[AssignmentSuccess] = []
        failed: list[AssignmentFailure] = []
        for employee_id in employee_ids:
            try:
                async with db.begin_nested():
                    employee = await LeaveBalanceService._get_employee_in_org(
                        db, employee_id, organization_id, active_only=True,
                    )
                    balance = await LeaveBalanceService._upsert_balance(
                        db,
                        employee_id=employee.id,
                        leave_type_id=leave_type_id,
                        year=data.year,
                        total_days=data.total_days,
                        carried_over=data.carried_over,
                    )
                successful.append(
                    AssignmentSuccess(
                        employee_id=employee.id,
                        employee_name=employee.full_name,
                        balance_id=balance.id,
                    )
                )
            except AppException as exc:
                failed.append(
                    AssignmentFailure(
                        employee_id=employee_id,
                        employee_name=names.get(employee_id, UNKNOWN_EMPLOYEE_NAME),
                        error=exc.message,
                    )
                )
            except SQLAlchemyError:
                logger.exception(
                    "Leave type %s assignment failed for employee %s",
                    leave_type_id, employee_id,
                )
                failed.append(
                    AssignmentFailure(
                        employee_id=employee_id,
                        employee_name=names.get(employee_id, UNKNOWN_EMPLOYEE_NAME),
                        error="Failed to assign leave type",
                    )
                )
        return successful, failed

    @staticmethod
    def _summarize(
        successful: list[AssignmentSuccess],
        failed: list[AssignmentFailure],
    ) -> AssignmentSummary:
        return AssignmentSummary(
            total=len(successful) + len(failed),
            successful=len(successful),
            failed=len(failed),
        )

    # ─────────────────────────────────────────────────────────────────
    # Store
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_employee_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        year: Optional[int] = None,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalanceOut]:
        """Balances of one employee, newest year first, then by leave type name."""
        await LeaveBalanceService._get_employee_in_org(db, employee_id, organization_id)

        query = (
            select(LeaveBalance)
            .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
            .where(LeaveBalance.employee_id == employee_id)
            .options(selectinload(LeaveBalance.leave_type))
            .order_by(LeaveBalance.year.desc(), LeaveType.name.asc())
        )
        if year is not None:
            query = query.where(LeaveBalance.year == year)
        if leave_type_id is not None:
            query = query.where(LeaveBalance.leave_type_id == leave_type_id)

        result = await db.execute(query)
        return [LeaveBalanceOut.model_validate(b) for b in result.scalars().all()]

    @staticmethod
    async def get_balance_by_id(
        db: AsyncSession,
        balance_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        owner_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalanceOut:
        """Single balance; ``owner_id`` further restricts it to one employee's own."""
        balance = await LeaveBalanceService._get_balance_in_org(
            db, balance_id, organization_id,
        )
        if owner_id is not None and balance.employee_id != owner_id:
            raise NotFoundException("LeaveBalance", str(balance_id))
        return await LeaveBalanceService._fetch_out(db, balance.id)

    @staticmethod
    @wrap_persistence_errors("Failed to update leave balance")
    async def update_balance(
        db: AsyncSession,
        balance_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
        data: LeaveBalanceUpdate,
    ) -> LeaveBalanceOut:
        """Edit total/carried-over days. used_days is never written here."""
        LeaveBalanceService._require_hr_admin(role, "edit leave balances")
        balance = await LeaveBalanceService._get_balance_in_org(
            db, balance_id, organization_id, for_update=True,
        )

        if data.total_days is not None and data.total_days != balance.total_days:
            balance.total_days = data.total_days
        if data.carried_over is not None:
            balance.carried_over = data.carried_over
        balance.recompute_available()
        await db.flush()

        logger.info(
            "Leave balance %s updated: total=%s used=%s available=%s",
            balance.id, balance.total_days, balance.used_days, balance.available_days,
        )
        return await LeaveBalanceService._fetch_out(db, balance.id)

    @staticmethod
    @wrap_persistence_errors("Failed to delete leave balance")
    async def delete_balance(
        db: AsyncSession,
        balance_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
    ) -> None:
        LeaveBalanceService._require_hr_admin(role, "delete leave balances")
        balance = await LeaveBalanceService._get_balance_in_org(
            db, balance_id, organization_id, for_update=True,
        )
        if balance.used_days > 0:
            raise InvalidStateException(
                "Cannot delete leave balance that has been partially used",
                details={"used_days": balance.used_days, "total_days": balance.total_days},
            )

        await db.delete(balance)
        await db.flush()
        logger.info("Leave balance %s deleted", balance_id)

    # ─────────────────────────────────────────────────────────────────
    # Assignment workflow
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to assign leave type")
    async def assign_leave_type(
        db: AsyncSession,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
        data: LeaveBalanceAssign,
    ) -> LeaveBalanceOut:
        """Idempotent single assignment: create or update the year's balance."""
        LeaveBalanceService._require_hr_admin(role, "assign leave types")
        employee = await LeaveBalanceService._get_employee_in_org(
            db, employee_id, organization_id, active_only=True,
        )
        await LeaveTypeService.get_in_organization(db, data.leave_type_id, organization_id)

        balance = await LeaveBalanceService._upsert_balance(
            db,
            employee_id=employee.id,
            leave_type_id=data.leave_type_id,
            year=data.year,
            total_days=data.total_days,
            carried_over=data.carried_over,
        )
        logger.info(
            "Leave type %s assigned to employee %s for %s: %s days",
            data.leave_type_id, employee.id, data.year, data.total_days,
        )
        return await LeaveBalanceService._fetch_out(db, balance.id)

    @staticmethod
    @wrap_persistence_errors("Failed to bulk assign leave type")
    async def bulk_assign_leave_type(
        db: AsyncSession,
        organization_id: uuid.UUID,
        role: UserRole,
        data: BulkAssignRequest,
    ) -> BulkAssignmentResult:
        """Best-effort batch: per-employee failures are reported, never raised."""
        LeaveBalanceService._require_hr_admin(role, "assign leave types")
        await LeaveTypeService.get_in_organization(db, data.leave_type_id, organization_id)

        successful, failed = await LeaveBalanceService._assign_each(
            db, organization_id, data.leave_type_id, data.employee_ids, data,
        )
        summary = LeaveBalanceService._summarize(successful, failed)
        logger.info(
            "Bulk assignment of leave type %s for %s: %s/%s succeeded",
            data.leave_type_id, data.year, summary.successful, summary.total,
        )
        return BulkAssignmentResult(successful=successful, failed=failed, summary=summary)

    @staticmethod
    @wrap_persistence_errors("Failed to update leave type assignments")
    async def update_leave_type_assignments(
        db: AsyncSession,
        organization_id: uuid.UUID,
        role: UserRole,
        data: BulkAssignRequest,
    ) -> AssignmentSyncResult:
        """Make ``data.employee_ids`` the assigned set for the leave type and year.

        Listed employees are assigned as in bulk assignment.  Balances of
        other employees in the organization are deleted when unused and
        reported as retained otherwise.
        """
        LeaveBalanceService._require_hr_admin(role, "assign leave types")
        await LeaveTypeService.get_in_organization(db, data.leave_type_id, organization_id)

        successful, failed = await LeaveBalanceService._assign_each(
            db, organization_id, data.leave_type_id, data.employee_ids, data,
        )

        result = await db.execute(
            select(LeaveBalance)
            .join(Employee, LeaveBalance.employee_id == Employee.id)
            .where(
                LeaveBalance.leave_type_id == data.leave_type_id,
                LeaveBalance.year == data.year,
                Employee.organization_id == organization_id,
                LeaveBalance.employee_id.not_in(data.employee_ids),
            )
            .options(selectinload(LeaveBalance.employee))
            .with_for_update(of=LeaveBalance)
        )
        removed: list[AssignmentRemoval] = []
        retained: list[AssignmentRemoval] = []
        for balance in result.scalars().all():
            entry = AssignmentRemoval(
                employee_id=balance.employee_id,
                employee_name=balance.employee.full_name,
                balance_id=balance.id,
                used_days=balance.used_days,
            )
            if balance.used_days > 0:
                retained.append(entry)
            else:
                await db.delete(balance)
                removed.append(entry)
        await db.flush()

        summary = LeaveBalanceService._summarize(successful, failed)
        logger.info(
            "Assignments of leave type %s for %s synced: %s assigned, %s failed, "
            "%s removed, %s retained",
            data.leave_type_id, data.year, summary.successful, summary.failed,
            len(removed), len(retained),
        )
        return AssignmentSyncResult(
            successful=successful,
            failed=failed,
            summary=summary,
            removed=removed,
            retained=retained,
        )

    @staticmethod
    async def get_assigned_employee_ids(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        year: Optional[int] = None,
    ) -> AssignedEmployeesOut:
        await LeaveTypeService.get_in_organization(db, leave_type_id, organization_id)

        query = (
            select(LeaveBalance.employee_id)
            .join(Employee, LeaveBalance.employee_id == Employee.id)
            .where(
                LeaveBalance.leave_type_id == leave_type_id,
                Employee.organization_id == organization_id,
            )
            .distinct()
        )
        if year is not None:
            query = query.where(LeaveBalance.year == year)

        result = await db.execute(query)
        return AssignedEmployeesOut(
            leave_type_id=leave_type_id,
            year=year,
            employee_ids=list(result.scalars().all()),
        )
