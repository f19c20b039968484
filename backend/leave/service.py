"""Leave service layer: balance check, request lifecycle, review queue.

Business logic:
  - Day counts come from the business-day calculator, never from the client
  - Balance check aggregates every conflict instead of stopping at the first
  - Requests move pending → approved / rejected / cancelled, and approved → cancelled
  - Approval debits the current-year balance; cancelling an approved request credits it back
  - Overlap checks run with the employee row locked so concurrent requests serialize
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    BalanceConflictType,
    LeaveStatus,
    UserRole,
    has_role_at_least,
)
from backend.common.exceptions import (
    ForbiddenException,
    InsufficientBalanceException,
    InvalidDateRangeException,
    InvalidStateException,
    NotFoundException,
    OverlappingRequestException,
    ValidationException,
    wrap_persistence_errors,
)
from backend.common.pagination import PaginatedResponse, paginate
from backend.core_hr.models import Employee
from backend.leave import business_days
from backend.leave.balance_service import LeaveBalanceService
from backend.leave.leave_type_service import LeaveTypeService
from backend.leave.models import LeaveBalance, LeaveComment, LeaveRequest
from backend.leave.schemas import (
    BalanceConflict,
    BalanceSnapshot,
    LeaveBalanceCheckOut,
    LeaveBalanceCheckRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeBrief,
    OverlappingLeave,
)

logger = logging.getLogger(__name__)

NO_BUSINESS_DAYS_MESSAGE = "The selected date range contains no business days"
WEEKEND_ONLY_MESSAGE = (
    "The selected dates are weekends (Saturday/Sunday) which are already holidays"
)

_REQUEST_OPTIONS = (
    selectinload(LeaveRequest.employee),
    selectinload(LeaveRequest.leave_type),
    selectinload(LeaveRequest.comments).selectinload(LeaveComment.author),
)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave request operations: balance check, lifecycle, queries."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _require_manager(role: UserRole, action: str) -> None:
        if not has_role_at_least(role, UserRole.manager):
            raise ForbiddenException(f"Only managers and HR admins can {action} leave requests.")

    @staticmethod
    def _org_employee_ids(organization_id: uuid.UUID):
        return select(Employee.id).where(Employee.organization_id == organization_id)

    @staticmethod
    async def _lock_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> Employee:
        """Lock the employee row; overlap check and insert happen under this lock."""
        result = await db.execute(
            select(Employee)
            .where(
                Employee.id == employee_id,
                Employee.organization_id == organization_id,
            )
            .with_for_update()
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _get_request_for_update(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        employee_id: Optional[uuid.UUID] = None,
        organization_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if organization_id is not None:
            query = query.where(
                LeaveRequest.employee_id.in_(LeaveService._org_employee_ids(organization_id))
            )
        leave_req = (await db.execute(query.with_for_update())).scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    async def _credit_debited_balance(db: AsyncSession, leave_req: LeaveRequest) -> None:
        """Return an approved request's days to the balance it was debited from."""
        if leave_req.debited_balance_id is None:
            logger.warning(
                "Cancelled approved leave request %s debited no balance; nothing credited",
                leave_req.id,
            )
            return

        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.id == leave_req.debited_balance_id)
            .with_for_update()
        )
        balance = result.scalars().first()
        if balance is None:
            logger.warning(
                "Debited balance %s of leave request %s no longer exists; nothing credited",
                leave_req.debited_balance_id, leave_req.id,
            )
        else:
            balance.used_days = max(0, balance.used_days - leave_req.total_days)
            balance.recompute_available()
        leave_req.debited_balance_id = None

    @staticmethod
    async def _find_overlapping(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveRequest]:
        """Pending or approved requests whose inclusive range intersects [start, end]."""
        query = (
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
                LeaveRequest.start_date <= end_date,
                LeaveRequest.end_date >= start_date,
            )
            .options(selectinload(LeaveRequest.leave_type))
            .order_by(LeaveRequest.start_date)
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    def _build_overlapping(requests: list[LeaveRequest]) -> list[OverlappingLeave]:
        return [
            OverlappingLeave(
                id=r.id,
                start_date=r.start_date,
                end_date=r.end_date,
                leave_type_name=r.leave_type.name,
                status=r.status,
                total_days=r.total_days,
            )
            for r in requests
        ]

    @staticmethod
    def _overlap_details(requests: list[LeaveRequest]) -> list[dict[str, Any]]:
        return [
            o.model_dump(mode="json")
            for o in LeaveService._build_overlapping(requests)
        ]

    @staticmethod
    async def _ensure_sufficient_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        requested: int,
        *,
        credit: int = 0,
    ) -> None:
        """Raise unless the current-year balance covers ``requested`` days.

        ``credit`` is added to available_days before comparing.
        """
        balance = await LeaveBalanceService.find_balance(
            db, employee_id, leave_type_id, business_days.current_leave_year(),
        )
        if balance is None:
            raise InsufficientBalanceException(0, requested, has_balance_record=False)
        available = balance.available_days + credit
        if available < requested:
            raise InsufficientBalanceException(available, requested)

    @staticmethod
    async def _ensure_no_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        overlapping = await LeaveService._find_overlapping(
            db, employee_id, start_date, end_date, exclude_id=exclude_id,
        )
        if overlapping:
            raise OverlappingRequestException(LeaveService._overlap_details(overlapping))

    @staticmethod
    def _add_comment(
        db: AsyncSession,
        leave_request_id: uuid.UUID,
        author_id: uuid.UUID,
        content: str,
    ) -> None:
        db.add(
            LeaveComment(
                leave_request_id=leave_request_id,
                employee_id=author_id,
                content=content,
            )
        )

    @staticmethod
    async def _fetch_out(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequestOut:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(*_REQUEST_OPTIONS)
            .execution_options(populate_existing=True)
        )
        return LeaveRequestOut.model_validate(result.scalars().one())

    # ─────────────────────────────────────────────────────────────────
    # Balance check
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def check_leave_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        data: LeaveBalanceCheckRequest,
    ) -> LeaveBalanceCheckOut:
        """Read-only diagnostic for a prospective request.

        Only an invalid date range or an unknown leave type raise; every
        other problem is reported in ``conflicts``.
        """
        business_days.validate_date_range(data.start_date, data.end_date)
        leave_type = await LeaveTypeService.get_in_organization(
            db, data.leave_type_id, organization_id,
        )
        lt_brief = LeaveTypeBrief.model_validate(leave_type)

        # ── Weekend-only short-circuit ──────────────────────────────
        if business_days.is_weekend_only(data.start_date, data.end_date):
            return LeaveBalanceCheckOut(
                leave_type=lt_brief,
                requested_days=0,
                is_allowed=False,
                conflicts=[
                    BalanceConflict(
                        type=BalanceConflictType.weekend_only,
                        message=WEEKEND_ONLY_MESSAGE,
                    )
                ],
            )

        requested = business_days.calculate_business_days(data.start_date, data.end_date)
        if requested == 0:
            return LeaveBalanceCheckOut(
                leave_type=lt_brief,
                requested_days=0,
                is_allowed=False,
                conflicts=[
                    BalanceConflict(
                        type=BalanceConflictType.invalid_dates,
                        message=NO_BUSINESS_DAYS_MESSAGE,
                    )
                ],
            )

        conflicts: list[BalanceConflict] = []

        # ── Current-year balance ────────────────────────────────────
        year = business_days.current_leave_year()
        balance = await LeaveBalanceService.find_balance(
            db, employee_id, leave_type.id, year,
        )
        if balance is None:
            conflicts.append(
                BalanceConflict(
                    type=BalanceConflictType.no_balance_record,
                    message=f"No leave balance record found for {leave_type.name} in {year}",
                )
            )
        elif balance.available_days < requested:
            conflicts.append(
                BalanceConflict(
                    type=BalanceConflictType.insufficient_balance,
                    message=(
                        f"Insufficient leave balance. Available: {balance.available_days} "
                        f"days, Requested: {requested} days"
                    ),
                    details={
                        "available": balance.available_days,
                        "requested": requested,
                        "shortage": requested - balance.available_days,
                    },
                )
            )

        # ── Overlap ─────────────────────────────────────────────────
        overlapping = LeaveService._build_overlapping(
            await LeaveService._find_overlapping(
                db, employee_id, data.start_date, data.end_date,
            )
        )
        if overlapping:
            conflicts.append(
                BalanceConflict(
                    type=BalanceConflictType.overlapping_leave,
                    message=(
                        f"The selected dates overlap with {len(overlapping)} "
                        "existing leave request(s)"
                    ),
                    details={"count": len(overlapping)},
                )
            )

        out = LeaveBalanceCheckOut(
            leave_type=lt_brief,
            balance=BalanceSnapshot.model_validate(balance) if balance else None,
            requested_days=requested,
            is_allowed=not conflicts,
            conflicts=conflicts,
            overlapping_leaves=overlapping,
        )
        logger.info(
            "Balance check for employee %s, leave type %s, %s..%s: allowed=%s conflicts=%s",
            employee_id, leave_type.id, data.start_date, data.end_date,
            out.is_allowed, [c.type.value for c in conflicts],
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to create leave request")
    async def create_leave_request(
        db: AsyncSession,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """Submit a pending request. Nothing is debited until approval."""
        business_days.validate_date_range(data.start_date, data.end_date)
        leave_type = await LeaveTypeService.get_in_organization(
            db, data.leave_type_id, organization_id,
        )

        total_days = business_days.calculate_business_days(data.start_date, data.end_date)
        if total_days == 0:
            raise InvalidDateRangeException(NO_BUSINESS_DAYS_MESSAGE)

        await LeaveService._lock_employee(db, employee_id, organization_id)
        await LeaveService._ensure_sufficient_balance(
            db, employee_id, leave_type.id, total_days,
        )
        await LeaveService._ensure_no_overlap(
            db, employee_id, data.start_date, data.end_date,
        )

        leave_req = LeaveRequest(
            employee_id=employee_id,
            leave_type_id=leave_type.id,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=total_days,
            reason=data.reason,
            status=LeaveStatus.pending,
        )
        db.add(leave_req)
        await db.flush()

        logger.info(
            "Leave request %s created by employee %s: %s..%s (%s days)",
            leave_req.id, employee_id, data.start_date, data.end_date, total_days,
        )
        return await LeaveService._fetch_out(db, leave_req.id)

    # ─────────────────────────────────────────────────────────────────
    # Update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to update leave request")
    async def update_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        data: LeaveRequestUpdate,
    ) -> LeaveRequestOut:
        """Edit one's own pending request, re-running every check."""
        await LeaveService._lock_employee(db, employee_id, organization_id)
        leave_req = await LeaveService._get_request_for_update(
            db, request_id, employee_id=employee_id,
        )
        if leave_req.status != LeaveStatus.pending:
            raise InvalidStateException(
                "Only pending leave requests can be updated. "
                f"Current status: {leave_req.status.value}"
            )

        start_date = data.start_date or leave_req.start_date
        end_date = data.end_date or leave_req.end_date
        if data.start_date is not None or data.end_date is not None:
            business_days.validate_date_range(start_date, end_date)

        leave_type_id = data.leave_type_id or leave_req.leave_type_id
        if leave_type_id != leave_req.leave_type_id:
            await LeaveTypeService.get_in_organization(db, leave_type_id, organization_id)

        total_days = business_days.calculate_business_days(start_date, end_date)
        if total_days == 0:
            raise InvalidDateRangeException(NO_BUSINESS_DAYS_MESSAGE)

        credit = leave_req.total_days if leave_type_id == leave_req.leave_type_id else 0
        await LeaveService._ensure_sufficient_balance(
            db, employee_id, leave_type_id, total_days, credit=credit,
        )
        await LeaveService._ensure_no_overlap(
            db, employee_id, start_date, end_date, exclude_id=leave_req.id,
        )

        leave_req.leave_type_id = leave_type_id
        leave_req.start_date = start_date
        leave_req.end_date = end_date
        leave_req.total_days = total_days
        if "reason" in data.model_fields_set:
            leave_req.reason = data.reason
        await db.flush()

        logger.info(
            "Leave request %s updated: %s..%s (%s days)",
            leave_req.id, start_date, end_date, total_days,
        )
        return await LeaveService._fetch_out(db, leave_req.id)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to cancel leave request")
    async def cancel_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Cancel one's own pending or approved request.

        An approved request has already been debited, so its days are
        credited back to the balance row recorded at approval, whatever
        year it is now.
        """
        leave_req = await LeaveService._get_request_for_update(
            db, request_id, employee_id=employee_id,
        )
        if leave_req.status in (LeaveStatus.cancelled, LeaveStatus.rejected):
            raise InvalidStateException(
                f"Cannot cancel a leave request that is already {leave_req.status.value}"
            )

        was_approved = leave_req.status == LeaveStatus.approved
        leave_req.status = LeaveStatus.cancelled
        leave_req.cancelled_at = datetime.now(timezone.utc)

        if was_approved:
            await LeaveService._credit_debited_balance(db, leave_req)

        if reason and reason.strip():
            LeaveService._add_comment(
                db, leave_req.id, employee_id,
                f"Leave cancelled by employee. Reason: {reason.strip()}",
            )
        await db.flush()

        logger.info(
            "Leave request %s cancelled by employee %s (was_approved=%s)",
            leave_req.id, employee_id, was_approved,
        )
        return await LeaveService._fetch_out(db, leave_req.id)

    # ─────────────────────────────────────────────────────────────────
    # Approve
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to approve leave request")
    async def approve_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
        *,
        comment: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request and debit the balance in the same transaction."""
        LeaveService._require_manager(role, "approve")
        leave_req = await LeaveService._get_request_for_update(
            db, request_id, organization_id=organization_id,
        )
        if leave_req.status != LeaveStatus.pending:
            raise InvalidStateException(
                "Only pending leave requests can be approved. "
                f"Current status: {leave_req.status.value}"
            )

        leave_req.status = LeaveStatus.approved
        leave_req.approved_by_id = approver_id
        leave_req.approved_at = datetime.now(timezone.utc)

        balance = await LeaveBalanceService.find_balance(
            db,
            leave_req.employee_id,
            leave_req.leave_type_id,
            business_days.current_leave_year(),
            for_update=True,
        )
        if balance is None:
            logger.warning(
                "Leave request %s approved without a matching balance; nothing debited",
                leave_req.id,
            )
        else:
            balance.used_days += leave_req.total_days
            balance.available_days = max(0, balance.available_days - leave_req.total_days)
            leave_req.debited_balance_id = balance.id

        if comment and comment.strip():
            LeaveService._add_comment(db, leave_req.id, approver_id, comment.strip())
        await db.flush()

        logger.info(
            "Leave request %s approved by %s (%s days)",
            leave_req.id, approver_id, leave_req.total_days,
        )
        return await LeaveService._fetch_out(db, leave_req.id)

    # ─────────────────────────────────────────────────────────────────
    # Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    @wrap_persistence_errors("Failed to reject leave request")
    async def reject_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        rejecter_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
        reason: str,
    ) -> LeaveRequestOut:
        LeaveService._require_manager(role, "reject")
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["A rejection reason is required."]})

        leave_req = await LeaveService._get_request_for_update(
            db, request_id, organization_id=organization_id,
        )
        if leave_req.status != LeaveStatus.pending:
            raise InvalidStateException(
                "Only pending leave requests can be rejected. "
                f"Current status: {leave_req.status.value}"
            )

        leave_req.status = LeaveStatus.rejected
        leave_req.rejected_by_id = rejecter_id
        leave_req.rejected_at = datetime.now(timezone.utc)
        LeaveService._add_comment(db, leave_req.id, rejecter_id, reason.strip())
        await db.flush()

        logger.info("Leave request %s rejected by %s", leave_req.id, rejecter_id)
        return await LeaveService._fetch_out(db, leave_req.id)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _apply_filters(
        query,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ):
        if leave_type_id is not None:
            query = query.where(LeaveRequest.leave_type_id == leave_type_id)
        if from_date is not None:
            query = query.where(LeaveRequest.end_date >= from_date)
        if to_date is not None:
            query = query.where(LeaveRequest.start_date <= to_date)
        return query

    @staticmethod
    async def get_my_leave_requests(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        status: Optional[LeaveStatus] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """The employee's own requests, newest first."""
        query = select(LeaveRequest).where(LeaveRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        query = LeaveService._apply_filters(
            query, leave_type_id=leave_type_id, from_date=from_date, to_date=to_date,
        ).order_by(LeaveRequest.created_at.desc())

        rows, meta = await paginate(
            db, query, page=page, page_size=page_size, options=_REQUEST_OPTIONS,
        )
        return PaginatedResponse[LeaveRequestOut](
            data=[LeaveRequestOut.model_validate(r) for r in rows],
            meta=meta,
        )

    @staticmethod
    async def get_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        employee_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: UserRole,
    ) -> LeaveRequestOut:
        """One request with its comments. Employees see only their own;
        managers and above see any request in their organization."""
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if has_role_at_least(role, UserRole.manager):
            query = query.where(
                LeaveRequest.employee_id.in_(LeaveService._org_employee_ids(organization_id))
            )
        else:
            query = query.where(LeaveRequest.employee_id == employee_id)

        leave_req = (await db.execute(query.options(*_REQUEST_OPTIONS))).scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return LeaveRequestOut.model_validate(leave_req)

    @staticmethod
    async def get_pending_for_review(
        db: AsyncSession,
        organization_id: uuid.UUID,
        role: UserRole,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """Pending requests in the organization, earliest start first."""
        LeaveService._require_manager(role, "review")
        query = select(LeaveRequest).where(
            LeaveRequest.status == LeaveStatus.pending,
            LeaveRequest.employee_id.in_(LeaveService._org_employee_ids(organization_id)),
        )
        query = LeaveService._apply_filters(
            query, leave_type_id=leave_type_id, from_date=from_date, to_date=to_date,
        ).order_by(LeaveRequest.start_date, LeaveRequest.created_at)

        rows, meta = await paginate(
            db, query, page=page, page_size=page_size, options=_REQUEST_OPTIONS,
        )
        return PaginatedResponse[LeaveRequestOut](
            data=[LeaveRequestOut.model_validate(r) for r in rows],
            meta=meta,
        )
