"""Leave routers: requests, balances, leave types.

All endpoints require authentication.  Role rules live in the services,
except the read-only review views (pending queue, another employee's
balances, a leave type's assignees), which are gated here with
``require_role``.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user, require_role
from backend.auth.schemas import AuthContext
from backend.common.constants import LeaveStatus, UserRole
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.common.rate_limit import limiter
from backend.config import settings
from backend.database import get_db
from backend.leave.balance_service import LeaveBalanceService
from backend.leave.leave_type_service import LeaveTypeService
from backend.leave.schemas import (
    AssignedEmployeesOut,
    AssignmentSyncResult,
    BulkAssignmentResult,
    BulkAssignRequest,
    LeaveApproveRequest,
    LeaveBalanceAssign,
    LeaveBalanceCheckOut,
    LeaveBalanceCheckRequest,
    LeaveBalanceOut,
    LeaveBalanceUpdate,
    LeaveCancelRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeSimple,
    LeaveTypeUpdate,
)
from backend.leave.service import LeaveService

leaves_router = APIRouter(prefix="", tags=["leaves"])
leave_balances_router = APIRouter(prefix="", tags=["leave-balances"])
leave_types_router = APIRouter(prefix="", tags=["leave-types"])


# ═════════════════════════════════════════════════════════════════════
# /leaves
# ═════════════════════════════════════════════════════════════════════


# ── POST /check-balance ─────────────────────────────────────────────

@leaves_router.post("/check-balance", response_model=LeaveBalanceCheckOut)
@limiter.limit(settings.CHECK_BALANCE_RATE_LIMIT)
async def check_balance(
    request: Request,
    body: LeaveBalanceCheckRequest,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Dry-run a prospective request: balance, overlap and weekend conflicts."""
    return await LeaveService.check_leave_balance(
        db, user.employee_id, user.organization_id, body,
    )


# ── POST / ──────────────────────────────────────────────────────────

@leaves_router.post("", response_model=LeaveRequestOut, status_code=status.HTTP_201_CREATED)
async def create_leave_request(
    body: LeaveRequestCreate,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.create_leave_request(
        db, user.employee_id, user.organization_id, body,
    )


# ── GET /me ─────────────────────────────────────────────────────────

@leaves_router.get("/me", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's own leave requests, newest first."""
    return await LeaveService.get_my_leave_requests(
        db,
        user.employee_id,
        status=status,
        leave_type_id=leave_type_id,
        from_date=from_date,
        to_date=to_date,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /pending ────────────────────────────────────────────────────

@leaves_router.get("/pending", response_model=PaginatedResponse[LeaveRequestOut])
async def pending_leave_requests(
    leave_type_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    user: AuthContext = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """Pending requests across the organization awaiting review."""
    return await LeaveService.get_pending_for_review(
        db,
        user.organization_id,
        user.role,
        leave_type_id=leave_type_id,
        from_date=from_date,
        to_date=to_date,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@leaves_router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave_request(
        db, request_id, user.employee_id, user.organization_id, user.role,
    )


# ── PATCH /{id} ─────────────────────────────────────────────────────

@leaves_router.patch("/{request_id}", response_model=LeaveRequestOut)
async def update_leave_request(
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Edit a pending request. Dates, leave type and reason may change."""
    return await LeaveService.update_leave_request(
        db, request_id, user.employee_id, user.organization_id, body,
    )


# ── POST /{id}/cancel ───────────────────────────────────────────────

@leaves_router.post("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave_request(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.cancel_leave_request(
        db, request_id, user.employee_id, reason=body.reason,
    )


# ── POST /{id}/approve ──────────────────────────────────────────────

@leaves_router.post("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave_request(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending request. Debits the current-year balance."""
    return await LeaveService.approve_leave_request(
        db, request_id, user.employee_id, user.organization_id, user.role,
        comment=body.comment,
    )


# ── POST /{id}/reject ───────────────────────────────────────────────

@leaves_router.post("/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave_request(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.reject_leave_request(
        db, request_id, user.employee_id, user.organization_id, user.role, body.reason,
    )


# ═════════════════════════════════════════════════════════════════════
# /leave-balances
# ═════════════════════════════════════════════════════════════════════


# ── GET /me ─────────────────────────────────────────────────────────

@leave_balances_router.get("/me", response_model=list[LeaveBalanceOut])
async def my_balances(
    year: Optional[int] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceService.get_employee_balances(
        db, user.employee_id, user.organization_id,
        year=year, leave_type_id=leave_type_id,
    )


# ── GET /employees/{employee_id} ────────────────────────────────────

@leave_balances_router.get("/employees/{employee_id}", response_model=list[LeaveBalanceOut])
async def employee_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    user: AuthContext = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceService.get_employee_balances(
        db, employee_id, user.organization_id,
        year=year, leave_type_id=leave_type_id,
    )


# ── POST /employees/{employee_id}/assign ────────────────────────────

@leave_balances_router.post("/employees/{employee_id}/assign", response_model=LeaveBalanceOut)
async def assign_leave_type(
    employee_id: uuid.UUID,
    body: LeaveBalanceAssign,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create or update the employee's balance for a leave type and year."""
    return await LeaveBalanceService.assign_leave_type(
        db, employee_id, user.organization_id, user.role, body,
    )


# ── POST /bulk-assign ───────────────────────────────────────────────

@leave_balances_router.post("/bulk-assign", response_model=BulkAssignmentResult)
async def bulk_assign_leave_type(
    body: BulkAssignRequest,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Assign to up to 100 employees. Partial success returns 200."""
    return await LeaveBalanceService.bulk_assign_leave_type(
        db, user.organization_id, user.role, body,
    )


# ── PUT /assignments ────────────────────────────────────────────────

@leave_balances_router.put("/assignments", response_model=AssignmentSyncResult)
async def update_leave_type_assignments(
    body: BulkAssignRequest,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the set of employees holding the leave type for the year."""
    return await LeaveBalanceService.update_leave_type_assignments(
        db, user.organization_id, user.role, body,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@leave_balances_router.get("/{balance_id}", response_model=LeaveBalanceOut)
async def get_balance(
    balance_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    owner_id = None if user.role != UserRole.employee else user.employee_id
    return await LeaveBalanceService.get_balance_by_id(
        db, balance_id, user.organization_id, owner_id=owner_id,
    )


# ── PATCH /{id} ─────────────────────────────────────────────────────

@leave_balances_router.patch("/{balance_id}", response_model=LeaveBalanceOut)
async def update_balance(
    balance_id: uuid.UUID,
    body: LeaveBalanceUpdate,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceService.update_balance(
        db, balance_id, user.organization_id, user.role, body,
    )


# ── DELETE /{id} ────────────────────────────────────────────────────

@leave_balances_router.delete("/{balance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_balance(
    balance_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete an unused balance."""
    await LeaveBalanceService.delete_balance(
        db, balance_id, user.organization_id, user.role,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ═════════════════════════════════════════════════════════════════════
# /leave-types
# ═════════════════════════════════════════════════════════════════════


# ── GET / ───────────────────────────────────────────────────────────

@leave_types_router.get("", response_model=PaginatedResponse[LeaveTypeOut])
async def list_leave_types(
    search: Optional[str] = Query(None, max_length=100),
    pagination: PaginationParams = Depends(),
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Leave types of the caller's organization with usage counts."""
    return await LeaveTypeService.list_leave_types(
        db,
        user.organization_id,
        search=search,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /simple ─────────────────────────────────────────────────────

@leave_types_router.get("/simple", response_model=list[LeaveTypeSimple])
async def list_simple_leave_types(
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.list_simple_leave_types(db, user.organization_id)


# ── POST / ──────────────────────────────────────────────────────────

@leave_types_router.post("", response_model=LeaveTypeOut, status_code=status.HTTP_201_CREATED)
async def create_leave_type(
    body: LeaveTypeCreate,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.create_leave_type(
        db, user.organization_id, user.role, body,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@leave_types_router.get("/{leave_type_id}", response_model=LeaveTypeOut)
async def get_leave_type(
    leave_type_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.get_leave_type(db, leave_type_id, user.organization_id)


# ── GET /{id}/assigned-employees ────────────────────────────────────

@leave_types_router.get("/{leave_type_id}/assigned-employees", response_model=AssignedEmployeesOut)
async def assigned_employees(
    leave_type_id: uuid.UUID,
    year: Optional[int] = Query(None),
    user: AuthContext = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceService.get_assigned_employee_ids(
        db, leave_type_id, user.organization_id, year=year,
    )


# ── PATCH /{id} ─────────────────────────────────────────────────────

@leave_types_router.patch("/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.update_leave_type(
        db, leave_type_id, user.organization_id, user.role, body,
    )


# ── DELETE /{id} ────────────────────────────────────────────────────

@leave_types_router.delete("/{leave_type_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_leave_type(
    leave_type_id: uuid.UUID,
    user: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a leave type no request, balance or policy references."""
    await LeaveTypeService.delete_leave_type(
        db, leave_type_id, user.organization_id, user.role,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
