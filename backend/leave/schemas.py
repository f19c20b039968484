"""Leave Pydantic v2 schemas: request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out / *Result                → response bodies (read)
  - *Brief                        → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.common.constants import BalanceConflictType, LeaveStatus
from backend.config import settings
from backend.leave import business_days


def _check_year(value: int) -> int:
    max_year = business_days.current_leave_year() + 5
    if not settings.MIN_LEAVE_YEAR <= value <= max_year:
        raise ValueError(
            f"Year must be between {settings.MIN_LEAVE_YEAR} and {max_year}."
        )
    return value


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_number: str
    full_name: str
    email: str
    job_title: Optional[str] = None


class LeaveTypeBrief(BaseModel):
    """Minimal leave type info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    max_days_per_year: int


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    max_days_per_year: int = Field(..., ge=0, le=settings.MAX_DAYS_PER_YEAR)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required.")
        return v


class LeaveTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    max_days_per_year: Optional[int] = Field(None, ge=0, le=settings.MAX_DAYS_PER_YEAR)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank.")
        return v


class LeaveTypeOut(BaseModel):
    """Full leave type representation with usage counts."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    description: Optional[str] = None
    max_days_per_year: int
    created_at: datetime
    updated_at: datetime

    # Filled by service, not from ORM
    request_count: int = 0
    balance_count: int = 0
    policy_count: int = 0


class LeaveTypeSimple(BaseModel):
    """Dropdown entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    max_days_per_year: int


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    total_days: int
    used_days: int
    available_days: int
    carried_over: int
    created_at: datetime
    updated_at: datetime

    leave_type: Optional[LeaveTypeBrief] = None


class LeaveBalanceAssign(BaseModel):
    """Payload for assigning a leave type allocation to one employee."""

    leave_type_id: uuid.UUID
    year: int
    total_days: int = Field(..., ge=0, le=settings.MAX_DAYS_PER_YEAR)
    carried_over: int = Field(0, ge=0, le=settings.MAX_DAYS_PER_YEAR)

    @field_validator("year")
    @classmethod
    def _validate_year(cls, v: int) -> int:
        return _check_year(v)


class LeaveBalanceUpdate(BaseModel):
    total_days: Optional[int] = Field(None, ge=0, le=settings.MAX_DAYS_PER_YEAR)
    carried_over: Optional[int] = Field(None, ge=0, le=settings.MAX_DAYS_PER_YEAR)


class BulkAssignRequest(LeaveBalanceAssign):
    """Assign the same allocation to many employees (up to ``BULK_ASSIGN_MAX_EMPLOYEES`` per call)."""

    employee_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=settings.BULK_ASSIGN_MAX_EMPLOYEES)

    @field_validator("employee_ids")
    @classmethod
    def _dedupe(cls, v: list[uuid.UUID]) -> list[uuid.UUID]:
        return list(dict.fromkeys(v))


class AssignmentSuccess(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    balance_id: uuid.UUID


class AssignmentFailure(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    error: str


class AssignmentSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkAssignmentResult(BaseModel):
    """Partial-success batch report. Returned with HTTP 200 even when every item failed."""

    successful: list[AssignmentSuccess] = []
    failed: list[AssignmentFailure] = []
    summary: AssignmentSummary


class AssignmentRemoval(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    balance_id: uuid.UUID
    used_days: int


class AssignmentSyncResult(BulkAssignmentResult):
    """Bulk result plus the balances of employees dropped from the set.

    ``removed`` balances were unused and deleted; ``retained`` ones have
    used days and were left in place.
    """

    removed: list[AssignmentRemoval] = []
    retained: list[AssignmentRemoval] = []


class AssignedEmployeesOut(BaseModel):
    leave_type_id: uuid.UUID
    year: Optional[int] = None
    employee_ids: list[uuid.UUID]


# ═════════════════════════════════════════════════════════════════════
# Balance check
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceCheckRequest(BaseModel):
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date


class BalanceSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    year: int
    total_days: int
    used_days: int
    available_days: int
    carried_over: int


class BalanceConflict(BaseModel):
    type: BalanceConflictType
    message: str
    details: Optional[dict[str, Any]] = None


class OverlappingLeave(BaseModel):
    id: uuid.UUID
    start_date: date
    end_date: date
    leave_type_name: str
    status: LeaveStatus
    total_days: int


class LeaveBalanceCheckOut(BaseModel):
    leave_type: LeaveTypeBrief
    balance: Optional[BalanceSnapshot] = None
    requested_days: int
    is_allowed: bool
    conflicts: list[BalanceConflict] = []
    overlapping_leaves: list[OverlappingLeave] = []


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying for leave. Day count is computed server-side."""

    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=500)


class LeaveRequestUpdate(BaseModel):
    leave_type_id: Optional[uuid.UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def _not_empty(self) -> LeaveRequestUpdate:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided.")
        return self


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class LeaveApproveRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class LeaveCommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    content: str
    is_internal: bool
    created_at: datetime
    author: Optional[EmployeeBrief] = None


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    total_days: int
    reason: Optional[str] = None
    status: LeaveStatus
    approved_by_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by_id: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    debited_balance_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

    employee: Optional[EmployeeBrief] = None
    leave_type: Optional[LeaveTypeBrief] = None
    comments: list[LeaveCommentOut] = []
