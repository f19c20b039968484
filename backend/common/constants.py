"""Enums and constants for the leave management service: matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    super_admin = "super_admin"


# Ordinal rank: a higher rank implicitly holds every lower role
ROLE_RANK: dict[UserRole, int] = {
    UserRole.employee: 0,
    UserRole.manager: 1,
    UserRole.hr_admin: 2,
    UserRole.super_admin: 3,
}


def has_role_at_least(role: UserRole, minimum: UserRole) -> bool:
    """Return True when ``role`` is ``minimum`` or ranks above it."""
    return ROLE_RANK[role] >= ROLE_RANK[minimum]


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# Statuses that block the same dates for another request
ACTIVE_LEAVE_STATUSES: tuple[LeaveStatus, ...] = (
    LeaveStatus.pending,
    LeaveStatus.approved,
)


class BalanceConflictType(str, enum.Enum):
    weekend_only = "weekend_only"
    invalid_dates = "invalid_dates"
    no_balance_record = "no_balance_record"
    insufficient_balance = "insufficient_balance"
    overlapping_leave = "overlapping_leave"


# ── Misc constants ──────────────────────────────────────────────────

UNKNOWN_EMPLOYEE_NAME = "Unknown Employee"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10
