"""Common module: shared utilities for the leave management service."""

from backend.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    BalanceConflictType,
    LeaveStatus,
    UserRole,
    has_role_at_least,
)
from backend.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceException,
    InternalServerException,
    InvalidDateRangeException,
    InvalidStateException,
    NotFoundException,
    OverlappingRequestException,
    ValidationException,
    register_exception_handlers,
    wrap_persistence_errors,
)
from backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Constants / Enums
    "ACTIVE_LEAVE_STATUSES",
    "BalanceConflictType",
    "LeaveStatus",
    "UserRole",
    "has_role_at_least",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InsufficientBalanceException",
    "InternalServerException",
    "InvalidDateRangeException",
    "InvalidStateException",
    "NotFoundException",
    "OverlappingRequestException",
    "ValidationException",
    "register_exception_handlers",
    "wrap_persistence_errors",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
