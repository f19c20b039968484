"""Leave type management: creation, search, rename conflicts and the delete guard."""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LeaveStatus, UserRole
from backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from backend.leave.leave_type_service import DUPLICATE_NAME_MESSAGE, LeaveTypeService
from backend.leave.models import LeaveBalance, LeavePolicy, LeaveRequest, LeaveType
from backend.leave.schemas import LeaveTypeCreate, LeaveTypeUpdate
from tests.conftest import _make_leave_type


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _seed_leave_type(db: AsyncSession, organization_id: uuid.UUID, **kwargs) -> LeaveType:
    lt = LeaveType(**_make_leave_type(organization_id=organization_id, **kwargs))
    db.add(lt)
    await db.flush()
    return lt


async def _no_name_precheck(*args, **kwargs) -> None:
    return None


# ═════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════


class TestCreateLeaveType:

    async def test_hr_admin_creates_with_trimmed_name(self, db: AsyncSession, test_org):
        out = await LeaveTypeService.create_leave_type(
            db, test_org["id"], UserRole.hr_admin,
            LeaveTypeCreate(name="  Sick Leave  ", max_days_per_year=10),
        )
        assert out.name == "Sick Leave"
        assert out.max_days_per_year == 10
        assert out.organization_id == test_org["id"]
        assert out.request_count == 0

    async def test_manager_forbidden(self, db: AsyncSession, test_org):
        with pytest.raises(ForbiddenException):
            await LeaveTypeService.create_leave_type(
                db, test_org["id"], UserRole.manager,
                LeaveTypeCreate(name="Sick Leave", max_days_per_year=10),
            )

    async def test_duplicate_name_conflicts(self, db: AsyncSession, test_org, test_leave_type):
        with pytest.raises(ConflictError) as exc_info:
            await LeaveTypeService.create_leave_type(
                db, test_org["id"], UserRole.super_admin,
                LeaveTypeCreate(name=test_leave_type["name"], max_days_per_year=5),
            )
        assert exc_info.value.status_code == 409
        assert exc_info.value.message == DUPLICATE_NAME_MESSAGE

    async def test_same_name_in_other_org_allowed(
        self, db: AsyncSession, other_org, test_leave_type,
    ):
        out = await LeaveTypeService.create_leave_type(
            db, other_org["id"], UserRole.hr_admin,
            LeaveTypeCreate(name=test_leave_type["name"], max_days_per_year=5),
        )
        assert out.organization_id == other_org["id"]

    async def test_unique_constraint_race_maps_to_conflict(
        self, db: AsyncSession, test_org, test_leave_type, monkeypatch,
    ):
        """A duplicate that slips past the name check still surfaces as 409."""
        monkeypatch.setattr(LeaveTypeService, "_ensure_unique_name", staticmethod(_no_name_precheck))
        with pytest.raises(ConflictError) as exc_info:
            await LeaveTypeService.create_leave_type(
                db, test_org["id"], UserRole.hr_admin,
                LeaveTypeCreate(name=test_leave_type["name"], max_days_per_year=5),
            )
        assert exc_info.value.status_code == 409
        assert exc_info.value.message == DUPLICATE_NAME_MESSAGE

        simple = await LeaveTypeService.list_simple_leave_types(db, test_org["id"])
        assert [lt.id for lt in simple] == [test_leave_type["id"]]

    def test_blank_name_rejected_by_schema(self):
        with pytest.raises(ValueError):
            LeaveTypeCreate(name="   ", max_days_per_year=5)


# ═════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════


class TestListLeaveTypes:

    async def test_search_matches_name_and_description(self, db: AsyncSession, test_org):
        await _seed_leave_type(db, test_org["id"], name="Annual Leave")
        await _seed_leave_type(db, test_org["id"], name="Sick Leave", description="Medical")
        await _seed_leave_type(db, test_org["id"], name="Parental")

        by_name = await LeaveTypeService.list_leave_types(db, test_org["id"], search="leave")
        assert [lt.name for lt in by_name.data] == ["Annual Leave", "Sick Leave"]

        by_description = await LeaveTypeService.list_leave_types(db, test_org["id"], search="medic")
        assert [lt.name for lt in by_description.data] == ["Sick Leave"]

    async def test_pagination_meta(self, db: AsyncSession, test_org):
        for i in range(5):
            await _seed_leave_type(db, test_org["id"], name=f"Type {i}")

        page = await LeaveTypeService.list_leave_types(db, test_org["id"], page=2, page_size=2)
        assert [lt.name for lt in page.data] == ["Type 2", "Type 3"]
        assert page.meta.total == 5
        assert page.meta.total_pages == 3
        assert page.meta.has_next is True
        assert page.meta.has_prev is True

    async def test_other_org_types_hidden(self, db: AsyncSession, test_org, other_org):
        await _seed_leave_type(db, other_org["id"], name="Foreign")
        page = await LeaveTypeService.list_leave_types(db, test_org["id"])
        assert page.data == []
        assert page.meta.total == 0

    async def test_simple_list(self, db: AsyncSession, test_org, test_leave_type):
        simple = await LeaveTypeService.list_simple_leave_types(db, test_org["id"])
        assert len(simple) == 1
        assert simple[0].id == test_leave_type["id"]
        assert simple[0].max_days_per_year == test_leave_type["max_days_per_year"]

    async def test_get_foreign_leave_type_not_found(self, db: AsyncSession, other_org, test_leave_type):
        with pytest.raises(NotFoundException):
            await LeaveTypeService.get_leave_type(db, test_leave_type["id"], other_org["id"])


# ═════════════════════════════════════════════════════════════════════
# Update / delete
# ═════════════════════════════════════════════════════════════════════


class TestUpdateLeaveType:

    async def test_update_fields(self, db: AsyncSession, test_org, test_leave_type):
        out = await LeaveTypeService.update_leave_type(
            db, test_leave_type["id"], test_org["id"], UserRole.hr_admin,
            LeaveTypeUpdate(max_days_per_year=25, description="Yearly allowance"),
        )
        assert out.max_days_per_year == 25
        assert out.description == "Yearly allowance"
        assert out.name == test_leave_type["name"]

    async def test_rename_to_existing_conflicts(self, db: AsyncSession, test_org, test_leave_type):
        await _seed_leave_type(db, test_org["id"], name="Sick Leave")
        with pytest.raises(ConflictError):
            await LeaveTypeService.update_leave_type(
                db, test_leave_type["id"], test_org["id"], UserRole.hr_admin,
                LeaveTypeUpdate(name="Sick Leave"),
            )

    async def test_rename_race_maps_to_conflict(
        self, db: AsyncSession, test_org, test_leave_type, monkeypatch,
    ):
        other_id = (await _seed_leave_type(db, test_org["id"], name="Sick Leave")).id
        monkeypatch.setattr(LeaveTypeService, "_ensure_unique_name", staticmethod(_no_name_precheck))
        with pytest.raises(ConflictError) as exc_info:
            await LeaveTypeService.update_leave_type(
                db, test_leave_type["id"], test_org["id"], UserRole.hr_admin,
                LeaveTypeUpdate(name="Sick Leave"),
            )
        assert exc_info.value.message == DUPLICATE_NAME_MESSAGE

        simple = await LeaveTypeService.list_simple_leave_types(db, test_org["id"])
        assert {lt.id: lt.name for lt in simple} == {
            test_leave_type["id"]: test_leave_type["name"],
            other_id: "Sick Leave",
        }

    async def test_employee_forbidden(self, db: AsyncSession, test_org, test_leave_type):
        with pytest.raises(ForbiddenException):
            await LeaveTypeService.update_leave_type(
                db, test_leave_type["id"], test_org["id"], UserRole.employee,
                LeaveTypeUpdate(max_days_per_year=1),
            )


class TestDeleteLeaveType:

    async def test_delete_unused(self, db: AsyncSession, test_org, test_leave_type):
        await LeaveTypeService.delete_leave_type(
            db, test_leave_type["id"], test_org["id"], UserRole.hr_admin,
        )
        assert await db.get(LeaveType, test_leave_type["id"]) is None

    async def test_delete_blocked_by_balance(
        self, db: AsyncSession, test_org, test_employee, test_leave_type,
    ):
        db.add(LeaveBalance(
            employee_id=test_employee["id"], leave_type_id=test_leave_type["id"],
            year=2024, total_days=10, used_days=0, available_days=10,
        ))
        await db.flush()

        with pytest.raises(InvalidStateException) as exc_info:
            await LeaveTypeService.delete_leave_type(
                db, test_leave_type["id"], test_org["id"], UserRole.hr_admin,
            )
        assert exc_info.value.details == {
            "usage": {"requests": 0, "balances": 1, "policies": 0},
        }

    async def test_delete_blocked_by_request_and_policy(
        self, db: AsyncSession, test_org, test_employee, test_leave_type,
    ):
        db.add(LeaveRequest(
            employee_id=test_employee["id"], leave_type_id=test_leave_type["id"],
            start_date=date(2024, 6, 10), end_date=date(2024, 6, 10),
            total_days=1, status=LeaveStatus.rejected,
        ))
        db.add(LeavePolicy(
            organization_id=test_org["id"], leave_type_id=test_leave_type["id"],
            name="Default", max_days_per_year=20,
        ))
        await db.flush()

        with pytest.raises(InvalidStateException) as exc_info:
            await LeaveTypeService.delete_leave_type(
                db, test_leave_type["id"], test_org["id"], UserRole.super_admin,
            )
        usage = exc_info.value.details["usage"]
        assert usage["requests"] == 1
        assert usage["policies"] == 1

        out = await LeaveTypeService.get_leave_type(db, test_leave_type["id"], test_org["id"])
        assert out.request_count == 1
        assert out.policy_count == 1

    async def test_delete_foreign_not_found(self, db: AsyncSession, other_org, test_leave_type):
        with pytest.raises(NotFoundException):
            await LeaveTypeService.delete_leave_type(
                db, test_leave_type["id"], other_org["id"], UserRole.hr_admin,
            )
