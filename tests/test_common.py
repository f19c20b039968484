"""Tests for common utilities: roles, pagination, problem details, error wrapping."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole, has_role_at_least
from backend.common.exceptions import (
    ConflictError,
    InsufficientBalanceException,
    InternalServerException,
    NotFoundException,
    register_exception_handlers,
    wrap_persistence_errors,
)
from backend.common.pagination import build_meta, paginate
from backend.core_hr.models import Employee
from tests.conftest import _make_employee


# ═════════════════════════════════════════════════════════════════════
# ROLES
# ═════════════════════════════════════════════════════════════════════


class TestRoleHierarchy:

    @pytest.mark.parametrize(
        "role, minimum, expected",
        [
            (UserRole.employee, UserRole.employee, True),
            (UserRole.employee, UserRole.manager, False),
            (UserRole.manager, UserRole.manager, True),
            (UserRole.manager, UserRole.hr_admin, False),
            (UserRole.hr_admin, UserRole.manager, True),
            (UserRole.super_admin, UserRole.hr_admin, True),
        ],
    )
    def test_has_role_at_least(self, role, minimum, expected):
        assert has_role_at_least(role, minimum) is expected


# ═════════════════════════════════════════════════════════════════════
# PAGINATION
# ═════════════════════════════════════════════════════════════════════


class TestBuildMeta:

    def test_empty(self):
        meta = build_meta(1, 10, 0)
        assert meta.total_pages == 0
        assert meta.has_next is False
        assert meta.has_prev is False

    def test_middle_page(self):
        meta = build_meta(2, 10, 25)
        assert meta.total_pages == 3
        assert meta.has_next is True
        assert meta.has_prev is True

    def test_last_page(self):
        meta = build_meta(3, 10, 25)
        assert meta.has_next is False


class TestPaginate:

    async def _seed(self, db: AsyncSession, organization_id, count: int) -> None:
        for i in range(count):
            db.add(Employee(**_make_employee(
                organization_id=organization_id,
                email=f"user{i}@example.com",
                first_name=f"User{i}",
            )))
        await db.flush()

    async def test_page_2(self, db: AsyncSession, test_org):
        await self._seed(db, test_org["id"], 5)
        query = select(Employee).order_by(Employee.email)
        rows, meta = await paginate(db, query, page=2, page_size=2)
        assert [e.email for e in rows] == ["user2@example.com", "user3@example.com"]
        assert meta.total == 5
        assert meta.total_pages == 3

    async def test_empty_result(self, db: AsyncSession, test_org):
        rows, meta = await paginate(db, select(Employee), page=1, page_size=10)
        assert rows == []
        assert meta.total == 0


# ═════════════════════════════════════════════════════════════════════
# PROBLEM DETAILS
# ═════════════════════════════════════════════════════════════════════


def _problem_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundException("LeaveType", "abc")

    @app.get("/duplicate")
    async def duplicate():
        raise ConflictError("name", "Annual Leave")

    @app.get("/short")
    async def short():
        raise InsufficientBalanceException(3, 5)

    @app.get("/typed/{count}")
    async def typed(count: int):
        return {"count": count}

    return app


class TestProblemDetails:

    @pytest.fixture
    async def problem_client(self):
        async with AsyncClient(
            transport=ASGITransport(app=_problem_app()), base_url="http://test",
        ) as ac:
            yield ac

    async def test_not_found_body(self, problem_client: AsyncClient):
        resp = await problem_client.get("/missing")
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/not-found")
        assert body["title"] == "LeaveType Not Found"
        assert body["instance"] == "/missing"
        assert "errors" not in body

    async def test_conflict_carries_field_errors(self, problem_client: AsyncClient):
        body = (await problem_client.get("/duplicate")).json()
        assert body["status"] == 409
        assert body["errors"] == {"name": ["'Annual Leave' is already in use."]}

    async def test_details_block(self, problem_client: AsyncClient):
        resp = await problem_client.get("/short")
        assert resp.status_code == 422
        assert resp.json()["details"]["shortage"] == 2

    async def test_request_validation_error(self, problem_client: AsyncClient):
        resp = await problem_client.get("/typed/not-a-number")
        assert resp.status_code == 422
        body = resp.json()
        assert body["title"] == "Validation Error"
        assert "count" in body["errors"]


# ═════════════════════════════════════════════════════════════════════
# PERSISTENCE ERROR WRAPPING
# ═════════════════════════════════════════════════════════════════════


class TestWrapPersistenceErrors:

    async def test_sqlalchemy_error_becomes_internal(self):
        @wrap_persistence_errors("Failed to do the thing")
        async def broken():
            raise OperationalError("SELECT 1", {}, Exception("connection lost"))

        with pytest.raises(InternalServerException) as exc_info:
            await broken()
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Failed to do the thing"

    async def test_app_exceptions_pass_through(self):
        @wrap_persistence_errors("unused")
        async def missing():
            raise NotFoundException("Employee")

        with pytest.raises(NotFoundException):
            await missing()

    async def test_return_value_preserved(self):
        @wrap_persistence_errors("unused")
        async def ok(x: int) -> int:
            return x * 2

        assert await ok(21) == 42
