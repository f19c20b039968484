"""001 – Initial schema: tenants, employees, leave types, balances, requests.

Revision ID: 001_initial_schema
Revises:
Create Date: 2024-05-20 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["employee", "manager", "hr_admin", "super_admin"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. organizations ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE organizations (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(200) NOT NULL,
            domain      VARCHAR(255) UNIQUE,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id UUID NOT NULL REFERENCES organizations(id),
            name            VARCHAR(150) NOT NULL,
            description     TEXT,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_dept_org_name UNIQUE (organization_id, name)
        )
    """)

    # ── 3. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id UUID NOT NULL REFERENCES organizations(id),
            employee_number VARCHAR(50) NOT NULL,
            user_id         VARCHAR(100) UNIQUE,
            first_name      VARCHAR(100),
            last_name       VARCHAR(100),
            email           VARCHAR(255) NOT NULL,
            role            user_role NOT NULL DEFAULT 'employee',
            job_title       VARCHAR(150),
            department_id   UUID REFERENCES departments(id),
            manager_id      UUID REFERENCES employees(id),
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_employee_org_number UNIQUE (organization_id, employee_number)
        )
    """)
    op.execute("CREATE INDEX ix_employees_organization_id ON employees(organization_id)")

    # ── 4. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id   UUID NOT NULL REFERENCES organizations(id),
            name              VARCHAR(100) NOT NULL,
            description       TEXT,
            max_days_per_year INTEGER NOT NULL,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_type_org_name UNIQUE (organization_id, name)
        )
    """)

    # ── 5. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id   UUID NOT NULL REFERENCES organizations(id),
            leave_type_id     UUID NOT NULL REFERENCES leave_types(id),
            name              VARCHAR(100) NOT NULL,
            max_days_per_year INTEGER NOT NULL,
            is_active         BOOLEAN NOT NULL DEFAULT TRUE,
            created_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 6. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            year           INTEGER NOT NULL,
            total_days     INTEGER NOT NULL DEFAULT 0,
            used_days      INTEGER NOT NULL DEFAULT 0,
            available_days INTEGER NOT NULL DEFAULT 0,
            carried_over   INTEGER NOT NULL DEFAULT 0,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type_id, year)
        )
    """)

    # ── 7. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            start_date     DATE NOT NULL,
            end_date       DATE NOT NULL,
            total_days     INTEGER NOT NULL,
            reason         TEXT,
            status         leave_status NOT NULL DEFAULT 'pending',
            approved_by_id UUID REFERENCES employees(id),
            approved_at    TIMESTAMPTZ,
            rejected_by_id UUID REFERENCES employees(id),
            rejected_at    TIMESTAMPTZ,
            cancelled_at   TIMESTAMPTZ,
            debited_balance_id UUID REFERENCES leave_balances(id) ON DELETE SET NULL,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_employee_dates
            ON leave_requests(employee_id, start_date, end_date)
    """)

    # ── 8. leave_comments ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_comments (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id UUID NOT NULL REFERENCES leave_requests(id),
            employee_id      UUID NOT NULL REFERENCES employees(id),
            content          TEXT NOT NULL,
            is_internal      BOOLEAN NOT NULL DEFAULT FALSE,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_leave_comments_request ON leave_comments(leave_request_id)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    tables = [
        "leave_comments",
        "leave_requests",
        "leave_balances",
        "leave_policies",
        "leave_types",
        "employees",
        "departments",
        "organizations",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
