"""001 – Initial schema: identity, ledger, leave workflow and audit tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:30:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            email         VARCHAR(255) NOT NULL UNIQUE,
            full_name     VARCHAR(200) NOT NULL,
            team_lead_id  UUID REFERENCES users(id) ON DELETE SET NULL,
            is_active     BOOLEAN NOT NULL DEFAULT TRUE,
            leave_seq     INTEGER NOT NULL DEFAULT 0,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. role_assignments ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE role_assignments (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id      UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role         VARCHAR(32) NOT NULL
                         CHECK (role IN ('EMPLOYEE', 'HR', 'MANAGEMENT', 'ADMIN')),
            is_active    BOOLEAN NOT NULL DEFAULT TRUE,
            assigned_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_role_assignment UNIQUE (user_id, role)
        )
    """)
    op.execute("CREATE INDEX ix_role_assignments_user_id ON role_assignments(user_id)")

    # ── 3. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id          UUID NOT NULL REFERENCES users(id),
            leave_type       VARCHAR(32) NOT NULL CHECK (leave_type IN (
                'ANNUAL', 'SICK', 'PERSONAL', 'EMERGENCY', 'MATERNITY', 'PATERNITY', 'UNPAID'
            )),
            year             INTEGER NOT NULL,
            total_allocated  INTEGER NOT NULL DEFAULT 0,
            used_days        INTEGER NOT NULL DEFAULT 0,
            carry_over_days  INTEGER NOT NULL DEFAULT 0,
            remaining_days   INTEGER NOT NULL DEFAULT 0,
            reserved_days    INTEGER NOT NULL DEFAULT 0,
            version          INTEGER NOT NULL DEFAULT 1,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (user_id, leave_type, year),
            CONSTRAINT ck_balance_allocated_nonneg CHECK (total_allocated >= 0),
            CONSTRAINT ck_balance_carry_nonneg CHECK (carry_over_days >= 0),
            CONSTRAINT ck_balance_used_nonneg CHECK (used_days >= 0),
            CONSTRAINT ck_balance_reserved_nonneg CHECK (reserved_days >= 0),
            CONSTRAINT ck_balance_remaining_nonneg CHECK (remaining_days >= 0),
            CONSTRAINT ck_balance_remaining_formula
                CHECK (remaining_days = total_allocated + carry_over_days - used_days)
        )
    """)
    op.execute("CREATE INDEX ix_leave_balances_user_id ON leave_balances(user_id)")

    # ── 4. balance_reservations ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE balance_reservations (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id     UUID NOT NULL REFERENCES users(id),
            leave_type  VARCHAR(32) NOT NULL CHECK (leave_type IN (
                'ANNUAL', 'SICK', 'PERSONAL', 'EMERGENCY', 'MATERNITY', 'PATERNITY', 'UNPAID'
            )),
            year        INTEGER NOT NULL,
            days        INTEGER NOT NULL,
            status      VARCHAR(32) NOT NULL DEFAULT 'HELD'
                        CHECK (status IN ('HELD', 'COMMITTED', 'RELEASED')),
            request_id  UUID,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_reservation_days_positive CHECK (days > 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_reservation_balance_key "
        "ON balance_reservations(user_id, leave_type, year)"
    )
    op.execute(
        "CREATE INDEX ix_balance_reservations_request_id ON balance_reservations(request_id)"
    )

    # ── 5. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            requester_id    UUID NOT NULL REFERENCES users(id),
            team_lead_id    UUID REFERENCES users(id),
            leave_type      VARCHAR(32) NOT NULL CHECK (leave_type IN (
                'ANNUAL', 'SICK', 'PERSONAL', 'EMERGENCY', 'MATERNITY', 'PATERNITY', 'UNPAID'
            )),
            start_date      DATE NOT NULL,
            end_date        DATE NOT NULL,
            days_requested  INTEGER NOT NULL,
            reason          TEXT,
            status          VARCHAR(32) NOT NULL DEFAULT 'PENDING'
                            CHECK (status IN (
                                'PENDING', 'TEAM_LEAD_APPROVED', 'HR_APPROVED',
                                'MANAGEMENT_APPROVED', 'APPROVED', 'REJECTED', 'CANCELLED'
                            )),
            reservation_id  UUID REFERENCES balance_reservations(id),
            cancelled_at    TIMESTAMPTZ,
            cancelled_by    UUID REFERENCES users(id),
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            version         INTEGER NOT NULL DEFAULT 1,
            CONSTRAINT ck_leave_request_dates CHECK (start_date <= end_date),
            CONSTRAINT ck_leave_request_days CHECK (days_requested > 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_requester_dates "
        "ON leave_requests(requester_id, start_date, end_date)"
    )
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests(status)")
    op.execute("CREATE INDEX ix_leave_requests_team_lead_id ON leave_requests(team_lead_id)")

    # ── 6. leave_approval_decisions ───────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_approval_decisions (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id   UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            step         VARCHAR(32) NOT NULL
                         CHECK (step IN ('TEAM_LEAD', 'HR', 'MANAGEMENT')),
            decision     VARCHAR(32) NOT NULL CHECK (decision IN ('APPROVED', 'REJECTED')),
            approver_id  UUID NOT NULL REFERENCES users(id),
            decided_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            comments     TEXT,
            CONSTRAINT uq_leave_decision_step UNIQUE (request_id, step)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_approval_decisions_request_id "
        "ON leave_approval_decisions(request_id)"
    )

    # ── 7. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES users(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.execute("DROP TABLE IF EXISTS audit_trail CASCADE")
    op.execute("DROP TABLE IF EXISTS leave_approval_decisions CASCADE")
    op.execute("DROP TABLE IF EXISTS leave_requests CASCADE")
    op.execute("DROP TABLE IF EXISTS balance_reservations CASCADE")
    op.execute("DROP TABLE IF EXISTS leave_balances CASCADE")
    op.execute("DROP TABLE IF EXISTS role_assignments CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
