"""organizations core

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _is_postgresql() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=32), nullable=False),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    role_table = sa.table("roles", sa.column("name", sa.String()))
    op.bulk_insert(role_table, [{"name": "owner"}, {"name": "admin"}, {"name": "member"}])

    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_organizations_name"),
    )

    op.create_table(
        "organization_users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_organization_users_organization_user"),
    )
    op.create_index(
        "ix_organization_users_organization_created_at",
        "organization_users",
        ["organization_id", "created_at"],
        unique=False,
    )

    if _is_postgresql():
        op.execute(
            """
            CREATE OR REPLACE FUNCTION app_current_organization_id()
            RETURNS text
            LANGUAGE sql
            STABLE
            AS $$
                SELECT NULLIF(current_setting('app.current_organization_id', true), '');
            $$;
            """
        )

        for table_name in ["organizations", "organization_users"]:
            op.execute(f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY;")
            op.execute(f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY;")

        op.execute(
            """
            CREATE POLICY organizations_select_policy ON organizations
            FOR SELECT USING (id = app_current_organization_id());
            """
        )
        op.execute(
            """
            CREATE POLICY organizations_insert_policy ON organizations
            FOR INSERT WITH CHECK (
                app_current_organization_id() IS NULL OR id = app_current_organization_id()
            );
            """
        )
        op.execute(
            """
            CREATE POLICY organizations_update_policy ON organizations
            FOR UPDATE USING (id = app_current_organization_id())
            WITH CHECK (id = app_current_organization_id());
            """
        )

        op.execute(
            """
            CREATE POLICY organization_users_select_policy ON organization_users
            FOR SELECT USING (
                app_current_organization_id() IS NULL OR organization_id = app_current_organization_id()
            );
            """
        )
        op.execute(
            """
            CREATE POLICY organization_users_insert_policy ON organization_users
            FOR INSERT WITH CHECK (
                app_current_organization_id() IS NULL OR organization_id = app_current_organization_id()
            );
            """
        )
        op.execute(
            """
            CREATE POLICY organization_users_delete_policy ON organization_users
            FOR DELETE USING (organization_id = app_current_organization_id());
            """
        )


def downgrade() -> None:
    if _is_postgresql():
        op.execute("DROP POLICY IF EXISTS organization_users_select_policy ON organization_users;")
        op.execute("DROP POLICY IF EXISTS organization_users_insert_policy ON organization_users;")
        op.execute("DROP POLICY IF EXISTS organization_users_delete_policy ON organization_users;")
        op.execute("DROP POLICY IF EXISTS organizations_select_policy ON organizations;")
        op.execute("DROP POLICY IF EXISTS organizations_insert_policy ON organizations;")
        op.execute("DROP POLICY IF EXISTS organizations_update_policy ON organizations;")
        op.execute("DROP FUNCTION IF EXISTS app_current_organization_id;")

    op.drop_index("ix_organization_users_organization_created_at", table_name="organization_users")
    op.drop_table("organization_users")
    op.drop_table("organizations")
    op.drop_table("roles")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
