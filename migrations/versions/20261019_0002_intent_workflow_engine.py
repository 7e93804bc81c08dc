"""intent workflow engine

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


ORGANIZATION_SCOPED_TABLES = ["intent_workflows", "keywords", "articles", "intent_audit_logs"]


def _is_postgresql() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    op.create_table(
        "intent_workflows",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="step_1_icp"),
        sa.Column("icp_document_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("competitor_urls_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
        sa.Column("article_link_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("article_linking_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("article_linking_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_intent_workflows_organization_created_at",
        "intent_workflows",
        ["organization_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_intent_workflows_organization_status",
        "intent_workflows",
        ["organization_id", "status"],
        unique=False,
    )

    op.create_table(
        "intent_approvals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workflow_id", sa.String(length=36), nullable=False),
        sa.Column("approval_type", sa.String(length=40), nullable=False),
        sa.Column("decision", sa.String(length=16), nullable=False),
        sa.Column("approver_id", sa.String(length=36), nullable=False),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("approved_items_json", sa.Text(), nullable=True),
        sa.Column("reset_to_step", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["workflow_id"], ["intent_workflows.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workflow_id", "approval_type", name="uq_intent_approvals_workflow_type"),
    )

    op.create_table(
        "keywords",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workflow_id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("keyword_type", sa.String(length=16), nullable=False, server_default="seed"),
        sa.Column("parent_seed_keyword_id", sa.String(length=36), nullable=True),
        sa.Column("search_volume", sa.Integer(), nullable=True),
        sa.Column("subtopics_status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("subtopics_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("article_status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("cluster_info_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["workflow_id"], ["intent_workflows.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_keywords_workflow_article_status",
        "keywords",
        ["workflow_id", "article_status"],
        unique=False,
    )
    op.create_index(
        "ix_keywords_workflow_created_at",
        "keywords",
        ["workflow_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "articles",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workflow_id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("keyword_id", sa.String(length=36), nullable=False),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("workflow_link_status", sa.String(length=16), nullable=False, server_default="not_linked"),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subtopics_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("cluster_info_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("icp_context_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("competitor_context_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("generation_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["workflow_id"], ["intent_workflows.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["keyword_id"], ["keywords.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workflow_id", "keyword_id", name="uq_articles_workflow_keyword"),
    )
    op.create_index("ix_articles_workflow_status", "articles", ["workflow_id", "status"], unique=False)
    op.create_index(
        "ix_articles_workflow_link_status",
        "articles",
        ["workflow_id", "workflow_link_status"],
        unique=False,
    )

    op.create_table(
        "intent_audit_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("workflow_id", sa.String(length=36), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_intent_audit_logs_organization_created_at",
        "intent_audit_logs",
        ["organization_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_intent_audit_logs_workflow_created_at",
        "intent_audit_logs",
        ["workflow_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_intent_audit_logs_organization_action",
        "intent_audit_logs",
        ["organization_id", "action"],
        unique=False,
    )

    if _is_postgresql():
        for table_name in ORGANIZATION_SCOPED_TABLES + ["intent_approvals"]:
            op.execute(f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY;")
            op.execute(f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY;")

        for table_name in ORGANIZATION_SCOPED_TABLES:
            op.execute(
                f"""
                CREATE POLICY {table_name}_select_policy ON {table_name}
                FOR SELECT USING (organization_id = app_current_organization_id());
                """
            )
            op.execute(
                f"""
                CREATE POLICY {table_name}_insert_policy ON {table_name}
                FOR INSERT WITH CHECK (organization_id = app_current_organization_id());
                """
            )
            op.execute(
                f"""
                CREATE POLICY {table_name}_update_policy ON {table_name}
                FOR UPDATE USING (organization_id = app_current_organization_id())
                WITH CHECK (organization_id = app_current_organization_id());
                """
            )

        op.execute(
            """
            CREATE POLICY intent_approvals_tenant_policy ON intent_approvals
            FOR ALL USING (
                EXISTS (
                    SELECT 1 FROM intent_workflows w
                    WHERE w.id = intent_approvals.workflow_id
                      AND w.organization_id = app_current_organization_id()
                )
            )
            WITH CHECK (
                EXISTS (
                    SELECT 1 FROM intent_workflows w
                    WHERE w.id = intent_approvals.workflow_id
                      AND w.organization_id = app_current_organization_id()
                )
            );
            """
        )


def downgrade() -> None:
    if _is_postgresql():
        op.execute("DROP POLICY IF EXISTS intent_approvals_tenant_policy ON intent_approvals;")
        for table_name in reversed(ORGANIZATION_SCOPED_TABLES):
            op.execute(f"DROP POLICY IF EXISTS {table_name}_select_policy ON {table_name};")
            op.execute(f"DROP POLICY IF EXISTS {table_name}_insert_policy ON {table_name};")
            op.execute(f"DROP POLICY IF EXISTS {table_name}_update_policy ON {table_name};")

    op.drop_index("ix_intent_audit_logs_organization_action", table_name="intent_audit_logs")
    op.drop_index("ix_intent_audit_logs_workflow_created_at", table_name="intent_audit_logs")
    op.drop_index("ix_intent_audit_logs_organization_created_at", table_name="intent_audit_logs")
    op.drop_table("intent_audit_logs")

    op.drop_index("ix_articles_workflow_link_status", table_name="articles")
    op.drop_index("ix_articles_workflow_status", table_name="articles")
    op.drop_table("articles")

    op.drop_index("ix_keywords_workflow_created_at", table_name="keywords")
    op.drop_index("ix_keywords_workflow_article_status", table_name="keywords")
    op.drop_table("keywords")

    op.drop_table("intent_approvals")

    op.drop_index("ix_intent_workflows_organization_status", table_name="intent_workflows")
    op.drop_index("ix_intent_workflows_organization_created_at", table_name="intent_workflows")
    op.drop_table("intent_workflows")
