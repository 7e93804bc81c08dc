from __future__ import annotations

from pathlib import Path


def test_organizations_migration_declares_core_tables_and_rls_contract() -> None:
    source = Path("migrations/versions/20261019_0001_organizations_core.py").read_text(encoding="utf-8")

    assert "\"users\"," in source
    assert "\"organizations\"," in source
    assert "\"organization_users\"," in source
    assert "\"roles\"," in source

    assert "ix_organization_users_organization_created_at" in source
    assert "ENABLE ROW LEVEL SECURITY" in source
    assert "FORCE ROW LEVEL SECURITY" in source
    assert "app_current_organization_id" in source


def test_workflow_engine_migration_declares_tables_and_constraints() -> None:
    source = Path("migrations/versions/20261019_0002_intent_workflow_engine.py").read_text(encoding="utf-8")

    assert "down_revision = \"20261019_0001\"" in source
    for table_name in ("intent_workflows", "intent_approvals", "keywords", "articles", "intent_audit_logs"):
        assert f"\"{table_name}\"," in source

    assert "uq_intent_approvals_workflow_type" in source
    assert "uq_articles_workflow_keyword" in source
    assert "ix_articles_workflow_link_status" in source
    assert "ix_intent_audit_logs_workflow_created_at" in source
    assert "intent_approvals_tenant_policy" in source
    assert "FORCE ROW LEVEL SECURITY" in source
