from fastapi.testclient import TestClient

import src.api.main as api_main
from src.core.metrics import (
    record_approval,
    record_articles_queued,
    record_gate_decision,
    render_prometheus_metrics,
    reset_metrics_for_tests,
)


def test_metrics_endpoint_returns_prometheus_payload(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)

    client = TestClient(api_main.app)
    version_response = client.get("/version")
    assert version_response.status_code == 200

    metrics_response = client.get("/metrics")
    assert metrics_response.status_code == 200
    assert metrics_response.headers["content-type"].startswith("text/plain")
    body = metrics_response.text
    assert "intent_build_info" in body
    assert 'intent_http_requests_total{method="GET",path="/version",status="200"}' in body
    assert "intent_http_request_duration_seconds_sum" in body


def test_metrics_endpoint_disabled_returns_404(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", False)
    client = TestClient(api_main.app)
    response = client.get("/metrics")
    assert response.status_code == 404


def test_workflow_counters_are_rendered() -> None:
    reset_metrics_for_tests()
    record_gate_decision(gate="competitor", outcome="denied")
    record_approval(approval_type="seed_keywords", decision="approved")
    record_articles_queued(organization_id="org-1", count=3)

    body = render_prometheus_metrics(app_name="intent_engine", app_version="0.1.0", env="test")

    assert 'intent_gate_decisions_total{gate="competitor",outcome="denied"} 1' in body
    assert 'intent_approvals_total{approval_type="seed_keywords",decision="approved"} 1' in body
    assert 'intent_articles_queued_total{organization_id="org-1"} 3' in body
    reset_metrics_for_tests()
