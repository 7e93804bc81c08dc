from types import SimpleNamespace

from src.core import observability


def _settings(dsn: str, *, env: str = "development", rate: float = 0.0) -> SimpleNamespace:
    return SimpleNamespace(
        sentry_dsn=dsn,
        env=env,
        app_name="intent_engine",
        app_version="0.1.0",
        sentry_traces_sample_rate=rate,
    )


def test_init_sentry_skips_when_dsn_missing(monkeypatch) -> None:
    observability.reset_observability_for_tests()

    called = {"count": 0}

    def fake_init(**kwargs):  # noqa: ARG001
        called["count"] += 1

    monkeypatch.setattr(observability, "_call_sentry_init", fake_init)
    monkeypatch.setattr(observability, "get_settings", lambda: _settings(""))

    assert observability.init_sentry() is False
    assert called["count"] == 0
    assert observability.is_sentry_initialized() is False
    observability.reset_observability_for_tests()


def test_init_sentry_initializes_once(monkeypatch) -> None:
    observability.reset_observability_for_tests()

    calls = []

    def fake_init(**kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(observability, "FastApiIntegration", lambda: object())
    monkeypatch.setattr(observability, "_call_sentry_init", fake_init)
    monkeypatch.setattr(
        observability,
        "get_settings",
        lambda: _settings("https://abc@example.ingest.sentry.io/1", env="production", rate=0.2),
    )

    assert observability.init_sentry() is True
    assert observability.init_sentry() is True
    assert len(calls) == 1
    assert calls[0]["dsn"] == "https://abc@example.ingest.sentry.io/1"
    assert calls[0]["environment"] == "production"
    assert calls[0]["release"] == "intent_engine@0.1.0"
    assert calls[0]["traces_sample_rate"] == 0.2
    observability.reset_observability_for_tests()


def test_capture_and_scope_are_noops_without_sentry(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    captured = []
    monkeypatch.setattr(observability.sentry_sdk, "capture_exception", captured.append)

    with observability.sentry_scope(organization_id="org-1", request_id="req-1"):
        observability.capture_exception(RuntimeError("boom"))

    assert captured == []


def test_before_send_drops_rejected_workflow_requests() -> None:
    from src.workflows.errors import InfrastructureError, WorkflowLockedError

    event = {"message": "boom"}
    locked = WorkflowLockedError({"allowed": False, "reason": "locked"})
    infrastructure = InfrastructureError("Database unavailable")

    assert observability.drop_expected_workflow_errors(event, {"exc_info": (type(locked), locked, None)}) is None
    assert (
        observability.drop_expected_workflow_errors(event, {"exc_info": (type(infrastructure), infrastructure, None)})
        is event
    )
    assert observability.drop_expected_workflow_errors(event, {}) is event
