from __future__ import annotations

import json

import httpx
import pytest

from src.core.config import get_settings
from src.workflows.generation import (
    GenerationRequest,
    GenerationTriggerError,
    MockGenerationTrigger,
    WebhookGenerationTrigger,
    get_generation_trigger,
    reset_generation_trigger_cache,
)


def _request() -> GenerationRequest:
    return GenerationRequest(
        article_id="article-1",
        workflow_id="workflow-1",
        organization_id="org-1",
        keyword_id="keyword-1",
        keyword="remote onboarding",
        subtopics=[{"title": "what it is"}],
    )


def _webhook(handler) -> WebhookGenerationTrigger:
    return WebhookGenerationTrigger(
        webhook_url="https://planner.example/events",
        webhook_token="planner-token",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_webhook_posts_event_and_reads_dispatch_id() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ids": ["evt-42"]})

    dispatch = _webhook(handler).start_generation(_request())

    assert dispatch.trigger == "webhook"
    assert dispatch.dispatch_id == "evt-42"
    assert seen["auth"] == "Bearer planner-token"
    assert seen["body"]["name"] == "article.generate.planner"
    assert seen["body"]["data"]["article_id"] == "article-1"
    assert seen["body"]["data"]["keyword"] == "remote onboarding"


def test_webhook_non_success_status_raises() -> None:
    trigger = _webhook(lambda request: httpx.Response(503, text="planner overloaded"))

    with pytest.raises(GenerationTriggerError, match="status=503"):
        trigger.start_generation(_request())


def test_webhook_unreachable_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GenerationTriggerError, match="unreachable"):
        _webhook(handler).start_generation(_request())


def test_webhook_without_url_raises() -> None:
    with pytest.raises(GenerationTriggerError, match="url_missing"):
        WebhookGenerationTrigger(webhook_url="  ").start_generation(_request())


def test_mock_trigger_records_dispatches() -> None:
    trigger = MockGenerationTrigger()
    first = trigger.start_generation(_request())
    second = trigger.start_generation(_request())

    assert first.dispatch_id == second.dispatch_id
    assert len(trigger.dispatched) == 2


def test_factory_follows_settings(monkeypatch) -> None:
    monkeypatch.setenv("GENERATION_TRIGGER_PROVIDER", "webhook")
    monkeypatch.setenv("GENERATION_WEBHOOK_URL", "https://planner.example/events")
    get_settings.cache_clear()
    reset_generation_trigger_cache()
    try:
        assert isinstance(get_generation_trigger(), WebhookGenerationTrigger)

        monkeypatch.setenv("GENERATION_TRIGGER_PROVIDER", "mock")
        get_settings.cache_clear()
        assert isinstance(get_generation_trigger(), WebhookGenerationTrigger)
        reset_generation_trigger_cache()
        assert isinstance(get_generation_trigger(), MockGenerationTrigger)
    finally:
        get_settings.cache_clear()
        reset_generation_trigger_cache()
