"""Factory to resolve the active generation trigger."""

from __future__ import annotations

from functools import lru_cache

from src.core.config import get_settings
from src.workflows.generation.base import GenerationTrigger
from src.workflows.generation.mock_trigger import MockGenerationTrigger
from src.workflows.generation.webhook_trigger import WebhookGenerationTrigger


@lru_cache(maxsize=1)
def get_generation_trigger() -> GenerationTrigger:
    settings = get_settings()
    provider = settings.generation_trigger_provider.strip().lower()
    if provider == "webhook":
        return WebhookGenerationTrigger(
            webhook_url=settings.generation_webhook_url,
            webhook_token=settings.generation_webhook_token,
            event_name=settings.generation_event_name,
            timeout_seconds=settings.generation_webhook_timeout_seconds,
        )
    return MockGenerationTrigger(event_name=settings.generation_event_name)


def reset_generation_trigger_cache() -> None:
    get_generation_trigger.cache_clear()
