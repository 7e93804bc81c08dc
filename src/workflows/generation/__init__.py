"""Article generation trigger integrations."""

from src.workflows.generation.base import (
    GenerationDispatch,
    GenerationRequest,
    GenerationTrigger,
    GenerationTriggerError,
)
from src.workflows.generation.factory import get_generation_trigger, reset_generation_trigger_cache
from src.workflows.generation.mock_trigger import MockGenerationTrigger
from src.workflows.generation.webhook_trigger import WebhookGenerationTrigger

__all__ = [
    "GenerationDispatch",
    "GenerationRequest",
    "GenerationTrigger",
    "GenerationTriggerError",
    "MockGenerationTrigger",
    "WebhookGenerationTrigger",
    "get_generation_trigger",
    "reset_generation_trigger_cache",
]
