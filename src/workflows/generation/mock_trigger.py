"""In-memory generation trigger for local/dev usage."""

from __future__ import annotations

import hashlib
from typing import List

from src.workflows.generation.base import GenerationDispatch, GenerationRequest, GenerationTrigger


class MockGenerationTrigger(GenerationTrigger):
    trigger_name = "mock"

    def __init__(self, *, event_name: str = "article.generate.planner") -> None:
        self._event_name = event_name
        self.dispatched: List[GenerationRequest] = []

    def start_generation(self, request: GenerationRequest) -> GenerationDispatch:
        self.dispatched.append(request)
        dispatch_id = hashlib.sha1(f"{request.workflow_id}:{request.article_id}".encode("utf-8")).hexdigest()[:16]
        return GenerationDispatch(
            trigger=self.trigger_name,
            event_name=self._event_name,
            dispatch_id=dispatch_id,
            payload={"article_id": request.article_id},
        )
