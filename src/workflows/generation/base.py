"""Contracts for article generation triggers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


class GenerationTriggerError(RuntimeError):
    """Raised when a generation run cannot be started for an article."""


@dataclass(frozen=True)
class GenerationRequest:
    article_id: str
    workflow_id: str
    organization_id: str
    keyword_id: str
    keyword: str
    subtopics: List[Dict[str, Any]] = field(default_factory=list)
    cluster_info: Dict[str, Any] = field(default_factory=dict)
    icp_context: Dict[str, Any] = field(default_factory=dict)
    competitor_context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationDispatch:
    trigger: str
    event_name: str
    dispatch_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


class GenerationTrigger(Protocol):
    trigger_name: str

    def start_generation(self, request: GenerationRequest) -> GenerationDispatch:
        raise NotImplementedError
