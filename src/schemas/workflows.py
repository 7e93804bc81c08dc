"""Pydantic schemas for intent workflow API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WorkflowCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    icp_document: Dict[str, Any] = Field(default_factory=dict)
    competitor_urls: List[str] = Field(default_factory=list)


class WorkflowAdvanceRequest(BaseModel):
    from_stage: str = Field(min_length=1, max_length=32)


class SeedApprovalRequest(BaseModel):
    decision: str
    feedback: Optional[str] = Field(default=None, max_length=4000)
    approved_keyword_ids: Optional[List[str]] = None


class SubtopicApprovalRequest(BaseModel):
    decision: str
    feedback: Optional[str] = Field(default=None, max_length=4000)


class HumanApprovalRequest(BaseModel):
    decision: str
    feedback: Optional[str] = Field(default=None, max_length=4000)
    reset_to_step: Optional[int] = None


class GenerationResultRequest(BaseModel):
    status: str
    error: Optional[str] = Field(default=None, max_length=4000)
