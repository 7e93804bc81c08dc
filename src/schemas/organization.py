"""Pydantic schemas for organization management API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class OrganizationCreateRequest(BaseModel):
    name: str = Field(min_length=3, max_length=120)
    owner_email: EmailStr
    owner_password: str = Field(min_length=8, max_length=255)


class OrganizationCreateResponse(BaseModel):
    organization_id: str
    name: str
    owner_user_id: str
    owner_role: str


class OrganizationResponse(BaseModel):
    id: str
    name: str
    created_at: str
    my_role: str


class MemberAddRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=255)
    role: Literal["admin", "member"] = "member"


class MemberAddResponse(BaseModel):
    organization_id: str
    user_id: str
    role: str
