"""Pydantic models for the review API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ApiRun(BaseModel):
    run_id: str
    process_id: str
    status: str
    created_at: str
    updated_at: str


class ApiBreakpoint(BaseModel):
    run_id: str
    breakpoint_id: str
    title: str
    question: str
    status: str
    created_at: str
    context: dict[str, object] = Field(default_factory=dict)
    decision: dict[str, object] | None = None
    released_at: str | None = None


class DecisionRequest(BaseModel):
    action: Literal["proceed", "abort", "retry"]
    comment: str | None = None
    author: str | None = None
