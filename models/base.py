# base.py
"""Shared Pydantic base and small wire models used by every resource."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python; both accepted on input."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class DeleteResult(CamelModel):
    message: str
    id: str


class ErrorBody(BaseModel):
    error: str = Field(..., description="Human-readable error message")
