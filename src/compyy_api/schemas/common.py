"""Shared Pydantic schemas for the JSON response envelope."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(BaseModel):
    """Success envelope carrying only a human-readable message."""

    success: bool = Field(True, description="Always true for successful calls")
    message: str = Field(..., description="Human-readable outcome")


class ErrorResponse(BaseModel):
    """Error envelope returned for every failed call."""

    success: bool = Field(False, description="Always false for failed calls")
    error: str = Field(..., description="Client-safe error message")
