# crm_sync/models/api/crm_request.py
"""
CRM API request models.
Used by routes for input validation.
"""

from typing import Any

from pydantic import BaseModel, Field


class MeetingPayload(BaseModel):
    """Meeting whose transcript suggestions are extracted from."""

    id: str = Field(..., description="Meeting ID")
    title: str | None = Field(None, description="Meeting title")
    transcript: Any = Field(
        None,
        description="Transcript segments, or {'data': [...]} wrapping them",
    )


class GenerateSuggestionsRequest(BaseModel):
    """Request for generating contact update suggestions."""

    meeting: MeetingPayload = Field(..., description="Source meeting")


class SuggestionUpdate(BaseModel):
    """A suggestion the user reviewed and may apply."""

    field: str = Field(..., min_length=1, description="Canonical field name")
    new_value: Any = Field(..., description="Value to write")
    label: str | None = Field(None, description="Human-readable field label")
    selected: bool = Field(default=True, description="Whether to apply this update")


class ApplyUpdatesRequest(BaseModel):
    """Request for writing reviewed suggestions to the CRM."""

    suggestions: list[SuggestionUpdate] = Field(..., description="Reviewed suggestions")
