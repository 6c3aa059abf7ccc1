# crm_sync/models/api/crm_response.py
"""
CRM API response models.
Used by routes for output formatting.
"""

from typing import Any

from pydantic import BaseModel, Field


class ContactResponse(BaseModel):
    """Merged contact returned by search."""

    id: str = Field(..., description="Composite ID, '<source>:<external id>'")
    source: str = Field(..., description="local, hubspot or salesforce")
    name: str | None = Field(None, description="Display name")
    email: str | None = Field(None, description="Email address")
    company: str | None = Field(None, description="Company name")
    title: str | None = Field(None, description="Job title")
    contact_id: str | None = Field(None, description="Local contact ID, when known")
    crm_id: str | None = Field(None, description="CRM record ID")
    crm_data: dict[str, Any] | None = Field(None, description="Raw CRM contact")


class ContactSearchResponse(BaseModel):
    contacts: list[ContactResponse] = Field(..., description="Matching contacts")
    total_count: int = Field(..., description="Number of contacts returned")


class SuggestionResponse(BaseModel):
    """Proposed change to one CRM field."""

    field: str = Field(..., description="Canonical field name")
    label: str = Field(..., description="Human-readable field label")
    current_value: Any = Field(None, description="Value currently stored in the CRM")
    new_value: Any = Field(..., description="Value extracted from the meeting")
    context: str | None = Field(None, description="Transcript quote supporting the value")
    timestamp: str | None = Field(None, description="MM:SS position in the meeting")
    selected: bool = Field(default=True, description="Whether the update is selected")
    has_change: bool = Field(default=True, description="Whether the value differs")


class ContactSuggestionsResponse(BaseModel):
    provider: str = Field(..., description="CRM provider")
    contact: dict[str, Any] = Field(..., description="Contact as fetched from the CRM")
    suggestions: list[SuggestionResponse] = Field(..., description="Changed fields only")


class PreviewSuggestionsResponse(BaseModel):
    provider: str = Field(..., description="CRM provider")
    suggestions: list[SuggestionResponse] = Field(..., description="Extracted values")


class ApplyUpdatesResponse(BaseModel):
    provider: str = Field(..., description="CRM provider")
    updated: bool = Field(..., description="False when no suggestion was selected")
    contact: dict[str, Any] | None = Field(None, description="Contact after the update")
