"""
Domain models for contact reconciliation and CRM update suggestions.

These dataclasses are shared by the search engine, the suggestion
pipeline, and the HTTP layer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ContactSource(str, Enum):
    LOCAL = "local"
    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"


@dataclass(slots=True)
class LocalContact:
    """A row from local contact storage."""

    id: str
    name: str | None
    email: str | None


@dataclass(slots=True)
class CanonicalContact:
    """Normalized contact produced by search; one per lower-cased email."""

    id: str  # "<source>:<external id>"
    source: ContactSource
    name: str | None = None
    email: str | None = None
    company: str | None = None
    title: str | None = None
    contact_id: str | None = None  # local back-reference
    crm_id: str | None = None
    crm_data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "title": self.title,
            "contact_id": self.contact_id,
            "crm_id": self.crm_id,
            "crm_data": self.crm_data,
        }


@dataclass(slots=True)
class SuggestionDraft:
    """A single fact extracted from a transcript by the AI service."""

    field: str
    value: Any
    context: str | None = None
    timestamp: str | None = None


@dataclass(slots=True)
class Suggestion:
    """A proposed change to one CRM field."""

    field: str
    label: str
    current_value: Any
    new_value: Any
    context: str | None = None
    timestamp: str | None = None
    selected: bool = True
    has_change: bool = True


@dataclass(slots=True)
class SuggestionResult:
    """Contact as fetched from the CRM plus the suggestions that differ from it."""

    contact: dict[str, Any]
    suggestions: list[Suggestion] = field(default_factory=list)


@dataclass(slots=True)
class Meeting:
    """
    Meeting consumed read-only by the suggestion pipeline.

    transcript is either a list of segments
    ({"speaker": ..., "words": [{"text": ..., "start_timestamp": ...}]})
    or a {"data": [...]} wrapper around that list.
    """

    id: str
    title: str | None = None
    transcript: Any = None
