"""
CRM contact update suggestions derived from meeting transcripts.

One engine serves every CRM: the provider client, its field catalogue and
the AI generator are injected, so nothing here is provider specific.
"""

from typing import Any, Protocol

from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.contact_domain import (
    Meeting,
    Suggestion,
    SuggestionDraft,
    SuggestionResult,
)
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.base_client import CRMApiClient, CRMApiError
from crm_sync.services.crm.field_config import FieldConfig

logger = get_logger(__name__)


class SuggestionGenerator(Protocol):
    async def generate_crm_suggestions(
        self, provider: str, meeting: Meeting
    ) -> list[SuggestionDraft]: ...


class SuggestionEngine:
    def __init__(
        self,
        client: CRMApiClient,
        field_config: FieldConfig,
        generator: SuggestionGenerator,
    ):
        self.client = client
        self.field_config = field_config
        self.generator = generator

    @property
    def provider(self) -> str:
        return self.field_config.provider

    async def generate_suggestions(
        self, credential: Credential, contact_id: str, meeting: Meeting
    ) -> SuggestionResult:
        """
        Suggest updates for a CRM contact from a meeting transcript.

        The contact is fetched before the AI is asked, so a missing or
        unreachable contact costs no model call.

        Raises:
            CRMApiError: If the contact cannot be fetched
            AIExtractionError: If the AI call fails
            SuggestionParseError: If the AI reply is malformed
        """
        contact = await self.client.get_contact(credential, contact_id)
        if contact is None:
            raise CRMApiError(
                f"{self.provider} returned no usable contact for {contact_id}",
                reason="api_error",
                provider=self.provider,
            )

        drafts = await self.generator.generate_crm_suggestions(self.provider, meeting)

        suggestions = [self._diff(draft, contact) for draft in drafts]
        changed = [s for s in suggestions if s.has_change]

        logger.info(
            "CRM suggestions generated",
            provider=self.provider,
            contact_id=contact_id,
            meeting_id=meeting.id,
            draft_count=len(drafts),
            suggestion_count=len(changed),
        )
        return SuggestionResult(contact=contact, suggestions=changed)

    async def generate_suggestions_from_meeting(self, meeting: Meeting) -> list[Suggestion]:
        """Preview suggestions before a contact is chosen; nothing is diffed."""
        drafts = await self.generator.generate_crm_suggestions(self.provider, meeting)
        return [
            Suggestion(
                field=draft.field,
                label=self.field_config.label_for(draft.field),
                current_value=None,
                new_value=draft.value,
                context=draft.context,
                timestamp=draft.timestamp,
                selected=True,
                has_change=True,
            )
            for draft in drafts
        ]

    def merge_with_contact(
        self, suggestions: list[Suggestion], contact: dict[str, Any]
    ) -> list[Suggestion]:
        """Re-diff existing suggestions against a freshly fetched contact."""
        merged = []
        for suggestion in suggestions:
            current_value = contact.get(suggestion.field)
            has_change = current_value != suggestion.new_value
            if not has_change:
                continue
            merged.append(
                Suggestion(
                    field=suggestion.field,
                    label=suggestion.label,
                    current_value=current_value,
                    new_value=suggestion.new_value,
                    context=suggestion.context,
                    timestamp=suggestion.timestamp,
                    selected=True,
                    has_change=True,
                )
            )
        return merged

    async def apply_updates(
        self, credential: Credential, contact_id: str, suggestions: list[Suggestion]
    ) -> dict[str, Any] | None:
        """
        Write the selected suggestions to the CRM.

        Returns:
            The updated contact, or None when nothing was selected
        """
        return await self.client.apply_updates(credential, contact_id, suggestions)

    def _diff(self, draft: SuggestionDraft, contact: dict[str, Any]) -> Suggestion:
        current_value = contact.get(draft.field)
        return Suggestion(
            field=draft.field,
            label=self.field_config.label_for(draft.field),
            current_value=current_value,
            new_value=draft.value,
            context=draft.context,
            timestamp=draft.timestamp,
            selected=True,
            has_change=current_value != draft.value,
        )
