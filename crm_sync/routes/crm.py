"""
CRM API Routes
HTTP endpoints for contact search, suggestion generation and applying
reviewed updates to HubSpot or Salesforce.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from crm_sync.auth.verify import auth_dependency
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.api.crm_request import ApplyUpdatesRequest, GenerateSuggestionsRequest
from crm_sync.models.api.crm_response import (
    ApplyUpdatesResponse,
    ContactResponse,
    ContactSearchResponse,
    ContactSuggestionsResponse,
    PreviewSuggestionsResponse,
    SuggestionResponse,
)
from crm_sync.models.domain.contact_domain import Meeting, Suggestion
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.ai_extraction_service import AIExtractionError
from crm_sync.services.crm.base_client import CRMApiError
from crm_sync.services.crm.field_config import UnknownProviderError, for_provider
from crm_sync.services.crm.prompt_builder import SuggestionParseError
from crm_sync.services.crm.registry import CRMRegistry, get_registry
from crm_sync.services.crm.token_refresher import TokenRefreshError

logger = get_logger(__name__)

router = APIRouter(prefix="/crm", tags=["crm"])


def _user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id


def _check_provider(registry: CRMRegistry, provider: str) -> None:
    if provider not in registry.providers():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "unknown_provider", "message": f"Unknown CRM provider: {provider}"},
        )


async def _require_credential(registry: CRMRegistry, user_id: str, provider: str) -> Credential:
    credential = await registry.credential_store.get_user_latest_credential(user_id, provider)
    if credential is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "crm_not_connected", "message": f"{provider} is not connected"},
        )
    return credential


def _to_http_error(e: Exception, provider: str) -> HTTPException:
    """Map CRM pipeline errors to HTTP responses."""
    if isinstance(e, UnknownProviderError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "unknown_provider", "message": str(e)},
        )
    if isinstance(e, CRMApiError):
        if e.reason == "not_found":
            return HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": "not_found", "message": f"{provider} contact not found"},
            )
        if e.reason in ("token_refresh_failed", "unauthorized"):
            return HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"error": e.reason, "message": f"Reconnect {provider} to continue"},
            )
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": e.reason, "message": f"{provider} request failed"},
        )
    if isinstance(e, TokenRefreshError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "token_refresh_failed", "message": f"Reconnect {provider} to continue"},
        )
    if isinstance(e, SuggestionParseError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": e.reason, "message": "AI returned an unusable response"},
        )
    if isinstance(e, AIExtractionError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "ai_extraction_failed", "message": "AI extraction failed"},
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal_error", "message": "Unexpected error"},
    )


_HANDLED_ERRORS = (
    UnknownProviderError,
    CRMApiError,
    TokenRefreshError,
    SuggestionParseError,
    AIExtractionError,
)


def _meeting(request: GenerateSuggestionsRequest) -> Meeting:
    payload = request.meeting
    return Meeting(id=payload.id, title=payload.title, transcript=payload.transcript)


def _suggestion_response(suggestion: Suggestion) -> SuggestionResponse:
    return SuggestionResponse(
        field=suggestion.field,
        label=suggestion.label,
        current_value=suggestion.current_value,
        new_value=suggestion.new_value,
        context=suggestion.context,
        timestamp=suggestion.timestamp,
        selected=suggestion.selected,
        has_change=suggestion.has_change,
    )


@router.get("/contacts/search", response_model=ContactSearchResponse)
async def search_contacts(
    q: str = Query(..., description="Name or email fragment"),
    claims: dict = Depends(auth_dependency),
    registry: CRMRegistry = Depends(get_registry),
):
    """Search local contacts and every connected CRM."""
    user_id = _user_id(claims)

    contacts = await registry.contact_search().search(user_id, q)

    return ContactSearchResponse(
        contacts=[ContactResponse(**contact.to_dict()) for contact in contacts],
        total_count=len(contacts),
    )


@router.post(
    "/{provider}/contacts/{contact_id}/suggestions",
    response_model=ContactSuggestionsResponse,
)
async def generate_contact_suggestions(
    provider: str,
    contact_id: str,
    request: GenerateSuggestionsRequest,
    claims: dict = Depends(auth_dependency),
    registry: CRMRegistry = Depends(get_registry),
):
    """Suggest CRM contact updates from a meeting transcript."""
    user_id = _user_id(claims)
    _check_provider(registry, provider)
    credential = await _require_credential(registry, user_id, provider)

    try:
        result = await registry.suggestion_engine(provider).generate_suggestions(
            credential, contact_id, _meeting(request)
        )
    except _HANDLED_ERRORS as e:
        logger.error(
            "Suggestion generation failed",
            user_id=user_id,
            provider=provider,
            contact_id=contact_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise _to_http_error(e, provider) from e

    return ContactSuggestionsResponse(
        provider=provider,
        contact=result.contact,
        suggestions=[_suggestion_response(s) for s in result.suggestions],
    )


@router.post("/{provider}/suggestions/preview", response_model=PreviewSuggestionsResponse)
async def preview_suggestions(
    provider: str,
    request: GenerateSuggestionsRequest,
    claims: dict = Depends(auth_dependency),
    registry: CRMRegistry = Depends(get_registry),
):
    """Extract values for a provider's fields before a contact is chosen."""
    user_id = _user_id(claims)
    _check_provider(registry, provider)

    try:
        suggestions = await registry.suggestion_engine(provider).generate_suggestions_from_meeting(
            _meeting(request)
        )
    except _HANDLED_ERRORS as e:
        logger.error(
            "Suggestion preview failed",
            user_id=user_id,
            provider=provider,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise _to_http_error(e, provider) from e

    return PreviewSuggestionsResponse(
        provider=provider,
        suggestions=[_suggestion_response(s) for s in suggestions],
    )


@router.post(
    "/{provider}/contacts/{contact_id}/updates",
    response_model=ApplyUpdatesResponse,
)
async def apply_contact_updates(
    provider: str,
    contact_id: str,
    request: ApplyUpdatesRequest,
    claims: dict = Depends(auth_dependency),
    registry: CRMRegistry = Depends(get_registry),
):
    """Write the selected suggestions to the CRM contact."""
    user_id = _user_id(claims)
    _check_provider(registry, provider)
    credential = await _require_credential(registry, user_id, provider)

    field_config = for_provider(provider)
    suggestions = [
        Suggestion(
            field=item.field,
            label=item.label or field_config.label_for(item.field),
            current_value=None,
            new_value=item.new_value,
            selected=item.selected,
        )
        for item in request.suggestions
    ]

    try:
        contact = await registry.suggestion_engine(provider).apply_updates(
            credential, contact_id, suggestions
        )
    except _HANDLED_ERRORS as e:
        logger.error(
            "Applying CRM updates failed",
            user_id=user_id,
            provider=provider,
            contact_id=contact_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise _to_http_error(e, provider) from e

    return ApplyUpdatesResponse(provider=provider, updated=contact is not None, contact=contact)
