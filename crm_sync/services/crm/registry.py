"""
Default wiring of CRM components.

Components are built on first use so importing the package never needs
credentials, a database or an OpenAI key. Tests pass their own store,
repository, AI service and HTTP transport.
"""

import httpx

from crm_sync.config import settings
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.contact_domain import Meeting, SuggestionDraft
from crm_sync.repositories.contact_repository import ContactRepository
from crm_sync.repositories.credential_repository import CredentialRepository
from crm_sync.services.crm.ai_extraction_service import AIExtractionService
from crm_sync.services.crm.base_client import CRMApiClient
from crm_sync.services.crm.contact_search import ContactSearchService
from crm_sync.services.crm.field_config import UnknownProviderError, for_provider
from crm_sync.services.crm.hubspot.client import HubSpotClient
from crm_sync.services.crm.hubspot.token_refresher import HubSpotTokenRefresher
from crm_sync.services.crm.salesforce.client import SalesforceClient
from crm_sync.services.crm.salesforce.token_refresher import SalesforceTokenRefresher
from crm_sync.services.crm.suggestions import SuggestionEngine, SuggestionGenerator
from crm_sync.services.crm.token_refresher import CredentialStore, TokenRefresher

logger = get_logger(__name__)

PROVIDERS = {
    "hubspot": (HubSpotTokenRefresher, HubSpotClient),
    "salesforce": (SalesforceTokenRefresher, SalesforceClient),
}


def _client_credentials(provider: str) -> tuple[str | None, str | None]:
    if provider == "hubspot":
        return settings.HUBSPOT_CLIENT_ID, settings.HUBSPOT_CLIENT_SECRET
    return settings.SALESFORCE_CLIENT_ID, settings.SALESFORCE_CLIENT_SECRET


class CRMRegistry:
    """Builds and caches one refresher, client and engine per provider."""

    def __init__(
        self,
        credential_store: CredentialStore | None = None,
        contact_repository: ContactRepository | None = None,
        ai_service: SuggestionGenerator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credential_store = credential_store or CredentialRepository()
        self.contact_repository = contact_repository or ContactRepository()
        self._ai_service = ai_service
        self._transport = transport
        self._refreshers: dict[str, TokenRefresher] = {}
        self._clients: dict[str, CRMApiClient] = {}
        self._engines: dict[str, SuggestionEngine] = {}
        self._contact_search: ContactSearchService | None = None

    @staticmethod
    def providers() -> list[str]:
        return list(PROVIDERS)

    @staticmethod
    def _check(provider: str) -> None:
        if provider not in PROVIDERS:
            raise UnknownProviderError(provider)

    @property
    def ai_service(self) -> SuggestionGenerator:
        if self._ai_service is None:
            self._ai_service = AIExtractionService()
        return self._ai_service

    async def generate_crm_suggestions(self, provider: str, meeting: Meeting) -> list[SuggestionDraft]:
        # Resolved per call so engines can be built without an OpenAI key
        return await self.ai_service.generate_crm_suggestions(provider, meeting)

    def refresher(self, provider: str) -> TokenRefresher:
        self._check(provider)
        if provider not in self._refreshers:
            refresher_cls, _ = PROVIDERS[provider]
            client_id, client_secret = _client_credentials(provider)
            self._refreshers[provider] = refresher_cls(
                self.credential_store, client_id, client_secret, transport=self._transport
            )
        return self._refreshers[provider]

    def client(self, provider: str) -> CRMApiClient:
        self._check(provider)
        if provider not in self._clients:
            _, client_cls = PROVIDERS[provider]
            self._clients[provider] = client_cls(self.refresher(provider), transport=self._transport)
        return self._clients[provider]

    def suggestion_engine(self, provider: str) -> SuggestionEngine:
        self._check(provider)
        if provider not in self._engines:
            self._engines[provider] = SuggestionEngine(
                self.client(provider), for_provider(provider), self
            )
        return self._engines[provider]

    def contact_search(self) -> ContactSearchService:
        if self._contact_search is None:
            self._contact_search = ContactSearchService(
                self.credential_store,
                self.contact_repository,
                {provider: self.client(provider) for provider in PROVIDERS},
            )
        return self._contact_search

    async def close(self) -> None:
        for provider, client in self._clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning("Error closing CRM client", provider=provider, error=str(e))
        self._clients.clear()
        self._engines.clear()
        self._contact_search = None


_registry: CRMRegistry | None = None


def get_registry() -> CRMRegistry:
    global _registry
    if _registry is None:
        _registry = CRMRegistry()
    return _registry


async def close_registry() -> None:
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None
