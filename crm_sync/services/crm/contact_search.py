"""
Hybrid contact search across local storage and connected CRMs.

Local contacts are always searched; each CRM the user has connected is
searched concurrently under one shared timeout. Results are merged
so that every email address appears once, preferring the richest source
while keeping the link to the local contact.
"""

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Mapping
from typing import Any

from crm_sync.config import settings
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.contact_domain import CanonicalContact, ContactSource, LocalContact
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.repositories.contact_repository import ContactRepository
from crm_sync.services.crm.base_client import CRMApiClient
from crm_sync.services.crm.token_refresher import CredentialStore

logger = get_logger(__name__)

# Time a cancelled source gets to unwind before search stops waiting on it
CANCEL_GRACE_SECONDS = 0.05

# Merge winner order; earlier sources carry richer data
SOURCE_PRIORITY: tuple[ContactSource, ...] = (
    ContactSource.SALESFORCE,
    ContactSource.HUBSPOT,
    ContactSource.LOCAL,
)

# Field holding the job title in each CRM's formatted contact
TITLE_FIELDS = {
    ContactSource.HUBSPOT: "jobtitle",
    ContactSource.SALESFORCE: "title",
}


def normalize_local_contact(contact: LocalContact) -> CanonicalContact:
    return CanonicalContact(
        id=f"local:{contact.id}",
        source=ContactSource.LOCAL,
        contact_id=contact.id,
        name=contact.name or contact.email,
        email=contact.email,
    )


def normalize_crm_contact(source: ContactSource, contact: Mapping[str, Any]) -> CanonicalContact | None:
    if not isinstance(contact, Mapping) or contact.get("id") is None:
        return None

    crm_id = str(contact["id"])
    return CanonicalContact(
        id=f"{source.value}:{crm_id}",
        source=source,
        crm_id=crm_id,
        name=contact.get("display_name"),
        email=contact.get("email"),
        company=contact.get("company"),
        title=contact.get(TITLE_FIELDS.get(source, "title")),
        crm_data={str(key): value for key, value in contact.items()},
    )


def _priority(contact: CanonicalContact) -> tuple[int, str]:
    return (SOURCE_PRIORITY.index(contact.source), contact.id)


def merge_group(contacts: list[CanonicalContact]) -> CanonicalContact:
    """Pick the winner of a same-email group and link it to the local contact."""
    winner = min(contacts, key=_priority)
    if winner.source == ContactSource.LOCAL:
        return winner

    local = min(
        (c for c in contacts if c.source == ContactSource.LOCAL),
        key=_priority,
        default=None,
    )
    if local is None:
        return winner
    return dataclasses.replace(winner, contact_id=local.contact_id)


def merge_and_deduplicate(contacts: list[CanonicalContact]) -> list[CanonicalContact]:
    """
    One contact per lower-cased email; contacts without email pass through.

    The result is sorted by lower-cased name, then id, so the output does
    not depend on which source answered first.
    """
    by_email: dict[str, list[CanonicalContact]] = {}
    no_email: list[CanonicalContact] = []

    for contact in contacts:
        if contact.email:
            by_email.setdefault(contact.email.lower(), []).append(contact)
        else:
            no_email.append(contact)

    merged = [merge_group(group) for group in by_email.values()]
    return sorted(merged + no_email, key=lambda c: ((c.name or "").lower(), c.id))


class ContactSearchService:
    def __init__(
        self,
        credential_store: CredentialStore,
        contact_repository: ContactRepository,
        clients: Mapping[str, CRMApiClient],
        *,
        timeout_seconds: float | None = None,
    ):
        for provider in clients:
            if not any(source.value == provider for source in SOURCE_PRIORITY):
                raise ValueError(f"Provider '{provider}' has no merge priority")

        self.credential_store = credential_store
        self.contact_repository = contact_repository
        self.clients = dict(clients)
        self.timeout_seconds = (
            settings.CONTACT_SEARCH_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )

    async def search(self, user_id: str, query: str) -> list[CanonicalContact]:
        """
        Search every available source and merge the results.

        Never raises: failed, slow or disconnected sources contribute no
        results.
        """
        query = (query or "").strip()
        if not query:
            return []

        start_time = time.monotonic()
        credentials = await self._load_credentials(user_id)

        searches: dict[str, Awaitable[list[CanonicalContact]]] = {
            ContactSource.LOCAL.value: self._guarded(
                ContactSource.LOCAL.value, self._search_local(user_id, query)
            )
        }
        for provider, credential in credentials.items():
            searches[provider] = self._guarded(
                provider, self._crm_search(provider, credential, query)
            )

        results = await self._gather_with_timeout(searches)
        contacts = merge_and_deduplicate([c for batch in results for c in batch])

        logger.info(
            "Contact search completed",
            user_id=user_id,
            sources=sorted(searches),
            result_count=len(contacts),
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return contacts

    async def _load_credentials(self, user_id: str) -> dict[str, Credential]:
        providers = list(self.clients)
        lookups = await asyncio.gather(
            *(self.credential_store.get_user_latest_credential(user_id, p) for p in providers),
            return_exceptions=True,
        )

        credentials: dict[str, Credential] = {}
        for provider, result in zip(providers, lookups, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Credential lookup failed, treating provider as not connected",
                    user_id=user_id,
                    provider=provider,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            elif result is not None:
                credentials[provider] = result
        return credentials

    async def _gather_with_timeout(
        self, searches: dict[str, Awaitable[list[CanonicalContact]]]
    ) -> list[list[CanonicalContact]]:
        tasks = {name: asyncio.create_task(coro) for name, coro in searches.items()}

        done, pending = await asyncio.wait(tasks.values(), timeout=self.timeout_seconds)

        for name, task in tasks.items():
            if task in pending:
                logger.warning(
                    "Contact source timed out",
                    source=name,
                    timeout_seconds=self.timeout_seconds,
                )
                task.cancel()

        if pending:
            for task in pending:
                task.add_done_callback(_consume_outcome)
            await asyncio.wait(pending, timeout=CANCEL_GRACE_SECONDS)

        return [task.result() for task in done if not task.cancelled() and task.exception() is None]

    async def _guarded(
        self, source: str, search: Awaitable[list[CanonicalContact]]
    ) -> list[CanonicalContact]:
        try:
            return await search
        except Exception as e:
            logger.warning(
                "Contact source search failed",
                source=source,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

    async def _search_local(self, user_id: str, query: str) -> list[CanonicalContact]:
        contacts = await self.contact_repository.search_contacts(user_id, query)
        return [normalize_local_contact(c) for c in contacts]

    async def _crm_search(
        self, provider: str, credential: Credential, query: str
    ) -> list[CanonicalContact]:
        source = ContactSource(provider)
        contacts = await self.clients[provider].search_contacts(credential, query)
        normalized = (normalize_crm_contact(source, c) for c in contacts)
        return [c for c in normalized if c is not None]


def _consume_outcome(task: asyncio.Task) -> None:
    # A source that outlives the grace period settles on its own
    if not task.cancelled():
        task.exception()
