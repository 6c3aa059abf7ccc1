"""Fakes and factories shared by the test suite."""

from datetime import UTC, datetime, timedelta

from crm_sync.models.domain.contact_domain import LocalContact, Meeting
from crm_sync.models.domain.credential_domain import Credential


def make_credential(**overrides) -> Credential:
    data = {
        "id": "cred-1",
        "user_id": "user-123",
        "provider": "hubspot",
        "uid": "portal-1",
        "access_token": "access-old",
        "refresh_token": "refresh-old",
        "expires_at": datetime.now(UTC) + timedelta(hours=1),
    }
    data.update(overrides)
    return Credential(**data)


def make_meeting(**overrides) -> Meeting:
    data = {
        "id": "meeting-1",
        "title": "Intro call",
        "transcript": [
            {
                "speaker": "Alice",
                "words": [
                    {"text": "I", "start_timestamp": 83.0},
                    {"text": "moved", "start_timestamp": 83.4},
                    {"text": "to", "start_timestamp": 83.7},
                    {"text": "Globex", "start_timestamp": 84.0},
                ],
            }
        ],
    }
    data.update(overrides)
    return Meeting(**data)


class FakeCredentialStore:
    def __init__(self, credentials: list[Credential] | None = None):
        self.credentials: dict[str, Credential] = {c.id: c for c in credentials or []}
        self.updates: list[dict] = []
        self.fail_lookup_for: set[str] = set()
        self.fail_updates = False
        self.fail_listing = False

    async def get_user_latest_credential(self, user_id: str, provider: str) -> Credential | None:
        if provider in self.fail_lookup_for:
            raise RuntimeError(f"lookup failed for {provider}")
        for credential in self.credentials.values():
            if credential.user_id == user_id and credential.provider == provider:
                return credential
        return None

    async def update_credential_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
        instance_url: str | None = None,
    ) -> Credential:
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        self.updates.append(
            {
                "credential_id": credential_id,
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
                "instance_url": instance_url,
            }
        )
        current = self.credentials[credential_id]
        updated = current.model_copy(
            update={
                "access_token": access_token,
                "refresh_token": refresh_token or current.refresh_token,
                "expires_at": expires_at,
                "instance_url": instance_url or current.instance_url,
            }
        )
        self.credentials[credential_id] = updated
        return updated

    async def list_expiring_credentials(self, provider: str, threshold_seconds: int) -> list[Credential]:
        if self.fail_listing:
            raise RuntimeError("database unavailable")
        cutoff = datetime.now(UTC) + timedelta(seconds=threshold_seconds)
        return [
            c
            for c in self.credentials.values()
            if c.provider == provider and c.expires_at < cutoff
        ]


class FakeContactRepository:
    def __init__(self, contacts: list[LocalContact] | None = None, error: Exception | None = None):
        self.contacts = contacts or []
        self.error = error
        self.queries: list[tuple[str, str]] = []

    async def search_contacts(self, user_id: str, query: str, limit: int = 10) -> list[LocalContact]:
        self.queries.append((user_id, query))
        if self.error:
            raise self.error
        return self.contacts[:limit]


class FakeSuggestionGenerator:
    def __init__(self, drafts=None, error: Exception | None = None):
        self.drafts = drafts or []
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def generate_crm_suggestions(self, provider: str, meeting: Meeting):
        self.calls.append((provider, meeting.id))
        if self.error:
            raise self.error
        return list(self.drafts)
