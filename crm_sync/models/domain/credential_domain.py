# models/domain/credential_domain.py
"""
CRM OAuth credential domain model.
Tokens on this model are always decrypted; the repository handles encryption.
"""

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel

CRMProvider = Literal["hubspot", "salesforce"]


class Credential(BaseModel):
    """Domain model for a user's CRM OAuth grant (decrypted)."""

    id: str
    user_id: str
    provider: CRMProvider
    uid: str
    access_token: str  # decrypted
    refresh_token: str | None = None  # decrypted
    expires_at: datetime
    email: str | None = None
    instance_url: str | None = None  # Salesforce only

    def is_expired(self) -> bool:
        """Check if access token is expired."""
        return datetime.now(UTC) >= self.expires_at

    def needs_refresh(self, buffer_seconds: int = 300) -> bool:
        """Check if the token expires within the buffer window."""
        return self.expires_at < datetime.now(UTC) + timedelta(seconds=buffer_seconds)

    def can_refresh(self) -> bool:
        """Only credentials holding a refresh token can be refreshed."""
        return bool(self.refresh_token)
