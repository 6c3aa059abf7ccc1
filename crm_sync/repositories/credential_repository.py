"""
Credential store for CRM OAuth grants.

Reads and writes the user_credentials table. Tokens are encrypted with
Fernet before they are written and decrypted when rows are loaded.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from crm_sync.db.helpers import fetch_all, fetch_one, with_db_retry
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.infrastructure.encryption_service import (
    decrypt_oauth_tokens,
    encrypt_oauth_tokens,
)

logger = get_logger(__name__)

_CREDENTIAL_COLUMNS = """
    id, user_id, provider, uid, access_token, refresh_token,
    expires_at, email, instance_url
"""


def _row_to_credential(row: dict[str, Any]) -> Credential:
    access_token, refresh_token = decrypt_oauth_tokens(
        encrypted_access=row["access_token"], encrypted_refresh=row.get("refresh_token")
    )
    return Credential(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        provider=row["provider"],
        uid=str(row["uid"]),
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=row["expires_at"],
        email=row.get("email"),
        instance_url=row.get("instance_url"),
    )


class CredentialRepository:
    """Persistence for CRM credentials."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_user_latest_credential(self, user_id: str, provider: str) -> Credential | None:
        """Most recently created credential of a provider for the user, if any."""
        query = f"""
            SELECT {_CREDENTIAL_COLUMNS}
            FROM user_credentials
            WHERE user_id = %s AND provider = %s
            ORDER BY inserted_at DESC
            LIMIT 1
        """

        row = await fetch_one(query, (user_id, provider))
        if not row:
            logger.debug("No credential found", user_id=user_id, provider=provider)
            return None

        return _row_to_credential(row)

    async def update_credential_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
        instance_url: str | None = None,
    ) -> Credential:
        """
        Persist refreshed tokens in a single UPDATE ... RETURNING.

        A None refresh_token or instance_url keeps the stored value.

        Raises:
            LookupError: If the credential no longer exists
        """
        encrypted_access, encrypted_refresh = encrypt_oauth_tokens(access_token, refresh_token)

        query = f"""
            UPDATE user_credentials
            SET access_token = %s,
                refresh_token = COALESCE(%s, refresh_token),
                expires_at = %s,
                instance_url = COALESCE(%s, instance_url),
                updated_at = NOW()
            WHERE id = %s
            RETURNING {_CREDENTIAL_COLUMNS}
        """

        row = await fetch_one(
            query,
            (encrypted_access, encrypted_refresh, expires_at, instance_url, credential_id),
        )
        if not row:
            raise LookupError(f"Credential {credential_id} not found")

        logger.info(
            "Credential tokens updated",
            credential_id=credential_id,
            provider=row["provider"],
            expires_at=expires_at.isoformat(),
        )

        return _row_to_credential(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_expiring_credentials(
        self, provider: str, threshold_seconds: int
    ) -> list[Credential]:
        """Credentials of a provider expiring within the threshold that can be refreshed."""
        cutoff = datetime.now(UTC) + timedelta(seconds=threshold_seconds)

        query = f"""
            SELECT {_CREDENTIAL_COLUMNS}
            FROM user_credentials
            WHERE provider = %s
              AND expires_at < %s
              AND refresh_token IS NOT NULL
            ORDER BY expires_at ASC
        """

        rows = await fetch_all(query, (provider, cutoff))

        logger.debug(
            "Found credentials expiring soon",
            provider=provider,
            count=len(rows),
            threshold_seconds=threshold_seconds,
        )

        return [_row_to_credential(row) for row in rows]
