"""Salesforce OAuth token refresh."""

from datetime import UTC, datetime, timedelta
from typing import Any

from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.token_refresher import TokenRefresher, TokenUpdate

SALESFORCE_TOKEN_URL = "https://login.salesforce.com/services/oauth2/token"

# Salesforce does not report a lifetime; sessions default to two hours
DEFAULT_TOKEN_LIFETIME_SECONDS = 7200


class SalesforceTokenRefresher(TokenRefresher):
    provider = "salesforce"
    token_url = SALESFORCE_TOKEN_URL

    def parse_token_response(self, response: dict[str, Any], credential: Credential) -> TokenUpdate:
        issued_at = response.get("issued_at")
        if isinstance(issued_at, str) and issued_at:
            # issued_at is epoch milliseconds as a string
            expires_at = datetime.fromtimestamp(
                int(issued_at) // 1000 + DEFAULT_TOKEN_LIFETIME_SECONDS, tz=UTC
            )
        else:
            expires_at = datetime.now(UTC) + timedelta(seconds=DEFAULT_TOKEN_LIFETIME_SECONDS)

        # Salesforce refresh tokens are not rotated
        return TokenUpdate(
            access_token=response["access_token"],
            refresh_token=credential.refresh_token,
            expires_at=expires_at,
            instance_url=response.get("instance_url") or credential.instance_url,
        )
