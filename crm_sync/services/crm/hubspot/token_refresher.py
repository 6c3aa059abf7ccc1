"""HubSpot OAuth token refresh."""

from datetime import UTC, datetime, timedelta
from typing import Any

from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.token_refresher import TokenRefresher, TokenUpdate

HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"


class HubSpotTokenRefresher(TokenRefresher):
    provider = "hubspot"
    token_url = HUBSPOT_TOKEN_URL

    def parse_token_response(self, response: dict[str, Any], credential: Credential) -> TokenUpdate:
        # HubSpot rotates refresh tokens; keep the old one if none came back
        return TokenUpdate(
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token") or credential.refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=int(response["expires_in"])),
        )
