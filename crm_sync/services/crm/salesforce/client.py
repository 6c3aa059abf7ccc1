"""
Salesforce REST API client for Contact records.
"""

from typing import Any

import httpx

from crm_sync.config import settings
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.base_client import SEARCH_LIMIT, CRMApiClient, CRMApiError

logger = get_logger(__name__)

TOKEN_ERROR_CODES = {"INVALID_SESSION_ID", "INVALID_AUTH_HEADER", "SESSION_EXPIRED"}
OAUTH_TOKEN_ERRORS = {"invalid_token", "expired_token", "invalid_grant"}


def escape_soql(value: str) -> str:
    """Escape a value for use inside a quoted SOQL string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class SalesforceClient(CRMApiClient):
    provider = "salesforce"

    def __init__(self, *args, api_version: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_version = api_version or settings.SALESFORCE_API_VERSION

    @property
    def contact_fields(self) -> list[str]:
        return ["Id", *self.field_config.api_field_names(), "Account.Name"]

    def api_base_url(self, credential: Credential) -> str:
        if not credential.instance_url:
            raise CRMApiError(
                "Salesforce credential has no instance_url",
                reason="api_error",
                provider=self.provider,
                recoverable=False,
            )
        return f"{credential.instance_url.rstrip('/')}/services/data/{self.api_version}"

    def is_token_error(self, response: httpx.Response) -> bool:
        if response.status_code == 401:
            return True
        if response.status_code not in (400, 403):
            return False

        body = self._safe_json(response)
        if isinstance(body, list):
            return any(
                isinstance(item, dict) and item.get("errorCode") in TOKEN_ERROR_CODES
                for item in body
            )
        if isinstance(body, dict):
            return body.get("error") in OAUTH_TOKEN_ERRORS
        return False

    async def search_contacts(self, credential: Credential, query: str) -> list[dict[str, Any]]:
        escaped = escape_soql(query)
        soql = (
            f"SELECT {', '.join(self.contact_fields)} "
            "FROM Contact "
            f"WHERE Name LIKE '%{escaped}%' "
            f"OR Email LIKE '%{escaped}%' "
            f"OR Phone LIKE '%{escaped}%' "
            f"LIMIT {SEARCH_LIMIT}"
        )

        async def request(cred: Credential):
            return await self._request_with_retry(
                "GET",
                f"{self.api_base_url(cred)}/query/",
                params={"q": soql},
                headers=self._get_auth_headers(cred.access_token),
            )

        response = await self._call(credential, "search_contacts", request)
        data = self._handle_api_response(response, "search_contacts")

        contacts = [self.format_contact(record) for record in data.get("records", [])]
        return [c for c in contacts if c is not None]

    async def get_contact(
        self, credential: Credential, contact_id: str
    ) -> dict[str, Any] | None:
        async def request(cred: Credential):
            return await self._request_with_retry(
                "GET",
                f"{self.api_base_url(cred)}/sobjects/Contact/{contact_id}",
                params={"fields": ",".join(self.contact_fields)},
                headers=self._get_auth_headers(cred.access_token),
            )

        response = await self._call(credential, "get_contact", request)
        return self.format_contact(self._handle_api_response(response, "get_contact"))

    async def update_contact(
        self, credential: Credential, contact_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        body = self.to_api_fields(updates)

        async def request(cred: Credential):
            return await self._request_with_retry(
                "PATCH",
                f"{self.api_base_url(cred)}/sobjects/Contact/{contact_id}",
                json=body,
                headers=self._get_auth_headers(cred.access_token),
            )

        response = await self._call(credential, "update_contact", request)
        # Salesforce answers a successful PATCH with 204 No Content
        self._handle_api_response(response, "update_contact")

        logger.info("Salesforce contact updated", contact_id=contact_id, fields=sorted(body))
        return await self.get_contact(credential, contact_id)

    def format_contact(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        if not isinstance(payload, dict) or "Id" not in payload:
            return None

        contact = {"id": payload["Id"], **self.canonical_fields(payload)}
        account = payload.get("Account") or {}
        contact["company"] = account.get("Name") if isinstance(account, dict) else None
        contact["display_name"] = self.display_name(
            contact.get("firstname"), contact.get("lastname"), contact.get("email")
        )
        return contact
