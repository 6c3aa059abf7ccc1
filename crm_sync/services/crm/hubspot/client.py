"""
HubSpot CRM v3 contacts client.
"""

from typing import Any

from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.base_client import SEARCH_LIMIT, CRMApiClient

logger = get_logger(__name__)

HUBSPOT_API_BASE_URL = "https://api.hubapi.com"
CONTACTS_PATH = "/crm/v3/objects/contacts"


class HubSpotClient(CRMApiClient):
    provider = "hubspot"
    base_url = HUBSPOT_API_BASE_URL

    async def search_contacts(self, credential: Credential, query: str) -> list[dict[str, Any]]:
        url = f"{self.base_url}{CONTACTS_PATH}/search"
        body = {
            "query": query,
            "limit": SEARCH_LIMIT,
            "properties": self.field_config.api_field_names(),
        }

        async def request(cred: Credential):
            return await self._request_with_retry(
                "POST", url, json=body, headers=self._get_auth_headers(cred.access_token)
            )

        response = await self._call(credential, "search_contacts", request)
        data = self._handle_api_response(response, "search_contacts")

        contacts = [self.format_contact(item) for item in data.get("results", [])]
        return [c for c in contacts if c is not None]

    async def get_contact(
        self, credential: Credential, contact_id: str
    ) -> dict[str, Any] | None:
        url = f"{self.base_url}{CONTACTS_PATH}/{contact_id}"
        params = {"properties": ",".join(self.field_config.api_field_names())}

        async def request(cred: Credential):
            return await self._request_with_retry(
                "GET", url, params=params, headers=self._get_auth_headers(cred.access_token)
            )

        response = await self._call(credential, "get_contact", request)
        return self.format_contact(self._handle_api_response(response, "get_contact"))

    async def update_contact(
        self, credential: Credential, contact_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        url = f"{self.base_url}{CONTACTS_PATH}/{contact_id}"
        body = {"properties": self.to_api_fields(updates)}

        async def request(cred: Credential):
            return await self._request_with_retry(
                "PATCH", url, json=body, headers=self._get_auth_headers(cred.access_token)
            )

        response = await self._call(credential, "update_contact", request)
        contact = self.format_contact(self._handle_api_response(response, "update_contact"))

        logger.info(
            "HubSpot contact updated",
            contact_id=contact_id,
            fields=sorted(body["properties"]),
        )
        return contact

    def format_contact(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        if not isinstance(payload, dict) or "id" not in payload:
            return None

        properties = payload.get("properties") or {}
        contact = {"id": str(payload["id"]), **self.canonical_fields(properties)}
        contact["display_name"] = self.display_name(
            contact.get("firstname"), contact.get("lastname"), contact.get("email")
        )
        return contact
