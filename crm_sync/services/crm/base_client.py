"""
Shared HTTP plumbing for CRM contact APIs.

CRMApiClient owns the httpx client, retry/backoff on transient statuses,
token validation before every call, and the single retry after a forced
token refresh when the provider rejects the access token. Provider
subclasses build the requests and describe their payloads.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from crm_sync.infrastructure.observability.logging import get_logger, log_provider_call
from crm_sync.models.domain.contact_domain import Suggestion
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.field_config import FieldConfig, for_provider
from crm_sync.services.crm.field_mapper import map_fields_for_provider, map_fields_from_api
from crm_sync.services.crm.token_refresher import TokenRefresher, TokenRefreshError

logger = get_logger(__name__)

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

SEARCH_LIMIT = 10


class CRMApiError(Exception):
    """
    Raised by CRM API clients.

    reason is one of: not_found, api_error, http_error,
    token_refresh_failed, unauthorized.
    """

    def __init__(
        self,
        message: str,
        reason: str = "api_error",
        provider: str | None = None,
        status_code: int | None = None,
        response_data: Any = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.provider = provider
        self.status_code = status_code
        self.response_data = response_data
        self.recoverable = recoverable


RequestFn = Callable[[Credential], Awaitable[httpx.Response]]


class CRMApiClient:
    """Base class for a CRM contact API client."""

    provider: str = ""

    def __init__(
        self,
        refresher: TokenRefresher,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.refresher = refresher
        self.field_config: FieldConfig = for_provider(self.provider)
        self._client = self._create_client(timeout, transport)

    def _create_client(
        self, timeout: float, transport: httpx.AsyncBaseTransport | None
    ) -> httpx.AsyncClient:
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), limits=limits, transport=transport
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    async def search_contacts(self, credential: Credential, query: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def get_contact(
        self, credential: Credential, contact_id: str
    ) -> dict[str, Any] | None:
        raise NotImplementedError

    async def update_contact(
        self, credential: Credential, contact_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """Write canonical field updates; returns the updated contact."""
        raise NotImplementedError

    def format_contact(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    def is_token_error(self, response: httpx.Response) -> bool:
        return response.status_code == 401

    # ------------------------------------------------------------------
    # Shared behaviour
    # ------------------------------------------------------------------

    async def apply_updates(
        self, credential: Credential, contact_id: str, suggestions: list[Suggestion]
    ) -> dict[str, Any] | None:
        """
        Commit the selected suggestions in one update.

        Returns:
            The updated contact, or None when no suggestion is selected
        """
        updates = {s.field: s.new_value for s in suggestions if s.selected}
        if not updates:
            logger.info("No selected updates to apply", provider=self.provider, contact_id=contact_id)
            return None

        return await self.update_contact(credential, contact_id, updates)

    def to_api_fields(self, updates: dict[str, Any]) -> dict[str, Any]:
        return map_fields_for_provider(self.provider, updates)

    def canonical_fields(self, properties: dict[str, Any]) -> dict[str, Any]:
        """Every catalogue field of a provider payload, keyed by canonical name."""
        mapped = map_fields_from_api(self.provider, properties)
        return {name: mapped.get(name) for name in self.field_config.field_names()}

    @staticmethod
    def display_name(firstname: str | None, lastname: str | None, email: str | None) -> str:
        name = f"{firstname or ''} {lastname or ''}".strip()
        return name or (email or "")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        "CRM API retrying request",
                        provider=self.provider,
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "CRM API request error, retrying",
                    provider=self.provider,
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("CRM API retry loop exhausted")

    async def _call(self, credential: Credential, operation: str, request: RequestFn) -> httpx.Response:
        """
        Run a request with a valid token.

        On a token rejection the credential is refreshed once and the
        request repeated; a second rejection is reported as unauthorized.
        """
        start_time = time.monotonic()
        try:
            response = await self._call_with_token_refresh(credential, operation, request)
        except CRMApiError as e:
            log_provider_call(
                self.provider, operation, False, (time.monotonic() - start_time) * 1000, e.reason
            )
            raise

        log_provider_call(
            self.provider,
            operation,
            response.is_success,
            (time.monotonic() - start_time) * 1000,
            None if response.is_success else f"HTTP {response.status_code}",
        )
        return response

    async def _call_with_token_refresh(
        self, credential: Credential, operation: str, request: RequestFn
    ) -> httpx.Response:
        try:
            credential = await self.refresher.ensure_valid_token(credential)
        except TokenRefreshError as e:
            raise self._refresh_failed(e) from e

        response = await self._send(credential, operation, request)
        if not self.is_token_error(response):
            return response

        logger.info(
            "CRM token rejected, refreshing and retrying",
            provider=self.provider,
            operation=operation,
            status_code=response.status_code,
            credential_id=credential.id,
        )

        try:
            credential = await self.refresher.force_refresh(credential)
        except TokenRefreshError as e:
            raise self._refresh_failed(e) from e

        response = await self._send(credential, operation, request)
        if self.is_token_error(response):
            raise CRMApiError(
                f"{self.provider} rejected the refreshed token",
                reason="unauthorized",
                provider=self.provider,
                status_code=response.status_code,
                response_data=self._safe_json(response),
                recoverable=False,
            )
        return response

    async def _send(self, credential: Credential, operation: str, request: RequestFn) -> httpx.Response:
        try:
            return await request(credential)
        except httpx.RequestError as e:
            logger.error(
                "CRM API network error",
                provider=self.provider,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CRMApiError(
                f"{self.provider} {operation} failed: {e}",
                reason="http_error",
                provider=self.provider,
            ) from e

    def _refresh_failed(self, error: TokenRefreshError) -> CRMApiError:
        logger.error(
            "Failed to refresh CRM token",
            provider=self.provider,
            credential_id=error.credential_id,
            error=str(error),
        )
        return CRMApiError(
            f"Failed to refresh {self.provider} token: {error}",
            reason="token_refresh_failed",
            provider=self.provider,
            recoverable=error.recoverable,
        )

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        try:
            return response.json() if response.text else {}
        except ValueError:
            return response.text[:200]

    def _handle_api_response(self, response: httpx.Response, operation: str) -> Any:
        """
        Decode a successful response or raise CRMApiError.

        404 maps to not_found, any other failure status to api_error.
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(
                    "Failed to parse CRM API response", provider=self.provider, operation=operation
                )
                raise CRMApiError(
                    f"Invalid response format: {e}", provider=self.provider
                ) from e

        error_data = self._safe_json(response)

        if response.status_code == 404:
            raise CRMApiError(
                f"{self.provider} contact not found",
                reason="not_found",
                provider=self.provider,
                status_code=404,
                response_data=error_data,
                recoverable=False,
            )

        logger.error(
            "CRM API error",
            provider=self.provider,
            operation=operation,
            status_code=response.status_code,
            response_data=error_data,
        )
        raise CRMApiError(
            f"{self.provider} {operation} failed with status {response.status_code}",
            reason="api_error",
            provider=self.provider,
            status_code=response.status_code,
            response_data=error_data,
            recoverable=response.status_code >= 500 or response.status_code == 429,
        )
