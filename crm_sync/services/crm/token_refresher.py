"""
OAuth access-token lifecycle for CRM credentials.

TokenRefresher holds the shared policy (form-encoded refresh grant, lazy
refresh before expiry, persistence, per-credential serialization). Each CRM
subclass only supplies its token URL, client credentials and the parsing of
its token response.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from crm_sync.config import settings
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.credential_domain import Credential

logger = get_logger(__name__)

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class TokenRefreshError(Exception):
    """Raised when a credential cannot be refreshed or persisted."""

    def __init__(
        self,
        message: str,
        reason: str = "refresh_failed",
        provider: str | None = None,
        credential_id: str | None = None,
        status_code: int | None = None,
        response_data: Any = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.provider = provider
        self.credential_id = credential_id
        self.status_code = status_code
        self.response_data = response_data
        self.recoverable = recoverable


class CredentialStore(Protocol):
    async def get_user_latest_credential(self, user_id: str, provider: str) -> Credential | None: ...

    async def update_credential_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
        instance_url: str | None = None,
    ) -> Credential: ...

    async def list_expiring_credentials(
        self, provider: str, threshold_seconds: int
    ) -> list[Credential]: ...


@dataclass(slots=True)
class TokenUpdate:
    """Fields to persist after a successful refresh grant."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime
    instance_url: str | None = None


class TokenRefresher:
    """
    Base class for a CRM's token refresher.

    Subclasses set provider and token_url, and implement
    parse_token_response().
    """

    provider: str = ""
    token_url: str = ""

    def __init__(
        self,
        store: CredentialStore,
        client_id: str | None,
        client_secret: str | None,
        *,
        buffer_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.buffer_seconds = (
            settings.TOKEN_LAZY_REFRESH_BUFFER_SECONDS if buffer_seconds is None else buffer_seconds
        )
        self._transport = transport
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._latest: dict[str, Credential] = {}

    def parse_token_response(self, response: dict[str, Any], credential: Credential) -> TokenUpdate:
        raise NotImplementedError

    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Returns:
            dict: Decoded token endpoint response

        Raises:
            TokenRefreshError: On a non-200 response or a network failure
        """
        data = {
            "grant_type": "refresh_token",
            "client_id": self.client_id or "",
            "client_secret": self.client_secret or "",
            "refresh_token": refresh_token,
        }

        try:
            response = await self._post_with_retry(data)
        except httpx.RequestError as e:
            logger.error(
                "Network error during token refresh",
                provider=self.provider,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TokenRefreshError(
                f"Network error during {self.provider} token refresh: {e}",
                provider=self.provider,
            ) from e

        if response.status_code != 200:
            try:
                error_data = response.json()
            except ValueError:
                error_data = response.text[:200]

            logger.error(
                "Token refresh rejected",
                provider=self.provider,
                status_code=response.status_code,
                response_data=error_data,
            )
            raise TokenRefreshError(
                f"{self.provider} token endpoint returned {response.status_code}",
                provider=self.provider,
                status_code=response.status_code,
                response_data=error_data,
                recoverable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TokenRefreshError(
                f"{self.provider} token endpoint returned a non-JSON body",
                provider=self.provider,
                status_code=response.status_code,
            ) from e

    async def _post_with_retry(self, data: dict) -> httpx.Response:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(self.token_url, data=data, headers=headers)

                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        wait_time = BACKOFF_FACTOR**attempt
                        logger.warning(
                            "Token endpoint transient status",
                            provider=self.provider,
                            status_code=response.status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    return response

                except httpx.RequestError as exc:
                    last_error = exc

                    if attempt == MAX_RETRIES:
                        raise

                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Token endpoint request error, retrying",
                        provider=self.provider,
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(wait_time)

        raise last_error or TokenRefreshError("Token refresh failed: Unknown error")

    async def refresh_credential(self, credential: Credential) -> Credential:
        """
        Refresh a credential's access token and persist the result.

        Raises:
            TokenRefreshError: If the grant fails, the response carries no
                usable token or expiry, or persistence fails
        """
        if not credential.can_refresh():
            raise TokenRefreshError(
                "Credential has no refresh token",
                provider=self.provider,
                credential_id=credential.id,
                recoverable=False,
            )

        response = await self.refresh_token(credential.refresh_token)

        try:
            update = self.parse_token_response(response, credential)
        except (KeyError, TypeError, ValueError) as e:
            raise TokenRefreshError(
                f"Unexpected {self.provider} token response: {e}",
                provider=self.provider,
                credential_id=credential.id,
                response_data=response,
            ) from e

        if not update.access_token:
            raise TokenRefreshError(
                "Token response has no access_token",
                provider=self.provider,
                credential_id=credential.id,
            )

        # Never persist an expiry that is already behind us
        if update.expires_at <= datetime.now(UTC):
            logger.error(
                "Token response expiry is not in the future",
                provider=self.provider,
                credential_id=credential.id,
                expires_at=update.expires_at.isoformat(),
            )
            raise TokenRefreshError(
                "Refreshed token is already expired",
                provider=self.provider,
                credential_id=credential.id,
            )

        try:
            refreshed = await self.store.update_credential_tokens(
                credential.id,
                access_token=update.access_token,
                refresh_token=update.refresh_token,
                expires_at=update.expires_at,
                instance_url=update.instance_url,
            )
        except Exception as e:
            logger.error(
                "Failed to persist refreshed credential",
                provider=self.provider,
                credential_id=credential.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TokenRefreshError(
                f"Failed to persist refreshed credential: {e}",
                provider=self.provider,
                credential_id=credential.id,
            ) from e

        self._prune_expired()
        self._latest[credential.id] = refreshed

        logger.info(
            "Credential refreshed",
            provider=self.provider,
            credential_id=credential.id,
            expires_at=refreshed.expires_at.isoformat(),
        )
        return refreshed

    @asynccontextmanager
    async def _exclusive(self, credential_id: str):
        """Serialize refreshes of one credential; the lock lives only while in use."""
        self._prune_expired()
        lock = self._locks.setdefault(credential_id, asyncio.Lock())
        self._lock_users[credential_id] = self._lock_users.get(credential_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[credential_id] -= 1
            if not self._lock_users[credential_id]:
                del self._lock_users[credential_id]
                del self._locks[credential_id]

    def _prune_expired(self) -> None:
        # An expired credential can no longer be handed to any caller
        for credential_id in [cid for cid, c in self._latest.items() if c.is_expired()]:
            del self._latest[credential_id]

    async def ensure_valid_token(self, credential: Credential) -> Credential:
        """
        Return a credential whose token stays valid past the buffer window,
        refreshing it first when needed.

        Concurrent callers for the same credential share one refresh.
        """
        if not credential.needs_refresh(self.buffer_seconds):
            return credential

        async with self._exclusive(credential.id):
            latest = self._latest.get(credential.id)
            if latest is not None and not latest.needs_refresh(self.buffer_seconds):
                return latest

            logger.info(
                "Token expiring soon, refreshing",
                provider=self.provider,
                credential_id=credential.id,
                expires_at=credential.expires_at.isoformat(),
            )
            return await self.refresh_credential(credential)

    async def force_refresh(self, credential: Credential) -> Credential:
        """
        Refresh after the provider rejected the access token.

        If another caller already replaced the rejected token, that newer
        credential is returned instead of refreshing again.
        """
        async with self._exclusive(credential.id):
            latest = self._latest.get(credential.id)
            if (
                latest is not None
                and latest.access_token != credential.access_token
                and not latest.is_expired()
            ):
                return latest

            return await self.refresh_credential(credential)
