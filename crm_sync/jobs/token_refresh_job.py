"""
Token Refresh Job for proactive CRM OAuth token management.
Runs as a background job to refresh access tokens before they expire, so
user-facing calls rarely pay for a refresh.
"""

import asyncio
import time
from datetime import UTC, datetime, timedelta

from crm_sync.config import settings
from crm_sync.db.pool import db_pool
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.credential_domain import Credential
from crm_sync.services.crm.registry import CRMRegistry, get_registry
from crm_sync.services.crm.token_refresher import CredentialStore, TokenRefresher, TokenRefreshError

logger = get_logger(__name__)


class TokenRefreshMetrics:
    """Metrics tracking for one sweep."""

    def __init__(self, provider: str):
        self.provider = provider
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.credentials_processed = 0
        self.tokens_refreshed = 0
        self.refresh_failures = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0
        self.errors: list[dict] = []

    def record_success(self, credential_id: str, duration_ms: float):
        self.credentials_processed += 1
        self.tokens_refreshed += 1

        logger.debug(
            "Token refresh successful",
            provider=self.provider,
            credential_id=credential_id,
            duration_ms=round(duration_ms, 2),
            job_run="token_refresh",
        )

    def record_failure(self, credential_id: str, error: str):
        self.credentials_processed += 1
        self.refresh_failures += 1
        self.errors.append(
            {
                "credential_id": credential_id,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

        logger.warning(
            "Token refresh failed",
            provider=self.provider,
            credential_id=credential_id,
            error=error,
            job_run="token_refresh",
        )

    def record_processing_error(self, credential_id: str, error: str):
        """Record processing error (timeouts, unexpected exceptions)."""
        self.credentials_processed += 1
        self.processing_errors += 1
        self.errors.append(
            {
                "credential_id": credential_id,
                "error": error,
                "error_type": "processing",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

        logger.error(
            "Token refresh processing error",
            provider=self.provider,
            credential_id=credential_id,
            error=error,
            job_run="token_refresh",
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "token_refresh",
            "provider": self.provider,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "credentials_processed": self.credentials_processed,
            "tokens_refreshed": self.tokens_refreshed,
            "refresh_failures": self.refresh_failures,
            "processing_errors": self.processing_errors,
            "success_rate_percent": round(
                (
                    (self.tokens_refreshed / self.credentials_processed * 100)
                    if self.credentials_processed > 0
                    else 0
                ),
                2,
            ),
            "errors_count": len(self.errors),
        }


class TokenRefreshJob:
    """
    Sweep for one CRM provider.

    Selects the provider's credentials expiring within the threshold that
    hold a refresh token, and refreshes each independently. A failing
    credential is logged and counted; it never stops the sweep.
    """

    def __init__(
        self,
        provider: str,
        refresher: TokenRefresher,
        store: CredentialStore,
        threshold_seconds: int | None = None,
        max_concurrent: int | None = None,
        refresh_timeout_seconds: float | None = None,
    ):
        self.provider = provider
        self.refresher = refresher
        self.store = store
        self.threshold_seconds = (
            settings.TOKEN_SWEEP_THRESHOLD_SECONDS if threshold_seconds is None else threshold_seconds
        )
        self.max_concurrent = max_concurrent or settings.TOKEN_SWEEP_MAX_CONCURRENT
        self.refresh_timeout_seconds = (
            refresh_timeout_seconds or settings.TOKEN_REFRESH_TIMEOUT_SECONDS
        )
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = TokenRefreshMetrics(provider)

    async def run_once(self) -> dict:
        """
        Run a single sweep.

        Returns:
            dict: Sweep metrics. Listing failures are reported in
                "job_error" rather than raised.
        """
        if self.is_running:
            logger.warning(
                "Token refresh job already running, skipping this iteration",
                provider=self.provider,
            )
            return {"skipped": True, "reason": "already_running", "provider": self.provider}

        try:
            self.is_running = True
            self.job_metrics.reset()

            try:
                credentials = await self.store.list_expiring_credentials(
                    self.provider, self.threshold_seconds
                )
            except Exception as e:
                logger.error(
                    "Failed to list expiring credentials",
                    provider=self.provider,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.job_metrics.finalize()
                metrics = self.job_metrics.to_dict()
                metrics["job_error"] = str(e)
                return metrics

            # The store already filters on refresh_token; keep the invariant local too
            credentials = [c for c in credentials if c.can_refresh()]

            if credentials:
                logger.info(
                    "Found credentials with expiring tokens",
                    provider=self.provider,
                    credential_count=len(credentials),
                    threshold_seconds=self.threshold_seconds,
                )

                semaphore = asyncio.Semaphore(self.max_concurrent)
                await asyncio.gather(
                    *(self._refresh_with_semaphore(semaphore, c) for c in credentials),
                    return_exceptions=True,
                )
            else:
                logger.info("No tokens found requiring refresh", provider=self.provider)

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            metrics = self.job_metrics.to_dict()
            logger.info("Token refresh job completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    async def _refresh_with_semaphore(self, semaphore: asyncio.Semaphore, credential: Credential):
        async with semaphore:
            await self._refresh_credential(credential)

    async def _refresh_credential(self, credential: Credential):
        start_time = time.time()

        try:
            await asyncio.wait_for(
                self.refresher.refresh_credential(credential),
                timeout=self.refresh_timeout_seconds,
            )
            self.job_metrics.record_success(credential.id, (time.time() - start_time) * 1000)

        except TimeoutError:
            self.job_metrics.record_processing_error(
                credential.id,
                f"Token refresh timed out after {self.refresh_timeout_seconds}s",
            )

        except TokenRefreshError as e:
            self.job_metrics.record_failure(credential.id, str(e))

        except Exception as e:
            self.job_metrics.record_processing_error(
                credential.id, f"Unexpected error: {type(e).__name__}: {e}"
            )

    def get_job_status(self) -> dict:
        return {
            "job_name": f"{self.provider}_token_refresh",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_seconds": settings.TOKEN_SWEEP_INTERVAL_SECONDS,
            "threshold_seconds": self.threshold_seconds,
            "max_concurrent": self.max_concurrent,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self) -> dict:
        """The job is unhealthy when it has not run for two intervals."""
        now = datetime.now(UTC)
        overdue_threshold = timedelta(seconds=settings.TOKEN_SWEEP_INTERVAL_SECONDS * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health_status = {
            "healthy": not is_overdue,
            "service": f"{self.provider}_token_refresh_job",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
        }

        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
            )

        return health_status


def build_token_refresh_jobs(
    registry: CRMRegistry | None = None, providers: list[str] | None = None
) -> list[TokenRefreshJob]:
    registry = registry or get_registry()
    return [
        TokenRefreshJob(provider, registry.refresher(provider), registry.credential_store)
        for provider in (providers or registry.providers())
    ]


async def run_token_refresh_cycle(jobs: list[TokenRefreshJob]) -> list[dict]:
    """Run one sweep per provider; a failing provider does not affect the others."""
    results = []
    for job in jobs:
        try:
            results.append(await job.run_once())
        except Exception as e:
            logger.error(
                "Token refresh sweep crashed",
                provider=job.provider,
                error=str(e),
                error_type=type(e).__name__,
            )
            results.append({"provider": job.provider, "job_error": str(e)})
    return results


async def start_token_refresh_scheduler(
    providers: list[str] | None = None, registry: CRMRegistry | None = None
):
    """
    Run the proactive refresh sweeps forever.

    Intended for a dedicated worker process (see crm_sync.jobs.worker).
    """
    if registry is None and not db_pool.initialized:
        await db_pool.initialize()

    jobs = build_token_refresh_jobs(registry, providers)
    interval = settings.TOKEN_SWEEP_INTERVAL_SECONDS

    logger.info(
        "Starting token refresh job scheduler",
        providers=[job.provider for job in jobs],
        interval_seconds=interval,
    )

    try:
        while True:
            for metrics in await run_token_refresh_cycle(jobs):
                if not metrics.get("skipped", False):
                    logger.info("Token refresh job cycle completed", **metrics)

            await asyncio.sleep(interval)
    finally:
        if registry is None:
            await db_pool.close()
