"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the appropriate scheduler.

    python -m crm_sync.jobs.worker hubspot_token_refresh
"""

import asyncio
import functools
import os
import sys
from collections.abc import Awaitable, Callable

from crm_sync.config import settings
from crm_sync.infrastructure.observability.logging import get_logger, setup_logging
from crm_sync.jobs.token_refresh_job import start_token_refresh_scheduler

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "hubspot_token_refresh": functools.partial(start_token_refresh_scheduler, ["hubspot"]),
    "salesforce_token_refresh": functools.partial(start_token_refresh_scheduler, ["salesforce"]),
    "token_refresh": start_token_refresh_scheduler,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "token_refresh").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
