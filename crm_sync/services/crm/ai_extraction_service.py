"""
OpenAI adapter for extracting CRM contact facts from meeting transcripts.
"""

import asyncio
from typing import Any

import openai
from openai import AsyncOpenAI

from crm_sync.config import settings
from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.contact_domain import Meeting, SuggestionDraft
from crm_sync.services.crm.prompt_builder import build_extraction_prompt, parse_response
from crm_sync.services.crm.transcript_formatter import format_for_prompt

logger = get_logger(__name__)

SYSTEM_MESSAGE = (
    "You extract structured contact details from meeting transcripts "
    "and reply with JSON only."
)


class AIExtractionError(Exception):
    """Raised when the AI service cannot produce a reply."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.api_error = api_error
        self.recoverable = recoverable


class AIExtractionService:
    """
    Chat-completions client used by the suggestion pipeline.

    A client can be injected; otherwise one is built from settings.
    """

    def __init__(self, client: AsyncOpenAI | None = None):
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise AIExtractionError("OPENAI_API_KEY not configured in settings", recoverable=False)
            client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
            logger.info(
                "OpenAI client initialized",
                model=settings.OPENAI_MODEL,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
        self.client = client

    async def generate_crm_suggestions(self, provider: str, meeting: Meeting) -> list[SuggestionDraft]:
        """
        Extract suggestion drafts for a provider's catalogue from a meeting.

        A meeting without transcript text yields no drafts and no AI call.

        Raises:
            AIExtractionError: If the AI call fails
            SuggestionParseError: If the reply is not a JSON array
        """
        transcript_text = format_for_prompt(meeting.transcript)
        if not transcript_text:
            logger.info("Meeting has no transcript, skipping extraction", meeting_id=meeting.id)
            return []

        prompt = build_extraction_prompt(provider, transcript_text)
        reply = await self.extract(prompt, meeting)
        drafts = parse_response(reply)

        logger.info(
            "CRM suggestions extracted",
            provider=provider,
            meeting_id=meeting.id,
            draft_count=len(drafts),
        )
        return drafts

    async def extract(self, prompt: str, meeting: Meeting | None = None) -> str:
        """Send the prompt and return the raw reply text."""
        return await self._call_openai_with_retry(prompt, meeting_id=meeting.id if meeting else None)

    async def _call_openai_with_retry(self, prompt: str, meeting_id: str | None = None) -> str:
        """Call OpenAI API with retry logic for transient failures."""

        last_error = None
        max_retries = settings.OPENAI_MAX_RETRIES

        for attempt in range(max_retries):
            try:
                logger.debug(
                    "Calling OpenAI API for CRM extraction",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    model=settings.OPENAI_MODEL,
                    meeting_id=meeting_id,
                )

                # No response_format here: the reply must be a JSON array, not an object
                response = await self.client.chat.completions.create(
                    model=settings.OPENAI_MODEL,
                    messages=[
                        {"role": "system", "content": SYSTEM_MESSAGE},
                        {"role": "user", "content": prompt},
                    ],
                    max_tokens=settings.OPENAI_MAX_TOKENS,
                    temperature=settings.OPENAI_TEMPERATURE,
                )

                if not response.choices or not response.choices[0].message.content:
                    raise AIExtractionError("Empty response from OpenAI API")

                result = response.choices[0].message.content.strip()

                logger.info(
                    "OpenAI API call successful",
                    attempt=attempt + 1,
                    response_length=len(result),
                    usage_tokens=response.usage.total_tokens if response.usage else 0,
                )

                return result

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)

                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )

                if attempt < max_retries - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning(
                    "OpenAI API timeout, retrying",
                    attempt=attempt + 1,
                    timeout=settings.OPENAI_TIMEOUT_SECONDS,
                    error=str(e),
                )

            except openai.APIError as e:
                last_error = e
                status_code = getattr(e, "status_code", None)
                # Don't retry on client errors (4xx)
                if status_code is not None and 400 <= status_code < 500:
                    logger.error("OpenAI client error (not retrying)", error=str(e))
                    break

                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except AIExtractionError as e:
                last_error = e
                logger.warning("OpenAI returned an empty reply, retrying", attempt=attempt + 1)

        logger.error(
            "OpenAI API call failed after all retries",
            max_retries=max_retries,
            final_error=str(last_error),
        )

        raise AIExtractionError(
            f"OpenAI API failed after {max_retries} attempts",
            api_error=str(last_error),
            recoverable=True,
        ) from last_error

    async def health_check(self) -> dict[str, Any]:
        return {
            "healthy": self.client is not None,
            "service": "ai_extraction_service",
            "configuration": {
                "model": settings.OPENAI_MODEL,
                "max_tokens": settings.OPENAI_MAX_TOKENS,
                "temperature": settings.OPENAI_TEMPERATURE,
                "timeout_seconds": settings.OPENAI_TIMEOUT_SECONDS,
                "max_retries": settings.OPENAI_MAX_RETRIES,
            },
        }
