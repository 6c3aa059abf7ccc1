"""
Build the contact-extraction prompt for a CRM and parse the model's reply.

The prompt is generated from the provider's FieldConfig, so adding a field
to a catalogue is enough for the model to start extracting it. The reply
format is the same for every CRM.
"""

import json
import re
from typing import Any

from crm_sync.infrastructure.observability.logging import get_logger
from crm_sync.models.domain.contact_domain import SuggestionDraft
from crm_sync.services.crm.field_config import FieldDescriptor, for_provider

logger = get_logger(__name__)

# Fixed order keeps the prompt byte-identical across runs
CATEGORY_ORDER = ["basic", "phone", "work", "address", "online", "other"]

CATEGORY_LABELS = {
    "basic": "Basic info",
    "phone": "Phone numbers",
    "work": "Work info",
    "address": "Address",
    "online": "Online presence",
}

_FENCE_START = re.compile(r"^```(?:json)?\n?")
_FENCE_END = re.compile(r"\n?```$")

EXTRACTION_PROMPT_TEMPLATE = """You are an AI assistant that extracts contact information updates from meeting transcripts.

Analyze the following meeting transcript and extract any information that could be used to update a {crm_name} contact record.

Look for mentions of:
{field_list}
IMPORTANT: Only extract information that is EXPLICITLY mentioned in the transcript. Do not infer or guess.

The transcript includes timestamps in [MM:SS] format at the start of each line.

Return your response as a JSON array of objects. Each object should have:
- "field": the field name (use exactly: {field_names})
- "value": the extracted value
- "context": a brief quote of where this was mentioned
- "timestamp": the timestamp in MM:SS format where this was mentioned

If no contact information updates are found, return an empty array: []

Example response format:
[
  {{"field": "phone", "value": "555-123-4567", "context": "John mentioned 'you can reach me at 555-123-4567'", "timestamp": "01:23"}},
  {{"field": "{example_field}", "value": "{example_value}", "context": "{example_context}", "timestamp": "05:47"}}
]

ONLY return valid JSON, no other text.

Meeting transcript:
{transcript}
"""


class SuggestionParseError(Exception):
    """The model reply could not be turned into suggestion drafts."""

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason)
        self.reason = reason  # "invalid_json" or "invalid_format"
        self.recoverable = True


def humanize_category(category: str) -> str:
    return CATEGORY_LABELS.get(category, category.capitalize())


def _category_rank(category: str) -> int:
    try:
        return CATEGORY_ORDER.index(category)
    except ValueError:
        return len(CATEGORY_ORDER)


def build_field_list(grouped: dict[str, list[FieldDescriptor]]) -> str:
    # sorted() is stable, so unknown categories keep first-seen order
    categories = sorted(grouped, key=_category_rank)
    lines = []
    for category in categories:
        items = ", ".join(f"{f.label} ({f.name})" for f in grouped[category])
        lines.append(f"- {humanize_category(category)}: {items}")
    return "\n".join(lines)


def build_extraction_prompt(provider: str, transcript_text: str) -> str:
    """Deterministic extraction prompt for the provider's catalogue."""
    config = for_provider(provider)
    example = config.prompt_example

    return EXTRACTION_PROMPT_TEMPLATE.format(
        crm_name=config.display_name,
        field_list=build_field_list(config.fields_by_category()),
        field_names=", ".join(config.field_names()),
        example_field=example.field,
        example_value=example.value,
        example_context=example.context,
        transcript=transcript_text,
    )


def parse_response(text: str) -> list[SuggestionDraft]:
    """
    Parse the model reply into drafts.

    Surrounding whitespace and a Markdown code fence are removed first.
    Non-object elements, elements whose field is not a string and elements
    with a null value are dropped. A non-string context or timestamp is
    treated as absent.

    Raises:
        SuggestionParseError: reason "invalid_json" when the reply does not
            decode, "invalid_format" when it decodes to something other than
            a list.
    """
    cleaned = (text or "").strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned).strip()

    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("AI response is not valid JSON", error=str(e), preview=cleaned[:200])
        raise SuggestionParseError("invalid_json", f"Invalid JSON in AI response: {e}") from e

    if not isinstance(decoded, list):
        logger.warning("AI response is not a JSON array", response_type=type(decoded).__name__)
        raise SuggestionParseError("invalid_format", "AI response must be a JSON array")

    return [
        SuggestionDraft(
            field=item["field"],
            value=item["value"],
            context=_optional_str(item.get("context")),
            timestamp=_optional_str(item.get("timestamp")),
        )
        for item in decoded
        if isinstance(item, dict)
        and isinstance(item.get("field"), str)
        and item.get("value") is not None
    ]


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None
