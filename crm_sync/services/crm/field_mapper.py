"""
Translate canonical field names to a CRM's API field names and back.
"""

from collections.abc import Mapping
from typing import Any

from crm_sync.services.crm.field_config import for_provider


def map_fields_to_api(updates: Mapping[Any, Any], field_mapping: Mapping[str, str]) -> dict[str, Any]:
    """
    Re-key updates with API names; keys without a mapping pass through.

    >>> map_fields_to_api({"address": "123 Main St"}, {"address": "MailingStreet"})
    {'MailingStreet': '123 Main St'}
    """
    mapped: dict[str, Any] = {}
    for field, value in updates.items():
        key = str(field)
        mapped[field_mapping.get(key, key)] = value
    return mapped


def map_fields_for_provider(provider: str, updates: Mapping[Any, Any]) -> dict[str, Any]:
    """Map canonical updates to the API names of the provider's catalogue."""
    return map_fields_to_api(updates, for_provider(provider).field_to_api_mapping())


def map_fields_from_api(provider: str, payload: Mapping[Any, Any]) -> dict[str, Any]:
    """Inverse of map_fields_for_provider, used to read provider responses."""
    return map_fields_to_api(payload, for_provider(provider).api_to_field_mapping())
