"""
CRM integration package.

Field catalogues, prompt building, suggestion generation, hybrid contact
search and OAuth token lifecycle for HubSpot and Salesforce.
"""

# Re-export the primary building blocks for easy access.
from .base_client import CRMApiClient, CRMApiError  # noqa: F401
from .contact_search import ContactSearchService, SOURCE_PRIORITY  # noqa: F401
from .field_config import FieldConfig, FieldDescriptor, UnknownProviderError, for_provider  # noqa: F401
from .field_mapper import map_fields_for_provider, map_fields_to_api  # noqa: F401
from .prompt_builder import SuggestionParseError, build_extraction_prompt, parse_response  # noqa: F401
from .suggestions import SuggestionEngine  # noqa: F401
from .token_refresher import TokenRefresher, TokenRefreshError  # noqa: F401
