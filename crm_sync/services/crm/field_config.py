"""
Provider-agnostic CRM field catalogue.

Each CRM declares its editable contact fields once, as an ordered list of
FieldDescriptor. Everything else the pipeline needs (labels, API names,
category grouping, reverse lookup) is derived here so provider modules
only describe data.
"""

from collections.abc import Callable
from dataclasses import dataclass
from functools import cached_property

DEFAULT_CATEGORY = "other"


class UnknownProviderError(ValueError):
    """Raised when no field catalogue is registered for a provider."""

    def __init__(self, provider: str):
        super().__init__(f"Unknown CRM provider: {provider}")
        self.provider = provider
        self.recoverable = False


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    name: str
    label: str
    api_name: str | None = None
    category: str | None = None

    @property
    def resolved_api_name(self) -> str:
        return self.api_name or self.name

    @property
    def resolved_category(self) -> str:
        return self.category or DEFAULT_CATEGORY


@dataclass(frozen=True, slots=True)
class PromptExample:
    """Example extraction shown to the model in the prompt."""

    field: str
    value: str
    context: str


class FieldConfig:
    """
    Base class for a CRM's field catalogue.

    Subclasses set provider, display_name and prompt_example, and
    implement fields().
    """

    provider: str = ""
    display_name: str = ""
    prompt_example: PromptExample

    def fields(self) -> list[FieldDescriptor]:
        raise NotImplementedError

    @cached_property
    def _fields(self) -> tuple[FieldDescriptor, ...]:
        descriptors = tuple(self.fields())
        seen: set[str] = set()
        for descriptor in descriptors:
            if descriptor.name in seen:
                raise ValueError(
                    f"Duplicate field '{descriptor.name}' in {self.provider} catalogue"
                )
            seen.add(descriptor.name)
        return descriptors

    def field_names(self) -> list[str]:
        return [f.name for f in self._fields]

    def field_labels(self) -> dict[str, str]:
        return {f.name: f.label for f in self._fields}

    def field_to_api_mapping(self) -> dict[str, str]:
        """Canonical name to API name, only where the two differ."""
        return {
            f.name: f.api_name
            for f in self._fields
            if f.api_name is not None and f.api_name != f.name
        }

    def api_field_names(self) -> list[str]:
        return [f.resolved_api_name for f in self._fields]

    def fields_by_category(self) -> dict[str, list[FieldDescriptor]]:
        grouped: dict[str, list[FieldDescriptor]] = {}
        for f in self._fields:
            grouped.setdefault(f.resolved_category, []).append(f)
        return grouped

    def api_to_field_mapping(self) -> dict[str, str]:
        return {f.resolved_api_name: f.name for f in self._fields}

    def label_for(self, field_name: str) -> str:
        return self.field_labels().get(field_name, field_name)


_factories: dict[str, Callable[[], FieldConfig]] = {}
_instances: dict[str, FieldConfig] = {}


def register_field_config(provider: str, factory: Callable[[], FieldConfig]) -> None:
    _factories[provider] = factory
    _instances.pop(provider, None)


def _load_builtin_providers() -> None:
    if _factories:
        return

    from crm_sync.services.crm.hubspot.field_config import HubSpotFieldConfig
    from crm_sync.services.crm.salesforce.field_config import SalesforceFieldConfig

    register_field_config("hubspot", HubSpotFieldConfig)
    register_field_config("salesforce", SalesforceFieldConfig)


def supported_providers() -> list[str]:
    _load_builtin_providers()
    return list(_factories)


def for_provider(provider: str) -> FieldConfig:
    """Return the field catalogue registered for a provider."""
    _load_builtin_providers()

    if provider not in _factories:
        raise UnknownProviderError(provider)

    if provider not in _instances:
        config = _factories[provider]()
        config.field_names()  # validates uniqueness on first load
        _instances[provider] = config

    return _instances[provider]
