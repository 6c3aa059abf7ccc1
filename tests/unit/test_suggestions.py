import pytest

from crm_sync.models.domain.contact_domain import Suggestion, SuggestionDraft
from crm_sync.services.crm.base_client import CRMApiError
from crm_sync.services.crm.field_config import for_provider
from crm_sync.services.crm.prompt_builder import parse_response
from crm_sync.services.crm.suggestions import SuggestionEngine
from tests.helpers import FakeSuggestionGenerator, make_credential, make_meeting


class FakeClient:
    def __init__(self, contact=None, error=None):
        self.contact = contact or {}
        self.error = error
        self.applied = []

    async def get_contact(self, credential, contact_id):
        if self.error:
            raise self.error
        return dict(self.contact, id=contact_id)

    async def apply_updates(self, credential, contact_id, suggestions):
        self.applied.append((contact_id, suggestions))
        if not any(s.selected for s in suggestions):
            return None
        return {"id": contact_id}


def _engine(client, generator, provider="hubspot"):
    return SuggestionEngine(client, for_provider(provider), generator)


@pytest.mark.asyncio
async def test_generate_suggestions_keeps_only_changes():
    client = FakeClient(contact={"company": "Acme", "phone": "555-0100"})
    generator = FakeSuggestionGenerator(
        drafts=[
            SuggestionDraft("company", "Globex", "I moved to Globex", "01:23"),
            SuggestionDraft("phone", "555-0100", "call me at 555-0100", "02:00"),
        ]
    )

    result = await _engine(client, generator).generate_suggestions(
        make_credential(), "101", make_meeting()
    )

    assert result.contact["company"] == "Acme"
    assert len(result.suggestions) == 1
    suggestion = result.suggestions[0]
    assert suggestion.field == "company"
    assert suggestion.label == "Company"
    assert suggestion.current_value == "Acme"
    assert suggestion.new_value == "Globex"
    assert suggestion.context == "I moved to Globex"
    assert suggestion.timestamp == "01:23"
    assert suggestion.selected is True
    assert suggestion.has_change is True
    assert generator.calls == [("hubspot", "meeting-1")]


@pytest.mark.asyncio
async def test_missing_field_is_a_change_from_none():
    client = FakeClient(contact={})
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("jobtitle", "CTO")])

    result = await _engine(client, generator).generate_suggestions(
        make_credential(), "101", make_meeting()
    )

    assert [(s.field, s.current_value, s.label) for s in result.suggestions] == [
        ("jobtitle", None, "Job Title")
    ]


@pytest.mark.asyncio
async def test_unknown_field_label_falls_back_to_name():
    client = FakeClient(contact={})
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("nickname", "Al")])

    result = await _engine(client, generator).generate_suggestions(
        make_credential(), "101", make_meeting()
    )

    assert result.suggestions[0].label == "nickname"


@pytest.mark.asyncio
async def test_contact_fetch_failure_skips_ai():
    client = FakeClient(error=CRMApiError("missing", reason="not_found", provider="hubspot"))
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("company", "Globex")])

    with pytest.raises(CRMApiError) as exc:
        await _engine(client, generator).generate_suggestions(
            make_credential(), "404", make_meeting()
        )

    assert exc.value.reason == "not_found"
    assert generator.calls == []


class UnusableContactClient(FakeClient):
    async def get_contact(self, credential, contact_id):
        return None


@pytest.mark.asyncio
async def test_unusable_contact_is_an_api_error():
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("company", "Globex")])

    with pytest.raises(CRMApiError) as exc:
        await _engine(UnusableContactClient(), generator).generate_suggestions(
            make_credential(), "101", make_meeting()
        )

    assert exc.value.reason == "api_error"
    assert exc.value.provider == "hubspot"
    assert generator.calls == []


@pytest.mark.asyncio
async def test_malformed_ai_item_does_not_discard_good_ones():
    drafts = parse_response(
        '[{"field": ["phone"], "value": "1"}, {"field": "firstname", "value": "Bob"}]'
    )
    client = FakeClient(contact={"firstname": "Robert"})

    result = await _engine(client, FakeSuggestionGenerator(drafts=drafts)).generate_suggestions(
        make_credential(), "101", make_meeting()
    )

    assert [(s.field, s.new_value) for s in result.suggestions] == [("firstname", "Bob")]


@pytest.mark.asyncio
async def test_preview_suggestions_from_meeting():
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("title", "VP of Sales", "promoted")])

    suggestions = await _engine(FakeClient(), generator, "salesforce").generate_suggestions_from_meeting(
        make_meeting()
    )

    assert len(suggestions) == 1
    assert suggestions[0].label == "Job Title"
    assert suggestions[0].current_value is None
    assert suggestions[0].has_change is True
    assert generator.calls == [("salesforce", "meeting-1")]


def test_merge_with_contact_rediffs():
    engine = _engine(FakeClient(), FakeSuggestionGenerator())
    suggestions = [
        Suggestion("company", "Company", None, "Globex"),
        Suggestion("city", "City", None, "Austin"),
    ]

    merged = engine.merge_with_contact(suggestions, {"company": "Globex", "city": "Dallas"})

    assert [(s.field, s.current_value) for s in merged] == [("city", "Dallas")]


@pytest.mark.asyncio
async def test_apply_updates_delegates_to_client():
    client = FakeClient()
    engine = _engine(client, FakeSuggestionGenerator())
    suggestions = [Suggestion("company", "Company", "Acme", "Globex", selected=False)]

    assert await engine.apply_updates(make_credential(), "101", suggestions) is None
    assert client.applied == [("101", suggestions)]
