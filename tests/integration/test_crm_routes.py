import json

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from crm_sync.models.domain.contact_domain import LocalContact, SuggestionDraft
from crm_sync.routes.crm import router as crm_router
from crm_sync.services.crm.prompt_builder import SuggestionParseError
from crm_sync.services.crm.registry import CRMRegistry, get_registry
from tests.helpers import (
    FakeContactRepository,
    FakeCredentialStore,
    FakeSuggestionGenerator,
    make_credential,
)

HUBSPOT_CONTACT_URL = "https://api.hubapi.com/crm/v3/objects/contacts/101"
HUBSPOT_SEARCH_URL = "https://api.hubapi.com/crm/v3/objects/contacts/search"

MEETING = {
    "meeting": {
        "id": "meeting-1",
        "title": "Intro call",
        "transcript": [{"speaker": "Alice", "words": [{"text": "Globex", "start_timestamp": 83}]}],
    }
}


class HubSpotStub:
    def __init__(self):
        self.patches: list[dict] = []
        self.contact = {"id": "101", "properties": {"firstname": "Alice", "company": "Acme"}}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).split("?", 1)[0]
        if request.method == "POST" and url == HUBSPOT_SEARCH_URL:
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"id": "101", "properties": {"firstname": "Alice", "email": "alice@x.com", "company": "Acme"}}
                    ]
                },
            )
        if url != HUBSPOT_CONTACT_URL:
            return httpx.Response(404, json={"message": "not found"})
        if request.method == "PATCH":
            properties = json.loads(request.content)["properties"]
            self.patches.append(properties)
            self.contact["properties"].update(properties)
        return httpx.Response(200, json=self.contact)


def _create_app(apply_auth_override, registry):
    app = FastAPI()
    apply_auth_override(app)
    app.dependency_overrides[get_registry] = lambda: registry
    app.include_router(crm_router)
    return app


def _registry(generator=None, connected=True, contacts=None, stub=None):
    credentials = [make_credential()] if connected else []
    return CRMRegistry(
        credential_store=FakeCredentialStore(credentials),
        contact_repository=FakeContactRepository(contacts or []),
        ai_service=generator or FakeSuggestionGenerator(),
        transport=httpx.MockTransport(stub or HubSpotStub()),
    )


def test_search_merges_local_and_hubspot(apply_auth_override):
    registry = _registry(contacts=[LocalContact(id="c1", name="Alice", email="Alice@x.com")])
    client = TestClient(_create_app(apply_auth_override, registry))

    response = client.get("/crm/contacts/search", params={"q": "alice"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_count"] == 1
    contact = payload["contacts"][0]
    assert contact["id"] == "hubspot:101"
    assert contact["source"] == "hubspot"
    assert contact["contact_id"] == "c1"
    assert contact["company"] == "Acme"


def test_search_without_query_is_rejected(apply_auth_override):
    client = TestClient(_create_app(apply_auth_override, _registry()))

    assert client.get("/crm/contacts/search").status_code == 422


def test_generate_suggestions_returns_changes_only(apply_auth_override):
    generator = FakeSuggestionGenerator(
        drafts=[
            SuggestionDraft("company", "Globex", "I moved to Globex", "01:23"),
            SuggestionDraft("firstname", "Alice"),
        ]
    )
    client = TestClient(_create_app(apply_auth_override, _registry(generator)))

    response = client.post("/crm/hubspot/contacts/101/suggestions", json=MEETING)

    assert response.status_code == 200
    payload = response.json()
    assert payload["provider"] == "hubspot"
    assert payload["contact"]["company"] == "Acme"
    assert [s["field"] for s in payload["suggestions"]] == ["company"]
    assert payload["suggestions"][0]["current_value"] == "Acme"
    assert payload["suggestions"][0]["label"] == "Company"
    assert generator.calls == [("hubspot", "meeting-1")]


def test_unknown_provider_is_404(apply_auth_override):
    client = TestClient(_create_app(apply_auth_override, _registry()))

    response = client.post("/crm/zoho/contacts/101/suggestions", json=MEETING)

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "unknown_provider"


def test_not_connected_is_400(apply_auth_override):
    client = TestClient(_create_app(apply_auth_override, _registry(connected=False)))

    response = client.post("/crm/hubspot/contacts/101/suggestions", json=MEETING)

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "crm_not_connected"


def test_missing_contact_is_404(apply_auth_override):
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("company", "Globex")])
    client = TestClient(_create_app(apply_auth_override, _registry(generator)))

    response = client.post("/crm/hubspot/contacts/999/suggestions", json=MEETING)

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"
    assert generator.calls == []


def test_unparseable_ai_reply_is_502(apply_auth_override):
    generator = FakeSuggestionGenerator(error=SuggestionParseError("invalid_json"))
    client = TestClient(_create_app(apply_auth_override, _registry(generator)))

    response = client.post("/crm/hubspot/contacts/101/suggestions", json=MEETING)

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "invalid_json"


def test_preview_does_not_need_a_connection(apply_auth_override):
    generator = FakeSuggestionGenerator(drafts=[SuggestionDraft("title", "VP of Sales", "promoted")])
    client = TestClient(_create_app(apply_auth_override, _registry(generator, connected=False)))

    response = client.post("/crm/salesforce/suggestions/preview", json=MEETING)

    assert response.status_code == 200
    suggestions = response.json()["suggestions"]
    assert suggestions[0]["label"] == "Job Title"
    assert suggestions[0]["current_value"] is None


def test_apply_selected_updates(apply_auth_override):
    stub = HubSpotStub()
    client = TestClient(_create_app(apply_auth_override, _registry(stub=stub)))

    response = client.post(
        "/crm/hubspot/contacts/101/updates",
        json={
            "suggestions": [
                {"field": "company", "new_value": "Globex"},
                {"field": "linkedin_url", "new_value": "linkedin.com/in/alice"},
                {"field": "city", "new_value": "Austin", "selected": False},
            ]
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["updated"] is True
    assert payload["contact"]["company"] == "Globex"
    assert stub.patches == [{"company": "Globex", "hs_linkedin_url": "linkedin.com/in/alice"}]


def test_apply_with_nothing_selected(apply_auth_override):
    stub = HubSpotStub()
    client = TestClient(_create_app(apply_auth_override, _registry(stub=stub)))

    response = client.post(
        "/crm/hubspot/contacts/101/updates",
        json={"suggestions": [{"field": "company", "new_value": "Globex", "selected": False}]},
    )

    assert response.status_code == 200
    assert response.json() == {"provider": "hubspot", "updated": False, "contact": None}
    assert stub.patches == []
