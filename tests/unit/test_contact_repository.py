import pytest

from crm_sync.repositories import contact_repository
from crm_sync.repositories.contact_repository import ContactRepository, escape_like


def test_escape_like_neutralizes_wildcards():
    assert escape_like("a_b") == "a\\_b"
    assert escape_like("100%") == "100\\%"
    assert escape_like("c:\\temp") == "c:\\\\temp"
    assert escape_like("alice") == "alice"


@pytest.mark.asyncio
async def test_search_matches_query_literally(monkeypatch):
    calls = []

    async def fake_fetch_all(sql, params):
        calls.append((sql, params))
        return [{"id": 7, "name": "A_B Corp", "email": "ab@x.com"}]

    monkeypatch.setattr(contact_repository, "fetch_all", fake_fetch_all)

    contacts = await ContactRepository().search_contacts("user-123", "a_b")

    sql, params = calls[0]
    assert params == ("user-123", "%a\\_b%", "%a\\_b%", 10)
    assert "ESCAPE '\\'" in sql
    assert [c.id for c in contacts] == ["7"]
