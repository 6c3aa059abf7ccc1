"""
Local contact storage lookups used by contact search.
"""

from crm_sync.db.helpers import fetch_all, with_db_retry
from crm_sync.models.domain.contact_domain import LocalContact

SEARCH_LIMIT = 10


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactRepository:
    """Read access to the local contacts table."""

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def search_contacts(
        self, user_id: str, query: str, limit: int = SEARCH_LIMIT
    ) -> list[LocalContact]:
        """
        Contacts the user has met, matched by name or email.

        A contact belongs to a user when it attended one of the user's
        calendar events.
        """
        pattern = f"%{escape_like(query)}%"

        sql = """
            SELECT DISTINCT c.id, c.name, c.email
            FROM contacts c
            JOIN calendar_event_attendees cea ON cea.contact_id = c.id
            JOIN calendar_events ce ON ce.id = cea.calendar_event_id
            WHERE ce.user_id = %s
              AND (c.name ILIKE %s ESCAPE '\\' OR c.email ILIKE %s ESCAPE '\\')
            ORDER BY c.name
            LIMIT %s
        """

        rows = await fetch_all(sql, (user_id, pattern, pattern, limit))
        return [
            LocalContact(id=str(row["id"]), name=row.get("name"), email=row.get("email"))
            for row in rows
        ]
