"""Base classes for the record store.

The record store is a row-oriented keyed table service (a spreadsheet in
production). Every component receives a TableService instance instead of
touching storage directly, so tests can substitute the in-memory fake.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping


Row = Dict[str, Any]


class Table(str, Enum):
    """Logical tables, named as the worksheets are."""

    USERS = "Users"
    ROLES = "Roles"
    ROLE_ASSIGNMENTS = "Role_Assignments"
    TAGS = "Tags"
    TAG_RULES = "Tag_Rules"
    MEMBERS = "Members"


# Column layout each worksheet is created with
TABLE_COLUMNS: Dict[Table, List[str]] = {
    Table.USERS: [
        "id", "member_id", "email", "password_hash", "role", "permissions",
        "last_login", "created_at", "status",
    ],
    Table.ROLES: [
        "id", "name", "description", "permissions", "is_system_role",
        "status", "created_at", "updated_at",
    ],
    Table.ROLE_ASSIGNMENTS: [
        "id", "user_id", "role_id", "assigned_by", "assigned_at",
        "status", "revoked_by", "revoked_at",
    ],
    Table.TAGS: [
        "id", "name", "category", "color", "description", "status", "created_at",
    ],
    Table.TAG_RULES: [
        "id", "name", "tag_id", "condition_type", "condition_field",
        "condition_operator", "condition_value", "priority", "status", "created_at",
    ],
    Table.MEMBERS: [
        "id", "name", "gender", "birthday", "phone", "email", "address",
        "join_date", "baptism_date", "faith_status", "family_id", "cell_group_id",
        "status", "tags", "auto_tags", "manual_tags", "health_notes",
        "created_at", "updated_at",
    ],
}


def table_name(table: "Table | str") -> str:
    """Return the worksheet name for a Table or plain string."""
    return table.value if isinstance(table, Table) else str(table)


def new_id() -> str:
    """Generate a record id."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current time as an ISO 8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class TableService(ABC):
    """Interface to the external record store.

    Implementations must bound every call by a timeout and raise
    UnavailableError when the store cannot answer, and NotFoundError
    when a record id is absent.
    """

    @abstractmethod
    def list(self, table: "Table | str") -> List[Row]:
        """Return every row of a table, in storage order."""

    @abstractmethod
    def get(self, table: "Table | str", record_id: str) -> Row:
        """Return one row by id.

        Raises:
            NotFoundError: If no row has that id
        """

    @abstractmethod
    def append(self, table: "Table | str", row: Mapping[str, Any]) -> str:
        """Append a row and return its id (generated when the row has none)."""

    @abstractmethod
    def update_by_id(
        self, table: "Table | str", record_id: str, patch: Mapping[str, Any]
    ) -> Row:
        """Merge a patch into a row and return the updated row.

        Raises:
            NotFoundError: If no row has that id
        """

    def ensure_schema(self) -> Dict[str, List[str]]:
        """Bring stored tables up to TABLE_COLUMNS.

        Returns:
            Columns added, per table; empty when nothing changed
        """
        return {}

    def find(self, table: "Table | str", **criteria: Any) -> List[Row]:
        """Return rows whose columns equal every given criterion."""
        rows = self.list(table)
        if not criteria:
            return rows
        return [
            row for row in rows
            if all(str(row.get(key, "")) == str(value) for key, value in criteria.items())
        ]
