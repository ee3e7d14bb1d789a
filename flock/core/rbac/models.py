"""Typed records for users, roles and role assignments.

Rows arrive from the record store as flat string mappings. Parsing lives
here so the store and resolver work with frozen dataclasses only.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from flock.common.logger import get_logger
from flock.core.errors import InvalidPermissionError
from .permissions import Permission

logger = get_logger("rbac.models")


class RoleStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    DELETED = "deleted"


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class UserStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    DELETED = "deleted"


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _string_list(raw: Any) -> Optional[List[str]]:
    """Decode a JSON list cell. None means the cell was malformed."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [str(v) for v in raw]
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(decoded, list):
        return None
    return [str(v) for v in decoded]


def parse_stored_permissions(raw: Any, *, source: str) -> FrozenSet[Permission]:
    """Parse a stored permission list, dropping anything unrecognised.

    Stored data only ever grants; a malformed cell or unknown token grants
    nothing and is logged.
    """
    tokens = _string_list(raw)
    if tokens is None:
        logger.warning(f"Ignoring malformed permission list on {source}: {raw!r}")
        return frozenset()

    granted = set()
    for token in tokens:
        try:
            granted.add(Permission.from_string(token.strip()))
        except InvalidPermissionError:
            logger.warning(f"Ignoring unknown permission {token!r} on {source}")
    return frozenset(granted)


def serialize_permissions(permissions: Iterable[Permission]) -> str:
    """Serialize permissions into the JSON cell format, sorted for stable diffs."""
    return json.dumps(sorted(str(p) for p in permissions))


@dataclass(frozen=True)
class Role:
    """A named permission set."""

    id: str
    name: str
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    is_system_role: bool = False
    description: str = ""
    status: RoleStatus = RoleStatus.ACTIVE
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == RoleStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Role":
        status_raw = str(row.get("status") or RoleStatus.ACTIVE.value).strip().lower()
        try:
            status = RoleStatus(status_raw)
        except ValueError:
            # Unknown status never contributes permissions
            status = RoleStatus.DISABLED
        return cls(
            id=str(row["id"]),
            name=str(row.get("name", "")).strip(),
            permissions=parse_stored_permissions(
                row.get("permissions"), source=f"role {row.get('name', row['id'])}"
            ),
            is_system_role=_truthy(row.get("is_system_role", False)),
            description=str(row.get("description") or ""),
            status=status,
            created_at=str(row.get("created_at") or ""),
            updated_at=str(row.get("updated_at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert role to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": sorted(str(p) for p in self.permissions),
            "is_system_role": self.is_system_role,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class RoleAssignment:
    """Many-to-many link between a user and a role."""

    id: str
    user_id: str
    role_id: str
    assigned_by: str = ""
    assigned_at: str = ""
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    revoked_by: str = ""
    revoked_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RoleAssignment":
        # Rows written before assignments could be revoked have no status
        status_raw = str(row.get("status") or AssignmentStatus.ACTIVE.value).strip().lower()
        try:
            status = AssignmentStatus(status_raw)
        except ValueError:
            status = AssignmentStatus.REVOKED
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id", "")),
            role_id=str(row.get("role_id", "")),
            assigned_by=str(row.get("assigned_by") or ""),
            assigned_at=str(row.get("assigned_at") or ""),
            status=status,
            revoked_by=str(row.get("revoked_by") or ""),
            revoked_at=str(row.get("revoked_at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role_id": self.role_id,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at,
            "status": self.status.value,
            "revoked_by": self.revoked_by,
            "revoked_at": self.revoked_at,
        }


@dataclass(frozen=True)
class User:
    """A back-office account, as far as authorization cares."""

    id: str
    email: str = ""
    role_name: str = ""
    member_id: Optional[str] = None
    permissions_override: Optional[FrozenSet[Permission]] = None
    status: str = UserStatus.ACTIVE.value

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        raw_override = row.get("permissions")
        override = None
        if raw_override not in (None, ""):
            override = parse_stored_permissions(
                raw_override, source=f"user {row['id']} override"
            )
        return cls(
            id=str(row["id"]),
            email=str(row.get("email") or ""),
            role_name=str(row.get("role") or "").strip(),
            member_id=str(row["member_id"]) if row.get("member_id") else None,
            permissions_override=override,
            status=str(row.get("status") or "").strip().lower(),
        )
