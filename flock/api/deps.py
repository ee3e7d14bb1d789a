from typing import List, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from flock.core.config import get_settings
from flock.core.errors import PermissionDeniedError
from flock.core.rbac import AuthorizationGate, PermissionResolver, RoleStore, ScopedResolver
from flock.core.rbac.permissions import Permission, to_permission
from flock.core.security import decode_token
from flock.core.tagging import TaggingService, TagStore
from flock.store import TableService, get_shared_table_service

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_tables() -> TableService:
    """Record store dependency."""
    return get_shared_table_service()


def get_role_store(tables: TableService = Depends(get_tables)) -> RoleStore:
    return RoleStore(tables)


def get_tag_store(tables: TableService = Depends(get_tables)) -> TagStore:
    return TagStore(tables)


def get_tagging_service(
    tables: TableService = Depends(get_tables),
    tag_store: TagStore = Depends(get_tag_store),
) -> TaggingService:
    return TaggingService(tables, tag_store, workers=get_settings().tag_workers)


def get_gate(roles: RoleStore = Depends(get_role_store)) -> AuthorizationGate:
    """Authorization gate whose permission lookups are memoized for this request only."""
    return AuthorizationGate(ScopedResolver(PermissionResolver(roles)))


def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    """Get the authenticated user id from the bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    user_id = decode_token(token)
    if not user_id:
        raise credentials_exception
    return user_id


class PermissionDependency:
    """
    FastAPI dependency for permission checking.

    Resolves to the current user id when the check passes.

    Usage:
        @router.get("/tags")
        def list_tags(user_id: str = Depends(PermissionDependency("members:read"))):
            ...
    """

    def __init__(self, *permissions: Union[str, Permission], require_all: bool = False):
        self.permissions: List[Permission] = [to_permission(p) for p in permissions]
        self.require_all = require_all

    def __call__(
        self,
        user_id: str = Depends(get_current_user_id),
        gate: AuthorizationGate = Depends(get_gate),
    ) -> str:
        if self.require_all:
            has_access = gate.can_all(user_id, self.permissions)
        else:
            has_access = gate.can_any(user_id, self.permissions)

        if not has_access:
            raise PermissionDeniedError(user_id, ", ".join(str(p) for p in self.permissions))
        return user_id
