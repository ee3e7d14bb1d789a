"""API routers for flock."""

from . import health
from . import roles
from . import users
from . import tags
from . import members

__all__ = [
    "health",
    "roles",
    "users",
    "tags",
    "members",
]
