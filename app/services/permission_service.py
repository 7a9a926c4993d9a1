"""
Permission Service — role-driven RBAC with cache.

Each user carries exactly one role. The role → permission matrix is static
(``ROLE_PERMISSIONS``); the cache only saves the user/role lookup.

Evaluation is deny-by-default:
  - unknown or inactive users have no permissions
  - site_admin is a superuser and passes every check
"""

import logging
import threading
import time
from typing import Optional

from app.models import db
from app.models.auth import User

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

SUPERUSER_ROLES = {"site_admin"}

ALL_PERMISSIONS = (
    "company.manage",
    "users.manage",
    "projects.view", "projects.manage",
    "jobs.view", "jobs.manage",
    "stages.respond", "stages.configure", "stages.override",
    "tasks.update",
    "workers.view", "workers.manage",
    "time.track", "time.approve",
    "documents.view", "documents.upload", "documents.manage",
    "reports.view",
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "owner": frozenset(ALL_PERMISSIONS),
    "admin": frozenset(p for p in ALL_PERMISSIONS if p not in ("company.manage", "stages.override")),
    "foreman": frozenset({
        "projects.view",
        "jobs.view", "jobs.manage",
        "stages.respond",
        "tasks.update",
        "workers.view",
        "time.track", "time.approve",
        "documents.view", "documents.upload",
        "reports.view",
    }),
    "worker": frozenset({
        "projects.view",
        "jobs.view",
        "stages.respond",
        "tasks.update",
        "time.track",
        "documents.view", "documents.upload",
    }),
    "client": frozenset({
        "projects.view",
        "jobs.view",
        "documents.view",
    }),
}

# Cache key: user_id → (cached_at, permissions)
_permission_cache: dict[int, tuple[float, set[str]]] = {}
_cache_lock = threading.Lock()


def _get_cached(user_id: int) -> Optional[set[str]]:
    with _cache_lock:
        entry = _permission_cache.get(user_id)
        if entry is None:
            return None
        cached_at, perms = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[user_id]
            return None
        return perms


def _set_cached(user_id: int, perms: set[str]) -> None:
    with _cache_lock:
        _permission_cache[user_id] = (time.time(), perms)


def invalidate_cache(user_id: int) -> None:
    """Drop one user's cached permissions (call after a role or status change)."""
    with _cache_lock:
        _permission_cache.pop(user_id, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


def permissions_for_role(role: str) -> set[str]:
    if role in SUPERUSER_ROLES:
        return set(ALL_PERMISSIONS)
    return set(ROLE_PERMISSIONS.get(role, ()))


def get_user_permissions(user_id: int) -> set[str]:
    """Return the permission codenames the user currently holds."""
    cached = _get_cached(user_id)
    if cached is not None:
        return cached

    user = db.session.get(User, user_id)
    if user is None or user.status != "active":
        perms: set[str] = set()
    else:
        perms = permissions_for_role(user.role)

    _set_cached(user_id, perms)
    return perms


def has_permission(user_id: int, codename: str) -> bool:
    if codename in get_user_permissions(user_id):
        return True
    logger.debug("Permission %s denied for user %s", codename, user_id)
    return False

