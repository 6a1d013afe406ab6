from __future__ import annotations

from enum import Enum


class PermissionLevel(str, Enum):
    BLOCKED = "blocked"
    NONE = "none"
    SUGGEST = "suggest"
    INNER = "inner"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def allows_direct_edit(self) -> bool:
        return self in DIRECT_EDIT_LEVELS

    @property
    def allows_review(self) -> bool:
        # Suggestion approval is a moderation act; kinship alone is not enough.
        return self in (PermissionLevel.MODERATOR, PermissionLevel.ADMIN)


DIRECT_EDIT_LEVELS = frozenset({PermissionLevel.INNER, PermissionLevel.MODERATOR, PermissionLevel.ADMIN})


ROLE_USER = "user"
ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

ROLE_ORDER = {ROLE_USER: 1, ROLE_MODERATOR: 2, ROLE_ADMIN: 3, ROLE_SUPER_ADMIN: 4}
ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary.
    normalized = role.strip().lower().replace("-", "_")
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def is_admin_role(role: str | None) -> bool:
    return role in ADMIN_ROLES
