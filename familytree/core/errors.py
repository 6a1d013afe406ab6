from __future__ import annotations

from typing import Any

from familytree.core.messages import message_for


class FamilyTreeError(Exception):
    """Base error for the family tree service."""

    code = "internal_error"
    status_code = 500
    message_key: str | None = None

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or message_for(self.message_key or self.code)
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationRequiredError(FamilyTreeError):
    """No actor identity could be resolved for the call."""

    code = "authentication_required"
    status_code = 401


class PermissionDeniedError(FamilyTreeError):
    """Actor lacks the permission level the operation requires."""

    code = "permission_denied"
    status_code = 403


class ActorBlockedError(PermissionDeniedError):
    """Actor has an active block record."""

    message_key = "actor_blocked"


class NotFoundError(FamilyTreeError):
    """Target is missing or already soft-deleted."""

    code = "not_found"
    status_code = 404


class VersionConflictError(FamilyTreeError):
    """Caller-supplied version does not match the live row."""

    code = "version_conflict"
    status_code = 409


class LockedByOtherError(FamilyTreeError):
    """Row or advisory lock is held by a concurrent transaction."""

    code = "locked_by_other"
    status_code = 423


class ValidationFailedError(FamilyTreeError):
    """Payload violates a field or referential constraint."""

    code = "validation_failed"
    status_code = 422


class HasDescendantsError(ValidationFailedError):
    """Single delete attempted on a profile with live children."""

    message_key = "has_descendants"


class BatchLimitExceededError(FamilyTreeError):
    code = "batch_limit_exceeded"
    status_code = 422


class AlreadyUndoneError(FamilyTreeError):
    """Audit entry or operation group was already compensated."""

    code = "already_undone"
    status_code = 409


class OperationTimeoutError(FamilyTreeError):
    """Statement timeout cancelled the operation."""

    code = "timeout"
    status_code = 504
