from __future__ import annotations

from dataclasses import dataclass
import re


ACTION_KIND_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

TABLE_PROFILES = "profiles"
TABLE_MARRIAGES = "marriages"
TABLE_SUGGESTIONS = "edit_suggestions"
TABLE_BLOCKS = "suggestion_blocks"
TABLE_MODERATORS = "branch_moderators"

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"

GROUP_BATCH_SAVE = "batch_save"
GROUP_CASCADE_DELETE = "cascade_delete"
GROUP_BATCH_REORDER = "batch_reorder"

PROFILE_CREATE = "profile_create"
PROFILE_UPDATE = "profile_update"
PROFILE_SOFT_DELETE = "profile_soft_delete"
PROFILE_CASCADE_DELETE = "profile_cascade_delete"
MARRIAGE_CREATE = "marriage_create"
MARRIAGE_UPDATE = "marriage_update"
MARRIAGE_SOFT_DELETE = "marriage_soft_delete"
MARRIAGE_CASCADE_DELETE = "marriage_cascade_delete"
ROLE_CHANGED = "role_changed"
SUGGESTION_SUBMITTED = "suggestion_submitted"
SUGGESTION_APPROVED = "suggestion_approved"
SUGGESTION_REJECTED = "suggestion_rejected"
ACTOR_BLOCKED = "actor_blocked"
ACTOR_UNBLOCKED = "actor_unblocked"
MODERATOR_ASSIGNED = "moderator_assigned"
MODERATOR_REVOKED = "moderator_revoked"


@dataclass(frozen=True)
class ActionSpec:
    kind: str
    table_name: str
    undoable: bool = False
    # Only admins/super-admins may compensate these kinds.
    admin_only: bool = False
    # Hard age limit for undo that applies to every role.
    window_days: int | None = None
    severity: str = SEVERITY_LOW
    # Compensated through the owning operation group, never one row at a time.
    group_only: bool = False

    @property
    def clr_kind(self) -> str:
        return f"undo_{self.kind}"


_SPECS = (
    ActionSpec(PROFILE_CREATE, TABLE_PROFILES, undoable=True, window_days=30),
    ActionSpec(PROFILE_UPDATE, TABLE_PROFILES, undoable=True, window_days=30),
    ActionSpec(PROFILE_SOFT_DELETE, TABLE_PROFILES, undoable=True, window_days=30, severity=SEVERITY_MEDIUM),
    ActionSpec(
        PROFILE_CASCADE_DELETE,
        TABLE_PROFILES,
        undoable=True,
        admin_only=True,
        window_days=7,
        severity=SEVERITY_HIGH,
        group_only=True,
    ),
    ActionSpec(MARRIAGE_CREATE, TABLE_MARRIAGES, undoable=True, admin_only=True),
    ActionSpec(MARRIAGE_UPDATE, TABLE_MARRIAGES),
    ActionSpec(MARRIAGE_SOFT_DELETE, TABLE_MARRIAGES, undoable=True, window_days=30, severity=SEVERITY_MEDIUM),
    ActionSpec(
        MARRIAGE_CASCADE_DELETE,
        TABLE_MARRIAGES,
        undoable=True,
        admin_only=True,
        window_days=7,
        severity=SEVERITY_HIGH,
        group_only=True,
    ),
    ActionSpec(ROLE_CHANGED, TABLE_PROFILES, severity=SEVERITY_HIGH),
    ActionSpec(SUGGESTION_SUBMITTED, TABLE_SUGGESTIONS),
    ActionSpec(SUGGESTION_APPROVED, TABLE_SUGGESTIONS),
    ActionSpec(SUGGESTION_REJECTED, TABLE_SUGGESTIONS),
    ActionSpec(ACTOR_BLOCKED, TABLE_BLOCKS, severity=SEVERITY_MEDIUM),
    ActionSpec(ACTOR_UNBLOCKED, TABLE_BLOCKS),
    ActionSpec(MODERATOR_ASSIGNED, TABLE_MODERATORS, severity=SEVERITY_MEDIUM),
    ActionSpec(MODERATOR_REVOKED, TABLE_MODERATORS, severity=SEVERITY_MEDIUM),
)


def _build_registry() -> dict[str, ActionSpec]:
    # Every undoable kind gets a matching compensating record kind that is never undoable.
    registry = {spec.kind: spec for spec in _SPECS}
    for spec in _SPECS:
        if spec.undoable:
            registry[spec.clr_kind] = ActionSpec(spec.clr_kind, spec.table_name, severity=spec.severity)
    return registry


ACTIONS: dict[str, ActionSpec] = _build_registry()


def get_action(kind: str) -> ActionSpec | None:
    return ACTIONS.get(kind)


def is_valid_action_kind(kind: str) -> bool:
    return bool(ACTION_KIND_PATTERN.match(kind))


def is_undoable(kind: str) -> bool:
    spec = ACTIONS.get(kind)
    return bool(spec and spec.undoable)
