from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import (
    ActorBlockedError,
    AlreadyUndoneError,
    FamilyTreeError,
    HasDescendantsError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.actions import ActionSpec, get_action
from familytree.domain.models import AuditLogEntry, Marriage, OperationGroup, Profile
from familytree.domain.permissions import is_admin_role
from familytree.persistence.locks import advisory_key, atomic, lock_row, set_statement_timeout, try_advisory_lock
from familytree.persistence.repos import audit as audit_repo
from familytree.persistence.repos.graph import FamilyGraph, SqlFamilyGraph, get_node
from familytree.services.audit import append_entry, restore_snapshot, snapshot
from familytree.services.gateway import (
    bump,
    check_version,
    count_live_children,
    require_actor,
    utc_now,
    validate_parent_changes,
)
from familytree.services.marriages import find_current_marriage
from familytree.services.permissions import resolve
from familytree.services.validation import RESTORABLE_PROFILE_FIELDS


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UndoCheck:
    can_undo: bool
    reason: str | None = None
    code: str | None = None
    # Group-only kinds are compensated through the whole operation group.
    requires_group_undo: bool = False


@dataclass(frozen=True)
class UndoOutcome:
    success: bool
    message: str
    entry_id: int
    compensation_entry_ids: list[int] = field(default_factory=list)
    operation_group_id: str | None = None
    restored_count: int = 0
    failed_entry_ids: list[int] = field(default_factory=list)
    new_version: int | None = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _undoable_spec(entry: AuditLogEntry) -> ActionSpec:
    spec = get_action(entry.action_kind)
    if spec is None or not spec.undoable or not entry.is_undoable:
        raise ValidationFailedError(message_for("not_undoable"), details={"action_kind": entry.action_kind})
    return spec


def _target_profile_ids(entry: AuditLogEntry) -> list[str]:
    # Marriage entries are judged against either spouse.
    if entry.table_name == actions.TABLE_MARRIAGES:
        data = entry.old_data or entry.new_data or {}
        return [pid for pid in (data.get("husband_id"), data.get("wife_id")) if pid]
    return [entry.record_id]


def _expired(window_days: int) -> PermissionDeniedError:
    return PermissionDeniedError(message_for("undo_window_expired"), details={"window_days": window_days})


async def _authorize(
    graph: FamilyGraph,
    *,
    actor_id: str,
    specs: Iterable[ActionSpec],
    created_at: datetime,
    owner_id: str | None,
    target_ids: list[str],
    require_all_targets: bool,
    now: datetime,
) -> None:
    settings = get_settings()
    actor = await get_node(graph, actor_id)
    if actor is None or actor.deleted:
        raise PermissionDeniedError()
    specs = list(specs)
    age = now - _as_utc(created_at)
    # Per-kind hard limits bind every role.
    for spec in specs:
        if spec.window_days is not None and age > timedelta(days=spec.window_days):
            raise _expired(spec.window_days)
    if await graph.is_blocked(actor.id):
        raise ActorBlockedError()
    if is_admin_role(actor.role):
        if age > timedelta(days=settings.undo_admin_window_days):
            raise _expired(settings.undo_admin_window_days)
        return
    if any(spec.admin_only for spec in specs):
        raise PermissionDeniedError(message_for("undo_admin_only"))
    if age > timedelta(days=settings.undo_actor_window_days):
        raise _expired(settings.undo_actor_window_days)
    if owner_id and owner_id == actor.id:
        return
    levels = [await resolve(graph, actor.id, target_id, max_depth=settings.graph_max_depth) for target_id in target_ids]
    allowed = [level.allows_direct_edit for level in levels]
    if not allowed or not (all(allowed) if require_all_targets else any(allowed)):
        raise PermissionDeniedError(details={"target_ids": target_ids})


async def _evaluate_entry(
    graph: FamilyGraph, entry: AuditLogEntry | None, actor_id: str, now: datetime
) -> ActionSpec:
    # Checks run in order: exists and undoable, not yet undone, then permission.
    if entry is None:
        raise NotFoundError()
    spec = _undoable_spec(entry)
    if entry.undone_at is not None:
        raise AlreadyUndoneError(details={"entry_id": entry.id})
    await _authorize(
        graph,
        actor_id=actor_id,
        specs=[spec],
        created_at=entry.created_at,
        owner_id=entry.actor_id,
        target_ids=_target_profile_ids(entry),
        require_all_targets=False,
        now=now,
    )
    return spec


async def _evaluate_group(
    session: AsyncSession,
    graph: FamilyGraph,
    group: OperationGroup | None,
    actor_id: str,
    now: datetime,
) -> list[AuditLogEntry]:
    if group is None:
        raise NotFoundError()
    if group.undo_state == "undone":
        raise AlreadyUndoneError(details={"operation_group_id": group.id})
    entries = await audit_repo.list_group_entries(session, group.id, active_only=True)
    if not entries:
        raise AlreadyUndoneError(details={"operation_group_id": group.id})
    specs = {spec.kind: spec for spec in (_undoable_spec(entry) for entry in entries)}
    target_ids: list[str] = []
    for entry in entries:
        for target_id in _target_profile_ids(entry):
            if target_id not in target_ids:
                target_ids.append(target_id)
    await _authorize(
        graph,
        actor_id=actor_id,
        specs=specs.values(),
        created_at=group.created_at,
        owner_id=group.created_by,
        target_ids=target_ids,
        require_all_targets=True,
        now=now,
    )
    return entries


def _mark_undone(entry: AuditLogEntry, actor_id: str, reason: str | None, now: datetime) -> None:
    # active -> undone happens exactly once.
    if entry.undone_at is not None:
        raise AlreadyUndoneError(details={"entry_id": entry.id})
    entry.undone_at = now
    entry.undone_by = actor_id
    entry.undo_reason = reason


async def _compensate_entry(
    session: AsyncSession,
    entry: AuditLogEntry,
    *,
    actor_id: str,
    reason: str | None,
    now: datetime,
    operation_group_id: str | None = None,
) -> tuple[list[int], int]:
    # Apply the inverse mutation, mark the entry, append the compensating record.
    spec = _undoable_spec(entry)
    kind = entry.action_kind
    model = Marriage if entry.table_name == actions.TABLE_MARRIAGES else Profile
    row = await lock_row(session, model, entry.record_id)
    if row is None:
        raise NotFoundError(details={"record_id": entry.record_id})
    before = snapshot(row)

    if kind == actions.PROFILE_UPDATE:
        # Only the exact state the entry produced may be rolled back.
        expected = (entry.new_data or {}).get("version")
        if expected is not None:
            check_version(row, expected)
        # Restored parent links go through the same checks as a direct edit.
        await validate_parent_changes(SqlFamilyGraph(session), row, entry.old_data or {})
        restore_snapshot(row, entry.old_data or {}, RESTORABLE_PROFILE_FIELDS)
    elif kind in (actions.PROFILE_SOFT_DELETE, actions.PROFILE_CASCADE_DELETE):
        row.deleted_at = None
    elif kind == actions.PROFILE_CREATE:
        children = await count_live_children(SqlFamilyGraph(session), row.id)
        if children:
            raise HasDescendantsError(details={"profile_id": row.id, "descendant_count": children})
        row.deleted_at = now
    elif kind == actions.MARRIAGE_CREATE:
        row.deleted_at = now
    elif kind in (actions.MARRIAGE_SOFT_DELETE, actions.MARRIAGE_CASCADE_DELETE):
        if row.status == "current" and await find_current_marriage(
            session, row.husband_id, row.wife_id, exclude_id=row.id
        ):
            raise ValidationFailedError(message_for("duplicate_marriage"))
        row.deleted_at = None
    else:
        raise ValidationFailedError(message_for("not_undoable"), details={"action_kind": kind})
    bump(row)
    await session.flush()

    _mark_undone(entry, actor_id, reason, now)
    metadata = {"undo_of": entry.id}
    if operation_group_id:
        metadata["operation_group_id"] = operation_group_id
    clr = await append_entry(
        session,
        action_kind=spec.clr_kind,
        table_name=entry.table_name,
        record_id=row.id,
        actor_id=actor_id,
        old_data=before,
        new_data=snapshot(row),
        description=reason,
        metadata=metadata,
        undo_of_id=entry.id,
    )
    clr_ids = [clr.id]

    if kind == actions.MARRIAGE_SOFT_DELETE:
        # Spouses removed together with the marriage come back with it.
        for linked_id in (entry.metadata_json or {}).get("auto_deleted_entry_ids", []):
            linked = await audit_repo.lock_entry(session, int(linked_id))
            if linked is None or linked.undone_at is not None:
                continue
            linked_clrs, _ = await _compensate_entry(
                session, linked, actor_id=actor_id, reason=reason, now=now, operation_group_id=operation_group_id
            )
            clr_ids.extend(linked_clrs)
    return clr_ids, row.version


async def _undo_group(
    session: AsyncSession,
    anchor: AuditLogEntry,
    *,
    actor_id: str,
    reason: str | None,
) -> UndoOutcome:
    group_id = anchor.operation_group_id
    if not group_id:
        raise ValidationFailedError(details={"entry_id": anchor.id, "reason": "no_operation_group"})
    await try_advisory_lock(session, advisory_key("undo_group", group_id), message_key="undo_in_progress")
    group = await audit_repo.lock_group(session, group_id)
    now = utc_now()
    graph = SqlFamilyGraph(session)
    entries = await _evaluate_group(session, graph, group, actor_id, now)

    clr_ids: list[int] = []
    failed: list[int] = []
    restored = 0
    # Newest first: the inverse of the order the group was written in.
    for entry in entries:
        try:
            async with session.begin_nested():
                entry_clrs, _ = await _compensate_entry(
                    session, entry, actor_id=actor_id, reason=reason, now=now, operation_group_id=group_id
                )
        except (FamilyTreeError, SQLAlchemyError) as exc:
            # Partial success: one bad row must not strand the rest of the group.
            logger.warning(
                "group_undo_entry_failed group_id=%s entry_id=%s error=%s", group_id, entry.id, exc
            )
            failed.append(entry.id)
            continue
        clr_ids.extend(entry_clrs)
        restored += 1

    # The group only becomes terminal when nothing is left; a retry picks up the remainder.
    if not failed:
        group.undo_state = "undone"
        group.undone_at = now
        group.undone_by = actor_id
        group.undo_reason = reason
        await session.flush()

    return UndoOutcome(
        success=not failed,
        message=message_for("undo_success" if not failed else "undo_partial"),
        entry_id=anchor.id,
        compensation_entry_ids=clr_ids,
        operation_group_id=group_id,
        restored_count=restored,
        failed_entry_ids=failed,
    )


async def check_undo_permission(session: AsyncSession, *, entry_id: int, actor_id: str | None) -> UndoCheck:
    settings = get_settings()
    requires_group = False
    try:
        actor_id = require_actor(actor_id)
        await set_statement_timeout(session, settings.permission_statement_timeout_ms)
        graph = SqlFamilyGraph(session)
        now = utc_now()
        entry = await audit_repo.get_entry_by_id(session, entry_id)
        spec = await _evaluate_entry(graph, entry, actor_id, now)
        requires_group = spec.group_only
        if requires_group and entry.operation_group_id:
            group = await audit_repo.get_group(session, entry.operation_group_id)
            await _evaluate_group(session, graph, group, actor_id, now)
        model = Marriage if entry.table_name == actions.TABLE_MARRIAGES else Profile
        if await session.get(model, entry.record_id) is None:
            raise NotFoundError(details={"record_id": entry.record_id})
    except FamilyTreeError as exc:
        await session.rollback()
        return UndoCheck(can_undo=False, reason=exc.message, code=exc.code, requires_group_undo=requires_group)
    await session.rollback()
    return UndoCheck(can_undo=True, requires_group_undo=requires_group)


async def undo(
    session: AsyncSession,
    *,
    entry_id: int,
    actor_id: str | None,
    reason: str | None = None,
) -> UndoOutcome:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.bulk_statement_timeout_ms):
        await try_advisory_lock(session, advisory_key("undo_entry", entry_id), message_key="undo_in_progress")
        entry = await audit_repo.lock_entry(session, entry_id)
        if entry is None:
            raise NotFoundError(details={"entry_id": entry_id})
        spec = get_action(entry.action_kind)
        if spec is not None and spec.group_only and entry.operation_group_id:
            outcome = await _undo_group(session, entry, actor_id=actor_id, reason=reason)
        else:
            now = utc_now()
            graph = SqlFamilyGraph(session)
            await _evaluate_entry(graph, entry, actor_id, now)
            clr_ids, new_version = await _compensate_entry(
                session, entry, actor_id=actor_id, reason=reason, now=now
            )
            outcome = UndoOutcome(
                success=True,
                message=message_for("undo_success"),
                entry_id=entry.id,
                compensation_entry_ids=clr_ids,
                operation_group_id=entry.operation_group_id,
                restored_count=1,
                new_version=new_version,
            )
    logger.info(
        "undo_completed entry_id=%s success=%s restored=%s", entry_id, outcome.success, outcome.restored_count
    )
    return outcome


async def undo_cascade(
    session: AsyncSession,
    *,
    entry_id: int,
    actor_id: str | None,
    reason: str | None = None,
) -> UndoOutcome:
    # Compensate every active entry sharing the anchor entry's operation group.
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.bulk_statement_timeout_ms):
        entry = await audit_repo.get_entry_by_id(session, entry_id)
        if entry is None:
            raise NotFoundError(details={"entry_id": entry_id})
        outcome = await _undo_group(session, entry, actor_id=actor_id, reason=reason)
    logger.info(
        "undo_cascade_completed group_id=%s restored=%s failed=%s",
        outcome.operation_group_id,
        outcome.restored_count,
        len(outcome.failed_entry_ids),
    )
    return outcome
