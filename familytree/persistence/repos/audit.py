from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.domain.models import AuditLogEntry, OperationGroup


async def list_entries(
    session: AsyncSession,
    *,
    record_id: str | None = None,
    operation_group_id: str | None = None,
    actor_id: str | None = None,
    action_kind: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLogEntry]:
    # Newest first: the activity feed and history views read from the top.
    stmt = select(AuditLogEntry)
    if record_id:
        stmt = stmt.where(AuditLogEntry.record_id == record_id)
    if operation_group_id:
        stmt = stmt.where(AuditLogEntry.operation_group_id == operation_group_id)
    if actor_id:
        stmt = stmt.where(AuditLogEntry.actor_id == actor_id)
    if action_kind:
        stmt = stmt.where(AuditLogEntry.action_kind == action_kind)
    if created_from:
        stmt = stmt.where(AuditLogEntry.created_at >= created_from)
    if created_to:
        stmt = stmt.where(AuditLogEntry.created_at <= created_to)

    stmt = stmt.order_by(AuditLogEntry.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_entry_by_id(session: AsyncSession, entry_id: int) -> AuditLogEntry | None:
    result = await session.execute(select(AuditLogEntry).where(AuditLogEntry.id == entry_id))
    return result.scalar_one_or_none()


async def lock_entry(session: AsyncSession, entry_id: int) -> AuditLogEntry | None:
    # Re-read undo state under a NOWAIT row lock.
    result = await session.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.id == entry_id)
        .with_for_update(nowait=True)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_group(session: AsyncSession, group_id: str) -> OperationGroup | None:
    result = await session.execute(
        select(OperationGroup)
        .where(OperationGroup.id == group_id)
        .with_for_update(nowait=True)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_group(session: AsyncSession, group_id: str) -> OperationGroup | None:
    return await session.get(OperationGroup, group_id)


async def list_group_entries(
    session: AsyncSession,
    group_id: str,
    *,
    active_only: bool = False,
    newest_first: bool = True,
) -> list[AuditLogEntry]:
    stmt = select(AuditLogEntry).where(AuditLogEntry.operation_group_id == group_id)
    if active_only:
        stmt = stmt.where(AuditLogEntry.undone_at.is_(None), AuditLogEntry.is_undoable.is_(True))
    stmt = stmt.order_by(AuditLogEntry.id.desc() if newest_first else AuditLogEntry.id.asc())
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())
