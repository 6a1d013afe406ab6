from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import NotFoundError, ValidationFailedError
from familytree.core.messages import message_for
from familytree.domain import actions
from familytree.domain.models import Marriage, Profile
from familytree.domain.permissions import PermissionLevel
from familytree.persistence.locks import atomic, lock_row, lock_rows
from familytree.persistence.repos.graph import SqlFamilyGraph
from familytree.services.audit import append_entry, snapshot
from familytree.services.gateway import (
    bump,
    check_version,
    count_live_children,
    require_actor,
    require_live_profile,
    soft_delete,
    utc_now,
)
from familytree.services.permissions import require_direct_edit, resolve
from familytree.services.validation import (
    check_date_range,
    require_version,
    validate_marriage_patch,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarriageResult:
    marriage_id: str
    version: int
    audit_entry_id: int
    auto_deleted_profile_ids: list[str] = field(default_factory=list)


def require_live_marriage(marriage: Marriage | None, marriage_id: str) -> Marriage:
    if marriage is None or marriage.deleted_at is not None:
        raise NotFoundError(details={"marriage_id": marriage_id})
    return marriage


async def require_spouse_edit(
    graph: SqlFamilyGraph, actor_id: str, husband_id: str, wife_id: str
) -> PermissionLevel:
    # Direct rights on either spouse cover the edge between them.
    level = await resolve(graph, actor_id, husband_id)
    if level.allows_direct_edit:
        return level
    return await require_direct_edit(graph, actor_id, wife_id)


async def find_current_marriage(
    session: AsyncSession, husband_id: str, wife_id: str, *, exclude_id: str | None = None
) -> Marriage | None:
    stmt = select(Marriage).where(
        Marriage.husband_id == husband_id,
        Marriage.wife_id == wife_id,
        Marriage.status == "current",
        Marriage.deleted_at.is_(None),
    )
    if exclude_id:
        stmt = stmt.where(Marriage.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def create_marriage(
    session: AsyncSession,
    *,
    actor_id: str | None,
    husband_id: str,
    wife_id: str,
    status: str = "current",
    start_date: Any = None,
    end_date: Any = None,
) -> MarriageResult:
    actor_id = require_actor(actor_id)
    clean = validate_marriage_patch(
        {"status": status, "start_date": start_date, "end_date": end_date}, require_non_empty=False
    )
    check_date_range(clean.get("start_date"), clean.get("end_date"))
    if husband_id == wife_id:
        raise ValidationFailedError(details={"reason": "same_person"})

    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        spouses = await lock_rows(session, Profile, [husband_id, wife_id])
        husband = require_live_profile(spouses.get(husband_id), husband_id)
        wife = require_live_profile(spouses.get(wife_id), wife_id)
        if husband.gender != "male" or wife.gender != "female":
            raise ValidationFailedError(details={"reason": "spouse_gender_mismatch"})
        graph = SqlFamilyGraph(session)
        await require_spouse_edit(graph, actor_id, husband_id, wife_id)
        if clean["status"] == "current" and await find_current_marriage(session, husband_id, wife_id):
            raise ValidationFailedError(message_for("duplicate_marriage"))

        marriage = Marriage(id=uuid4().hex, husband_id=husband_id, wife_id=wife_id, version=1, **clean)
        session.add(marriage)
        await session.flush()
        entry = await append_entry(
            session,
            action_kind=actions.MARRIAGE_CREATE,
            record_id=marriage.id,
            actor_id=actor_id,
            old_data=None,
            new_data=snapshot(marriage),
        )
        result = MarriageResult(marriage_id=marriage.id, version=marriage.version, audit_entry_id=entry.id)
    logger.info("marriage_created marriage_id=%s entry_id=%s", result.marriage_id, result.audit_entry_id)
    return result


async def update_marriage(
    session: AsyncSession,
    *,
    actor_id: str | None,
    marriage_id: str,
    expected_version: int,
    patch: Mapping[str, Any],
) -> MarriageResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        marriage = require_live_marriage(await lock_row(session, Marriage, marriage_id), marriage_id)
        graph = SqlFamilyGraph(session)
        await require_spouse_edit(graph, actor_id, marriage.husband_id, marriage.wife_id)
        check_version(marriage, require_version(expected_version))
        clean = validate_marriage_patch(patch)
        check_date_range(
            clean.get("start_date", marriage.start_date), clean.get("end_date", marriage.end_date)
        )
        if clean.get("status") == "current" and await find_current_marriage(
            session, marriage.husband_id, marriage.wife_id, exclude_id=marriage.id
        ):
            raise ValidationFailedError(message_for("duplicate_marriage"))

        old_data = snapshot(marriage)
        for field_name, value in clean.items():
            setattr(marriage, field_name, value)
        bump(marriage)
        await session.flush()
        entry = await append_entry(
            session,
            action_kind=actions.MARRIAGE_UPDATE,
            record_id=marriage.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(marriage),
        )
        result = MarriageResult(marriage_id=marriage.id, version=marriage.version, audit_entry_id=entry.id)
    return result


async def _is_orphaned_munasib(session: AsyncSession, graph: SqlFamilyGraph, profile: Profile) -> bool:
    # A spouse with no lineage id, no other live marriage and no live children exists only through this edge.
    if profile.hid or profile.deleted_at is not None:
        return False
    result = await session.execute(
        select(func.count())
        .select_from(Marriage)
        .where(
            or_(Marriage.husband_id == profile.id, Marriage.wife_id == profile.id),
            Marriage.deleted_at.is_(None),
        )
    )
    if int(result.scalar() or 0) > 0:
        return False
    return await count_live_children(graph, profile.id) == 0


async def delete_marriage(
    session: AsyncSession,
    *,
    actor_id: str | None,
    marriage_id: str,
    expected_version: int,
) -> MarriageResult:
    actor_id = require_actor(actor_id)
    settings = get_settings()
    async with atomic(session, timeout_ms=settings.mutation_statement_timeout_ms):
        marriage = require_live_marriage(await lock_row(session, Marriage, marriage_id), marriage_id)
        graph = SqlFamilyGraph(session)
        await require_spouse_edit(graph, actor_id, marriage.husband_id, marriage.wife_id)
        check_version(marriage, require_version(expected_version))

        old_data = snapshot(marriage)
        marriage.deleted_at = utc_now()
        bump(marriage)
        await session.flush()

        spouses = await lock_rows(session, Profile, [marriage.husband_id, marriage.wife_id])
        auto_deleted: dict[str, int] = {}
        for spouse_id in (marriage.husband_id, marriage.wife_id):
            spouse = spouses.get(spouse_id)
            if spouse is not None and await _is_orphaned_munasib(session, graph, spouse):
                spouse_entry = await soft_delete(
                    session,
                    spouse,
                    actor_id=actor_id,
                    metadata={"auto_deleted_with_marriage": marriage.id},
                )
                auto_deleted[spouse_id] = spouse_entry.id

        entry = await append_entry(
            session,
            action_kind=actions.MARRIAGE_SOFT_DELETE,
            record_id=marriage.id,
            actor_id=actor_id,
            old_data=old_data,
            new_data=snapshot(marriage),
            metadata={"auto_deleted_entry_ids": list(auto_deleted.values())},
        )
        result = MarriageResult(
            marriage_id=marriage.id,
            version=marriage.version,
            audit_entry_id=entry.id,
            auto_deleted_profile_ids=list(auto_deleted),
        )
    logger.info(
        "marriage_deleted marriage_id=%s auto_deleted=%s", result.marriage_id, len(result.auto_deleted_profile_ids)
    )
    return result


async def list_marriages(
    session: AsyncSession, *, profile_id: str, include_deleted: bool = False
) -> list[Marriage]:
    stmt = select(Marriage).where(or_(Marriage.husband_id == profile_id, Marriage.wife_id == profile_id))
    if not include_deleted:
        stmt = stmt.where(Marriage.deleted_at.is_(None))
    result = await session.execute(stmt.order_by(Marriage.created_at))
    return list(result.scalars().all())
