from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Iterable, TypeVar

from sqlalchemy import func, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.errors import (
    FamilyTreeError,
    LockedByOtherError,
    OperationTimeoutError,
    ValidationFailedError,
)
from familytree.core.messages import message_for
from familytree.persistence.db import dialect_name


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

# Postgres SQLSTATEs surfaced by NOWAIT locks, statement timeouts and unique indexes.
_SQLSTATE_LOCK_NOT_AVAILABLE = "55P03"
_SQLSTATE_QUERY_CANCELED = "57014"
_SQLSTATE_UNIQUE_VIOLATION = "23505"


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_db_error(exc: DBAPIError) -> FamilyTreeError | None:
    # Map driver errors onto the stable taxonomy; unknown failures stay raw.
    state = _sqlstate(exc)
    if state == _SQLSTATE_LOCK_NOT_AVAILABLE:
        return LockedByOtherError()
    if state == _SQLSTATE_QUERY_CANCELED:
        return OperationTimeoutError()
    if state == _SQLSTATE_UNIQUE_VIOLATION or isinstance(exc, IntegrityError):
        return ValidationFailedError(details={"constraint": str(exc.orig)})
    if "database is locked" in str(exc.orig):
        return LockedByOtherError()
    return None


async def set_statement_timeout(session: AsyncSession, timeout_ms: int | None) -> None:
    # SET LOCAL scopes the timeout to the current transaction only.
    if not timeout_ms or dialect_name(session) != "postgresql":
        return
    await session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


@asynccontextmanager
async def atomic(session: AsyncSession, *, timeout_ms: int | None = None) -> AsyncIterator[None]:
    # One transaction per operation: commit on success, roll back and translate on failure.
    try:
        await set_statement_timeout(session, timeout_ms)
        yield
        await session.commit()
    except FamilyTreeError:
        await session.rollback()
        raise
    except DBAPIError as exc:
        await session.rollback()
        translated = translate_db_error(exc)
        if translated is None:
            raise
        logger.info("db_error_translated code=%s sqlstate=%s", translated.code, _sqlstate(exc))
        raise translated from exc
    except BaseException:
        await session.rollback()
        raise


async def lock_rows(session: AsyncSession, model: type[ModelT], ids: Iterable[str]) -> dict[str, ModelT]:
    # FOR UPDATE NOWAIT: contention fails fast instead of queueing; re-read the live version.
    wanted = sorted({row_id for row_id in ids if row_id})
    if not wanted:
        return {}
    stmt = (
        select(model)
        .where(model.id.in_(wanted))
        .with_for_update(nowait=True)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return {row.id: row for row in result.scalars().all()}


async def lock_row(session: AsyncSession, model: type[ModelT], row_id: str) -> ModelT | None:
    rows = await lock_rows(session, model, [row_id])
    return rows.get(row_id)


async def try_advisory_lock(session: AsyncSession, key: str, *, message_key: str = "locked_by_other") -> None:
    # Transaction-scoped logical mutex; released on commit/rollback.
    if dialect_name(session) != "postgresql":
        # SQLite serialises writers per database, so there is nothing to coordinate.
        return
    result = await session.execute(select(func.pg_try_advisory_xact_lock(func.hashtext(key))))
    if not result.scalar():
        raise LockedByOtherError(message_for(message_key), details={"lock_key": key})


def advisory_key(*parts: Any) -> str:
    return ":".join(str(part) for part in parts)
