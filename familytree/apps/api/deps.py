from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import AuthenticationRequiredError, PermissionDeniedError
from familytree.domain.permissions import is_admin_role
from familytree.persistence.db import get_session
from familytree.services.auth import Actor, actor_for_profile, actor_for_user, decode_access_token


logger = logging.getLogger(__name__)

DEV_PROFILE_HEADER = "X-Profile-Id"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationRequiredError(details={"reason": "malformed_authorization_header"})
    return parts[1]


async def get_current_actor(request: Request, db: AsyncSession = Depends(get_db)) -> Actor:
    # Resolve identity once here; services receive the actor's profile id explicitly.
    settings = get_settings()
    dev_profile_id = request.headers.get(DEV_PROFILE_HEADER)
    if settings.auth_dev_bypass and dev_profile_id:
        actor = await actor_for_profile(db, dev_profile_id)
    else:
        token = _parse_bearer_token(request.headers.get("Authorization"))
        if token is None:
            raise AuthenticationRequiredError()
        actor = await actor_for_user(db, decode_access_token(token))
    # The lookup opened a read transaction; operations open their own.
    await db.rollback()
    request.state.actor_id = actor.profile_id
    return actor


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not is_admin_role(actor.role):
        logger.info("admin_required_denied actor_id=%s role=%s", actor.profile_id, actor.role)
        raise PermissionDeniedError(details={"required_role": "admin"})
    return actor
