from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from familytree.core.config import get_settings
from familytree.core.errors import AuthenticationRequiredError
from familytree.domain.models import Profile


@dataclass(frozen=True)
class Actor:
    profile_id: str
    role: str
    user_id: str | None
    auth_method: str = "jwt"


def create_access_token(user_id: str, *, ttl_minutes: int | None = None) -> str:
    # Used by scripts and tests; production tokens come from the identity provider.
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=ttl_minutes or settings.auth_jwt_ttl_minutes),
    }
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def decode_access_token(token: str) -> str:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options={"verify_aud": bool(settings.auth_jwt_audience), "require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        raise AuthenticationRequiredError(details={"reason": "invalid_token"}) from exc
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationRequiredError(details={"reason": "missing_subject"})
    return subject


async def actor_for_user(session: AsyncSession, user_id: str) -> Actor:
    # Map the account to its live profile once; core calls receive the profile id explicitly.
    result = await session.execute(
        select(Profile).where(Profile.user_id == user_id, Profile.deleted_at.is_(None))
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise AuthenticationRequiredError(details={"reason": "no_linked_profile"})
    return Actor(profile_id=profile.id, role=profile.role, user_id=user_id)


async def actor_for_profile(session: AsyncSession, profile_id: str) -> Actor:
    profile = await session.get(Profile, profile_id)
    if profile is None or profile.deleted_at is not None:
        raise AuthenticationRequiredError(details={"reason": "unknown_profile"})
    return Actor(profile_id=profile.id, role=profile.role, user_id=profile.user_id, auth_method="dev_bypass")
