"""
Bearer token authentication.

Sign-in itself is handled by the identity provider; this module only issues
and verifies the HS256 access tokens the API accepts, and the short-lived
delegation tokens an admin uses to act as an affiliate (impersonation).
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session
from backend.app.core.constants import ROLE_ADMIN
from backend.app.core.logging import bind_actor, get_logger
from backend.app.core.settings import get_settings
from backend.app.models.profile import Profile

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
SCOPE_FULL = "full"
SCOPE_IMPERSONATION = "impersonation"


class Principal(BaseModel):
    """The effective subject of a request."""
    user_id: uuid.UUID
    role: str
    scope: str = SCOPE_FULL
    impersonator_id: Optional[uuid.UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN and self.impersonator_id is None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonator_id is not None


def _jwt_secret() -> str:
    secret = get_settings().JWT_SECRET
    if not secret:
        raise HTTPException(status_code=500, detail="Server configuration error: JWT_SECRET not set")
    return secret


def create_access_token(user_id: uuid.UUID, role: str, expires_in: Optional[timedelta] = None) -> str:
    """
    Create a regular access token.

    Args:
        user_id: Profile id of the authenticated user
        role: Role at issue time (informational; the stored role is authoritative)
        expires_in: Override of JWT_EXPIRY_HOURS
    """
    now = datetime.now(timezone.utc)
    lifetime = expires_in or timedelta(hours=get_settings().JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(user_id),
        "role": role,
        "scope": SCOPE_FULL,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def create_impersonation_token(admin_id: uuid.UUID, target_id: uuid.UUID) -> str:
    """
    Create a delegation token letting admin_id view target_id's account.

    The token is scoped to one subject and to read-only capabilities.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(target_id),
        "act": str(admin_id),
        "scope": SCOPE_IMPERSONATION,
        "iat": now,
        "exp": now + timedelta(minutes=get_settings().IMPERSONATION_TTL_MINUTES),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a token, raising 401 on any problem."""
    try:
        payload = jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
        uuid.UUID(payload["sub"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


def _extract_bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization header format. Expected: Bearer <token>",
        )
    return parts[1]


async def get_current_principal(
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> Principal:
    """
    FastAPI dependency resolving the effective subject of the request.

    Roles are read from the database on every request so a demoted admin loses
    access immediately. Impersonation tokens are only honoured while the
    issuing admin still holds the admin role.
    """
    payload = decode_token(_extract_bearer(authorization))
    subject_id = uuid.UUID(payload["sub"])

    subject = await session.get(Profile, subject_id)
    if subject is None:
        raise HTTPException(status_code=401, detail="Unknown user")

    impersonator_id = None
    scope = payload.get("scope", SCOPE_FULL)
    if scope == SCOPE_IMPERSONATION:
        try:
            impersonator_id = uuid.UUID(payload.get("act", ""))
        except ValueError:
            raise HTTPException(status_code=401, detail="Invalid impersonation token")
        actor = await session.get(Profile, impersonator_id)
        if actor is None or actor.role != ROLE_ADMIN:
            logger.warning(
                "Rejected impersonation token",
                subject_id=str(subject_id),
                actor_id=str(impersonator_id),
            )
            raise HTTPException(status_code=403, detail="Impersonation is only available to admins")

    bind_actor(subject_id, impersonator_id)
    return Principal(
        user_id=subject_id,
        role=subject.role,
        scope=scope,
        impersonator_id=impersonator_id,
    )


async def get_token_subject(authorization: Optional[str] = Header(None)) -> uuid.UUID:
    """Subject of a valid full-scope token; no profile is required yet (registration)."""
    payload = decode_token(_extract_bearer(authorization))
    if payload.get("scope", SCOPE_FULL) != SCOPE_FULL:
        raise HTTPException(status_code=403, detail="Impersonation sessions are read-only")
    return uuid.UUID(payload["sub"])


async def require_write_access(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Refuse mutations made through an impersonation token."""
    if principal.is_impersonating:
        raise HTTPException(status_code=403, detail="Impersonation sessions are read-only")
    return principal


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Require a real (non-impersonated) admin session."""
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
