import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlmodel import Session

from .db import get_session
from .identity import IdentityProvider, LocalIdentityProvider, Principal
from .models import StaffMember, StaffRole
from .permissions import Area, PermissionService
from .settings import settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "access_token"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


class ForcedSignOut(Exception):
    """Raised by area guards; the app answers with a cookie wipe and a redirect to /login."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class SessionClaims:
    principal_id: int
    tenant_id: int
    role: str
    token_version: int


def get_identity_provider(
    session: Annotated[Session, Depends(get_session)],
) -> IdentityProvider:
    return LocalIdentityProvider(session)


def create_access_token(
    principal: Principal,
    tenant_id: int,
    role: StaffRole,
    expires_delta: timedelta | None = None,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": str(principal.id),
        "tenant_id": tenant_id,
        "role": role.value,
        "token_version": principal.token_version,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> SessionClaims | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        principal_id = int(payload["sub"])
        tenant_id = payload.get("tenant_id")
        if tenant_id is None:
            return None
        return SessionClaims(
            principal_id=principal_id,
            tenant_id=int(tenant_id),
            role=payload.get("role", ""),
            token_version=int(payload.get("token_version", 0)),
        )
    except (JWTError, KeyError, TypeError, ValueError):
        return None


async def get_session_token(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> str | None:
    """
    Get token from cookie (primary) or Authorization header (fallback).
    """
    cookie_token = request.cookies.get(SESSION_COOKIE)
    if cookie_token:
        return cookie_token
    return token


def resolve_session(
    token: str | None, identity: IdentityProvider
) -> SessionClaims | None:
    """Decode the token and check it has not been revoked by a sign-out."""
    if not token:
        return None
    claims = decode_access_token(token)
    if claims is None:
        return None
    if not identity.session_is_current(claims.principal_id, claims.token_version):
        return None
    return claims


def get_current_staff(
    token: Annotated[str | None, Depends(get_session_token)],
    session: Annotated[Session, Depends(get_session)],
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> StaffMember:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    claims = resolve_session(token, identity)
    if claims is None:
        raise credentials_exception

    staff = session.get(StaffMember, claims.principal_id)
    if not PermissionService.has_tenant_binding(staff, claims.tenant_id):
        raise credentials_exception
    return staff


class AreaChecker:
    """Route guard for a role-scoped area.

    Anything short of a current session, a profile bound to the session's
    tenant, and the area's role ends the session instead of answering 403.
    """

    def __init__(self, area: Area):
        self.area = area

    def __call__(
        self,
        token: Annotated[str | None, Depends(get_session_token)],
        session: Annotated[Session, Depends(get_session)],
        identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
    ) -> StaffMember:
        claims = resolve_session(token, identity)
        if claims is None:
            raise ForcedSignOut("missing or expired session")

        staff = session.get(StaffMember, claims.principal_id)
        if not PermissionService.can_enter(staff, claims.tenant_id, self.area):
            logger.warning(
                f"Forced sign-out of principal {claims.principal_id} entering {self.area.value} area"
            )
            identity.sign_out(claims.principal_id)
            raise ForcedSignOut(f"not allowed in {self.area.value} area")
        return staff


require_admin = AreaChecker(Area.ADMIN)
require_waiter = AreaChecker(Area.WAITER)
