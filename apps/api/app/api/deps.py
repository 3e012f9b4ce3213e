from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import Clock, utc_now
from app.core.exceptions import ForbiddenError, NotFoundError
from app.core.security import decode_token
from app.db.session import SessionLocal
from app.models import Profile, ProfileRole

auth_scheme = HTTPBearer(auto_error=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DBSession = Annotated[Session, Depends(get_db)]


def get_clock() -> Clock:
    return utc_now


RequestClock = Annotated[Clock, Depends(get_clock)]


@dataclass(frozen=True, slots=True)
class AuthContext:
    profile_id: int
    family_id: int
    role: ProfileRole

    @property
    def is_parent(self) -> bool:
        return self.role in {ProfileRole.PARENT, ProfileRole.ADMIN}


def get_auth_context(
    db: DBSession,
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(auth_scheme)],
) -> AuthContext:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
        )

    try:
        payload = decode_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access token",
        )

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )

    profile = db.scalar(select(Profile).where(Profile.id == int(sub), Profile.deleted_at.is_(None)))
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Profile not found",
        )

    request.state.profile_id = profile.id
    request.state.family_id = profile.family_id
    return AuthContext(profile_id=profile.id, family_id=profile.family_id, role=profile.role)


CurrentAuth = Annotated[AuthContext, Depends(get_auth_context)]


def require_role(roles: list[ProfileRole]) -> Callable[[AuthContext], AuthContext]:
    allowed = set(roles)

    def dependency(auth: CurrentAuth) -> AuthContext:
        if auth.role not in allowed:
            raise ForbiddenError("Insufficient role")
        return auth

    return dependency


ParentAuth = Annotated[AuthContext, Depends(require_role([ProfileRole.PARENT, ProfileRole.ADMIN]))]


def ensure_profile_in_family(db: Session, *, profile_id: int, family_id: int) -> Profile:
    profile = db.scalar(
        select(Profile).where(
            Profile.id == profile_id,
            Profile.family_id == family_id,
            Profile.deleted_at.is_(None),
        ),
    )
    if profile is None:
        raise NotFoundError("Profile not found in family")
    return profile


def ensure_child_access(db: Session, auth: AuthContext, child_id: int) -> Profile:
    """Parents reach every child of their family; a child only reaches itself."""
    profile = ensure_profile_in_family(db, profile_id=child_id, family_id=auth.family_id)
    if not auth.is_parent and auth.profile_id != child_id:
        raise ForbiddenError("Children can only access their own data")
    return profile
