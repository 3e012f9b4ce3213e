from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from app.core.config import settings

JWT_ISSUER = "routinely"
ACCESS_TOKEN_MINUTES = 15


def create_access_token(
    *,
    profile_id: int,
    family_id: int,
    role: str,
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "iss": JWT_ISSUER,
        "sub": str(profile_id),
        "family_id": family_id,
        "role": role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_MINUTES))).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=JWT_ISSUER,
    )
