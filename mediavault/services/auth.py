from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mediavault.core.config import settings

bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthUser:
    user_id: str
    email: str
    roles: list[str]

    @property
    def is_admin(self) -> bool:
        return settings.admin_role in self.roles


def _decode_token(token: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "algorithms": [settings.jwt_algorithm],
        "leeway": settings.jwt_exp_leeway_seconds,
    }

    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        kwargs["options"] = {"verify_aud": False}

    if settings.jwt_issuer:
        kwargs["issuer"] = settings.jwt_issuer

    try:
        payload = jwt.decode(token, settings.jwt_secret, **kwargs)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    return payload


def _parse_payload(payload: dict[str, Any]) -> AuthUser:
    raw_id = payload.get("user_id") or payload.get("sub")
    user_id = str(raw_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid user_id claim")

    email = str(payload.get("email") or "").strip().lower()
    roles = payload.get("roles") or []

    if not isinstance(roles, list):
        roles = []

    return AuthUser(
        user_id=user_id,
        email=email,
        roles=[str(r).strip().lower() for r in roles if str(r).strip()],
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> AuthUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return _parse_payload(_decode_token(credentials.credentials))


def require_role(user: AuthUser, allowed: set[str]) -> None:
    if not allowed.intersection(set(user.roles)):
        raise HTTPException(status_code=403, detail="Forbidden")


async def get_admin_user(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    require_role(user, {settings.admin_role})
    return user
