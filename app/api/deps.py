from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.security import AuthError, decode_access_token
from app.services.container import Services

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: UUID
    email: Optional[str] = None


def get_services(request: Request) -> Services:
    return request.app.state.services


def _user_from_claims(claims: dict) -> CurrentUser:
    uid = claims.get("user_id") or claims.get("sub")
    if not uid:
        raise AuthError("Token has no subject")
    try:
        user_id = UUID(str(uid))
    except ValueError:
        raise AuthError("Token subject is not a user id")
    return CurrentUser(id=user_id, email=claims.get("email"))


async def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    services: Services = Depends(get_services),
) -> CurrentUser:
    """
    Primary: Authorization: Bearer <JWT>
    Fallback (dev only, ALLOW_X_USER_ID): X-User-Id: <uuid>
    """
    if creds and creds.scheme.lower() == "bearer" and creds.credentials:
        claims = decode_access_token(creds.credentials, services.settings)
        return _user_from_claims(claims)

    if x_user_id and services.settings.ALLOW_X_USER_ID:
        try:
            return CurrentUser(id=UUID(x_user_id))
        except ValueError:
            raise AuthError("Bad X-User-Id header")

    raise AuthError("Authentication required")


async def get_current_user_id(user: CurrentUser = Depends(get_current_user)) -> UUID:
    return user.id


def require_maintenance_token(
    x_maintenance_token: Optional[str] = Header(default=None, alias="X-Maintenance-Token"),
    services: Services = Depends(get_services),
) -> None:
    expected = services.settings.MAINTENANCE_TOKEN
    if not expected:
        return
    if not x_maintenance_token or not secrets.compare_digest(x_maintenance_token, expected):
        raise AuthError("Invalid maintenance token")
