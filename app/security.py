from __future__ import annotations

from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.config import Settings, settings as default_settings


class AuthError(Exception):
    code = "UNAUTHORIZED"


def _strip_bearer(auth: str) -> str:
    s = (auth or "").strip()
    if s.lower().startswith("bearer "):
        return s[7:].strip()
    return s


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Validate a user access JWT. Accepts a raw token or 'Bearer <token>'."""
    cfg = settings or default_settings
    raw = _strip_bearer(token)
    if not raw:
        raise AuthError("Authentication required")
    if not cfg.JWT_SECRET:
        raise AuthError("Token validation is not configured")

    kwargs: Dict[str, Any] = {"algorithms": [cfg.JWT_ALG]}
    if cfg.JWT_AUDIENCE:
        kwargs["audience"] = cfg.JWT_AUDIENCE
    if cfg.JWT_ISSUER:
        kwargs["issuer"] = cfg.JWT_ISSUER

    try:
        return jwt.decode(raw, cfg.JWT_SECRET, **kwargs)
    except ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except JWTError as e:
        raise AuthError(f"Invalid token: {e}") from e
