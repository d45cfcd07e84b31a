import logging
import threading
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from app.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"CUSTOMER", "PROVIDER", "ADMIN"}

# Lazily initialised, lives for the process lifetime.
_jwks_client: Optional[PyJWKClient] = None
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    with _jwks_lock:
        if _jwks_client is None:
            _jwks_client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        return _jwks_client


@dataclass
class CurrentUser:
    id: str
    role: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


def _extract_role(payload: dict) -> Optional[str]:
    # Role comes only from server-managed app_metadata; user_metadata is user-editable.
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _decode(token: str, key, algorithm: str) -> Optional[dict]:
    settings = get_settings()
    audience = (settings.supabase_jwt_audience or "").strip()
    try:
        return jwt.decode(
            token,
            key,
            algorithms=[algorithm],
            audience=audience or None,
            options={"verify_aud": bool(audience)},
        )
    except jwt.InvalidTokenError:
        return None


def _verify_es256(token: str) -> Optional[dict]:
    supabase_url = (get_settings().supabase_url or "").rstrip("/")
    if not supabase_url:
        return None
    try:
        client = _get_jwks_client(f"{supabase_url}/auth/v1/.well-known/jwks.json")
        signing_key = client.get_signing_key_from_jwt(token)
    except jwt.PyJWKClientError as exc:
        logger.debug("JWKS lookup failed: %s", exc)
        return None
    return _decode(token, signing_key.key, "ES256")


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "Token verification is not configured")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(401, "Invalid token")

    payload = None
    if header.get("alg") == "ES256":
        payload = _verify_es256(token)
    elif settings.supabase_jwt_secret:
        payload = _decode(token, settings.supabase_jwt_secret, "HS256")

    if payload is None or not payload.get("sub"):
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    user_meta = payload.get("user_metadata") or {}
    return CurrentUser(
        id=str(payload["sub"]),
        role=role,
        email=payload.get("email"),
        first_name=user_meta.get("first_name"),
        last_name=user_meta.get("last_name"),
        phone=user_meta.get("phone"),
    )


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency
