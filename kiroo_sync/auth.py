"""Authentication utilities for the kiroo-sync backend.

Two credentials are accepted:

* Device API keys (``x-api-key`` header) for the mobile sync surface. Only a
  SHA-256 digest is stored; the plaintext is shown once at creation.
* Bearer JWTs for the dashboard surface. Tokens are issued by the external
  auth service; this backend only verifies them.
"""

import hashlib
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from supabase import Client

from .config import Settings, get_settings
from .database import Database, get_api_key_by_hash, update_api_key_last_used
from .logging_config import get_logger, log_auth_event

logger = get_logger("kiroo_sync.auth")

# Bearer scheme for the dashboard; missing header handled below
security = HTTPBearer(auto_error=False)


def generate_api_key(settings: Settings) -> str:
    """Generate a device key: prefix + random hex."""
    return f"{settings.api_key_prefix}{secrets.token_hex(settings.api_key_bytes)}"


def hash_api_key(key: str) -> str:
    """Deterministic digest so lookups can use the unique index."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class DeviceContext:
    """Identity resolved from a device API key."""

    def __init__(
        self,
        user_id: str,
        api_key_id: str,
        key_name: str | None = None,
        device_name: str | None = None,
    ):
        self.user_id = user_id
        self.api_key_id = api_key_id
        self.key_name = key_name
        self.device_name = device_name

    @property
    def log_prefix(self) -> str:
        return f"{self.user_id}/{self.device_name or self.key_name or self.api_key_id}"


async def resolve_api_key(db: Client, raw_key) -> DeviceContext | None:
    """Map a raw API key to its owner, or None.

    Never raises for malformed input. ``last_used_at`` is stamped best-effort;
    a failed stamp does not fail the request.
    """
    if not isinstance(raw_key, str) or not raw_key.strip():
        return None

    record = await get_api_key_by_hash(db, hash_api_key(raw_key.strip()))
    if not record:
        log_auth_event("api_key", "no matching key", success=False)
        return None

    try:
        await update_api_key_last_used(db, record["id"])
    except Exception as e:
        logger.warning(f"Failed to stamp last_used_at for key {record['id']}: {e}")

    return DeviceContext(
        user_id=record["user_id"],
        api_key_id=record["id"],
        key_name=record.get("name"),
        device_name=record.get("device_name"),
    )


async def get_current_device(
    db: Database,
    x_api_key: Annotated[str | None, Header()] = None,
) -> DeviceContext:
    """Resolve the calling device from the ``x-api-key`` header."""
    device = await resolve_api_key(db, x_api_key)
    if device is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return device


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a dashboard JWT."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except JWTError:
        log_auth_event("jwt", "invalid or expired token", success=False)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthContext:
    """Dashboard session identity taken from the bearer token."""

    def __init__(self, user_id: str, email: str | None = None):
        self.user_id = user_id
        self.email = email


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AuthContext(user_id=user_id, email=payload.get("email"))


# Type aliases for dependency injection
CurrentDevice = Annotated[DeviceContext, Depends(get_current_device)]
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
