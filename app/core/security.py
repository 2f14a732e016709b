"""
Access token verification for pool API callers.

Tokens are minted by the identity service.  This service holds the
verification key, checks ``type == "access"``, requires ``sub`` (the
user id) and ``exp``, and reads an optional ``role`` claim for the
admin sweep endpoints.  RS256 is used when the public key file exists;
otherwise HS256 with ``SECRET_KEY`` (local development only).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
from fastapi import HTTPException, status

from app.config import settings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
REQUIRED_CLAIMS = ["sub", "exp"]


@dataclass(frozen=True)
class KeySet:
    verify_key: str | bytes
    algorithm: str
    # Only present in development and tests; production never signs
    signing_key: str | bytes | None = None


def _keys_from_settings() -> KeySet:
    public_path = Path(settings.JWT_PUBLIC_KEY_PATH)
    private_path = Path(settings.JWT_PRIVATE_KEY_PATH)

    if public_path.exists():
        logger.info("Verifying access tokens with RS256 key %s", public_path)
        return KeySet(
            verify_key=public_path.read_bytes(),
            algorithm="RS256",
            signing_key=private_path.read_bytes() if private_path.exists() else None,
        )

    logger.warning("JWT public key not found at %s; falling back to HS256", public_path)
    return KeySet(
        verify_key=settings.SECRET_KEY,
        algorithm="HS256",
        signing_key=settings.SECRET_KEY,
    )


_keys = _keys_from_settings()


def configure_keys(
    *, private_key: str | bytes | None, public_key: str | bytes, algorithm: str = "RS256"
) -> None:
    """Swap the active key set (tests, or a key rotation at runtime)."""
    global _keys
    _keys = KeySet(verify_key=public_key, algorithm=algorithm, signing_key=private_key)


def create_access_token(
    user_id: str, role: str | None = None, expires_in: timedelta | None = None,
) -> str:
    """Mint an access token for local tooling and tests."""
    if _keys.signing_key is None:
        raise RuntimeError("No signing key configured; tokens come from the identity service")

    issued = datetime.now(timezone.utc)
    lifetime = expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": str(user_id), "type": "access", "iat": issued, "exp": issued + lifetime}
    if role:
        claims["role"] = role
    return jwt.encode(claims, _keys.signing_key, algorithm=_keys.algorithm)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def decode_token(token: str) -> dict:
    """Verify signature and expiry; 401 on any failure."""
    try:
        return jwt.decode(
            token,
            _keys.verify_key,
            algorithms=[_keys.algorithm],
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")


def verify_token(token: str, expected_type: str = "access") -> dict:
    payload = decode_token(token)
    if payload.get("type") != expected_type:
        raise _unauthorized(f"Expected {expected_type} token")
    return payload


def has_role(payload: dict, role: str) -> bool:
    return payload.get("role") == role
