"""
Reusable FastAPI dependencies for authentication and engine access.

Dependencies:
  - get_token_payload     — verified access-token claims (401 if invalid)
  - get_current_user_id   — caller's user id from ``sub``
  - require_admin         — rejects callers without the admin role (403)
  - get_matching_engine / get_challenge_judge / get_expiry_runner
                          — pool engine entry points, overridable in tests
"""

import uuid

from fastapi import Depends, Header, HTTPException, status

from app.core.security import ADMIN_ROLE, has_role, verify_token
from app.pool_engine.engine import MatchingEngine, matching_engine
from app.pool_engine.expiry import run_expiry_sweep
from app.pool_engine.judge import ChallengeJudge, challenge_judge


# ---------------------------------------------------------------------------
# Core: extract caller from JWT
# ---------------------------------------------------------------------------


async def get_token_payload(
    authorization: str = Header(..., description="Bearer <access_token>"),
) -> dict:
    """
    Parse the ``Authorization: Bearer <token>`` header and verify the JWT.

    Raises 401 if the token is missing, malformed, expired, or not an
    access token.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header",
        )

    token = authorization[len("Bearer "):]
    return verify_token(token, expected_type="access")


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> uuid.UUID:
    """The caller's user id, taken from the ``sub`` claim."""
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )


async def require_admin(payload: dict = Depends(get_token_payload)) -> dict:
    """Allow only tokens carrying ``role: admin``."""
    if not has_role(payload, ADMIN_ROLE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return payload


# ---------------------------------------------------------------------------
# Engine access
# ---------------------------------------------------------------------------


def get_matching_engine() -> MatchingEngine:
    return matching_engine


def get_challenge_judge() -> ChallengeJudge:
    return challenge_judge


def get_expiry_runner():
    """Callable running one locked expiry sweep; returns its report."""
    return run_expiry_sweep
