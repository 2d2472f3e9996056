"""
Caller identity and app-check verification.

Identity comes from a Bearer JWT (`sub` claim). When ALLOW_HEADER_AUTH is on
(development and tests) an X-User-Id header is accepted as a fallback.

Missing identity is NOT rejected here: `get_optional_user_id` yields None and
each handler rejects with AuthorizationError before doing anything else.
A token that is present but invalid is rejected immediately.
"""
import time
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, Request
import logging

from companion.core.config import settings
from companion.core.errors import AuthorizationError, AppCheckError

logger = logging.getLogger("companion")

APP_CHECK_HEADER = "X-App-Check"


def require_user_id(user_id: Optional[str]) -> str:
    """Reject calls without an authenticated identity. Always the first check."""
    if not user_id or not str(user_id).strip():
        raise AuthorizationError()
    return user_id


def verify_jwt_token(token: str, settings_obj=None) -> Dict[str, Any]:
    """
    Verify a caller JWT and return its claims.

    Raises jwt.PyJWTError on invalid token.
    """
    cfg = settings_obj or settings
    secret = cfg.AUTH_JWT_SECRET
    if not secret:
        raise jwt.InvalidTokenError("AUTH_JWT_SECRET is not configured")

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(cfg.AUTH_JWT_AUDIENCE)}
    kwargs: Dict[str, Any] = {}
    if cfg.AUTH_JWT_AUDIENCE:
        kwargs["audience"] = cfg.AUTH_JWT_AUDIENCE
    if cfg.AUTH_JWT_ISSUER:
        kwargs["issuer"] = cfg.AUTH_JWT_ISSUER

    return jwt.decode(token, secret, algorithms=["HS256"], options=options, **kwargs)


def user_id_from_token(token: str) -> str:
    """
    Extract the user id from a Bearer token.

    Raises:
        AuthorizationError: Invalid, expired or subject-less token
    """
    try:
        claims = verify_jwt_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthorizationError("Token expired")
    except jwt.PyJWTError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthorizationError("Invalid token")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthorizationError("Invalid token")
    return user_id


async def get_optional_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> Optional[str]:
    """
    Resolve the caller's user id, or None when the call carries no identity.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (only when ALLOW_HEADER_AUTH is enabled)
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return user_id_from_token(auth_header[7:])

    if x_user_id and settings.ALLOW_HEADER_AUTH:
        return x_user_id.strip() or None

    return None


def verify_app_check_token(token: Optional[str], settings_obj=None) -> None:
    """
    Check an app-integrity token.

    No-op when APP_CHECK_ENFORCED is off. Otherwise the token must be an
    unexpired HS256 JWT signed with APP_CHECK_SECRET.
    """
    cfg = settings_obj or settings
    if not cfg.APP_CHECK_ENFORCED:
        return
    if not token:
        raise AppCheckError("App check token missing")
    if not cfg.APP_CHECK_SECRET:
        logger.error("APP_CHECK_ENFORCED is set but APP_CHECK_SECRET is not configured")
        raise AppCheckError()
    try:
        jwt.decode(
            token,
            cfg.APP_CHECK_SECRET,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )
    except jwt.PyJWTError as e:
        logger.debug(f"App check rejected: {e}")
        raise AppCheckError()


async def require_app_check(
    x_app_check: Optional[str] = Header(None, alias=APP_CHECK_HEADER),
) -> None:
    """FastAPI dependency enforcing the app-integrity check before a handler runs."""
    verify_app_check_token(x_app_check)


# ============================================================================
# Test Helpers (deterministic, no network)
# ============================================================================

def create_test_jwt(
    sub: Optional[str] = "test_user_123",
    email: Optional[str] = "test@example.com",
    exp_minutes: int = 60,
    secret: str = "test-secret",
    issuer: Optional[str] = None,
    audience: Optional[str] = None,
) -> str:
    """
    Create a signed HS256 JWT for tests.

    Pass `exp_minutes` negative to produce an already expired token.
    """
    now = int(time.time())
    payload: Dict[str, Any] = {
        "email": email,
        "iat": now,
        "exp": now + (exp_minutes * 60),
    }
    if sub is not None:
        payload["sub"] = sub
    if issuer:
        payload["iss"] = issuer
    if audience:
        payload["aud"] = audience
    return jwt.encode(payload, secret, algorithm="HS256")


def create_test_app_check_token(secret: str = "test-app-check-secret", exp_minutes: int = 60) -> str:
    now = int(time.time())
    return jwt.encode({"app": "companion-web", "iat": now, "exp": now + exp_minutes * 60}, secret, algorithm="HS256")
